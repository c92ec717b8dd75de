"""
Account registry - in-memory map of user accounts.

Resolves order ownership for the trigger loop and supplies the orders the
snapshot builder indexes. Loaded in full at startup, reloaded in full by a
background loop, and kept current between reloads by order records.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from trigger_bot.orderbook.models import OrderRecord, UserAccount

if TYPE_CHECKING:
    from trigger_bot.ingestion.client import ExchangeRestClient

logger = logging.getLogger(__name__)


class AccountNotFoundError(KeyError):
    """Raised when an account cannot be resolved."""

    def __init__(self, account_key: str):
        self.account_key = account_key
        super().__init__(f"Account not found: {account_key}")

    def __str__(self) -> str:
        return self.args[0]


class AccountRegistry:
    """
    Map of account key -> UserAccount.

    Usage:
        registry = AccountRegistry(client)
        await registry.fetch_all()
        await registry.start()      # background reload loop

        account = await registry.must_get("8xk...")
        await registry.update_with_order_record(record)
    """

    def __init__(
        self,
        client: "ExchangeRestClient",
        refresh_interval_seconds: float = 1.0,
    ) -> None:
        """
        Initialize the registry.

        Args:
            client: REST client used to load accounts
            refresh_interval_seconds: Interval of the background full reload
        """
        self._client = client
        self._refresh_interval = refresh_interval_seconds
        self._accounts: Dict[str, UserAccount] = {}

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_key: object) -> bool:
        return account_key in self._accounts

    def values(self) -> List[UserAccount]:
        """Accounts currently known, as a list safe to iterate across awaits."""
        return list(self._accounts.values())

    def get(self, account_key: str) -> Optional[UserAccount]:
        return self._accounts.get(account_key)

    def add(self, account: UserAccount) -> None:
        self._accounts[account.account_key] = account

    async def fetch_all(self) -> int:
        """
        Load every user account from the exchange, replacing the current map.

        Returns:
            Number of accounts loaded
        """
        accounts = await self._client.get_user_accounts()
        self._accounts = {a.account_key: a for a in accounts}
        logger.debug(f"Loaded {len(self._accounts)} user accounts")
        return len(self._accounts)

    async def refresh(self, account_key: str) -> Optional[UserAccount]:
        """
        Reload one account from the exchange.

        Returns:
            The refreshed account, or None if the exchange does not know it
        """
        account = await self._client.get_user_account(account_key)
        if account is None:
            self._accounts.pop(account_key, None)
            return None
        self._accounts[account_key] = account
        return account

    async def must_get(self, account_key: str) -> UserAccount:
        """
        Resolve an account, fetching it if it is not loaded yet.

        Raises:
            AccountNotFoundError: If the exchange does not know the account
        """
        account = self._accounts.get(account_key)
        if account is not None:
            return account

        account = await self.refresh(account_key)
        if account is None:
            raise AccountNotFoundError(account_key)
        return account

    async def update_with_order_record(self, record: OrderRecord) -> None:
        """
        Bring the record's user up to date.

        The account is reloaded so its order list reflects the record.
        """
        account = await self.refresh(record.user)
        if account is None:
            logger.warning(f"Order record for unknown user {record.user}")
            return
        logger.debug(
            f"Updated user {record.user} from order record "
            f"(order {record.order.order_id}, action={record.action})"
        )

    # Background reload

    async def start(self) -> None:
        """Start the background reload loop."""
        if self._running:
            logger.warning("AccountRegistry already running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._refresh_loop(), name="account_refresh")
        logger.info(f"Started account refresh (interval={self._refresh_interval}s)")

    async def stop(self) -> None:
        """Stop the background reload loop."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Account refresh stopped")

    async def _refresh_loop(self) -> None:
        interval = self._refresh_interval

        while self._running:
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if not self._running:
                    break

                await self.fetch_all()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error refreshing user accounts: {e}")
                await asyncio.sleep(min(5.0, interval * 5))
