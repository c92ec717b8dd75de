"""
REST API client for the exchange.

Provides async access to market data (markets, oracle prices, slot),
user accounts, and trigger-order submission.

Submissions are never retried by the client: a timed out POST may still
land, and the trigger loop decides on its own whether to retry next tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from trigger_bot.orderbook.models import (
    Market,
    OraclePriceData,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    TriggerCondition,
    UserAccount,
)

logger = logging.getLogger(__name__)


class ExchangeAPIError(Exception):
    """Base exception for exchange API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class RateLimitError(ExchangeAPIError):
    """Rate limit exceeded."""
    pass


def _to_decimal(value: Any, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


class ExchangeRestClient:
    """
    Async REST client for the exchange API.

    Features:
        - Rate limiting to avoid API throttling
        - Automatic retries with exponential backoff for reads
        - Error codes surfaced on ExchangeAPIError for metrics

    Usage:
        async with ExchangeRestClient(base_url, wallet_address="...") as client:
            markets = await client.get_markets()
            tx = await client.submit_trigger(account, order)
    """

    DEFAULT_API = "http://localhost:8080"

    def __init__(
        self,
        base_url: Optional[str] = None,
        wallet_address: str = "",
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 10.0,  # requests per second
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the REST client.

        Args:
            base_url: Exchange API root
            wallet_address: Keeper wallet that signs trigger transactions
            session: Optional aiohttp session (created if not provided)
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
            max_retries: Number of attempts for read requests
            retry_delay: Base delay between retries (exponential backoff)
        """
        self._base_url = (base_url or self.DEFAULT_API).rstrip("/")
        self._wallet_address = wallet_address
        self._session = session
        self._owns_session = session is None
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        # Rate limiting
        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

    @property
    def identity(self) -> str:
        """Wallet the keeper submits from."""
        return self._wallet_address

    @property
    def endpoint(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "ExchangeRestClient":
        """Async context manager entry."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()

            # Remove old timestamps outside the 1-second window
            self._request_times = [t for t in self._request_times if now - t < 1.0]

            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    async def _send(self, method: str, url: str, **kwargs) -> Any:
        """Send one request and map HTTP errors to ExchangeAPIError."""
        await self._rate_limit_wait()

        async with self._session.request(method, url, **kwargs) as response:
            if response.status == 429:
                raise RateLimitError("Rate limit exceeded", status_code=429)

            if response.status >= 400:
                error_code = None
                try:
                    body = await response.json(content_type=None)
                    if isinstance(body, dict):
                        error_code = body.get("error_code") or body.get("code")
                        message = body.get("error") or body.get("message") or str(body)
                    else:
                        message = str(body)
                except (aiohttp.ContentTypeError, ValueError):
                    message = await response.text()

                kind = "Server error" if response.status >= 500 else "API error"
                raise ExchangeAPIError(
                    f"{kind}: {response.status} - {message}",
                    status_code=response.status,
                    error_code=str(error_code) if error_code is not None else None,
                )

            return await response.json(content_type=None)

    async def _request(
        self,
        method: str,
        path: str,
        retry: bool = True,
        **kwargs,
    ) -> Any:
        """
        Make an HTTP request with rate limiting and retries.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path under the API root
            retry: Retry 5xx, 429, timeouts and connection errors
            **kwargs: Additional arguments for aiohttp

        Returns:
            Parsed JSON response

        Raises:
            ExchangeAPIError: On API errors
            RateLimitError: When rate limited
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._base_url}{path}"
        attempts = self._max_retries if retry else 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return await self._send(method, url, **kwargs)

            except RateLimitError as e:
                last_error = e
                if not retry:
                    raise
                delay = self._retry_delay * (2 ** attempt) * 2
                logger.warning(f"Rate limited, waiting {delay}s before retry")
                await asyncio.sleep(delay)

            except ExchangeAPIError as e:
                # 5xx errors should be retried, 4xx should not
                if retry and e.status_code and e.status_code >= 500:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Server error {e.status_code}, retry {attempt + 1}/{attempts}"
                    )
                    await asyncio.sleep(delay)
                    last_error = e
                else:
                    raise

            except asyncio.TimeoutError:
                last_error = ExchangeAPIError("Request timed out", error_code="timeout")
                if not retry:
                    raise last_error
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Request timeout, retry {attempt + 1}/{attempts}")
                await asyncio.sleep(delay)

            except asyncio.CancelledError:
                logger.debug("Request cancelled")
                raise

            except aiohttp.ClientError as e:
                last_error = ExchangeAPIError(str(e))
                if not retry:
                    raise last_error from e
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Request failed: {e}, retry {attempt + 1}/{attempts}")
                await asyncio.sleep(delay)

        raise last_error or ExchangeAPIError("Request failed after retries")

    # =========================================================================
    # Market Data
    # =========================================================================

    async def get_markets(self) -> List[Market]:
        """Fetch all active markets."""
        data = await self._request("GET", "/markets")

        markets = []
        for item in data:
            try:
                markets.append(self._parse_market(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse market: {e}")
        return markets

    async def get_oracle_prices(self) -> Dict[int, OraclePriceData]:
        """Fetch the latest oracle price for every market, keyed by market index."""
        data = await self._request("GET", "/oracle")

        prices: Dict[int, OraclePriceData] = {}
        for item in data:
            try:
                prices[int(item["market_index"])] = OraclePriceData(
                    price=_to_decimal(item["price"]),
                    slot=int(item.get("slot", 0)),
                    confidence=_to_decimal(item.get("confidence")),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse oracle price: {e}")
        return prices

    async def get_slot(self) -> int:
        """Fetch the current slot."""
        data = await self._request("GET", "/slot")
        return int(data["slot"])

    def _parse_market(self, data: dict) -> Market:
        return Market(
            market_index=int(data.get("market_index", data.get("marketIndex"))),
            symbol=data.get("symbol", ""),
        )

    # =========================================================================
    # User Accounts
    # =========================================================================

    async def get_user_accounts(self) -> List[UserAccount]:
        """Fetch every user account with open orders."""
        data = await self._request("GET", "/users")

        accounts = []
        for item in data:
            try:
                accounts.append(self._parse_user_account(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse user account: {e}")
        return accounts

    async def get_user_account(self, account_key: str) -> Optional[UserAccount]:
        """
        Fetch a single user account.

        Returns:
            UserAccount or None if not found
        """
        try:
            data = await self._request("GET", f"/users/{account_key}")
        except ExchangeAPIError as e:
            if e.status_code == 404:
                return None
            raise
        try:
            return self._parse_user_account(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse user account {account_key}: {e}")
            return None

    def _parse_user_account(self, data: dict) -> UserAccount:
        orders = []
        for item in data.get("orders") or []:
            try:
                orders.append(self._parse_order(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping order of user {data.get('account')}: {e}")
        return UserAccount(
            account_key=data["account"],
            authority=data.get("authority", ""),
            orders=tuple(orders),
        )

    def _parse_order(self, data: dict) -> Order:
        return Order(
            order_id=int(data["order_id"]),
            market_index=int(data["market_index"]),
            order_type=OrderType(data.get("order_type", OrderType.LIMIT.value)),
            status=OrderStatus(data.get("status", OrderStatus.OPEN.value)),
            side=OrderSide(data.get("side", OrderSide.LONG.value)),
            base_asset_amount=_to_decimal(data.get("base_asset_amount")),
            price=_to_decimal(data.get("price")),
            trigger_price=_to_decimal(data.get("trigger_price")),
            trigger_condition=TriggerCondition(
                data.get("trigger_condition", TriggerCondition.ABOVE.value)
            ),
            triggered=bool(data.get("triggered", False)),
            slot=int(data.get("slot", 0)),
        )

    # =========================================================================
    # Trigger Submission
    # =========================================================================

    async def submit_trigger(self, account: UserAccount, order: Order) -> str:
        """
        Submit a trigger transaction for a user's order.

        Args:
            account: Account owning the order
            order: The trigger order to fire

        Returns:
            Transaction signature

        Raises:
            ExchangeAPIError: When the exchange rejects the trigger
        """
        payload = {
            "keeper": self._wallet_address,
            "user": account.account_key,
            "authority": account.authority,
            "order_id": order.order_id,
            "market_index": order.market_index,
        }
        data = await self._request("POST", "/orders/trigger", retry=False, json=payload)

        tx_sig = data.get("tx_sig") if isinstance(data, dict) else None
        if not tx_sig:
            raise ExchangeAPIError(f"Invalid trigger response: {data}")
        return str(tx_sig)
