"""
Snapshot builder - constructs the per-tick order-book view.

The view is assembled in local state and returned only once complete.
Any collaborator failure surfaces as SnapshotBuildError and nothing is
published.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol

from .models import Market, OraclePriceData, OrderNode, UserAccount
from .view import OrderBookView

logger = logging.getLogger(__name__)


class SnapshotBuildError(Exception):
    """Raised when the order-book view cannot be built."""


class MarketSource(Protocol):
    """Synchronous reads of current market state."""

    def get_markets(self) -> List[Market]: ...

    def get_oracle_price(self, market_index: int) -> OraclePriceData: ...

    def get_slot(self) -> int: ...


class AccountSource(Protocol):
    def values(self) -> List[UserAccount]: ...


class SnapshotBuilder:
    """
    Builds an OrderBookView from markets and user accounts.

    Yields to the event loop every `yield_every` accounts so a large
    registry does not starve other tasks.

    Usage:
        builder = SnapshotBuilder(market_source, registry)
        view = await builder.build()
    """

    def __init__(
        self,
        market_source: MarketSource,
        accounts: AccountSource,
        yield_every: int = 500,
    ) -> None:
        self._market_source = market_source
        self._accounts = accounts
        self._yield_every = max(1, yield_every)

    async def build(self) -> OrderBookView:
        """
        Build a fresh view of every resting trigger order.

        Raises:
            SnapshotBuildError: If market or account data is unavailable
        """
        try:
            markets = self._market_source.get_markets()
            slot = self._market_source.get_slot()
            accounts = self._accounts.values()

            nodes: List[OrderNode] = []
            for i, account in enumerate(accounts, start=1):
                for order in account.orders:
                    if order.is_resting_trigger:
                        nodes.append(OrderNode(user_account=account.account_key, order=order))
                if i % self._yield_every == 0:
                    await asyncio.sleep(0)

            view = OrderBookView.from_nodes(markets, nodes, built_at_slot=slot)
        except SnapshotBuildError:
            raise
        except Exception as e:
            raise SnapshotBuildError(f"Failed to build order book view: {e}") from e

        logger.debug(
            f"Built order book view: {len(view)} trigger orders "
            f"across {len(view.market_indexes)} markets at slot {slot}"
        )
        return view
