"""
MarketStateCache - cached market data for the trigger loop.

The trigger loop reads markets, oracle prices and the slot synchronously
on every tick. This cache serves those reads from memory and refreshes
itself from the REST client in a background loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from trigger_bot.orderbook.models import Market, OraclePriceData

if TYPE_CHECKING:
    from .client import ExchangeRestClient

logger = logging.getLogger(__name__)


class MarketDataUnavailableError(Exception):
    """Raised when cached market data is missing."""


@dataclass
class MarketStateConfig:
    """Configuration for the market state cache."""

    refresh_interval_seconds: float = 1.0
    # Data older than this is reported as stale by health checks
    staleness_threshold_seconds: float = 30.0


class MarketStateCache:
    """
    In-memory market source refreshed in the background.

    Usage:
        cache = MarketStateCache(client, MarketStateConfig())
        await cache.refresh()       # prime before the first tick
        await cache.start()         # background refresh loop
        ...
        price = cache.get_oracle_price(0).price
        await cache.stop()
    """

    def __init__(
        self,
        client: "ExchangeRestClient",
        config: Optional[MarketStateConfig] = None,
    ) -> None:
        self._client = client
        self._config = config or MarketStateConfig()

        self._markets: List[Market] = []
        self._oracle_prices: Dict[int, OraclePriceData] = {}
        self._slot = 0
        self._last_refresh: Optional[float] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_refresh_age_seconds(self) -> Optional[float]:
        """Seconds since the last successful refresh, None if never refreshed."""
        if self._last_refresh is None:
            return None
        return time.monotonic() - self._last_refresh

    @property
    def is_stale(self) -> bool:
        age = self.last_refresh_age_seconds
        return age is None or age > self._config.staleness_threshold_seconds

    # Market source interface

    def get_markets(self) -> List[Market]:
        return list(self._markets)

    def get_oracle_price(self, market_index: int) -> OraclePriceData:
        price = self._oracle_prices.get(market_index)
        if price is None:
            raise MarketDataUnavailableError(f"No oracle price for market {market_index}")
        return price

    def get_slot(self) -> int:
        return self._slot

    # Refresh

    async def refresh(self) -> None:
        """
        Fetch markets, oracle prices and slot.

        All three are fetched before any is published so readers never see
        markets from one refresh with prices from another.
        """
        markets, prices, slot = await asyncio.gather(
            self._client.get_markets(),
            self._client.get_oracle_prices(),
            self._client.get_slot(),
        )
        self._markets = markets
        self._oracle_prices = prices
        # Slot never goes backwards
        self._slot = max(self._slot, slot)
        self._last_refresh = time.monotonic()

    async def start(self) -> None:
        """Start the background refresh loop."""
        if self._running:
            logger.warning("MarketStateCache already running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._refresh_loop(), name="market_state_refresh")
        logger.info(
            f"Started market state refresh "
            f"(interval={self._config.refresh_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background refresh loop."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Market state refresh stopped")

    async def _refresh_loop(self) -> None:
        interval = self._config.refresh_interval_seconds

        while self._running:
            try:
                # Wait for interval or stop
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if not self._running:
                    break

                await self.refresh()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error refreshing market state: {e}")
                await asyncio.sleep(min(5.0, interval * 5))
