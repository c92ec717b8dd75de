"""
Snapshot cell - the single shared reference to the current order-book view.

The view is built off to the side and published by reference replacement
while the cell's mutex is held. Readers take the same mutex, so they see
either the previous view or the new one, never a half-built one.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypeVar

from trigger_bot.orderbook.view import OrderBookView

from .mutex import TimeoutMutex

T = TypeVar("T")


class SnapshotCell:
    """
    Holds the current OrderBookView behind a TimeoutMutex.

    Usage:
        cell = SnapshotCell(timeout=10.0)
        view = await cell.replace(builder.build)
        nodes = await cell.read(lambda v: v.find_nodes_to_trigger(0, slot, price))
    """

    def __init__(self, timeout: float) -> None:
        self.mutex = TimeoutMutex(timeout)
        self._view: Optional[OrderBookView] = None

    @property
    def view(self) -> Optional[OrderBookView]:
        """Current view without locking; None before the first build."""
        return self._view

    async def replace(self, build: Callable[[], Awaitable[OrderBookView]]) -> OrderBookView:
        """
        Build a new view and publish it.

        If build raises, the current view is left in place.

        Raises:
            SnapshotTimeoutError: If the mutex is not acquired in time
        """
        async with self.mutex.hold():
            view = await build()
            self._view = view
        return view

    async def read(self, fn: Callable[[Optional[OrderBookView]], T]) -> T:
        """
        Apply fn to the current view while holding the mutex.

        Raises:
            SnapshotTimeoutError: If the mutex is not acquired in time
        """
        async with self.mutex.hold():
            return fn(self._view)

    async def clear(self) -> None:
        async with self.mutex.hold():
            self._view = None
