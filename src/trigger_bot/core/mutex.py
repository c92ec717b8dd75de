"""
Mutual-exclusion primitives for the trigger loop.

Two flavours on top of asyncio:

    TryLock      - non-blocking; raises MutexBusyError when already held.
                   Overlapping ticks are shed, never queued.
    TimeoutMutex - bounded wait; raises the configured timeout error
                   when the lock is not acquired in time.

Both are single-event-loop primitives. TryLock tests and sets its flag
without an await in between, so the check is atomic under cooperative
scheduling.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from .errors import MutexBusyError, SnapshotTimeoutError

T = TypeVar("T")


class TryLock:
    """
    Busy flag with compare-and-set semantics.

    Usage:
        lock = TryLock("tick")
        try:
            async with lock.try_acquire():
                await run_cycle()
        except MutexBusyError:
            ...  # another cycle is running
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._busy = False

    @property
    def locked(self) -> bool:
        return self._busy

    @asynccontextmanager
    async def try_acquire(self) -> AsyncIterator[None]:
        if self._busy:
            raise MutexBusyError(self.name)
        self._busy = True
        try:
            yield
        finally:
            self._busy = False


class TimeoutMutex:
    """
    asyncio.Lock acquired with a bounded wait.

    On timeout, the error built by `error_factory` is raised and the lock is
    left untouched. The holder is never interrupted.
    """

    def __init__(
        self,
        timeout: float,
        error_factory: Optional[Callable[[float], Exception]] = None,
    ) -> None:
        """
        Initialize the mutex.

        Args:
            timeout: Maximum seconds to wait for the lock
            error_factory: Builds the exception raised on timeout
                           (default: SnapshotTimeoutError)
        """
        self.timeout = timeout
        self._error_factory = error_factory or SnapshotTimeoutError
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise self._error_factory(self.timeout) from None
        try:
            yield
        finally:
            self._lock.release()

    async def run_exclusive(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run an async callable while holding the lock."""
        async with self.hold():
            return await fn()
