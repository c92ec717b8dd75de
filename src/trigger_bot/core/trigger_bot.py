"""
TriggerBot - periodic trigger-dispatch loop.

One tick:
    Idle -> Acquiring(tick mutex)
         -> Skipped (busy)
         -> Building(snapshot) -> Aborted (timeout / build failure)
                               -> Evaluating -> Dispatching -> Completed

Only Completed updates the watchdog timestamp. Dispatches are fire and
forget: the tick completes without waiting for submission outcomes.

Anything outside the modeled failures escapes try_trigger(). When that
happens in a scheduled tick the scheduler stops firing and
run_until_stopped() re-raises the error so the process supervisor can
restart the bot.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Set

from trigger_bot.monitoring.metrics import Metrics, NullMetrics
from trigger_bot.orderbook.builder import SnapshotBuilder
from trigger_bot.orderbook.view import OrderBookView

from .dispatcher import Dispatcher, SubmissionClient
from .errors import (
    SNAPSHOT_TIMEOUT_CODE,
    MutexBusyError,
    SnapshotBuildError,
    SnapshotTimeoutError,
)
from .evaluator import MarketEvaluation, TriggerEvaluator
from .mutex import TryLock
from .snapshot import SnapshotCell
from .tracker import TriggerTracker

if TYPE_CHECKING:
    from trigger_bot.accounts.registry import AccountRegistry
    from trigger_bot.orderbook.builder import MarketSource

logger = logging.getLogger(__name__)


@dataclass
class TriggerBotConfig:
    """Configuration for the trigger bot."""

    name: str = "trigger"
    dry_run: bool = False
    default_interval_ms: int = 1000
    # Snapshot mutex wait, in multiples of the default interval
    snapshot_timeout_intervals: int = 10
    # Unresolved submissions count as failed after this long (None: never)
    dispatch_timeout_seconds: Optional[float] = 60.0
    snapshot_label: str = "trigger-orderbook"


class TickStatus(str, Enum):
    """Terminal state of a tick."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass
class TickOutcome:
    """Result of one tick."""

    status: TickStatus
    duration_ms: float = 0.0
    markets: List[MarketEvaluation] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def dispatched(self) -> int:
        return sum(m.dispatched for m in self.markets)


@dataclass
class TickStats:
    """Running tick counters."""

    completed: int = 0
    skipped: int = 0
    aborted: int = 0
    snapshot_timeouts: int = 0


class TriggerBot:
    """
    Rebuilds the order-book view on a fixed interval and triggers every
    order whose trigger condition holds.

    Usage:
        bot = TriggerBot(market_source, registry, client, TriggerBotConfig())
        await bot.init()
        await bot.start(1000)
        ...
        healthy = await bot.health_check()
        await bot.stop()
    """

    def __init__(
        self,
        market_source: "MarketSource",
        accounts: "AccountRegistry",
        submission_client: Optional[SubmissionClient],
        config: Optional[TriggerBotConfig] = None,
        metrics: Optional[Metrics] = None,
        identity: str = "",
        endpoint: str = "",
    ) -> None:
        """
        Initialize the trigger bot.

        Args:
            market_source: Markets, oracle prices and slot
            accounts: Account registry resolving order ownership
            submission_client: Client that submits trigger transactions
            config: Bot configuration
            metrics: Metrics sink (default: no-op)
            identity: Keeper wallet reported with error metrics
            endpoint: API endpoint reported with cycle durations
        """
        self._config = config or TriggerBotConfig()
        self._market_source = market_source
        self._accounts = accounts
        self._metrics: Metrics = metrics or NullMetrics()
        self._identity = identity
        self._endpoint = endpoint

        self.name = self._config.name
        self.dry_run = self._config.dry_run
        self.default_interval_ms = self._config.default_interval_ms

        # Exclusion domains
        self._tick_mutex = TryLock("tick")
        self._snapshot = SnapshotCell(
            timeout=self._config.snapshot_timeout_intervals * self.default_interval_ms / 1000
        )
        self._watchdog_mutex = asyncio.Lock()
        self._watchdog_last_pat = self._now()

        self._tracker = TriggerTracker()
        self._builder = SnapshotBuilder(market_source, accounts)
        self._dispatcher = Dispatcher(
            submission_client,
            metrics=self._metrics,
            name=self.name,
            identity=identity,
            dry_run=self.dry_run,
            timeout=self._config.dispatch_timeout_seconds,
        )
        self._evaluator = TriggerEvaluator(
            market_source,
            accounts,
            self._tracker,
            self._dispatcher,
            self._snapshot,
        )

        self.stats = TickStats()

        # Scheduler state
        self._running = False
        self._stop_event = asyncio.Event()
        self._done_event = asyncio.Event()
        self._scheduler_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self._fatal_error: Optional[BaseException] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tracker(self) -> TriggerTracker:
        return self._tracker

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def snapshot_timeout(self) -> float:
        return self._snapshot.mutex.timeout

    def _now(self) -> float:
        """Monotonic clock in seconds."""
        return time.monotonic()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> None:
        """Load every user account before the first tick."""
        logger.info(f"{self.name} initing")
        count = await self._accounts.fetch_all()
        logger.info(f"{self.name} loaded {count} user accounts")

    async def reset(self) -> None:
        """Drop the current view and every settled trigger candidate."""
        await self._snapshot.clear()
        removed = self._tracker.clear_settled()
        logger.info(f"{self.name} reset ({removed} candidates cleared)")

    async def start(self, interval_ms: Optional[int] = None) -> None:
        """
        Fire one tick now, then one every interval.

        Args:
            interval_ms: Tick interval (default: default_interval_ms)
        """
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        interval_ms = interval_ms or self.default_interval_ms
        self._running = True
        self._stop_event.clear()
        self._done_event.clear()
        self._fatal_error = None

        self._fire()
        self._scheduler_task = asyncio.create_task(
            self._schedule_loop(interval_ms / 1000),
            name=f"{self.name}_scheduler",
        )
        logger.info(f"{self.name} Bot started! (interval={interval_ms}ms)")

    async def stop(self) -> None:
        """
        Stop scheduling ticks.

        Running ticks and pending dispatches are left to finish.
        """
        if not self._running:
            self._done_event.set()
            return

        logger.info(f"Stopping {self.name}...")
        self._running = False
        self._stop_event.set()

        if self._scheduler_task and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            await asyncio.gather(self._scheduler_task, return_exceptions=True)
        self._scheduler_task = None

        self._done_event.set()
        logger.info(f"{self.name} stopped")

    async def run_until_stopped(self) -> None:
        """
        Wait until the bot is stopped.

        Raises:
            Exception: The unexpected error that stopped the scheduler, if any
        """
        await self._done_event.wait()
        if self._fatal_error is not None:
            raise self._fatal_error

    async def health_check(self) -> bool:
        """Healthy iff a tick completed within the last two default intervals."""
        async with self._watchdog_mutex:
            return self._watchdog_last_pat > self._now() - 2 * self.default_interval_ms / 1000

    def view_orderbook(self) -> Optional[OrderBookView]:
        return self._snapshot.view

    async def trigger(self, record: Any) -> None:
        """
        Handle an exchange event.

        Order records refresh the owning user and fire an extra tick.
        """
        if getattr(record, "event_type", None) != "OrderRecord":
            return

        await self._accounts.update_with_order_record(record)
        self._fire()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _fire(self) -> asyncio.Task:
        """Run one tick in its own task."""
        task = asyncio.create_task(self.try_trigger(), name=f"{self.name}_tick")
        self._tick_tasks.add(task)
        task.add_done_callback(self._on_tick_done)
        return task

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._tick_tasks.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        if error is None or self._fatal_error is not None:
            return

        logger.error(f"{self.name} tick failed with unexpected error: {error!r}", exc_info=error)
        self._fatal_error = error
        self._running = False
        self._stop_event.set()
        self._done_event.set()

    async def _schedule_loop(self, interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + interval

        while self._running:
            try:
                # Wait for the next firing or stop
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=max(0.0, next_at - loop.time()),
                    )
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if not self._running:
                    break

                self._fire()
                next_at += interval
                # Fell behind: skip missed firings instead of bursting
                if next_at < loop.time():
                    next_at = loop.time() + interval

            except asyncio.CancelledError:
                break

    # =========================================================================
    # Tick
    # =========================================================================

    async def try_trigger(self) -> TickOutcome:
        """
        Run one full evaluation cycle if no other cycle is running.

        Returns:
            TickOutcome describing how the tick ended

        Raises:
            Exception: Any error outside the modeled failure surface
        """
        start = self._now()
        outcome = TickOutcome(status=TickStatus.SKIPPED)
        ran = False

        try:
            async with self._tick_mutex.try_acquire():
                view = await self._snapshot.replace(self._builder.build)
                try:
                    self._metrics.track_snapshot_size(self._config.snapshot_label, view)
                except Exception as e:
                    logger.warning(f"Failed to record snapshot size: {e}")
                self._tracker.prune(view.order_keys())

                results = await asyncio.gather(
                    *(self._evaluator.evaluate_market(i) for i in view.market_indexes),
                    return_exceptions=True,
                )
                for result in results:
                    if isinstance(result, BaseException):
                        raise result

                outcome.markets = list(results)
                ran = True

        except MutexBusyError:
            self.stats.skipped += 1
            outcome.reason = "busy"
            self._metrics.record_mutex_busy(self.name)
            logger.debug(f"{self.name} tick skipped: previous tick still running")

        except SnapshotTimeoutError as e:
            self.stats.aborted += 1
            self.stats.snapshot_timeouts += 1
            outcome.status = TickStatus.ABORTED
            outcome.reason = SNAPSHOT_TIMEOUT_CODE
            self._metrics.record_error_code(SNAPSHOT_TIMEOUT_CODE, self._identity, self.name)
            logger.error(f"{self.name} snapshot mutex timeout: {e}")

        except SnapshotBuildError as e:
            self.stats.aborted += 1
            outcome.status = TickStatus.ABORTED
            outcome.reason = "snapshot_build_failed"
            logger.error(f"{self.name} tick aborted: {e}")

        finally:
            outcome.duration_ms = (self._now() - start) * 1000
            if ran:
                self.stats.completed += 1
                outcome.status = TickStatus.COMPLETED
                try:
                    self._metrics.record_cycle_duration(
                        self._endpoint, "tryTrigger", outcome.duration_ms, self.name
                    )
                except Exception as e:
                    logger.warning(f"Failed to record cycle duration: {e}")
                logger.debug(f"{self.name} Bot took {outcome.duration_ms:.0f}ms to run")
                async with self._watchdog_mutex:
                    self._watchdog_last_pat = self._now()

        return outcome
