"""
Core Layer - the trigger-dispatch loop.

This module provides:
    - TriggerBot: Scheduler, tick, watchdog and lifecycle
    - TriggerBotConfig: Configuration for the bot
    - TickOutcome, TickStatus, TickStats: Per-tick results and counters
    - TriggerEvaluator, MarketEvaluation: Per-market trigger selection
    - Dispatcher, DispatchStats: Fire-and-forget trigger submission
    - TriggerTracker, TriggerCandidate: In-flight flags keyed by order identity
    - SnapshotCell: Shared reference to the current order-book view
    - TryLock, TimeoutMutex: Non-blocking and bounded-wait mutexes
    - MutexBusyError, SnapshotTimeoutError, SnapshotBuildError: Tick failures
    - get_error_code: Error classification for metrics

Data Flow:
    1. Scheduler fires a tick
    2. Tick mutex try-acquire (busy -> skip)
    3. Snapshot mutex, build and publish the view
    4. Evaluate every market against the view
    5. Dispatch selected orders without waiting
    6. Pat the watchdog
"""

from .errors import (
    DISPATCH_TIMEOUT_CODE,
    SNAPSHOT_TIMEOUT_CODE,
    MutexBusyError,
    SnapshotBuildError,
    SnapshotTimeoutError,
    TriggerBotError,
    get_error_code,
)
from .mutex import TimeoutMutex, TryLock
from .tracker import TriggerCandidate, TriggerTracker
from .snapshot import SnapshotCell
from .dispatcher import Dispatcher, DispatchStats, SubmissionClient
from .evaluator import MarketEvaluation, TriggerEvaluator
from .trigger_bot import (
    TickOutcome,
    TickStats,
    TickStatus,
    TriggerBot,
    TriggerBotConfig,
)

__all__ = [
    # Bot
    "TriggerBot",
    "TriggerBotConfig",
    "TickOutcome",
    "TickStats",
    "TickStatus",
    # Evaluation and dispatch
    "TriggerEvaluator",
    "MarketEvaluation",
    "Dispatcher",
    "DispatchStats",
    "SubmissionClient",
    # In-flight tracking
    "TriggerTracker",
    "TriggerCandidate",
    # Concurrency
    "SnapshotCell",
    "TryLock",
    "TimeoutMutex",
    # Errors
    "TriggerBotError",
    "MutexBusyError",
    "SnapshotTimeoutError",
    "SnapshotBuildError",
    "SNAPSHOT_TIMEOUT_CODE",
    "DISPATCH_TIMEOUT_CODE",
    "get_error_code",
]
