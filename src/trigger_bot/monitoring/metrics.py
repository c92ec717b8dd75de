"""
Metrics sinks for the trigger loop.

The bot talks to a Metrics implementation and never checks for None:
NullMetrics is the default and drops everything.

MetricsCollector keeps counters and rolling windows in memory so the
health endpoint can expose them.
"""
from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Protocol, Tuple


class Metrics(Protocol):
    """Interface the trigger loop reports to."""

    def record_mutex_busy(self, name: str) -> None: ...

    def record_error_code(self, code: str, identity: str, name: str) -> None: ...

    def record_cycle_duration(
        self, endpoint: str, op: str, duration_ms: float, name: str
    ) -> None: ...

    def track_snapshot_size(self, label: str, view: Any) -> None: ...


class NullMetrics:
    """Metrics sink that records nothing."""

    def record_mutex_busy(self, name: str) -> None:
        pass

    def record_error_code(self, code: str, identity: str, name: str) -> None:
        pass

    def record_cycle_duration(
        self, endpoint: str, op: str, duration_ms: float, name: str
    ) -> None:
        pass

    def track_snapshot_size(self, label: str, view: Any) -> None:
        pass


@dataclass
class TriggerMetrics:
    """
    Snapshot of trigger loop metrics.

    This is an immutable snapshot - use MetricsCollector to track
    metrics over time.
    """

    mutex_busy_count: int = 0
    error_codes: Dict[str, int] = field(default_factory=dict)
    cycles_completed: int = 0
    last_cycle_ms: Optional[float] = None
    average_cycle_ms: float = 0.0
    max_cycle_ms: float = 0.0
    snapshot_sizes: Dict[str, int] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    calculated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "mutex_busy_count": self.mutex_busy_count,
            "error_codes": dict(self.error_codes),
            "cycles_completed": self.cycles_completed,
            "last_cycle_ms": round(self.last_cycle_ms, 1) if self.last_cycle_ms is not None else None,
            "average_cycle_ms": round(self.average_cycle_ms, 1),
            "max_cycle_ms": round(self.max_cycle_ms, 1),
            "snapshot_sizes": dict(self.snapshot_sizes),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "calculated_at": self.calculated_at.isoformat(),
        }


class MetricsCollector:
    """
    In-memory metrics with a rolling window for cycle durations.

    Usage:
        collector = MetricsCollector()
        bot = TriggerBot(..., metrics=collector)

        # Later
        metrics = collector.get_metrics()
        print(metrics.error_codes)
    """

    def __init__(
        self,
        window_seconds: float = 300.0,  # 5 minute window
    ) -> None:
        self._window_seconds = window_seconds

        self._mutex_busy: Counter = Counter()
        # (code, identity, name) -> count
        self._error_codes: Counter = Counter()
        self._cycles_completed = 0
        self._last_cycle_ms: Optional[float] = None
        # (timestamp, endpoint, op, name, duration_ms)
        self._cycle_durations: Deque[Tuple[float, str, str, str, float]] = deque()
        self._snapshot_sizes: Dict[str, int] = {}

        self._started_at = datetime.now(timezone.utc)

    def _now(self) -> float:
        return time.time()

    def _prune_old(self) -> None:
        cutoff = self._now() - self._window_seconds
        while self._cycle_durations and self._cycle_durations[0][0] < cutoff:
            self._cycle_durations.popleft()

    # Metrics interface

    def record_mutex_busy(self, name: str) -> None:
        self._mutex_busy[name] += 1

    def record_error_code(self, code: str, identity: str, name: str) -> None:
        self._error_codes[(str(code), identity, name)] += 1

    def record_cycle_duration(
        self, endpoint: str, op: str, duration_ms: float, name: str
    ) -> None:
        self._cycles_completed += 1
        self._last_cycle_ms = duration_ms
        self._cycle_durations.append((self._now(), endpoint, op, name, duration_ms))

    def track_snapshot_size(self, label: str, view: Any) -> None:
        try:
            size = len(view)
        except TypeError:
            size = 0
        self._snapshot_sizes[label] = size

    # Queries

    def mutex_busy_count(self, name: Optional[str] = None) -> int:
        if name is None:
            return sum(self._mutex_busy.values())
        return self._mutex_busy[name]

    def error_count(
        self,
        code: str,
        identity: Optional[str] = None,
        name: Optional[str] = None,
    ) -> int:
        """Count recorded errors for a code, optionally narrowed by identity and name."""
        return sum(
            count
            for (c, i, n), count in self._error_codes.items()
            if c == str(code)
            and (identity is None or i == identity)
            and (name is None or n == name)
        )

    def get_metrics(self) -> TriggerMetrics:
        """Get current metrics snapshot."""
        self._prune_old()

        durations = [d for *_, d in self._cycle_durations]
        errors_by_code: Dict[str, int] = {}
        for (code, _, _), count in self._error_codes.items():
            errors_by_code[code] = errors_by_code.get(code, 0) + count

        return TriggerMetrics(
            mutex_busy_count=sum(self._mutex_busy.values()),
            error_codes=errors_by_code,
            cycles_completed=self._cycles_completed,
            last_cycle_ms=self._last_cycle_ms,
            average_cycle_ms=sum(durations) / len(durations) if durations else 0.0,
            max_cycle_ms=max(durations) if durations else 0.0,
            snapshot_sizes=dict(self._snapshot_sizes),
            started_at=self._started_at,
        )

    def reset(self) -> None:
        """Reset all metrics (for testing)."""
        self._mutex_busy.clear()
        self._error_codes.clear()
        self._cycles_completed = 0
        self._last_cycle_ms = None
        self._cycle_durations.clear()
        self._snapshot_sizes.clear()
