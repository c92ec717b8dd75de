"""
Exceptions and error classification for the trigger loop.

Failure taxonomy:
    MutexBusyError        - tick skipped because another tick is running
    SnapshotTimeoutError  - snapshot mutex not acquired in time, tick aborted
    SnapshotBuildError    - order-book view could not be built, tick aborted

Per-market and per-dispatch failures are plain exceptions from the
collaborators; they are contained where they happen and classified with
get_error_code() for metrics.
"""
from __future__ import annotations

import asyncio
import re
from typing import Optional

from trigger_bot.orderbook.builder import SnapshotBuildError

SNAPSHOT_TIMEOUT_CODE = "snapshot_timeout"
DISPATCH_TIMEOUT_CODE = "dispatch_timeout"
UNKNOWN_ERROR_CODE = "unknown"

_PROGRAM_ERROR_RE = re.compile(r"custom program error: 0x([0-9a-fA-F]+)")


class TriggerBotError(Exception):
    """Base exception for trigger loop failures."""


class MutexBusyError(TriggerBotError):
    """Raised when a non-blocking mutex is already held."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} mutex is busy")


class SnapshotTimeoutError(TriggerBotError):
    """Raised when the snapshot mutex is not acquired within its timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Snapshot mutex timeout after {timeout:.1f}s")


__all__ = [
    "DISPATCH_TIMEOUT_CODE",
    "SNAPSHOT_TIMEOUT_CODE",
    "UNKNOWN_ERROR_CODE",
    "MutexBusyError",
    "SnapshotBuildError",
    "SnapshotTimeoutError",
    "TriggerBotError",
    "get_error_code",
]


def get_error_code(error: BaseException) -> str:
    """
    Classify an error into a short code for metrics.

    Checks, in order:
    1. An explicit `error_code` attribute (exchange API errors)
    2. A program error code embedded in the message ("custom program error: 0x1771")
    3. Timeouts
    4. An HTTP `status_code` attribute

    Returns:
        Error code string, "unknown" if nothing matched
    """
    code: Optional[object] = getattr(error, "error_code", None)
    if code is not None:
        return str(code)

    match = _PROGRAM_ERROR_RE.search(str(error))
    if match:
        return str(int(match.group(1), 16))

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"

    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return f"http_{status_code}"

    return UNKNOWN_ERROR_CODE
