"""
Dispatcher - fire-and-forget trigger submission.

Each selected candidate is submitted in its own task. The tick that
selected it does not wait for the outcome. The task's outcome handling
touches only that candidate:

    success -> candidate stays in flight, tx logged
    failure -> error classified and counted, candidate flag reset, logged
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Set

from trigger_bot.monitoring.metrics import Metrics, NullMetrics
from trigger_bot.orderbook.models import Order, OrderNode, UserAccount

from .errors import DISPATCH_TIMEOUT_CODE, get_error_code
from .tracker import TriggerCandidate

logger = logging.getLogger(__name__)

DRY_RUN_TX = "dry-run"


class SubmissionClient(Protocol):
    async def submit_trigger(self, account: UserAccount, order: Order) -> str: ...


@dataclass
class DispatchStats:
    """Running dispatch counters."""

    submitted: int = 0
    succeeded: int = 0
    failed: int = 0


class Dispatcher:
    """
    Submits trigger actions as detached tasks.

    Usage:
        dispatcher = Dispatcher(client, metrics, name="trigger", identity=wallet)
        dispatcher.dispatch(candidate, node, account)   # returns immediately
        ...
        await dispatcher.wait_idle()                     # shutdown / tests
    """

    def __init__(
        self,
        client: Optional[SubmissionClient],
        metrics: Optional[Metrics] = None,
        name: str = "trigger",
        identity: str = "",
        dry_run: bool = False,
        timeout: Optional[float] = 60.0,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            client: Submission client (may be None in dry run)
            metrics: Metrics sink for classified failures
            name: Bot name reported with metrics
            identity: Keeper wallet reported with metrics
            dry_run: Log instead of submitting
            timeout: Seconds before an unresolved submission counts as failed
                     (None waits forever)
        """
        if client is None and not dry_run:
            raise ValueError("A submission client is required unless dry_run is set")

        self._client = client
        self._metrics = metrics or NullMetrics()
        self._name = name
        self._identity = identity
        self._dry_run = dry_run
        self._timeout = timeout

        self._tasks: Set[asyncio.Task] = set()
        self.stats = DispatchStats()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def dispatch(
        self,
        candidate: TriggerCandidate,
        node: OrderNode,
        account: UserAccount,
    ) -> asyncio.Task:
        """Start submitting a trigger for the candidate and return immediately."""
        self.stats.submitted += 1
        task = asyncio.create_task(
            self._submit(candidate, node, account),
            name=f"trigger:{node.user_account}:{node.order.order_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every pending dispatch has resolved."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _send(self, account: UserAccount, order: Order) -> str:
        if self._dry_run:
            logger.info(
                f"[DRY RUN] Would trigger user (account: {account.account_key}) "
                f"order: {order.order_id}"
            )
            return DRY_RUN_TX

        submission = self._client.submit_trigger(account, order)
        if self._timeout is None:
            return await submission
        return await asyncio.wait_for(submission, timeout=self._timeout)

    async def _submit(
        self,
        candidate: TriggerCandidate,
        node: OrderNode,
        account: UserAccount,
    ) -> None:
        try:
            tx = await self._send(account, node.order)
        except asyncio.CancelledError:
            candidate.mark_failed("cancelled")
            raise
        except asyncio.TimeoutError:
            self._record_failure(candidate, node, DISPATCH_TIMEOUT_CODE, None)
        except Exception as e:
            self._record_failure(candidate, node, get_error_code(e), e)
        else:
            candidate.mark_succeeded(tx)
            self.stats.succeeded += 1
            logger.info(
                f"Triggered user (account: {node.user_account}) "
                f"order: {node.order.order_id}"
            )
            logger.info(f"Tx: {tx}")

    def _record_failure(
        self,
        candidate: TriggerCandidate,
        node: OrderNode,
        error_code: str,
        error: Optional[BaseException],
    ) -> None:
        self.stats.failed += 1
        candidate.mark_failed(error_code)
        try:
            self._metrics.record_error_code(error_code, self._identity, self._name)
        except Exception as e:
            logger.warning(f"Failed to record error metric: {e}")

        logger.error(
            f"Error ({error_code}) triggering user (account: {node.user_account}) "
            f"order: {node.order.order_id}"
            + (f": {error}" if error is not None else f" (no result after {self._timeout}s)")
        )
