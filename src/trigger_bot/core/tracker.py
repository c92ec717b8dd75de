"""
Trigger tracker for in-flight deduplication.

An order is dispatched at most once at a time. The order-book view is
rebuilt every tick, so the in-flight flag cannot live on the view's nodes:
it lives on a TriggerCandidate owned by this tracker and keyed by order
identity (user_account, order_id), which survives view rebuilds.

Flag lifecycle:
    False -> True   when the evaluator selects the order for dispatch
    True  -> False  when that dispatch fails (a later tick may retry)
    True  (kept)    when that dispatch succeeds (the order is expected to
                    leave the live order set once it fills or cancels)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from trigger_bot.orderbook.models import OrderNode

logger = logging.getLogger(__name__)

OrderKey = Tuple[str, int]


@dataclass
class TriggerCandidate:
    """
    One order selected (now or previously) for triggering.

    Attributes:
        user_account: Account owning the order
        order_id: Per-user order identifier
        market_index: Market the order belongs to
        in_flight: True while dispatched and not failed
        pending: True while a dispatch for this candidate is unresolved
        attempts: Number of times the candidate was dispatched
        last_error_code: Code of the last failed dispatch
        last_tx: Transaction id of the successful dispatch
    """

    user_account: str
    order_id: int
    market_index: int
    in_flight: bool = False
    pending: bool = False
    attempts: int = 0
    last_error_code: Optional[str] = None
    last_tx: Optional[str] = None
    selected_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> OrderKey:
        return (self.user_account, self.order_id)

    def mark_selected(self) -> None:
        self.in_flight = True
        self.pending = True
        self.attempts += 1
        self.selected_at = datetime.now(timezone.utc)

    def mark_succeeded(self, tx: Optional[str]) -> None:
        self.pending = False
        self.last_tx = tx

    def mark_failed(self, error_code: Optional[str] = None) -> None:
        self.in_flight = False
        self.pending = False
        self.last_error_code = error_code


class TriggerTracker:
    """
    Holds the in-flight flag for every order the bot has selected.

    Usage:
        tracker = TriggerTracker()

        candidate = tracker.candidate_for(node)
        if candidate.in_flight:
            return  # already dispatched
        candidate.mark_selected()
        ...
        tracker.prune(view.order_keys())
    """

    def __init__(self) -> None:
        self._candidates: Dict[OrderKey, TriggerCandidate] = {}

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[TriggerCandidate]:
        return iter(list(self._candidates.values()))

    def get(self, key: OrderKey) -> Optional[TriggerCandidate]:
        return self._candidates.get(key)

    def candidate_for(self, node: OrderNode) -> TriggerCandidate:
        """Get or create the candidate for an order node."""
        candidate = self._candidates.get(node.key)
        if candidate is None:
            candidate = TriggerCandidate(
                user_account=node.user_account,
                order_id=node.order.order_id,
                market_index=node.order.market_index,
            )
            self._candidates[node.key] = candidate
        return candidate

    def is_in_flight(self, key: OrderKey) -> bool:
        candidate = self._candidates.get(key)
        return candidate is not None and candidate.in_flight

    @property
    def in_flight_count(self) -> int:
        return sum(1 for c in self._candidates.values() if c.in_flight)

    def prune(self, live_keys: FrozenSet[OrderKey]) -> int:
        """
        Forget candidates whose order left the live order set.

        Candidates with an unresolved dispatch are kept so their order
        cannot be selected again before the dispatch settles.

        Returns:
            Number of candidates removed
        """
        stale = [
            key
            for key, candidate in self._candidates.items()
            if key not in live_keys and not candidate.pending
        ]
        for key in stale:
            del self._candidates[key]

        if stale:
            logger.debug(f"Pruned {len(stale)} settled trigger candidates")
        return len(stale)

    def clear_settled(self) -> int:
        """Drop every candidate without an unresolved dispatch."""
        return self.prune(frozenset())
