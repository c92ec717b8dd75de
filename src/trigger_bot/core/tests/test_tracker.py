"""
Tests for in-flight tracking and deduplication.

An order is dispatched at most once at a time. The flag is keyed by
(user_account, order_id) so it survives view rebuilds.
"""
import pytest

from trigger_bot.core import TriggerTracker
from trigger_bot.orderbook import OrderNode


@pytest.fixture
def node(make_order):
    return OrderNode(user_account="user_a", order=make_order(7, market_index=2))


class TestCandidateLifecycle:
    """Tests for the in-flight flag transitions."""

    def test_new_candidate_is_not_in_flight(self, node):
        tracker = TriggerTracker()

        candidate = tracker.candidate_for(node)

        assert candidate.in_flight is False
        assert candidate.key == ("user_a", 7)
        assert candidate.market_index == 2
        assert len(tracker) == 1

    def test_same_order_maps_to_same_candidate(self, node, make_order):
        """A rebuilt node for the same order shares the candidate."""
        tracker = TriggerTracker()
        rebuilt = OrderNode(user_account="user_a", order=make_order(7, market_index=2))

        assert tracker.candidate_for(node) is tracker.candidate_for(rebuilt)

    def test_selected_sets_flag_and_counts_attempt(self, node):
        tracker = TriggerTracker()
        candidate = tracker.candidate_for(node)

        candidate.mark_selected()

        assert candidate.in_flight is True
        assert candidate.pending is True
        assert candidate.attempts == 1
        assert tracker.is_in_flight(node.key) is True
        assert tracker.in_flight_count == 1

    def test_success_keeps_flag(self, node):
        tracker = TriggerTracker()
        candidate = tracker.candidate_for(node)
        candidate.mark_selected()

        candidate.mark_succeeded("tx_1")

        assert candidate.in_flight is True
        assert candidate.pending is False
        assert candidate.last_tx == "tx_1"

    def test_failure_resets_flag(self, node):
        tracker = TriggerTracker()
        candidate = tracker.candidate_for(node)
        candidate.mark_selected()

        candidate.mark_failed("6001")

        assert candidate.in_flight is False
        assert candidate.pending is False
        assert candidate.last_error_code == "6001"
        assert tracker.is_in_flight(node.key) is False

    def test_unknown_key_is_not_in_flight(self):
        assert TriggerTracker().is_in_flight(("nobody", 1)) is False


class TestPruning:
    """Tests for forgetting orders that left the live set."""

    def test_prunes_orders_absent_from_view(self, node):
        tracker = TriggerTracker()
        candidate = tracker.candidate_for(node)
        candidate.mark_selected()
        candidate.mark_succeeded("tx_1")

        removed = tracker.prune(frozenset())

        assert removed == 1
        assert tracker.get(node.key) is None

    def test_keeps_orders_still_in_view(self, node):
        tracker = TriggerTracker()
        tracker.candidate_for(node).mark_selected()
        tracker.get(node.key).mark_succeeded("tx_1")

        removed = tracker.prune(frozenset({node.key}))

        assert removed == 0
        assert tracker.is_in_flight(node.key) is True

    def test_keeps_pending_dispatch_even_if_absent(self, node):
        """An unresolved dispatch holds its candidate until it settles."""
        tracker = TriggerTracker()
        tracker.candidate_for(node).mark_selected()

        removed = tracker.prune(frozenset())

        assert removed == 0
        assert tracker.is_in_flight(node.key) is True

    def test_clear_settled(self, node, make_order):
        tracker = TriggerTracker()
        pending = OrderNode(user_account="user_b", order=make_order(1))
        tracker.candidate_for(node)
        tracker.candidate_for(pending).mark_selected()

        assert tracker.clear_settled() == 1
        assert [c.key for c in tracker] == [("user_b", 1)]
