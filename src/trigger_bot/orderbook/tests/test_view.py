"""
Tests for the immutable order-book view.

Trigger-above orders fire when oracle >= trigger price, trigger-below
orders when oracle <= trigger price. Orders placed after the query slot
are not yet eligible.
"""
import pytest
from decimal import Decimal

from trigger_bot.orderbook import MarketTriggerIndex, OrderBookView, TriggerCondition

BELOW = TriggerCondition.BELOW


def ids(nodes):
    return [n.order.order_id for n in nodes]


class TestMarketTriggerIndex:

    def test_splits_and_sorts_by_condition(self, make_node):
        index = MarketTriggerIndex.from_nodes(0, [
            make_node("a", 1, "105"),
            make_node("a", 2, "95"),
            make_node("b", 3, "90", BELOW),
            make_node("b", 4, "110", BELOW),
        ])

        assert ids(index.trigger_above) == [2, 1]
        assert ids(index.trigger_below) == [4, 3]
        assert len(index) == 4

    def test_above_fires_at_or_over_trigger_price(self, make_node):
        index = MarketTriggerIndex.from_nodes(0, [
            make_node("a", 1, "95"),
            make_node("a", 2, "100"),
            make_node("a", 3, "101"),
        ])

        assert ids(index.find_triggerable(10, Decimal("100"))) == [1, 2]

    def test_below_fires_at_or_under_trigger_price(self, make_node):
        index = MarketTriggerIndex.from_nodes(0, [
            make_node("a", 1, "99", BELOW),
            make_node("a", 2, "100", BELOW),
            make_node("a", 3, "110", BELOW),
        ])

        assert ids(index.find_triggerable(10, Decimal("100"))) == [3, 2]

    def test_excludes_orders_newer_than_slot(self, make_node):
        index = MarketTriggerIndex.from_nodes(0, [
            make_node("a", 1, "95", slot=10),
            make_node("a", 2, "95", slot=11),
        ])

        assert ids(index.find_triggerable(10, Decimal("100"))) == [1]

    def test_empty_index(self):
        assert MarketTriggerIndex.from_nodes(0, []).find_triggerable(1, Decimal("1")) == []


class TestOrderBookView:

    def test_groups_nodes_by_market(self, markets, make_node):
        view = OrderBookView.from_nodes(markets, [
            make_node("a", 1, "95", market_index=0),
            make_node("a", 2, "95", market_index=1),
            make_node("a", 3, "95", market_index=1),
        ], built_at_slot=42)

        assert view.market_indexes == [0, 1]
        assert len(view.market(0)) == 1
        assert len(view.market(1)) == 2
        assert len(view) == 3
        assert view.built_at_slot == 42

    def test_drops_nodes_for_unknown_markets(self, markets, make_node):
        view = OrderBookView.from_nodes(markets, [make_node("a", 1, "95", market_index=9)])

        assert len(view) == 0
        assert view.market(9) is None

    def test_markets_without_orders_are_present(self, markets):
        view = OrderBookView.from_nodes(markets, [])

        assert view.market_indexes == [0, 1]
        assert view.find_nodes_to_trigger(0, 1, Decimal("100")) == []

    def test_find_nodes_to_trigger_mixes_both_sides(self, markets, make_node):
        view = OrderBookView.from_nodes(markets, [
            make_node("a", 1, "95"),
            make_node("b", 2, "105", BELOW),
            make_node("c", 3, "105"),
        ])

        assert ids(view.find_nodes_to_trigger(0, 5, Decimal("100"))) == [1, 2]

    def test_unknown_market_returns_empty(self, markets):
        view = OrderBookView.from_nodes(markets, [])
        assert view.find_nodes_to_trigger(7, 5, Decimal("100")) == []

    def test_order_keys_and_membership(self, markets, make_node):
        view = OrderBookView.from_nodes(markets, [make_node("a", 1, "95"), make_node("b", 1, "95")])

        assert view.order_keys() == frozenset({("a", 1), ("b", 1)})
        assert ("a", 1) in view
        assert ("a", 2) not in view
        assert sorted(n.key for n in view) == [("a", 1), ("b", 1)]

    def test_markets_mapping_is_read_only(self, markets):
        view = OrderBookView.from_nodes(markets, [])

        with pytest.raises(TypeError):
            view._markets[5] = None
