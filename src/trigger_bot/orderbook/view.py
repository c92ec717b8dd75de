"""
Order-book view of resting trigger orders.

The view is a point-in-time snapshot built once per tick. It is never
mutated after construction; the next tick replaces it wholesale.

Per market, trigger orders are kept in two sorted indexes so that the
question "which orders fire at oracle price P" is a bisection plus a
prefix slice:

    trigger_above: ascending by trigger price, fires when P >= trigger price
    trigger_below: descending by trigger price, fires when P <= trigger price
"""
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from .models import Market, OrderNode, TriggerCondition


def _node_sort_key(node: OrderNode) -> Tuple[str, int]:
    return node.key


@dataclass(frozen=True)
class MarketTriggerIndex:
    """Sorted trigger indexes for a single market."""

    market_index: int
    trigger_above: Tuple[OrderNode, ...] = ()
    trigger_below: Tuple[OrderNode, ...] = ()
    above_prices: Tuple[Decimal, ...] = ()
    # Negated so the descending index can be searched with bisect.
    below_prices_negated: Tuple[Decimal, ...] = ()

    @classmethod
    def from_nodes(cls, market_index: int, nodes: Iterable[OrderNode]) -> "MarketTriggerIndex":
        above: List[OrderNode] = []
        below: List[OrderNode] = []
        for node in nodes:
            if node.order.trigger_condition == TriggerCondition.ABOVE:
                above.append(node)
            else:
                below.append(node)

        above.sort(key=lambda n: (n.order.trigger_price, _node_sort_key(n)))
        below.sort(key=lambda n: (-n.order.trigger_price, _node_sort_key(n)))

        return cls(
            market_index=market_index,
            trigger_above=tuple(above),
            trigger_below=tuple(below),
            above_prices=tuple(n.order.trigger_price for n in above),
            below_prices_negated=tuple(-n.order.trigger_price for n in below),
        )

    def __len__(self) -> int:
        return len(self.trigger_above) + len(self.trigger_below)

    def find_triggerable(self, slot: int, oracle_price: Decimal) -> List[OrderNode]:
        """
        Orders whose trigger condition holds at oracle_price.

        Orders placed after `slot` are not yet eligible.
        """
        above_end = bisect_right(self.above_prices, oracle_price)
        below_end = bisect_right(self.below_prices_negated, -oracle_price)

        candidates = self.trigger_above[:above_end] + self.trigger_below[:below_end]
        return [node for node in candidates if node.order.slot <= slot]


class OrderBookView:
    """
    Immutable snapshot of all resting trigger orders across markets.

    Usage:
        view = OrderBookView.from_nodes(markets, nodes)
        nodes = view.find_nodes_to_trigger(market_index=0, slot=1234, oracle_price=Decimal("101"))
    """

    def __init__(
        self,
        markets: Mapping[int, MarketTriggerIndex],
        built_at_slot: Optional[int] = None,
    ) -> None:
        self._markets: Mapping[int, MarketTriggerIndex] = MappingProxyType(dict(markets))
        self._keys: FrozenSet[Tuple[str, int]] = frozenset(
            node.key
            for index in self._markets.values()
            for node in index.trigger_above + index.trigger_below
        )
        self._built_at_slot = built_at_slot

    @classmethod
    def from_nodes(
        cls,
        markets: Iterable[Market],
        nodes: Iterable[OrderNode],
        built_at_slot: Optional[int] = None,
    ) -> "OrderBookView":
        """Index nodes by market. Nodes for unknown markets are dropped."""
        by_market: Dict[int, List[OrderNode]] = {m.market_index: [] for m in markets}
        for node in nodes:
            bucket = by_market.get(node.order.market_index)
            if bucket is not None:
                bucket.append(node)

        return cls(
            {
                market_index: MarketTriggerIndex.from_nodes(market_index, market_nodes)
                for market_index, market_nodes in by_market.items()
            },
            built_at_slot=built_at_slot,
        )

    @property
    def market_indexes(self) -> List[int]:
        return sorted(self._markets)

    @property
    def built_at_slot(self) -> Optional[int]:
        return self._built_at_slot

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[OrderNode]:
        for index in self._markets.values():
            yield from index.trigger_above
            yield from index.trigger_below

    def order_keys(self) -> FrozenSet[Tuple[str, int]]:
        """Identities of every order in the view."""
        return self._keys

    def market(self, market_index: int) -> Optional[MarketTriggerIndex]:
        return self._markets.get(market_index)

    def find_nodes_to_trigger(
        self,
        market_index: int,
        slot: int,
        oracle_price: Decimal,
    ) -> List[OrderNode]:
        """
        Find trigger orders in a market that fire at the given oracle price.

        Args:
            market_index: Market to search
            slot: Current slot
            oracle_price: Current oracle price for the market

        Returns:
            Triggerable nodes, trigger-above orders first, each group
            ordered from the most deeply crossed trigger price outwards.
            Empty for markets the view does not know.
        """
        index = self._markets.get(market_index)
        if index is None:
            return []
        return index.find_triggerable(slot, oracle_price)
