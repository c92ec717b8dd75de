"""
Order-book layer test fixtures.
"""
import pytest
from decimal import Decimal

from trigger_bot.orderbook import (
    Market,
    Order,
    OrderNode,
    OrderType,
    TriggerCondition,
)


@pytest.fixture
def markets():
    return [Market(market_index=0, symbol="SOL-PERP"), Market(market_index=1, symbol="BTC-PERP")]


@pytest.fixture
def make_node():
    """Factory for order nodes carrying a resting trigger order."""
    def _make(
        user,
        order_id,
        trigger_price,
        condition=TriggerCondition.ABOVE,
        market_index=0,
        slot=0,
    ):
        return OrderNode(
            user_account=user,
            order=Order(
                order_id=order_id,
                market_index=market_index,
                order_type=OrderType.TRIGGER_MARKET,
                trigger_price=Decimal(trigger_price),
                trigger_condition=condition,
                slot=slot,
            ),
        )
    return _make
