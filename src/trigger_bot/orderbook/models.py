"""
Data models for the order-book layer.

These models represent:
- Markets and their oracle prices
- User accounts and the orders resting on them
- Trigger orders and the nodes the order-book view indexes
- Order records pushed by the exchange event stream

All models are immutable. A user account is replaced wholesale when the
registry refreshes it, never patched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


class OrderType(str, Enum):
    """Type of an order."""
    MARKET = "market"
    LIMIT = "limit"
    TRIGGER_MARKET = "trigger_market"
    TRIGGER_LIMIT = "trigger_limit"


class OrderStatus(str, Enum):
    """Status of an order on the exchange."""
    INIT = "init"
    OPEN = "open"
    FILLED = "filled"
    CANCELED = "canceled"


class OrderSide(str, Enum):
    """Direction of an order."""
    LONG = "long"
    SHORT = "short"


class TriggerCondition(str, Enum):
    """
    Which way the oracle price must cross the trigger price.

    ABOVE fires when oracle >= trigger price, BELOW when oracle <= trigger price.
    """
    ABOVE = "above"
    BELOW = "below"


@dataclass(frozen=True)
class Market:
    """A tradable market."""
    market_index: int
    symbol: str = ""


@dataclass(frozen=True)
class OraclePriceData:
    """Reference price for a market at a given slot."""
    price: Decimal
    slot: int
    confidence: Decimal = Decimal("0")


@dataclass(frozen=True)
class Order:
    """
    An order resting on a user account.

    Attributes:
        order_id: Per-user order identifier
        market_index: Market the order belongs to
        order_type: MARKET, LIMIT, TRIGGER_MARKET or TRIGGER_LIMIT
        status: Exchange-side status
        side: LONG or SHORT
        base_asset_amount: Order size in base units
        price: Limit price (zero for market orders)
        trigger_price: Oracle price at which a trigger order fires
        trigger_condition: ABOVE or BELOW
        triggered: Whether the exchange already triggered this order
        slot: Slot at which the order was placed
    """
    order_id: int
    market_index: int
    order_type: OrderType
    status: OrderStatus = OrderStatus.OPEN
    side: OrderSide = OrderSide.LONG
    base_asset_amount: Decimal = Decimal("0")
    price: Decimal = Decimal("0")
    trigger_price: Decimal = Decimal("0")
    trigger_condition: TriggerCondition = TriggerCondition.ABOVE
    triggered: bool = False
    slot: int = 0

    @property
    def is_trigger_order(self) -> bool:
        return self.order_type in (OrderType.TRIGGER_MARKET, OrderType.TRIGGER_LIMIT)

    @property
    def is_resting_trigger(self) -> bool:
        """Open trigger order the exchange has not triggered yet."""
        return (
            self.is_trigger_order
            and self.status == OrderStatus.OPEN
            and not self.triggered
        )


@dataclass(frozen=True)
class UserAccount:
    """
    A user account and its open orders.

    Attributes:
        account_key: Public key of the user account
        authority: Wallet that owns the account
        orders: Orders currently on the account
    """
    account_key: str
    authority: str
    orders: Tuple[Order, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OrderNode:
    """A resting trigger order as indexed by the order-book view."""
    user_account: str
    order: Order

    @property
    def key(self) -> Tuple[str, int]:
        """Order identity across snapshots."""
        return (self.user_account, self.order.order_id)


@dataclass(frozen=True)
class OrderRecord:
    """
    Order event pushed by the exchange.

    Announces that an order was placed, filled or cancelled for a user.
    """
    user: str
    order: Order
    action: str = "place"
    slot: Optional[int] = None
    event_type: str = "OrderRecord"
