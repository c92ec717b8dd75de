"""
Order-Book Layer - trigger order models and the per-tick view.

This module provides:
    - Market, OraclePriceData: Market state read by the trigger loop
    - Order, UserAccount, OrderNode, OrderRecord: Orders and their owners
    - OrderBookView: Immutable per-tick snapshot indexed per market
    - SnapshotBuilder: Builds a view from markets and user accounts
    - SnapshotBuildError: Raised when a view cannot be built
"""

from .models import (
    Market,
    OraclePriceData,
    Order,
    OrderNode,
    OrderRecord,
    OrderSide,
    OrderStatus,
    OrderType,
    TriggerCondition,
    UserAccount,
)
from .view import MarketTriggerIndex, OrderBookView
from .builder import MarketSource, SnapshotBuildError, SnapshotBuilder

__all__ = [
    # Models
    "Market",
    "OraclePriceData",
    "Order",
    "OrderNode",
    "OrderRecord",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "TriggerCondition",
    "UserAccount",
    # View
    "MarketTriggerIndex",
    "OrderBookView",
    # Builder
    "MarketSource",
    "SnapshotBuildError",
    "SnapshotBuilder",
]
