"""
Ingestion Layer - exchange access.

This module provides:
    - ExchangeRestClient: Async REST client (markets, oracle, slot, users, trigger submission)
    - ExchangeAPIError, RateLimitError: API exceptions carrying status and error codes
    - MarketStateCache: Market source refreshed in the background
    - MarketStateConfig: Configuration for the cache
    - MarketDataUnavailableError: Raised for markets without cached data
"""

from .client import ExchangeAPIError, ExchangeRestClient, RateLimitError
from .market_state import (
    MarketDataUnavailableError,
    MarketStateCache,
    MarketStateConfig,
)

__all__ = [
    # REST client
    "ExchangeRestClient",
    "ExchangeAPIError",
    "RateLimitError",
    # Market state
    "MarketStateCache",
    "MarketStateConfig",
    "MarketDataUnavailableError",
]
