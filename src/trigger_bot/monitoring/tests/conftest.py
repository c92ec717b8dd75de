"""
Monitoring layer test fixtures.

Monitoring tests only read from the trigger bot and market cache, so both
are mocks exposing the attributes the checks and endpoints use.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from trigger_bot.core import TickStats
from trigger_bot.monitoring import MetricsCollector


@pytest.fixture
def mock_bot():
    """Healthy trigger bot."""
    bot = MagicMock()
    bot.name = "trigger"
    bot.dry_run = False
    bot.is_running = True
    bot.default_interval_ms = 1000
    bot.health_check = AsyncMock(return_value=True)
    bot.stats = TickStats(completed=12, skipped=1, aborted=0, snapshot_timeouts=0)
    bot.dispatcher.pending_count = 0
    bot.tracker.in_flight_count = 2
    bot.view_orderbook.return_value = [1, 2, 3]
    return bot


@pytest.fixture
def mock_market_state():
    """Freshly refreshed market data cache."""
    cache = MagicMock()
    cache.last_refresh_age_seconds = 0.5
    cache.is_stale = False
    return cache


@pytest.fixture
def collector():
    return MetricsCollector()
