"""
Core layer test fixtures.

Core tests verify the trigger loop's orchestration, so market data is a
small in-memory fake, the account registry runs on a mocked REST client,
and trigger submission is an AsyncMock.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock
from decimal import Decimal

from trigger_bot.accounts import AccountRegistry
from trigger_bot.core import TriggerBot, TriggerBotConfig
from trigger_bot.monitoring import MetricsCollector
from trigger_bot.orderbook import (
    Market,
    OraclePriceData,
    Order,
    OrderType,
    TriggerCondition,
    UserAccount,
)


# =============================================================================
# Market Data Fixtures
# =============================================================================


class FakeMarketSource:
    """Market source backed by plain dicts."""

    def __init__(self, prices, slot=100):
        self.prices = dict(prices)
        self.slot = slot
        self.failing_markets = set()

    def get_markets(self):
        return [Market(market_index=i, symbol=f"MKT-{i}") for i in sorted(self.prices)]

    def get_oracle_price(self, market_index):
        if market_index in self.failing_markets:
            raise RuntimeError(f"oracle offline for market {market_index}")
        return OraclePriceData(price=self.prices[market_index], slot=self.slot)

    def get_slot(self):
        return self.slot


@pytest.fixture
def market_source():
    """Two markets: 0 at 100, 1 at 50."""
    return FakeMarketSource({0: Decimal("100"), 1: Decimal("50")})


# =============================================================================
# Order / Account Factories
# =============================================================================


@pytest.fixture
def make_order():
    """Factory for resting trigger orders."""
    def _make(
        order_id,
        market_index=0,
        trigger_price="95",
        condition=TriggerCondition.ABOVE,
        slot=0,
        order_type=OrderType.TRIGGER_MARKET,
    ):
        return Order(
            order_id=order_id,
            market_index=market_index,
            order_type=order_type,
            base_asset_amount=Decimal("1"),
            trigger_price=Decimal(trigger_price),
            trigger_condition=condition,
            slot=slot,
        )
    return _make


@pytest.fixture
def make_account():
    """Factory for user accounts."""
    def _make(account_key, *orders):
        return UserAccount(
            account_key=account_key,
            authority=f"auth_{account_key}",
            orders=tuple(orders),
        )
    return _make


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def mock_rest_client():
    """REST client the registry loads accounts through."""
    client = MagicMock()
    client.get_user_accounts = AsyncMock(return_value=[])
    client.get_user_account = AsyncMock(return_value=None)
    return client


@pytest.fixture
def registry(mock_rest_client):
    """Empty account registry; tests add accounts directly."""
    return AccountRegistry(mock_rest_client)


@pytest.fixture
def submission_client():
    """Submission client that succeeds immediately."""
    client = MagicMock()
    client.submit_trigger = AsyncMock(return_value="tx_sig_ok")
    return client


@pytest.fixture
def blocking_submission_client():
    """Submission client whose calls stay unresolved until released."""
    client = MagicMock()
    client.release = asyncio.Event()

    async def submit(account, order):
        await client.release.wait()
        return "tx_sig_late"

    client.submit_trigger = AsyncMock(side_effect=submit)
    return client


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def bot_config():
    """Short intervals for fast tests (snapshot timeout 0.1s)."""
    return TriggerBotConfig(
        name="trigger",
        default_interval_ms=50,
        snapshot_timeout_intervals=2,
        dispatch_timeout_seconds=1.0,
    )


@pytest.fixture
def make_bot(market_source, registry, submission_client, metrics, bot_config):
    """Factory for a TriggerBot wired to the fakes above."""
    def _make(client=None, config=None, source=None):
        return TriggerBot(
            market_source=source or market_source,
            accounts=registry,
            submission_client=client or submission_client,
            config=config or bot_config,
            metrics=metrics,
            identity="keeper_wallet",
            endpoint="http://exchange.test",
        )
    return _make


@pytest.fixture
def clock():
    """Controllable monotonic clock: set clock.now to move time."""
    fake = MagicMock()
    fake.now = 1000.0
    return fake
