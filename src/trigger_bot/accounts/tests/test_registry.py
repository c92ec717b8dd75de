"""
Tests for the in-memory account registry.
"""
import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from trigger_bot.accounts import AccountNotFoundError, AccountRegistry
from trigger_bot.orderbook import Order, OrderRecord, OrderType, UserAccount


def account(key, *order_ids):
    return UserAccount(
        account_key=key,
        authority=f"auth_{key}",
        orders=tuple(
            Order(order_id=i, market_index=0, order_type=OrderType.TRIGGER_MARKET,
                  trigger_price=Decimal("95"))
            for i in order_ids
        ),
    )


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.get_user_accounts = AsyncMock(return_value=[account("a", 1), account("b")])
    client.get_user_account = AsyncMock(return_value=None)
    return client


class TestLoading:

    @pytest.mark.asyncio
    async def test_fetch_all_replaces_accounts(self, mock_client):
        registry = AccountRegistry(mock_client)
        registry.add(account("stale"))

        loaded = await registry.fetch_all()

        assert loaded == 2
        assert "a" in registry and "b" in registry
        assert "stale" not in registry
        assert len(registry) == 2

    def test_values_is_a_snapshot_list(self, mock_client):
        registry = AccountRegistry(mock_client)
        registry.add(account("a"))

        values = registry.values()
        registry.add(account("b"))

        assert [a.account_key for a in values] == ["a"]


class TestMustGet:

    @pytest.mark.asyncio
    async def test_returns_loaded_account_without_fetching(self, mock_client):
        registry = AccountRegistry(mock_client)
        registry.add(account("a"))

        assert (await registry.must_get("a")).account_key == "a"
        mock_client.get_user_account.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetches_missing_account(self, mock_client):
        mock_client.get_user_account.return_value = account("late", 3)
        registry = AccountRegistry(mock_client)

        fetched = await registry.must_get("late")

        assert fetched.orders[0].order_id == 3
        assert registry.get("late") is fetched

    @pytest.mark.asyncio
    async def test_raises_when_exchange_does_not_know_account(self, mock_client):
        registry = AccountRegistry(mock_client)

        with pytest.raises(AccountNotFoundError) as exc_info:
            await registry.must_get("ghost")

        assert exc_info.value.account_key == "ghost"
        assert str(exc_info.value) == "Account not found: ghost"


class TestOrderRecords:

    @pytest.mark.asyncio
    async def test_record_refreshes_user(self, mock_client):
        registry = AccountRegistry(mock_client)
        registry.add(account("a"))
        mock_client.get_user_account.return_value = account("a", 9)
        record = OrderRecord(user="a", order=account("a", 9).orders[0])

        await registry.update_with_order_record(record)

        assert [o.order_id for o in registry.get("a").orders] == [9]

    @pytest.mark.asyncio
    async def test_record_for_closed_account_removes_it(self, mock_client):
        registry = AccountRegistry(mock_client)
        registry.add(account("a", 1))
        record = OrderRecord(user="a", order=account("a", 1).orders[0], action="cancel")

        await registry.update_with_order_record(record)

        assert "a" not in registry


class TestBackgroundRefresh:

    @pytest.mark.asyncio
    async def test_reload_picks_up_new_accounts(self, mock_client):
        registry = AccountRegistry(mock_client, refresh_interval_seconds=0.02)
        await registry.fetch_all()
        mock_client.get_user_accounts.return_value = [account("a", 1, 2), account("c", 5)]

        await registry.start()
        await asyncio.sleep(0.1)
        await registry.stop()

        assert [o.order_id for o in registry.get("a").orders] == [1, 2]
        assert "c" in registry and "b" not in registry
        assert registry.is_running is False

    @pytest.mark.asyncio
    async def test_reload_survives_fetch_errors(self, mock_client):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("exchange unavailable")
            return [account("d", 4)]

        mock_client.get_user_accounts = AsyncMock(side_effect=flaky)
        registry = AccountRegistry(mock_client, refresh_interval_seconds=0.01)

        await registry.start()
        await asyncio.sleep(0.2)
        await registry.stop()

        assert len(calls) >= 2
        assert "d" in registry

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, mock_client):
        await AccountRegistry(mock_client).stop()
