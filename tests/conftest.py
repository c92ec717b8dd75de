"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/trigger_bot/{component}/tests/conftest.py

The exchange is simulated behind ExchangeRestClient._send, so requests go
through the real client, parsers, caches and registry.
"""
import pytest
from unittest.mock import MagicMock

from trigger_bot.accounts import AccountRegistry
from trigger_bot.core import TriggerBot, TriggerBotConfig
from trigger_bot.ingestion import ExchangeAPIError, ExchangeRestClient, MarketStateCache
from trigger_bot.monitoring import MetricsCollector

BASE_URL = "http://exchange.test"


class FakeExchange:
    """
    In-memory exchange answering the REST routes the bot uses.

    A successful trigger marks the order as triggered, the way the real
    exchange reports it on the next account fetch.
    """

    def __init__(self):
        self.markets = [{"market_index": 0, "symbol": "SOL-PERP"}]
        self.prices = {0: "100"}
        self.slot = 100
        self.users = {}
        self.rejections = {}
        self.triggers = []

    def add_user(self, account, *orders):
        self.users[account] = {"account": account, "authority": f"auth_{account}", "orders": list(orders)}

    def order(self, order_id, trigger_price, condition="above", market_index=0, slot=0):
        return {
            "order_id": order_id,
            "market_index": market_index,
            "order_type": "trigger_market",
            "status": "open",
            "trigger_price": trigger_price,
            "trigger_condition": condition,
            "slot": slot,
        }

    def reject(self, order_id, error_code, times=1):
        """Reject the next `times` triggers of an order with an exchange error code."""
        self.rejections[order_id] = [error_code, times]

    async def send(self, method, url, **kwargs):
        path = url[len(BASE_URL):]

        if method == "GET" and path == "/markets":
            return self.markets
        if method == "GET" and path == "/oracle":
            return [
                {"market_index": i, "price": p, "slot": self.slot}
                for i, p in self.prices.items()
            ]
        if method == "GET" and path == "/slot":
            return {"slot": self.slot}
        if method == "GET" and path == "/users":
            return list(self.users.values())
        if method == "GET" and path.startswith("/users/"):
            user = self.users.get(path[len("/users/"):])
            if user is None:
                raise ExchangeAPIError("API error: 404 - not found", status_code=404)
            return user
        if method == "POST" and path == "/orders/trigger":
            return self._trigger(kwargs["json"])

        raise ExchangeAPIError(f"API error: 404 - no route {method} {path}", status_code=404)

    def _trigger(self, payload):
        order_id = payload["order_id"]
        rejection = self.rejections.get(order_id)
        if rejection and rejection[1] > 0:
            rejection[1] -= 1
            raise ExchangeAPIError(
                "API error: 400 - order not triggerable",
                status_code=400,
                error_code=rejection[0],
            )

        self.triggers.append((payload["user"], order_id))
        for order in self.users[payload["user"]]["orders"]:
            if order["order_id"] == order_id:
                order["triggered"] = True
        return {"tx_sig": f"sig_{payload['user']}_{order_id}"}


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
async def exchange_client(exchange):
    client = ExchangeRestClient(
        base_url=BASE_URL,
        wallet_address="keeper_wallet",
        session=MagicMock(),
        rate_limit=1000,
        retry_delay=0.0,
    )
    client._send = exchange.send
    yield client
    await client.close()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def make_keeper(exchange_client, metrics):
    """Factory wiring a TriggerBot to the simulated exchange."""
    async def _make(**config):
        market_state = MarketStateCache(exchange_client)
        await market_state.refresh()
        registry = AccountRegistry(exchange_client)
        bot = TriggerBot(
            market_source=market_state,
            accounts=registry,
            submission_client=exchange_client,
            config=TriggerBotConfig(default_interval_ms=50, **config),
            metrics=metrics,
            identity=exchange_client.identity,
            endpoint=exchange_client.endpoint,
        )
        await bot.init()
        return bot, market_state, registry
    return _make
