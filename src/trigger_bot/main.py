"""
Trigger Bot - Main Entry Point

Usage:
    python -m trigger_bot.main [--dry-run] [--log-level LEVEL]

Configuration:
    The bot reads configuration from:
    1. Environment variables
    2. A .env file in the working directory (values already set win)
    3. Command line arguments

Environment Variables:
    EXCHANGE_API_URL                 Exchange REST API root (required)
    WALLET_ADDRESS                   Keeper wallet submitting triggers (required unless dry run)
    BOT_NAME                         Name reported in logs and metrics (default: trigger)
    LOG_LEVEL                        Logging level (DEBUG/INFO/WARNING/ERROR)
    DRY_RUN                          Set to "true" to log triggers without submitting (default: true)
    TRIGGER_INTERVAL_MS              Tick interval in milliseconds (default: 1000)
    DISPATCH_TIMEOUT_SECONDS         Unresolved submissions fail after this (default: 60, 0 disables)
    MARKET_REFRESH_INTERVAL_SECONDS  Market data refresh interval (default: 1.0)
    ACCOUNT_REFRESH_INTERVAL_SECONDS User account reload interval (default: 1.0)
    HEALTH_SERVER_ENABLED            Serve /health, /metrics and /status (default: true)
    HEALTH_HOST                      Health server host (default: 127.0.0.1)
    HEALTH_PORT                      Health server port (default: 9060)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Exchange
    exchange_api_url: str = ""
    wallet_address: str = ""

    # Trigger loop
    bot_name: str = "trigger"
    dry_run: bool = True
    trigger_interval_ms: int = 1000
    dispatch_timeout_seconds: Optional[float] = 60.0

    # Market data
    market_refresh_interval_seconds: float = 1.0

    # User accounts
    account_refresh_interval_seconds: float = 1.0

    # Monitoring
    health_server_enabled: bool = True
    health_host: str = "127.0.0.1"
    health_port: int = 9060

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        dispatch_timeout = float(os.environ.get("DISPATCH_TIMEOUT_SECONDS", "60"))
        return cls(
            exchange_api_url=os.environ.get("EXCHANGE_API_URL", ""),
            wallet_address=os.environ.get("WALLET_ADDRESS", ""),
            bot_name=os.environ.get("BOT_NAME", "trigger"),
            dry_run=os.environ.get("DRY_RUN", "true").lower() == "true",
            trigger_interval_ms=int(os.environ.get("TRIGGER_INTERVAL_MS", "1000")),
            dispatch_timeout_seconds=dispatch_timeout if dispatch_timeout > 0 else None,
            market_refresh_interval_seconds=float(
                os.environ.get("MARKET_REFRESH_INTERVAL_SECONDS", "1.0")
            ),
            account_refresh_interval_seconds=float(
                os.environ.get("ACCOUNT_REFRESH_INTERVAL_SECONDS", "1.0")
            ),
            health_server_enabled=os.environ.get("HEALTH_SERVER_ENABLED", "true").lower() == "true",
            health_host=os.environ.get("HEALTH_HOST", "127.0.0.1"),
            health_port=int(os.environ.get("HEALTH_PORT", "9060")),
        )

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if not self.exchange_api_url:
            problems.append("EXCHANGE_API_URL environment variable is required")
        if not self.dry_run and not self.wallet_address:
            problems.append("Live mode requires WALLET_ADDRESS")
        if self.trigger_interval_ms <= 0:
            problems.append("TRIGGER_INTERVAL_MS must be positive")
        if self.account_refresh_interval_seconds <= 0:
            problems.append("ACCOUNT_REFRESH_INTERVAL_SECONDS must be positive")
        return problems


class TriggerKeeper:
    """
    Process-level orchestrator.

    Manages the lifecycle of all components:
    - Exchange REST client
    - Market data cache and account registry
    - Trigger bot
    - Health server
    """

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized on start)
        self._client = None
        self._market_state = None
        self._accounts = None
        self._metrics = None
        self._bot = None
        self._health_checker = None
        self._health_server = None

    @property
    def bot(self):
        return self._bot

    async def start(self) -> None:
        """Start every component and run until shutdown or a fatal bot error."""
        logger.info("=" * 60)
        logger.info("TRIGGER BOT")
        logger.info("=" * 60)
        logger.info(f"Trading: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"Interval: {self.config.trigger_interval_ms}ms")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            await self._init_components()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            await self._bot.init()
            await self._accounts.start()
            await self._bot.start(self.config.trigger_interval_ms)

            if self.config.health_server_enabled:
                self._start_health_server()

            logger.info("Bot started successfully")
            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the keeper gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._health_server:
            try:
                self._health_server.stop()
            except Exception as e:
                logger.warning(f"Error stopping health server: {e}")

        if self._bot:
            try:
                await self._bot.stop()
                # Let in-flight submissions settle before closing the client
                await asyncio.wait_for(self._bot.dispatcher.wait_idle(), timeout=10)
            except asyncio.TimeoutError:
                logger.warning(
                    f"{self._bot.dispatcher.pending_count} dispatches still pending at shutdown"
                )
            except Exception as e:
                logger.warning(f"Error stopping trigger bot: {e}")

        if self._accounts:
            try:
                await self._accounts.stop()
            except Exception as e:
                logger.warning(f"Error stopping account refresh: {e}")

        if self._market_state:
            try:
                await self._market_state.stop()
            except Exception as e:
                logger.warning(f"Error stopping market state: {e}")

        if self._client:
            try:
                await self._client.close()
            except Exception as e:
                logger.warning(f"Error closing exchange client: {e}")

        logger.info("Shutdown complete")

    async def _init_components(self) -> None:
        """Create the client, data sources, metrics and bot."""
        from trigger_bot.accounts import AccountRegistry
        from trigger_bot.core import TriggerBot, TriggerBotConfig
        from trigger_bot.ingestion import (
            ExchangeRestClient,
            MarketStateCache,
            MarketStateConfig,
        )
        from trigger_bot.monitoring import HealthChecker, MetricsCollector

        self._client = ExchangeRestClient(
            base_url=self.config.exchange_api_url,
            wallet_address=self.config.wallet_address,
        )

        self._market_state = MarketStateCache(
            self._client,
            MarketStateConfig(
                refresh_interval_seconds=self.config.market_refresh_interval_seconds,
            ),
        )
        await self._market_state.refresh()
        await self._market_state.start()
        logger.info(f"Market data: {len(self._market_state.get_markets())} markets")

        self._accounts = AccountRegistry(
            self._client,
            refresh_interval_seconds=self.config.account_refresh_interval_seconds,
        )
        self._metrics = MetricsCollector()

        self._bot = TriggerBot(
            market_source=self._market_state,
            accounts=self._accounts,
            submission_client=self._client,
            config=TriggerBotConfig(
                name=self.config.bot_name,
                dry_run=self.config.dry_run,
                default_interval_ms=self.config.trigger_interval_ms,
                dispatch_timeout_seconds=self.config.dispatch_timeout_seconds,
            ),
            metrics=self._metrics,
            identity=self.config.wallet_address,
            endpoint=self._client.endpoint,
        )

        self._health_checker = HealthChecker(
            trigger_bot=self._bot,
            market_state=self._market_state,
        )

    def _start_health_server(self) -> None:
        from trigger_bot.monitoring import Dashboard, HealthServer

        dashboard = Dashboard(
            health_checker=self._health_checker,
            metrics_collector=self._metrics,
            trigger_bot=self._bot,
            event_loop=asyncio.get_running_loop(),
        )
        self._health_server = HealthServer(
            dashboard,
            host=self.config.health_host,
            port=self.config.health_port,
        )
        try:
            self._health_server.start()
        except OSError as e:
            logger.error(f"Health server failed to start: {e}")
            self._health_server = None

    async def _run_loop(self) -> None:
        """
        Wait for shutdown, logging unhealthy components periodically.

        Raises:
            Exception: The unexpected error that stopped the trigger bot
        """
        from trigger_bot.monitoring import HealthStatus

        health_check_interval = 30  # seconds
        bot_task = asyncio.create_task(self._bot.run_until_stopped(), name="trigger_bot")

        try:
            while self._running:
                shutdown_task = asyncio.create_task(self._shutdown_event.wait())
                done, _ = await asyncio.wait(
                    {bot_task, shutdown_task},
                    timeout=health_check_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if shutdown_task not in done:
                    shutdown_task.cancel()

                if bot_task in done:
                    # Re-raises the bot's fatal error, if any
                    bot_task.result()
                    break

                if shutdown_task in done:
                    break

                health = await self._health_checker.check_all()
                unhealthy = [
                    c for c in health.components
                    if c.status == HealthStatus.UNHEALTHY
                ]
                if unhealthy:
                    logger.warning(
                        "Unhealthy components: "
                        + ", ".join(f"{c.component} ({c.message})" for c in unhealthy)
                    )
        finally:
            if not bot_task.done():
                bot_task.cancel()
                await asyncio.gather(bot_task, return_exceptions=True)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Trigger Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log triggers without submitting transactions",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = BotConfig.from_env()

    if args.dry_run:
        config.dry_run = True

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    keeper = TriggerKeeper(config)

    try:
        await keeper.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
