"""
Health endpoint for process supervisors.

Provides a Flask application with:
    GET /health   - 200 when the trigger loop is healthy, 503 otherwise
    GET /metrics  - trigger loop metrics snapshot
    GET /status   - bot name, mode, tick counters and uptime

Flask runs in its own thread (see HealthServer); async health checks are
dispatched to the main event loop.
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from flask import Flask, Response, jsonify
from werkzeug.serving import make_server

if TYPE_CHECKING:
    from trigger_bot.core.trigger_bot import TriggerBot

    from .health_checker import HealthChecker
    from .metrics import MetricsCollector

logger = logging.getLogger(__name__)


class Dashboard:
    """
    Health and metrics web application.

    Usage:
        dashboard = Dashboard(health_checker, metrics_collector, event_loop=loop)
        app = dashboard.create_app()
        app.run(port=9060)
    """

    def __init__(
        self,
        health_checker: Optional["HealthChecker"] = None,
        metrics_collector: Optional["MetricsCollector"] = None,
        trigger_bot: Optional["TriggerBot"] = None,
        event_loop: Optional[asyncio.AbstractEventLoop] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """
        Initialize the dashboard.

        Args:
            health_checker: HealthChecker instance
            metrics_collector: MetricsCollector instance
            trigger_bot: Bot whose counters /status reports
            event_loop: Main asyncio event loop. Flask runs in a separate
                        thread, so async checks are dispatched there with
                        run_coroutine_threadsafe().
            started_at: Process start time
        """
        self._health_checker = health_checker
        self._metrics_collector = metrics_collector
        self._trigger_bot = trigger_bot
        self._event_loop = event_loop
        self._started_at = started_at or datetime.now(timezone.utc)

    def _run_async(self, coro, timeout: float = 10.0) -> Any:
        """
        Run an async coroutine from the Flask thread safely.

        Raises:
            RuntimeError: If event loop is not running (shutdown in progress)
            TimeoutError: If operation times out
        """
        if self._event_loop is None:
            # Only for testing without a main loop
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(coro)
            finally:
                loop.close()

        if self._event_loop.is_closed() or not self._event_loop.is_running():
            coro.close()
            raise RuntimeError("Event loop is not running (shutdown in progress)")

        future = asyncio.run_coroutine_threadsafe(coro, self._event_loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"Async operation timed out after {timeout}s")
            raise TimeoutError(f"Operation timed out after {timeout}s")

    def create_app(self, testing: bool = False) -> Flask:
        """
        Create the Flask application.

        Args:
            testing: Whether to enable testing mode

        Returns:
            Flask application instance
        """
        app = Flask(__name__)
        app.config["TESTING"] = testing
        app.dashboard = self  # type: ignore

        self._register_routes(app)
        return app

    def _register_routes(self, app: Flask) -> None:
        """Register all HTTP routes."""

        @app.route("/health")
        def health() -> Response:
            """Overall health; 503 when unhealthy so supervisors can restart."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if dashboard._health_checker is None:
                return jsonify({
                    "status": "unknown",
                    "message": "Health checker not configured",
                })

            try:
                result = dashboard._run_async(dashboard._health_checker.check_all())
            except Exception as e:
                logger.error(f"Health check failed: {e}")
                return jsonify({"status": "error", "error": str(e)}), 503

            body = {
                "status": result.status.value,
                "components": [
                    {
                        "component": c.component,
                        "status": c.status.value,
                        "message": c.message,
                        "latency_ms": c.latency_ms,
                    }
                    for c in result.components
                ],
                "checked_at": result.checked_at.isoformat(),
            }
            return jsonify(body), (200 if result.is_healthy else 503)

        @app.route("/metrics")
        def metrics() -> Response:
            """Trigger loop metrics snapshot."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if dashboard._metrics_collector is None:
                return jsonify({"error": "Metrics collector not configured"}), 404

            return jsonify(dashboard._metrics_collector.get_metrics().to_dict())

        @app.route("/status")
        def status() -> Response:
            """Bot identity, mode and tick counters."""
            dashboard: Dashboard = app.dashboard  # type: ignore
            bot = dashboard._trigger_bot
            uptime = (datetime.now(timezone.utc) - dashboard._started_at).total_seconds()

            if bot is None:
                return jsonify({"running": False, "uptime_seconds": round(uptime)})

            view = bot.view_orderbook()
            return jsonify({
                "name": bot.name,
                "running": bot.is_running,
                "dry_run": bot.dry_run,
                "interval_ms": bot.default_interval_ms,
                "ticks": {
                    "completed": bot.stats.completed,
                    "skipped": bot.stats.skipped,
                    "aborted": bot.stats.aborted,
                    "snapshot_timeouts": bot.stats.snapshot_timeouts,
                },
                "orders_in_view": len(view) if view is not None else 0,
                "in_flight": bot.tracker.in_flight_count,
                "pending_dispatches": bot.dispatcher.pending_count,
                "uptime_seconds": round(uptime),
            })


def create_app(
    health_checker: Optional["HealthChecker"] = None,
    metrics_collector: Optional["MetricsCollector"] = None,
    trigger_bot: Optional["TriggerBot"] = None,
    event_loop: Optional[asyncio.AbstractEventLoop] = None,
    testing: bool = False,
) -> Flask:
    """
    Factory function to create the dashboard app.

    Returns:
        Flask application
    """
    dashboard = Dashboard(
        health_checker=health_checker,
        metrics_collector=metrics_collector,
        trigger_bot=trigger_bot,
        event_loop=event_loop,
    )
    return dashboard.create_app(testing=testing)


class HealthServer:
    """
    Serves a Dashboard app from a background thread.

    Usage:
        server = HealthServer(dashboard, host="0.0.0.0", port=9060)
        server.start()
        ...
        server.stop()
    """

    def __init__(self, dashboard: Dashboard, host: str = "127.0.0.1", port: int = 9060) -> None:
        self._dashboard = dashboard
        self._host = host
        self._port = port
        self._server = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start serving in a daemon thread."""
        app = self._dashboard.create_app()
        self._server = make_server(host=self._host, port=self._port, app=app, threaded=True)

        def serve() -> None:
            logger.info(f"Health endpoint: http://{self._host}:{self._port}/health")
            self._server.serve_forever()

        self._thread = threading.Thread(target=serve, name="health_server", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the server and release its socket."""
        if self._server is None:
            return
        logger.info("Health endpoint: Shutting down...")
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
