"""
Health Checker for component health monitoring.

Monitors trigger loop liveness, market data freshness and dispatch backlog.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from trigger_bot.core.trigger_bot import TriggerBot
    from trigger_bot.ingestion.market_state import MarketStateCache

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health check result for a single component."""

    component: str
    status: HealthStatus
    message: str
    latency_ms: Optional[float] = None


@dataclass
class AggregateHealth:
    """Overall system health."""

    status: HealthStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_healthy(self) -> bool:
        return self.status != HealthStatus.UNHEALTHY


class HealthChecker:
    """
    Checks health of system components.

    Monitors:
    - Trigger loop liveness (watchdog timestamp)
    - Market data staleness
    - Dispatch backlog

    Usage:
        checker = HealthChecker(trigger_bot, market_state)

        # Check single component
        health = await checker.check_trigger_loop()

        # Check all components
        overall = await checker.check_all()
    """

    def __init__(
        self,
        trigger_bot: Optional["TriggerBot"] = None,
        market_state: Optional["MarketStateCache"] = None,
        max_pending_dispatches: int = 100,
    ) -> None:
        """
        Initialize the health checker.

        Args:
            trigger_bot: Trigger bot whose liveness is checked
            market_state: Market data cache to check for staleness
            max_pending_dispatches: Unresolved dispatches above this are degraded
        """
        self._trigger_bot = trigger_bot
        self._market_state = market_state
        self._max_pending_dispatches = max_pending_dispatches

    async def check_trigger_loop(self) -> ComponentHealth:
        """
        Check that the trigger loop completed a tick recently.

        Returns:
            ComponentHealth with status
        """
        if self._trigger_bot is None:
            return ComponentHealth(
                component="trigger_loop",
                status=HealthStatus.UNHEALTHY,
                message="No trigger bot configured",
            )

        start_time = time.time()
        healthy = await self._trigger_bot.health_check()
        latency_ms = (time.time() - start_time) * 1000

        if not healthy:
            window_ms = 2 * self._trigger_bot.default_interval_ms
            return ComponentHealth(
                component="trigger_loop",
                status=HealthStatus.UNHEALTHY,
                message=f"No tick completed in the last {window_ms}ms",
                latency_ms=latency_ms,
            )

        return ComponentHealth(
            component="trigger_loop",
            status=HealthStatus.HEALTHY,
            message=f"{self._trigger_bot.stats.completed} ticks completed",
            latency_ms=latency_ms,
        )

    async def check_market_data(self) -> ComponentHealth:
        """
        Check market data freshness.

        Returns:
            ComponentHealth with status
        """
        if self._market_state is None:
            return ComponentHealth(
                component="market_data",
                status=HealthStatus.WARNING,
                message="No market data cache configured",
            )

        age = self._market_state.last_refresh_age_seconds
        if age is None:
            return ComponentHealth(
                component="market_data",
                status=HealthStatus.UNHEALTHY,
                message="Market data never refreshed",
            )

        if self._market_state.is_stale:
            return ComponentHealth(
                component="market_data",
                status=HealthStatus.DEGRADED,
                message=f"Market data is stale ({age:.0f}s old)",
            )

        return ComponentHealth(
            component="market_data",
            status=HealthStatus.HEALTHY,
            message=f"Market data refreshed {age:.1f}s ago",
        )

    async def check_dispatch_backlog(self) -> ComponentHealth:
        """
        Check the number of unresolved trigger submissions.

        Returns:
            ComponentHealth with status
        """
        if self._trigger_bot is None:
            return ComponentHealth(
                component="dispatch",
                status=HealthStatus.WARNING,
                message="No trigger bot configured",
            )

        pending = self._trigger_bot.dispatcher.pending_count
        if pending > self._max_pending_dispatches:
            return ComponentHealth(
                component="dispatch",
                status=HealthStatus.DEGRADED,
                message=f"{pending} dispatches pending (max: {self._max_pending_dispatches})",
            )

        return ComponentHealth(
            component="dispatch",
            status=HealthStatus.HEALTHY,
            message=f"{pending} dispatches pending",
        )

    async def check_all(self, timeout: float = 5.0) -> AggregateHealth:
        """
        Check all components with timeout.

        Args:
            timeout: Maximum time for all checks in seconds

        Returns:
            AggregateHealth with all component results
        """
        components = []

        checks = [
            ("trigger_loop", self.check_trigger_loop),
            ("market_data", self.check_market_data),
            ("dispatch", self.check_dispatch_backlog),
        ]

        for name, check_func in checks:
            try:
                result = await asyncio.wait_for(
                    check_func(),
                    timeout=timeout / len(checks),
                )
                components.append(result)
            except asyncio.TimeoutError:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check timed out",
                ))
            except Exception as e:
                logger.error(f"{name} health check failed: {e}")
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check failed: {str(e)}",
                ))

        overall_status = self._calculate_overall_status(components)

        return AggregateHealth(
            status=overall_status,
            components=components,
        )

    def _calculate_overall_status(
        self,
        components: List[ComponentHealth],
    ) -> HealthStatus:
        """Calculate overall status from component statuses."""
        statuses = [c.status for c in components]

        # Any UNHEALTHY -> overall UNHEALTHY
        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY

        # Any DEGRADED or WARNING -> overall DEGRADED
        if HealthStatus.DEGRADED in statuses or HealthStatus.WARNING in statuses:
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY
