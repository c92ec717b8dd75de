"""
Monitoring Layer - Health checks and metrics.

This module provides:
    - Metrics: Interface the trigger loop reports to
    - NullMetrics: No-op default sink
    - MetricsCollector: In-memory counters and cycle durations
    - TriggerMetrics: Metrics snapshot
    - HealthChecker: Component health checks with timeouts
    - HealthStatus, ComponentHealth, AggregateHealth: Health results
    - Dashboard, create_app: Flask app serving /health, /metrics and /status
    - HealthServer: Runs the Flask app in a background thread
"""

from .metrics import Metrics, MetricsCollector, NullMetrics, TriggerMetrics
from .health_checker import (
    AggregateHealth,
    ComponentHealth,
    HealthChecker,
    HealthStatus,
)
from .dashboard import Dashboard, HealthServer, create_app

__all__ = [
    # Metrics
    "Metrics",
    "MetricsCollector",
    "NullMetrics",
    "TriggerMetrics",
    # Health checking
    "HealthChecker",
    "HealthStatus",
    "ComponentHealth",
    "AggregateHealth",
    # Dashboard
    "Dashboard",
    "HealthServer",
    "create_app",
]
