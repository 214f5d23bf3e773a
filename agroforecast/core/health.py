"""
Health check aggregation: deep health probe for all subsystems.

Checks:
    • Predictors initialised and their success rates (performance monitor)
    • Database connectivity (only with STORAGE_BACKEND=sql)
    • Redis hot cache (only with REDIS_ENABLED)
    • Background scheduler running (only with SCHEDULER_ENABLED)

A disabled optional component reports healthy with a "disabled" message,
so a default in-memory deployment is healthy without Redis or PostgreSQL.

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import text

from agroforecast.core.cache import ping_redis
from agroforecast.core.config import settings

if TYPE_CHECKING:
    from agroforecast.orchestration.orchestrator import PredictionOrchestrator
    from agroforecast.scheduling.retraining import RetrainingScheduler

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()

# performance monitor status → component status
_MODEL_STATUS = {
    "healthy": HealthStatus.HEALTHY,
    "degraded": HealthStatus.DEGRADED,
    "critical": HealthStatus.UNHEALTHY,
}


async def check_predictors(orchestrator: Optional["PredictionOrchestrator"]) -> ComponentHealth:
    comp = ComponentHealth(name="predictors")
    start = time.monotonic()
    if orchestrator is None or not orchestrator.is_initialized:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Predictors not initialised"
    else:
        health = orchestrator.system_health()
        comp.status = _MODEL_STATUS.get(health["status"], HealthStatus.DEGRADED)
        comp.message = f"Model status: {health['status']}"
        comp.details = {
            name: round(record["success_rate"], 3) for name, record in health["models"].items()
        }
        if not orchestrator.weather.neural.is_trained:
            comp.details["weather_neural"] = "untrained (time-series only)"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_database() -> ComponentHealth:
    """Check database connectivity with a trivial query."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if settings.STORAGE_BACKEND != "sql":
        comp.message = "In-memory storage (database disabled)"
    else:
        try:
            from agroforecast.core.database import get_engine

            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            comp.message = "Connection pool available"
            comp.details = {"url": settings.DATABASE_URL.split("@")[-1]}
        except Exception as e:
            logger.warning("Database health check failed: %s", e)
            comp.status = HealthStatus.UNHEALTHY
            comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis() -> ComponentHealth:
    """Check Redis connectivity. The hot cache is optional, so failure only degrades."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if not settings.REDIS_ENABLED:
        comp.message = "Hot cache disabled"
    elif await ping_redis():
        comp.message = "Cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Redis unreachable; forecasts served uncached"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_scheduler(scheduler: Optional["RetrainingScheduler"]) -> ComponentHealth:
    comp = ComponentHealth(name="scheduler")
    start = time.monotonic()
    if not settings.SCHEDULER_ENABLED:
        comp.message = "Scheduler disabled"
    elif scheduler is None or not scheduler.running:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Scheduler not running"
    else:
        jobs = scheduler.list_jobs()
        comp.message = "Scheduler running"
        if jobs:
            comp.details = {"last_job": jobs[0].to_dict()}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(
    orchestrator: Optional["PredictionOrchestrator"] = None,
    scheduler: Optional["RetrainingScheduler"] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_predictors(orchestrator),
        check_database(),
        check_redis(),
        check_scheduler(scheduler),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
