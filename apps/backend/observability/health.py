"""
Health check utilities for dependency monitoring.

Provides checks for:
- Database connectivity
- The provider public key cache used for callback verification
"""

import time
import asyncio
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import text

from .logging import get_logger

logger = get_logger(__name__)


class HealthCheckResult:
    """Result of a health check."""

    def __init__(self, name: str, status: str, details: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.name = name
        self.status = status  # "ok", "degraded", "error"
        self.details = details or {}
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "details": self.details,
        }
        if self.error:
            result["error"] = self.error
        return result

    @property
    def is_healthy(self) -> bool:
        return self.status == "ok"


async def check_database(session: AsyncSession, timeout: float = 5.0) -> HealthCheckResult:
    """Run SELECT 1 against the database within `timeout` seconds."""
    start_time = time.time()

    try:
        await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=timeout)
        latency = time.time() - start_time
        return HealthCheckResult(
            name="database",
            status="ok",
            details={"latency_ms": round(latency * 1000, 2)},
        )

    except asyncio.TimeoutError:
        return HealthCheckResult(
            name="database",
            status="error",
            error=f"Database query timeout after {timeout}s",
        )

    except Exception as e:
        logger.error("Database health check failed", exc_info=True)
        return HealthCheckResult(
            name="database",
            status="error",
            error=str(e)[:200],
        )


def check_ssv_keys(key_cache) -> HealthCheckResult:
    """
    Report on the provider key cache.

    An empty cache is only degraded: the first callback triggers a fetch.
    """
    snapshot = key_cache.snapshot()
    if snapshot["cached_keys"] == 0:
        return HealthCheckResult(
            name="ssv_keys",
            status="degraded",
            details={**snapshot, "message": "No provider keys cached yet"},
        )
    return HealthCheckResult(name="ssv_keys", status="ok", details=snapshot)


async def run_health_checks(session: AsyncSession, key_cache=None) -> Dict[str, Any]:
    """Run all health checks and return aggregated results."""
    checks = {"database": await check_database(session)}
    if key_cache is not None:
        checks["ssv_keys"] = check_ssv_keys(key_cache)

    statuses = [check.status for check in checks.values()]
    if any(status == "error" for status in statuses):
        overall_status = "unhealthy"
    elif any(status == "degraded" for status in statuses):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {name: check.to_dict() for name, check in checks.items()},
    }
