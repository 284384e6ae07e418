"""
Health check primitives shared by the barrier, the brokers and the health
surface.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol


class HealthStatus(Enum):
    """Component health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"  # Working but with issues
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """
    Result of a health check operation.

    Attributes:
        status: Overall health status
        latency_ms: Time taken for health check in milliseconds
        message: Human-readable status message
        details: Additional component-specific details
        checked_at: Timestamp of the check
    """

    status: HealthStatus
    latency_ms: float
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_healthy(self) -> bool:
        """Check if status is healthy or degraded (still operational)."""
        return self.status in (HealthStatus.HEALTHY, HealthStatus.DEGRADED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "status": self.status.value,
            "is_healthy": self.is_healthy,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "details": self.details,
            "checked_at": self.checked_at.isoformat(),
        }


class HealthCheckable(Protocol):
    async def health_check(self) -> HealthCheckResult: ...


async def check_health_with_timeout(
    checker: HealthCheckable,
    timeout_seconds: float = 5.0,
) -> HealthCheckResult:
    """
    Perform health check with timeout protection.

    Returns:
        HealthCheckResult (UNHEALTHY if timeout or failure)
    """
    start = time.perf_counter()

    try:
        return await asyncio.wait_for(checker.health_check(), timeout=timeout_seconds)
    except TimeoutError:
        elapsed_ms = (time.perf_counter() - start) * 1000
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            latency_ms=elapsed_ms,
            message=f"Health check timed out after {timeout_seconds}s",
        )
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start) * 1000
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            latency_ms=elapsed_ms,
            message=f"Health check failed: {e}",
            details={"error": str(e), "error_type": type(e).__name__},
        )
