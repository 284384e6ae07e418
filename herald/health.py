"""
Health reporting for the running pipeline.

The service is healthy while the idempotency store is reachable: without it
every record is deferred and nothing is delivered.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from herald.barrier.barrier import IdempotencyBarrier
from herald.consumer import ConsumerLoop
from herald.core.exceptions import BarrierError
from herald.core.health import check_health_with_timeout


class HealthReporter:
    """
    Builds the /health and /stats payloads.

    Usage:
        >>> reporter = HealthReporter(barrier, consumer_loop)
        >>> healthy, body = await reporter.health()
    """

    def __init__(
        self,
        barrier: IdempotencyBarrier,
        consumer: ConsumerLoop | None = None,
        service_name: str = "email-service",
        timeout_seconds: float = 3.0,
        logger: logging.Logger | None = None,
    ):
        self.barrier = barrier
        self.consumer = consumer
        self.service_name = service_name
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

    async def health(self) -> tuple[bool, dict[str, Any]]:
        """
        Check the barrier and summarize the service state.

        Returns:
            (healthy, body); `idempotency_records` is -1 when it could not be counted
        """
        result = await check_health_with_timeout(self.barrier, self.timeout_seconds)
        healthy = result.is_healthy
        if not healthy:
            self.logger.error(f"Idempotency store health check failed: {result.message}")

        body: dict[str, Any] = {
            "status": "healthy" if healthy else "unhealthy",
            "service": self.service_name,
            "barrier": "connected" if healthy else "disconnected",
            "idempotency_records": result.details.get("idempotency_records", -1),
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if self.consumer is not None:
            body["consumer"] = self.consumer.get_stats()
        return healthy, body

    async def stats(self) -> dict[str, Any]:
        """
        Report barrier statistics.

        Raises:
            BarrierError: If the store cannot be reached
        """
        records = await self.barrier.count_records()
        return {
            "idempotency_records": records,
            "ttl_hours": self.barrier.config.ttl_hours,
        }

    async def stats_or_none(self) -> dict[str, Any] | None:
        try:
            return await self.stats()
        except BarrierError as e:
            self.logger.error(f"Failed to retrieve stats: {e}")
            return None
