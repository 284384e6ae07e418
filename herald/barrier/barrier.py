"""
Idempotency barrier - remembers which envelopes already had their side effect.

The barrier is checked before dispatch and marked only after the side effect
succeeded. Marking is an atomic create-if-absent with a TTL, so when two
consumers race on one message_id exactly one of them wins the mark; the
loser's extra send is the accepted cost of at-least-once delivery.

Usage:
    >>> barrier = IdempotencyBarrier(RedisKeyValueStore.from_env())
    >>> if not await barrier.is_processed(envelope.message_id):
    ...     await transport.send(envelope.target, envelope.payload)
    ...     await barrier.mark_processed(
    ...         envelope.message_id, ProcessedRecord.for_envelope(envelope)
    ...     )
"""

import logging
import os
import time
from dataclasses import dataclass

from herald.barrier.base import KeyValueStore, StoreError
from herald.core.exceptions import BarrierError
from herald.core.health import HealthCheckResult, HealthStatus
from herald.types import ProcessedRecord

DEFAULT_KEY_PREFIX = "email:sent:"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass
class BarrierConfig:
    """
    Configuration for the idempotency barrier.

    Attributes:
        key_prefix: Prefix prepended to every message_id
        ttl_seconds: Lifetime of a processed record; must exceed the
            maximum redelivery window of the log
    """

    key_prefix: str = DEFAULT_KEY_PREFIX
    ttl_seconds: int = DEFAULT_TTL_SECONDS

    @classmethod
    def from_env(cls) -> "BarrierConfig":
        return cls(
            key_prefix=os.getenv("IDEMPOTENCY_KEY_PREFIX") or DEFAULT_KEY_PREFIX,
            ttl_seconds=int(os.getenv("IDEMPOTENCY_TTL_SECONDS", DEFAULT_TTL_SECONDS)),
        )

    @property
    def ttl_hours(self) -> float:
        return self.ttl_seconds / 3600


class IdempotencyBarrier:
    """
    Durable "already done" set keyed by message_id.

    Every store failure is raised as BarrierError. Callers must treat that as
    "dedup state unknown", which is different from "not processed".
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: BarrierConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.config = config or BarrierConfig()
        self.logger = logger or logging.getLogger(__name__)

    def key_for(self, message_id: str) -> str:
        return f"{self.config.key_prefix}{message_id}"

    async def is_processed(self, message_id: str) -> bool:
        """
        Check whether the side effect for `message_id` already completed.

        Raises:
            BarrierError: If the store cannot be reached
        """
        try:
            return await self.store.exists(self.key_for(message_id))
        except StoreError as e:
            raise BarrierError("is_processed", message_id, e) from e

    async def mark_processed(self, message_id: str, metadata: ProcessedRecord) -> bool:
        """
        Record that the side effect for `message_id` completed.

        Returns:
            True if this call created the record, False if one already existed

        Raises:
            BarrierError: If the store cannot be reached
        """
        try:
            created = await self.store.set_if_absent(
                self.key_for(message_id),
                metadata.to_json(),
                self.config.ttl_seconds,
            )
        except StoreError as e:
            raise BarrierError("mark_processed", message_id, e) from e

        if not created:
            self.logger.warning(
                f"Message {message_id} was already marked processed (concurrent delivery)",
                extra={"message_id": message_id},
            )
        return created

    async def get_record(self, message_id: str) -> ProcessedRecord | None:
        """Load the stored metadata for `message_id`, if any."""
        try:
            raw = await self.store.get(self.key_for(message_id))
        except StoreError as e:
            raise BarrierError("get_record", message_id, e) from e

        if raw is None:
            return None
        try:
            return ProcessedRecord.from_json(raw)
        except (ValueError, TypeError) as e:
            self.logger.warning(
                f"Unreadable idempotency record for {message_id}: {e}",
                extra={"message_id": message_id},
            )
            return None

    async def forget(self, message_id: str) -> bool:
        """
        Remove the record for `message_id` so a later delivery is dispatched again.

        Returns:
            True if a record was removed
        """
        try:
            removed = await self.store.delete(self.key_for(message_id))
        except StoreError as e:
            raise BarrierError("forget", message_id, e) from e

        if removed:
            self.logger.info(f"Forgot idempotency record for {message_id}", extra={"message_id": message_id})
        return removed

    async def count_records(self) -> int:
        """Count live processed records."""
        try:
            return await self.store.count(self.config.key_prefix)
        except StoreError as e:
            raise BarrierError("count_records", None, e) from e

    async def health_check(self) -> HealthCheckResult:
        """
        Check store reachability and report the number of live records.

        Only an unreachable store is UNHEALTHY. If the store answers PING but
        the count fails, the result is DEGRADED with `idempotency_records` -1.
        """
        start = time.perf_counter()
        try:
            await self.store.ping()
        except StoreError as e:
            return HealthCheckResult(
                status=HealthStatus.UNHEALTHY,
                latency_ms=(time.perf_counter() - start) * 1000,
                message=f"Idempotency store unreachable: {e}",
                details={"barrier": "disconnected", "error": str(e)},
            )

        try:
            records = await self.store.count(self.config.key_prefix)
        except StoreError as e:
            self.logger.warning(f"Counting idempotency records failed: {e}")
            return HealthCheckResult(
                status=HealthStatus.DEGRADED,
                latency_ms=(time.perf_counter() - start) * 1000,
                message=f"Idempotency store reachable, record count unavailable: {e}",
                details={"barrier": "connected", "idempotency_records": -1, "error": str(e)},
            )

        return HealthCheckResult(
            status=HealthStatus.HEALTHY,
            latency_ms=(time.perf_counter() - start) * 1000,
            message="Idempotency store reachable",
            details={
                "barrier": "connected",
                "idempotency_records": records,
                "ttl_hours": self.config.ttl_hours,
            },
        )

    async def close(self) -> None:
        await self.store.close()

