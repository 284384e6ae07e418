"""
Side-effect executor - bounded retries around a transport.

The same immutable envelope is handed to the transport on every attempt.
The executor never consults the barrier; deduplication happens before it is
called and marking happens after it returns.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from herald.core.exceptions import DispatchError, PermanentDeliveryError
from herald.dispatch.retry import RetryPolicy
from herald.dispatch.transport import Transport
from herald.monitoring.metrics import PipelineMetrics
from herald.types import Envelope


@dataclass(frozen=True)
class DispatchResult:
    """Successful dispatch summary."""

    message_id: str
    attempts: int
    duration_seconds: float


class SideEffectExecutor:
    """
    Performs an envelope's side effect with retries.

    Usage:
        >>> executor = SideEffectExecutor(LogTransport(), RetryPolicy(max_attempts=3))
        >>> result = await executor.dispatch(envelope)
        >>> result.attempts
        1
    """

    def __init__(
        self,
        transport: Transport,
        policy: RetryPolicy | None = None,
        metrics: PipelineMetrics | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def dispatch(self, envelope: Envelope) -> DispatchResult:
        """
        Attempt the side effect up to `policy.max_attempts` times.

        Raises:
            DispatchError: When every attempt failed or the transport reported a
                permanent failure
        """
        kind = envelope.kind.value
        start = time.perf_counter()
        last_error: Exception | None = None
        attempt = 0

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                await self.transport.send(envelope.target, envelope.payload)
            except PermanentDeliveryError as e:
                last_error = e
                self._record_attempt(kind, "permanent_failure")
                self.logger.error(
                    f"Permanent failure for {envelope.message_id}: {e}",
                    extra={"message_id": envelope.message_id, "kind": kind, "attempt": attempt},
                )
                break
            except Exception as e:
                # any other failure counts as a retryable attempt
                last_error = e
                self._record_attempt(kind, "failure")
                self.logger.warning(
                    f"Attempt {attempt}/{self.policy.max_attempts} failed for {envelope.message_id}: {e}",
                    extra={"message_id": envelope.message_id, "kind": kind, "attempt": attempt},
                )
                if attempt < self.policy.max_attempts:
                    await self._sleep(self.policy.delay_for(attempt))
                continue

            duration = time.perf_counter() - start
            self._record_attempt(kind, "success")
            if self.metrics:
                self.metrics.observe_dispatch_duration(kind, duration)
            self.logger.debug(
                f"Dispatched {envelope.message_id} on attempt {attempt}",
                extra={"message_id": envelope.message_id, "kind": kind, "attempt": attempt},
            )
            return DispatchResult(message_id=envelope.message_id, attempts=attempt, duration_seconds=duration)

        raise DispatchError(envelope.message_id, attempt, last_error)

    def _record_attempt(self, kind: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_dispatch_attempt(kind, result)
