"""
Envelope Producer - appends notification envelopes to the durable log.

Two publishing modes are offered:

- `publish` hands the envelope over and returns; a drain loop awaits the
  delivery confirmation and reports it through the optional callback.
- `publish_sync` waits until the log confirms persistence.

Envelopes are keyed by target so that one recipient's envelopes land on one
partition and keep their order.

Usage:
    >>> producer = EnvelopeProducer(KafkaBroker.from_env())
    >>> await producer.start()
    >>>
    >>> envelope = Envelope(target="a@x.com", payload=VerificationCodePayload(code="123456"))
    >>> await producer.publish("email-events", envelope)
    >>> report = await producer.publish_sync("email-events", envelope)
    >>>
    >>> await producer.close()
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable

from herald.brokers.base import BaseBroker, BrokerError, BrokerPublishError, DeliveryReport
from herald.monitoring.metrics import PipelineMetrics
from herald.types import Envelope

DeliveryCallback = Callable[[Envelope, DeliveryReport | None, Exception | None], Awaitable[None] | None]
Fallback = Callable[[Envelope], Awaitable[None]]


class EnvelopeProducer:
    """
    Publishes envelopes through a broker.

    Raises:
        SerializationError: From publish calls, when an envelope cannot be encoded
        BrokerError: From publish calls, when the log rejects the hand-off
    """

    def __init__(
        self,
        broker: BaseBroker,
        queue_size: int = 1000,
        metrics: PipelineMetrics | None = None,
        logger: logging.Logger | None = None,
    ):
        self.broker = broker
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._drain_task: asyncio.Task | None = None

        self._published = 0
        self._delivered = 0
        self._failed = 0

    async def start(self) -> None:
        """Connect the broker and start the delivery drain loop."""
        await self.broker.connect()
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())

    async def publish(
        self,
        topic: str,
        envelope: Envelope,
        on_delivery: DeliveryCallback | None = None,
    ) -> None:
        """
        Hand an envelope to the log without waiting for persistence.

        Waits for space when the delivery queue is full.
        """
        if self._drain_task is None:
            await self.start()

        future = await self._send(topic, envelope)
        await self._queue.put((envelope, future, on_delivery))

    async def publish_sync(self, topic: str, envelope: Envelope, timeout: float | None = None) -> DeliveryReport:
        """
        Append an envelope and wait for the log to confirm it.

        Args:
            timeout: Seconds to wait for confirmation (default: broker publish timeout)

        Raises:
            BrokerPublishError: If the log does not confirm in time or reports a failure
        """
        if not self.broker.is_connected:
            await self.broker.connect()

        future = await self._send(topic, envelope)
        if timeout is None:
            timeout = self.broker.config.publish_timeout_seconds
        try:
            report = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as e:
            self._record_delivery(False)
            msg = f"Timed out after {timeout}s waiting for confirmation of {envelope.message_id}"
            raise BrokerPublishError(msg) from e
        except BrokerError:
            self._record_delivery(False)
            raise

        self._record_delivery(True)
        self.logger.debug(
            f"Envelope {envelope.message_id} persisted at {report.topic}[{report.partition}]@{report.offset}",
            extra={"message_id": envelope.message_id, "topic": report.topic, "partition": report.partition, "offset": report.offset},
        )
        return report

    async def publish_with_fallback(self, topic: str, envelope: Envelope, fallback: Fallback) -> bool:
        """
        Publish synchronously, or run `fallback(envelope)` if the log is unavailable.

        Returns:
            True if the envelope was persisted, False if the fallback ran instead
        """
        try:
            await self.publish_sync(topic, envelope)
            return True
        except BrokerError as e:
            self.logger.warning(
                f"Publishing {envelope.message_id} failed, using fallback: {e}",
                extra={"message_id": envelope.message_id, "topic": topic},
            )
            await fallback(envelope)
            return False

    async def _send(self, topic: str, envelope: Envelope) -> "asyncio.Future[DeliveryReport]":
        value = envelope.to_json()
        try:
            future = await self.broker.send(
                topic,
                value,
                headers={"message_id": envelope.message_id, "event_type": envelope.kind.value},
                key=envelope.target,
            )
        except BrokerError:
            self._failed += 1
            if self.metrics:
                self.metrics.record_published(False)
            raise

        self._published += 1
        return future

    def _record_delivery(self, success: bool) -> None:
        if success:
            self._delivered += 1
        else:
            self._failed += 1
        if self.metrics:
            self.metrics.record_published(success)

    async def _drain(self) -> None:
        """Await delivery confirmations in hand-off order."""
        while True:
            envelope, future, on_delivery = await self._queue.get()
            report: DeliveryReport | None = None
            error: Exception | None = None
            try:
                report = await future
            except Exception as e:
                error = e

            self._record_delivery(error is None)
            if error is not None:
                self.logger.error(
                    f"Delivery failed for {envelope.message_id}: {error}",
                    extra={"message_id": envelope.message_id},
                )

            try:
                if on_delivery is not None:
                    result = on_delivery(envelope, report, error)
                    if inspect.isawaitable(result):
                        await result
            except Exception:
                self.logger.exception(
                    f"Delivery callback failed for {envelope.message_id}",
                    extra={"message_id": envelope.message_id},
                )
            finally:
                self._queue.task_done()

    async def flush(self, timeout: float | None = None) -> None:
        """Wait until every handed-over envelope has a delivery outcome."""
        await self.broker.flush(timeout)
        if self._drain_task is None or self._drain_task.done():
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            self.logger.warning(f"Flush timed out with {self._queue.qsize()} delivery report(s) pending")

    async def close(self) -> None:
        """Flush, stop the drain loop and close the broker."""
        await self.flush(self.broker.config.flush_timeout_seconds)
        if self._drain_task is not None:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
            self._drain_task = None
        await self.broker.close()

    def get_stats(self) -> dict:
        return {
            "published": self._published,
            "delivered": self._delivered,
            "failed": self._failed,
            "pending": self._queue.qsize(),
        }
