"""
Dead-letter sink - parks envelopes whose side effect could not be completed.

A failed dead-letter write is logged and reported, never raised: the
consumer commits the record either way, so a broken dead-letter topic cannot
stall the main topic.
"""

import logging
from typing import Any

from herald.brokers.base import BaseBroker, BrokerError
from herald.core.exceptions import DeadLetterWriteError, SerializationError
from herald.monitoring.metrics import PipelineMetrics
from herald.types import DeadLetterRecord, Envelope


class DeadLetterSink:
    """
    Appends DeadLetterRecords to the dead-letter topic, keyed by message_id.

    Usage:
        >>> sink = DeadLetterSink(broker, topic="email-events-dlq", consumer_group="email-service-group")
        >>> await sink.send(envelope, "max retries exceeded after 3 attempt(s): ...")
        True
    """

    def __init__(
        self,
        broker: BaseBroker,
        topic: str = "email-events-dlq",
        consumer_group: str = "email-service-group",
        metrics: PipelineMetrics | None = None,
        logger: logging.Logger | None = None,
    ):
        self.broker = broker
        self.topic = topic
        self.consumer_group = consumer_group
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)

    async def send(self, envelope: Envelope | dict[str, Any], error: BaseException | str) -> bool:
        """
        Append a dead-letter record for `envelope` and wait for confirmation.

        `envelope` may also be the decoded wire object of an envelope whose
        event kind this consumer does not know.

        Returns:
            True if the record was persisted, False if the write failed
        """
        if isinstance(envelope, Envelope):
            message_id, kind = envelope.message_id, envelope.kind.value
        else:
            message_id, kind = str(envelope.get("message_id", "")), str(envelope.get("event_type", ""))
        record = DeadLetterRecord(
            original_event=envelope,
            error=str(error),
            consumer_group=self.consumer_group,
        )

        try:
            await self.broker.publish(self.topic, record.to_json(), key=message_id)
        except (BrokerError, SerializationError) as e:
            failure = DeadLetterWriteError(message_id, self.topic, e)
            self.logger.error(
                str(failure),
                extra={"message_id": message_id, "topic": self.topic, "error_type": type(e).__name__},
            )
            self._record(False)
            return False

        self._record(True)
        self.logger.warning(
            f"Envelope {message_id} sent to dead-letter topic {self.topic}: {error}",
            extra={"message_id": message_id, "kind": kind, "topic": self.topic},
        )
        return True

    def _record(self, success: bool) -> None:
        if self.metrics:
            self.metrics.record_dead_letter(success)

    async def close(self) -> None:
        await self.broker.flush()
