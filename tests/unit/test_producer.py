"""
Tests for EnvelopeProducer and DeadLetterSink.
"""

import asyncio
import json
import logging

import pytest

from herald.brokers import BrokerConnectionError, BrokerPublishError, InMemoryBroker, InMemoryLog
from herald.brokers.base import BrokerConfig
from herald.core.exceptions import DeliveryError, DispatchError
from herald.dead_letter import DeadLetterSink
from herald.producer import EnvelopeProducer
from herald.types import DeadLetterRecord, Envelope


class NeverConfirmingBroker(InMemoryBroker):
    """Accepts the hand-off but never reports delivery."""

    async def send(self, topic, message, headers=None, key=None):
        return asyncio.get_running_loop().create_future()


class TestEnvelopeProducer:
    """Tests for EnvelopeProducer"""

    @pytest.mark.asyncio
    async def test_publish_sync_persists_keyed_by_target(self, make_envelope):
        log = InMemoryLog(partitions=3)
        producer = EnvelopeProducer(InMemoryBroker(log))
        envelope = make_envelope()

        report = await producer.publish_sync("email-events", envelope)

        record = log.records("email-events")[0]
        assert report.offset == record.offset
        assert record.key == b"a@x.com"
        assert record.headers == {"message_id": b"m1", "event_type": b"verification_code"}
        assert Envelope.from_json(record.value) == envelope
        assert producer.get_stats()["delivered"] == 1

    @pytest.mark.asyncio
    async def test_one_target_keeps_order(self, make_envelope):
        """Envelopes for one recipient land on one partition, in publish order."""
        log = InMemoryLog(partitions=4)
        producer = EnvelopeProducer(InMemoryBroker(log))

        for i in range(5):
            await producer.publish_sync("email-events", make_envelope(message_id=f"m{i}"))

        records = log.records("email-events")
        assert len({r.partition for r in records}) == 1
        assert [Envelope.from_json(r.value).message_id for r in records] == [f"m{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_publish_sync_timeout(self, make_envelope):
        producer = EnvelopeProducer(NeverConfirmingBroker())

        with pytest.raises(BrokerPublishError, match="Timed out"):
            await producer.publish_sync("email-events", make_envelope(), timeout=0.01)
        assert producer.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_publish_sync_delivery_failure(self, make_envelope):
        broker = InMemoryBroker()
        broker.delivery_error = RuntimeError("not enough replicas")
        producer = EnvelopeProducer(broker)

        with pytest.raises(BrokerPublishError):
            await producer.publish_sync("email-events", make_envelope())

    @pytest.mark.asyncio
    async def test_async_publish_reports_through_callback(self, make_envelope):
        log = InMemoryLog()
        producer = EnvelopeProducer(InMemoryBroker(log))
        reports = []

        async def on_delivery(envelope, report, error):
            reports.append((envelope.message_id, report.offset, error))

        await producer.publish("email-events", make_envelope("m1"), on_delivery)
        await producer.publish("email-events", make_envelope("m2"), on_delivery)
        await producer.flush(timeout=1)

        assert reports == [("m1", 0, None), ("m2", 1, None)]
        stats = producer.get_stats()
        assert stats["published"] == 2
        assert stats["delivered"] == 2
        assert stats["pending"] == 0
        await producer.close()

    @pytest.mark.asyncio
    async def test_async_publish_failure_reported(self, make_envelope):
        broker = InMemoryBroker()
        producer = EnvelopeProducer(broker)
        await producer.start()
        broker.delivery_error = RuntimeError("leader not available")
        errors = []

        await producer.publish("email-events", make_envelope(), lambda e, r, err: errors.append(err))
        await producer.flush(timeout=1)

        assert len(errors) == 1
        assert isinstance(errors[0], BrokerPublishError)
        assert producer.get_stats()["failed"] == 1
        await producer.close()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_draining(self, make_envelope, caplog):
        producer = EnvelopeProducer(InMemoryBroker())
        delivered = []

        def broken(envelope, report, error):
            raise ValueError("callback bug")

        with caplog.at_level(logging.ERROR):
            await producer.publish("email-events", make_envelope("m1"), broken)
            await producer.publish("email-events", make_envelope("m2"), lambda e, r, err: delivered.append(e.message_id))
            await producer.flush(timeout=1)

        assert delivered == ["m2"]
        assert "Delivery callback failed for m1" in caplog.text
        await producer.close()

    @pytest.mark.asyncio
    async def test_publish_with_fallback(self, make_envelope):
        broker = InMemoryBroker(config=BrokerConfig(publish_timeout_seconds=0.01))
        broker.delivery_error = RuntimeError("cluster down")
        producer = EnvelopeProducer(broker)
        fallen_back = []

        async def fallback(envelope):
            fallen_back.append(envelope.message_id)

        assert await producer.publish_with_fallback("email-events", make_envelope(), fallback) is False
        assert fallen_back == ["m1"]

        broker.delivery_error = None
        assert await producer.publish_with_fallback("email-events", make_envelope("m2"), fallback) is True
        assert fallen_back == ["m1"]

    @pytest.mark.asyncio
    async def test_close_closes_broker(self, make_envelope):
        broker = InMemoryBroker()
        producer = EnvelopeProducer(broker)
        await producer.publish("email-events", make_envelope())

        await producer.close()

        assert not broker.is_connected
        with pytest.raises(BrokerConnectionError):
            await broker.send("email-events", b"{}")

    @pytest.mark.asyncio
    async def test_records_metrics(self, make_envelope, metrics, registry):
        producer = EnvelopeProducer(InMemoryBroker(), metrics=metrics)
        await producer.publish_sync("email-events", make_envelope())
        assert registry.get_sample_value("herald_published_total", {"result": "success"}) == 1


class TestDeadLetterSink:
    """Tests for DeadLetterSink"""

    @pytest.mark.asyncio
    async def test_writes_record_keyed_by_message_id(self, broker, log, make_envelope, metrics, registry):
        sink = DeadLetterSink(broker, topic="email-events-dlq", consumer_group="email-service-group", metrics=metrics)
        envelope = make_envelope("m2")
        error = DispatchError("m2", 3, DeliveryError("smtp down"))

        assert await sink.send(envelope, error) is True

        [record] = log.records("email-events-dlq")
        assert record.key == b"m2"
        data = json.loads(record.value)
        assert data["error"] == "max retries exceeded after 3 attempt(s): smtp down"
        assert data["consumer_group"] == "email-service-group"
        assert DeadLetterRecord.from_json(record.value).original_event == envelope
        assert registry.get_sample_value("herald_dead_letters_total", {"result": "success"}) == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_not_raised(self, broker, make_envelope, metrics, registry, caplog):
        broker.delivery_error = RuntimeError("dlq topic missing")
        sink = DeadLetterSink(broker, metrics=metrics)

        with caplog.at_level(logging.ERROR):
            assert await sink.send(make_envelope("m2"), "boom") is False

        assert "Failed to write m2 to dead-letter topic email-events-dlq" in caplog.text
        assert registry.get_sample_value("herald_dead_letters_total", {"result": "failure"}) == 1

    @pytest.mark.asyncio
    async def test_disconnected_broker(self, make_envelope):
        sink = DeadLetterSink(InMemoryBroker())
        assert await sink.send(make_envelope(), "boom") is False
