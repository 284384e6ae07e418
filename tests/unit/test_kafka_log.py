"""
Tests for the Kafka producer and consumer with a mocked aiokafka.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import KafkaError

from herald.brokers.base import (
    BrokerConnectionError,
    BrokerConsumeError,
    BrokerPublishError,
    LogRecord,
)
from herald.brokers.kafka import (
    KafkaBroker,
    KafkaBrokerConfig,
    KafkaConsumerConfig,
    KafkaLogConsumer,
)


def _resolved(value):
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def _failed(error):
    future = asyncio.get_running_loop().create_future()
    future.set_exception(error)
    return future


class TestKafkaBrokerConfig:
    """Tests for KafkaBrokerConfig"""

    def test_defaults_are_durable(self):
        """The producer waits for all replicas and is idempotent."""
        config = KafkaBrokerConfig()
        assert config.acks == "all"
        assert config.enable_idempotence is True

    def test_from_env_prefers_bootstrap_servers(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "primary:9092")
        monkeypatch.setenv("KAFKA_BROKERS", "legacy:9092")
        assert KafkaBrokerConfig.from_env().bootstrap_servers == "primary:9092"

    def test_from_env_falls_back_to_brokers(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BROKERS", "legacy:9092")
        assert KafkaBrokerConfig.from_env().bootstrap_servers == "legacy:9092"

    def test_security_kwargs(self):
        assert KafkaBrokerConfig().security_kwargs() == {}
        config = KafkaBrokerConfig(
            sasl_mechanism="PLAIN",
            sasl_username="u",
            sasl_password="p",
            security_protocol="SASL_SSL",
        )
        assert config.security_kwargs()["sasl_plain_username"] == "u"

    def test_consumer_config_from_env(self, monkeypatch):
        monkeypatch.setenv("KAFKA_CONSUMER_GROUP", "notifier")
        config = KafkaConsumerConfig.from_env()
        assert config.group_id == "notifier"
        assert config.auto_offset_reset == "earliest"


class TestKafkaBroker:
    """Tests for KafkaBroker with mocked AIOKafkaProducer"""

    @pytest.mark.asyncio
    async def test_connect_starts_producer(self):
        with patch("herald.brokers.kafka.AIOKafkaProducer") as producer_cls:
            producer_cls.return_value.start = AsyncMock()
            broker = KafkaBroker(KafkaBrokerConfig(bootstrap_servers="kafka:9092"))

            await broker.connect()

            kwargs = producer_cls.call_args.kwargs
            assert kwargs["bootstrap_servers"] == "kafka:9092"
            assert kwargs["acks"] == "all"
            assert kwargs["enable_idempotence"] is True
            assert broker.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        with patch("herald.brokers.kafka.AIOKafkaProducer") as producer_cls:
            producer_cls.return_value.start = AsyncMock(side_effect=KafkaError("no brokers"))
            broker = KafkaBroker()

            with pytest.raises(BrokerConnectionError):
                await broker.connect()
            assert not broker.is_connected

    @pytest.mark.asyncio
    async def test_publish_waits_for_metadata(self):
        broker = KafkaBroker()
        producer = MagicMock()
        metadata = SimpleNamespace(topic="email-events", partition=2, offset=41)
        producer.send = AsyncMock(return_value=_resolved(metadata))
        broker._producer = producer
        broker._connected = True

        report = await broker.publish("email-events", b"{}", headers={"message_id": "m1"}, key="a@x.com")

        assert (report.topic, report.partition, report.offset) == ("email-events", 2, 41)
        kwargs = producer.send.call_args.kwargs
        assert kwargs["key"] == b"a@x.com"
        assert kwargs["headers"] == [("message_id", b"m1")]

    @pytest.mark.asyncio
    async def test_delivery_failure_becomes_publish_error(self):
        broker = KafkaBroker()
        producer = MagicMock()
        producer.send = AsyncMock(return_value=_failed(KafkaError("not enough replicas")))
        broker._producer = producer
        broker._connected = True

        with pytest.raises(BrokerPublishError, match="did not confirm"):
            await broker.publish("email-events", b"{}")

    @pytest.mark.asyncio
    async def test_send_rejected_by_producer(self):
        broker = KafkaBroker()
        producer = MagicMock()
        producer.send = AsyncMock(side_effect=KafkaError("buffer full"))
        broker._producer = producer
        broker._connected = True

        with pytest.raises(BrokerPublishError):
            await broker.send("email-events", b"{}")

    @pytest.mark.asyncio
    async def test_send_when_not_connected(self):
        with pytest.raises(BrokerConnectionError):
            await KafkaBroker().send("email-events", b"{}")

    @pytest.mark.asyncio
    async def test_close_flushes_and_stops(self):
        broker = KafkaBroker()
        producer = MagicMock()
        producer.flush = AsyncMock()
        producer.stop = AsyncMock()
        broker._producer = producer
        broker._connected = True

        await broker.close()

        producer.flush.assert_awaited_once()
        producer.stop.assert_awaited_once()
        assert not broker.is_connected

    @pytest.mark.asyncio
    async def test_health_check(self):
        broker = KafkaBroker()
        assert await broker.health_check() is False

        producer = MagicMock()
        producer.client.fetch_all_metadata = AsyncMock(side_effect=KafkaError("down"))
        broker._producer = producer
        broker._connected = True
        assert await broker.health_check() is False

        producer.client.fetch_all_metadata = AsyncMock()
        assert await broker.health_check() is True


def _message(offset, partition=0, value=b"{}"):
    return SimpleNamespace(
        topic="email-events",
        partition=partition,
        offset=offset,
        value=value,
        key=b"a@x.com",
        headers=[("message_id", b"m1")],
        timestamp=1_700_000_000_000,
    )


class TestKafkaLogConsumer:
    """Tests for KafkaLogConsumer with mocked AIOKafkaConsumer"""

    @pytest.mark.asyncio
    async def test_subscribe_disables_auto_commit(self):
        with patch("herald.brokers.kafka.AIOKafkaConsumer") as consumer_cls:
            consumer_cls.return_value.start = AsyncMock()
            consumer = KafkaLogConsumer(KafkaConsumerConfig(group_id="email-service-group"))

            await consumer.subscribe(["email-events"])

            args, kwargs = consumer_cls.call_args
            assert args == ("email-events",)
            assert kwargs["enable_auto_commit"] is False
            assert kwargs["group_id"] == "email-service-group"

    @pytest.mark.asyncio
    async def test_subscribe_failure(self):
        with patch("herald.brokers.kafka.AIOKafkaConsumer") as consumer_cls:
            consumer_cls.return_value.start = AsyncMock(side_effect=KafkaError("coordinator unavailable"))
            consumer = KafkaLogConsumer()

            with pytest.raises(BrokerConnectionError):
                await consumer.subscribe(["email-events"])

    @pytest.mark.asyncio
    async def test_poll_orders_by_partition(self):
        consumer = KafkaLogConsumer()
        client = MagicMock()
        client.getmany = AsyncMock(
            return_value={
                TopicPartition("email-events", 1): [_message(7, partition=1)],
                TopicPartition("email-events", 0): [_message(3), _message(4)],
            }
        )
        consumer._consumer = client

        records = await consumer.poll(timeout=0.5, max_records=50)

        assert [(r.partition, r.offset) for r in records] == [(0, 3), (0, 4), (1, 7)]
        assert records[0].headers == {"message_id": b"m1"}
        client.getmany.assert_awaited_once_with(timeout_ms=500, max_records=50)

    @pytest.mark.asyncio
    async def test_poll_failure(self):
        consumer = KafkaLogConsumer()
        consumer._consumer = MagicMock(getmany=AsyncMock(side_effect=KafkaError("fetch failed")))
        with pytest.raises(BrokerConsumeError):
            await consumer.poll(timeout=0.1)

    @pytest.mark.asyncio
    async def test_commit_next_offset(self):
        """Committing a record stores the offset after it."""
        consumer = KafkaLogConsumer()
        client = MagicMock(commit=AsyncMock())
        consumer._consumer = client
        record = LogRecord(topic="email-events", partition=0, offset=9, value=b"{}")

        await consumer.commit(record)

        client.commit.assert_awaited_once_with({TopicPartition("email-events", 0): 10})

    @pytest.mark.asyncio
    async def test_commit_failure(self):
        consumer = KafkaLogConsumer()
        consumer._consumer = MagicMock(commit=AsyncMock(side_effect=KafkaError("rebalancing")))
        with pytest.raises(BrokerConsumeError):
            await consumer.commit(LogRecord(topic="email-events", partition=0, offset=9, value=b"{}"))

    @pytest.mark.asyncio
    async def test_rewind_seeks_to_record(self):
        consumer = KafkaLogConsumer()
        client = MagicMock()
        consumer._consumer = client

        await consumer.rewind(LogRecord(topic="email-events", partition=1, offset=5, value=b"{}"))

        client.seek.assert_called_once_with(TopicPartition("email-events", 1), 5)

    @pytest.mark.asyncio
    async def test_not_subscribed(self):
        with pytest.raises(BrokerConnectionError):
            await KafkaLogConsumer().poll(timeout=0.1)

    @pytest.mark.asyncio
    async def test_close(self):
        consumer = KafkaLogConsumer()
        client = MagicMock(stop=AsyncMock())
        consumer._consumer = client

        await consumer.close()

        client.stop.assert_awaited_once()
        assert await consumer.health_check() is False
