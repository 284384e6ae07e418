"""
Kafka Durable Log - producer and consumer built on aiokafka.

The producer enables idempotence with acks=all so broker-side retries cannot
duplicate an envelope. The consumer never auto-commits: offsets advance only
when the consumer loop commits a terminal outcome.

Usage:
    >>> from herald.brokers import KafkaBroker, KafkaLogConsumer
    >>>
    >>> broker = KafkaBroker.from_env()
    >>> await broker.connect()
    >>> await broker.publish("email-events", b'{"message_id": "m1"}', key="a@x.com")
    >>>
    >>> consumer = KafkaLogConsumer.from_env()
    >>> await consumer.subscribe(["email-events"])
    >>> records = await consumer.poll(timeout=1.0)
"""

import asyncio
import logging
import os
from dataclasses import dataclass

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.errors import KafkaError

from herald.brokers.base import (
    BaseBroker,
    BrokerConfig,
    BrokerConnectionError,
    BrokerConsumeError,
    BrokerPublishError,
    DeliveryReport,
    LogRecord,
)
from herald.core.env import get_env

logger = logging.getLogger(__name__)


def _bootstrap_servers_from_env() -> str:
    return get_env().get("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092", fallbacks=("KAFKA_BROKERS",))


@dataclass
class KafkaBrokerConfig(BrokerConfig):
    """
    Kafka producer configuration.

    Attributes:
        bootstrap_servers: Kafka bootstrap servers (comma-separated)
        client_id: Client identifier
        acks: Acknowledgment mode ('all', 1, 0)
        enable_idempotence: Enable idempotent producer
        max_batch_size: Max batch size in bytes
        linger_ms: Linger time before sending batch
        compression_type: Compression (gzip, snappy, lz4, zstd, None)
        request_timeout_ms: Request timeout
        sasl_mechanism: SASL mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username
        sasl_password: SASL password
        security_protocol: Security protocol (PLAINTEXT, SASL_SSL, etc.)
    """

    bootstrap_servers: str = "localhost:9092"
    client_id: str = "herald-producer"
    acks: str = "all"
    enable_idempotence: bool = True
    max_batch_size: int = 16384
    linger_ms: int = 5
    compression_type: str | None = None
    request_timeout_ms: int = 30000

    # Security
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"

    @classmethod
    def from_env(cls) -> "KafkaBrokerConfig":
        return cls(
            bootstrap_servers=_bootstrap_servers_from_env(),
            client_id=os.getenv("KAFKA_CLIENT_ID", "herald-producer"),
            compression_type=os.getenv("KAFKA_COMPRESSION_TYPE") or None,
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
        )

    def security_kwargs(self) -> dict:
        if not self.sasl_mechanism:
            return {}
        return {
            "sasl_mechanism": self.sasl_mechanism,
            "sasl_plain_username": self.sasl_username,
            "sasl_plain_password": self.sasl_password,
            "security_protocol": self.security_protocol,
        }


@dataclass
class KafkaConsumerConfig(KafkaBrokerConfig):
    """
    Kafka consumer configuration.

    Attributes:
        group_id: Consumer group id
        auto_offset_reset: Where a group without committed offsets starts
        session_timeout_ms: Group session timeout
        max_poll_interval_ms: Maximum time between polls before a rebalance
    """

    client_id: str = "herald-consumer"
    group_id: str = "email-service-group"
    auto_offset_reset: str = "earliest"
    session_timeout_ms: int = 10000
    max_poll_interval_ms: int = 300000

    @classmethod
    def from_env(cls) -> "KafkaConsumerConfig":
        return cls(
            bootstrap_servers=_bootstrap_servers_from_env(),
            client_id=os.getenv("KAFKA_CLIENT_ID", "herald-consumer"),
            group_id=os.getenv("KAFKA_CONSUMER_GROUP") or "email-service-group",
            auto_offset_reset=os.getenv("KAFKA_AUTO_OFFSET_RESET", "earliest"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
        )


class KafkaBroker(BaseBroker):
    """
    Kafka producer using aiokafka.

    Features:
        - Idempotent producer with acks=all
        - Asynchronous hand-off (`send`) with per-message delivery futures
        - Confirmed append (`publish`)
        - SASL/SSL authentication
        - Flush on close

    Usage:
        >>> config = KafkaBrokerConfig(bootstrap_servers="localhost:9092")
        >>> broker = KafkaBroker(config)
        >>> await broker.connect()
        >>>
        >>> future = await broker.send("email-events", b"...", key="a@x.com")
        >>> report = await future
        >>>
        >>> await broker.close()
    """

    def __init__(self, config: KafkaBrokerConfig | None = None):
        super().__init__(config)
        self.config: KafkaBrokerConfig = config or KafkaBrokerConfig()
        self._producer: AIOKafkaProducer | None = None
        self._pending: set[asyncio.Future] = set()

    @classmethod
    def from_env(cls) -> "KafkaBroker":
        """Create Kafka broker from environment variables."""
        return cls(KafkaBrokerConfig.from_env())

    async def connect(self) -> None:
        """Establish connection to Kafka."""
        if self._connected:
            return

        producer_kwargs = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": self.config.client_id,
            "acks": self.config.acks,
            "enable_idempotence": self.config.enable_idempotence,
            "max_batch_size": self.config.max_batch_size,
            "linger_ms": self.config.linger_ms,
            "request_timeout_ms": self.config.request_timeout_ms,
            **self.config.security_kwargs(),
        }
        if self.config.compression_type:
            producer_kwargs["compression_type"] = self.config.compression_type

        try:
            self._producer = AIOKafkaProducer(**producer_kwargs)
            await self._producer.start()
        except KafkaError as e:
            self._producer = None
            msg = f"Failed to connect to Kafka: {e}"
            raise BrokerConnectionError(msg) from e

        self._connected = True
        logger.info(f"Connected to Kafka at {self.config.bootstrap_servers}")

    async def send(
        self,
        topic: str,
        message: bytes,
        headers: dict[str, str] | None = None,
        key: str | None = None,
    ) -> "asyncio.Future[DeliveryReport]":
        """Hand a message to the producer's buffer."""
        if not self._connected or not self._producer:
            msg = "Kafka producer not connected"
            raise BrokerConnectionError(msg)

        try:
            record_future = await self._producer.send(
                topic,
                value=message,
                key=self._encode_key(key),
                headers=self._convert_headers(headers),
            )
        except KafkaError as e:
            msg = f"Failed to publish to Kafka topic {topic}: {e}"
            raise BrokerPublishError(msg) from e

        future = asyncio.ensure_future(self._confirm(topic, record_future))
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    async def _confirm(self, topic: str, record_future: asyncio.Future) -> DeliveryReport:
        try:
            metadata = await record_future
        except KafkaError as e:
            msg = f"Kafka did not confirm delivery to {topic}: {e}"
            raise BrokerPublishError(msg) from e

        logger.debug(f"Delivered message to {metadata.topic}[{metadata.partition}]@{metadata.offset}")
        return DeliveryReport(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)

    async def flush(self, timeout: float | None = None) -> None:
        """Wait for buffered messages to be delivered."""
        if not self._producer:
            return
        timeout = self.config.flush_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(self._producer.flush(), timeout=timeout)
        except TimeoutError:
            logger.warning(f"Kafka flush timed out after {timeout}s with {len(self._pending)} message(s) pending")

    @staticmethod
    def _convert_headers(headers: dict[str, str] | None) -> list | None:
        """Convert headers dict to Kafka format."""
        if not headers:
            return None
        return [(k, v.encode("utf-8") if isinstance(v, str) else v) for k, v in headers.items()]

    @staticmethod
    def _encode_key(key: str | None) -> bytes | None:
        """Encode key to bytes if provided."""
        return key.encode("utf-8") if key else None

    async def close(self) -> None:
        """Flush and close the Kafka producer."""
        if self._producer:
            await self.flush()
            await self._producer.stop()
            self._producer = None
        self._connected = False
        logger.info("Kafka producer closed")

    async def health_check(self) -> bool:
        """Check Kafka connection health."""
        if not self._connected or not self._producer:
            return False

        try:
            await self._producer.client.fetch_all_metadata()
            return True
        except KafkaError:
            return False


class KafkaLogConsumer:
    """
    Kafka consumer with manual offset management.

    Commits are explicit and per record; `rewind` seeks the partition back so
    the record is fetched again by the next poll.

    Usage:
        >>> consumer = KafkaLogConsumer(KafkaConsumerConfig(group_id="email-service-group"))
        >>> await consumer.subscribe(["email-events"])
        >>> for record in await consumer.poll(timeout=1.0, max_records=50):
        ...     await consumer.commit(record)
        >>> await consumer.close()
    """

    def __init__(self, config: KafkaConsumerConfig | None = None):
        self.config = config or KafkaConsumerConfig()
        self._consumer: AIOKafkaConsumer | None = None

    @classmethod
    def from_env(cls) -> "KafkaLogConsumer":
        return cls(KafkaConsumerConfig.from_env())

    async def subscribe(self, topics: list[str]) -> None:
        if self._consumer is not None:
            return

        consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=self.config.client_id,
            group_id=self.config.group_id,
            enable_auto_commit=False,
            auto_offset_reset=self.config.auto_offset_reset,
            session_timeout_ms=self.config.session_timeout_ms,
            max_poll_interval_ms=self.config.max_poll_interval_ms,
            request_timeout_ms=self.config.request_timeout_ms,
            **self.config.security_kwargs(),
        )
        try:
            await consumer.start()
        except KafkaError as e:
            msg = f"Failed to join consumer group {self.config.group_id}: {e}"
            raise BrokerConnectionError(msg) from e

        self._consumer = consumer
        logger.info(
            f"Subscribed to {', '.join(topics)} as {self.config.group_id}",
            extra={"consumer_group": self.config.group_id},
        )

    def _require_consumer(self) -> AIOKafkaConsumer:
        if self._consumer is None:
            msg = "Kafka consumer not subscribed"
            raise BrokerConnectionError(msg)
        return self._consumer

    async def poll(self, timeout: float, max_records: int | None = None) -> list[LogRecord]:
        consumer = self._require_consumer()
        try:
            batches = await consumer.getmany(timeout_ms=int(timeout * 1000), max_records=max_records)
        except KafkaError as e:
            msg = f"Kafka poll failed: {e}"
            raise BrokerConsumeError(msg) from e

        records: list[LogRecord] = []
        for tp in sorted(batches, key=lambda t: (t.topic, t.partition)):
            records.extend(self._to_record(message) for message in batches[tp])
        return records

    @staticmethod
    def _to_record(message) -> LogRecord:
        return LogRecord(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            value=message.value or b"",
            key=message.key,
            headers={k: v for k, v in (message.headers or ())},
            timestamp_ms=message.timestamp,
        )

    async def commit(self, record: LogRecord) -> None:
        consumer = self._require_consumer()
        tp = TopicPartition(record.topic, record.partition)
        try:
            await consumer.commit({tp: record.offset + 1})
        except KafkaError as e:
            msg = f"Failed to commit {record.topic}[{record.partition}]@{record.offset}: {e}"
            raise BrokerConsumeError(msg) from e

    async def rewind(self, record: LogRecord) -> None:
        consumer = self._require_consumer()
        tp = TopicPartition(record.topic, record.partition)
        try:
            consumer.seek(tp, record.offset)
        except (KafkaError, ValueError) as e:
            msg = f"Failed to seek {record.topic}[{record.partition}] to {record.offset}: {e}"
            raise BrokerConsumeError(msg) from e

    async def close(self) -> None:
        if self._consumer is not None:
            await self._consumer.stop()
            self._consumer = None
        logger.info("Kafka consumer closed")

    async def health_check(self) -> bool:
        return self._consumer is not None and bool(self._consumer.assignment())
