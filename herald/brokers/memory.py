"""
In-Memory Durable Log - For testing and development.

Models the parts of a partitioned log the pipeline relies on: per-key
partition affinity, per-group committed offsets, and redelivery of anything
not committed when a consumer re-joins or rewinds.

Usage:
    >>> log = InMemoryLog(partitions=2)
    >>> broker = InMemoryBroker(log)
    >>> await broker.connect()
    >>> await broker.publish("email-events", b"...", key="a@x.com")
    >>>
    >>> consumer = InMemoryLogConsumer(log, group_id="email-service-group")
    >>> await consumer.subscribe(["email-events"])
    >>> records = await consumer.poll(timeout=0.1)
"""

import asyncio
import zlib

from herald.brokers.base import (
    BaseBroker,
    BrokerConfig,
    BrokerConnectionError,
    BrokerPublishError,
    DeliveryReport,
    LogRecord,
)


class InMemoryLog:
    """Partitioned append-only log shared by in-memory producers and consumers."""

    def __init__(self, partitions: int = 1):
        if partitions < 1:
            msg = "partitions must be >= 1"
            raise ValueError(msg)
        self.partitions = partitions
        self._topics: dict[str, list[list[LogRecord]]] = {}
        self._committed: dict[tuple[str, str, int], int] = {}

    def partition_for(self, key: bytes | None) -> int:
        if not key:
            return 0
        return zlib.crc32(key) % self.partitions

    def _partitions(self, topic: str) -> list[list[LogRecord]]:
        if topic not in self._topics:
            self._topics[topic] = [[] for _ in range(self.partitions)]
        return self._topics[topic]

    def append(
        self,
        topic: str,
        value: bytes,
        key: bytes | None = None,
        headers: dict[str, bytes] | None = None,
    ) -> LogRecord:
        partition = self.partition_for(key)
        records = self._partitions(topic)[partition]
        record = LogRecord(
            topic=topic,
            partition=partition,
            offset=len(records),
            value=value,
            key=key,
            headers=dict(headers or {}),
        )
        records.append(record)
        return record

    def read(self, topic: str, partition: int, offset: int, limit: int | None = None) -> list[LogRecord]:
        records = self._partitions(topic)[partition][offset:]
        return records if limit is None else records[:limit]

    def records(self, topic: str) -> list[LogRecord]:
        """All records of a topic, partition by partition (for testing)."""
        return [record for partition in self._partitions(topic) for record in partition]

    def end_offset(self, topic: str, partition: int) -> int:
        return len(self._partitions(topic)[partition])

    def committed(self, group_id: str, topic: str, partition: int = 0) -> int:
        """Next offset the group will read after a restart."""
        return self._committed.get((group_id, topic, partition), 0)

    def commit(self, group_id: str, topic: str, partition: int, offset: int) -> None:
        self._committed[(group_id, topic, partition)] = offset

    def lag(self, group_id: str, topic: str) -> int:
        """Records not yet committed by the group (for testing)."""
        return sum(
            self.end_offset(topic, p) - self.committed(group_id, topic, p)
            for p in range(self.partitions)
        )


class InMemoryBroker(BaseBroker):
    """
    In-memory producer for testing and development.

    Usage:
        >>> broker = InMemoryBroker()
        >>> await broker.connect()
        >>> await broker.publish("email-events", b'{"message_id": "m1"}')
        >>>
        >>> # Inspect published messages
        >>> messages = broker.get_messages("email-events")
        >>> assert len(messages) == 1

    Set `delivery_error` to make every subsequent delivery future fail,
    which is how tests simulate a log that accepts but does not persist.
    """

    def __init__(self, log: InMemoryLog | None = None, config: BrokerConfig | None = None):
        super().__init__(config)
        self.log = log or InMemoryLog()
        self.delivery_error: Exception | None = None
        self._messages: dict[str, list] = {}

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True

    async def send(
        self,
        topic: str,
        message: bytes,
        headers: dict[str, str] | None = None,
        key: str | None = None,
    ) -> "asyncio.Future[DeliveryReport]":
        """Append to the in-memory log and return an already-resolved future."""
        if not self._connected:
            msg = "Broker not connected"
            raise BrokerConnectionError(msg)

        future: asyncio.Future[DeliveryReport] = asyncio.get_running_loop().create_future()
        if self.delivery_error is not None:
            msg = f"Delivery to {topic} failed: {self.delivery_error}"
            future.set_exception(BrokerPublishError(msg))
            return future

        record = self.log.append(
            topic,
            message,
            key=key.encode("utf-8") if key else None,
            headers={k: v.encode("utf-8") for k, v in (headers or {}).items()},
        )
        self._messages.setdefault(topic, []).append(
            {
                "message": message,
                "headers": headers or {},
                "key": key,
            }
        )
        future.set_result(DeliveryReport(topic=topic, partition=record.partition, offset=record.offset))
        return future

    async def flush(self, timeout: float | None = None) -> None:
        """Nothing is ever buffered in memory."""

    async def close(self) -> None:
        """Close connection."""
        self._connected = False

    async def health_check(self) -> bool:
        """Check health (always healthy for in-memory)."""
        return self._connected

    def get_messages(self, topic: str) -> list:
        """Get all messages for a topic (for testing)."""
        return self._messages.get(topic, [])

    def clear(self) -> None:
        """Clear all messages (for testing)."""
        self._messages.clear()


class InMemoryLogConsumer:
    """
    In-memory consumer group member.

    A fresh consumer starts from the group's committed offsets, so closing
    one and subscribing another simulates a restart with redelivery.
    """

    def __init__(self, log: InMemoryLog, group_id: str = "email-service-group"):
        self.log = log
        self.group_id = group_id
        self._positions: dict[tuple[str, int], int] = {}
        self._closed = False

    async def subscribe(self, topics: list[str]) -> None:
        self._closed = False
        for topic in topics:
            for partition in range(self.log.partitions):
                self._positions[(topic, partition)] = self.log.committed(self.group_id, topic, partition)

    def _check_open(self) -> None:
        if self._closed or not self._positions:
            msg = "Consumer not subscribed"
            raise BrokerConnectionError(msg)

    async def poll(self, timeout: float, max_records: int | None = None) -> list[LogRecord]:
        self._check_open()
        records: list[LogRecord] = []
        for (topic, partition), position in sorted(self._positions.items()):
            remaining = None if max_records is None else max_records - len(records)
            if remaining is not None and remaining <= 0:
                break
            batch = self.log.read(topic, partition, position, remaining)
            if batch:
                self._positions[(topic, partition)] = batch[-1].offset + 1
                records.extend(batch)

        if not records:
            await asyncio.sleep(timeout)
        return records

    async def commit(self, record: LogRecord) -> None:
        self._check_open()
        self.log.commit(self.group_id, record.topic, record.partition, record.offset + 1)

    async def rewind(self, record: LogRecord) -> None:
        self._check_open()
        self._positions[(record.topic, record.partition)] = record.offset

    async def close(self) -> None:
        self._closed = True
        self._positions.clear()

    async def health_check(self) -> bool:
        return not self._closed and bool(self._positions)
