"""
Durable Log Protocols - interfaces for the producing and consuming sides.

The pipeline never talks to Kafka directly; it goes through these protocols
so the in-memory log can stand in for tests and local development.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class LogRecord:
    """
    A record read from the durable log.

    Attributes:
        topic: Topic the record was read from
        partition: Partition number
        offset: Offset within the partition
        value: Raw record value
        key: Partition key, if any
        headers: Record headers
        timestamp_ms: Broker timestamp in milliseconds, if known
    """

    topic: str
    partition: int
    offset: int
    value: bytes
    key: bytes | None = None
    headers: dict[str, bytes] = field(default_factory=dict)
    timestamp_ms: int | None = None


@dataclass(frozen=True)
class DeliveryReport:
    """Confirmation that the log persisted a record."""

    topic: str
    partition: int
    offset: int


@runtime_checkable
class MessageBroker(Protocol):
    """
    Protocol for the producing side of the durable log.

    Implementations must support both an asynchronous hand-off (`send`)
    and a confirmed append (`publish`).
    """

    async def connect(self) -> None:
        """
        Connect to the message broker.

        Raises:
            BrokerConnectionError: If connection fails
        """
        ...

    async def send(
        self,
        topic: str,
        message: bytes,
        headers: dict[str, str] | None = None,
        key: str | None = None,
    ) -> "asyncio.Future[DeliveryReport]":
        """
        Hand a message to the log without waiting for persistence.

        Returns:
            A future resolving to the DeliveryReport, or failing with BrokerPublishError

        Raises:
            BrokerError: If the message could not be handed over at all
        """
        ...

    async def publish(
        self,
        topic: str,
        message: bytes,
        headers: dict[str, str] | None = None,
        key: str | None = None,
    ) -> DeliveryReport:
        """
        Append a message and wait until the log confirms it.

        Raises:
            BrokerError: If publishing fails
        """
        ...

    async def flush(self, timeout: float | None = None) -> None:
        """Wait until every handed-over message is confirmed or failed."""
        ...

    async def close(self) -> None:
        """Close the broker connection."""
        ...

    async def health_check(self) -> bool:
        """
        Check if the broker connection is healthy.

        Returns:
            True if healthy, False otherwise
        """
        ...


@runtime_checkable
class LogConsumer(Protocol):
    """
    Protocol for the consuming side of the durable log.

    Offsets are only ever committed explicitly. Records of one partition are
    returned in offset order.
    """

    async def subscribe(self, topics: list[str]) -> None:
        """Join the consumer group for the given topics."""
        ...

    async def poll(self, timeout: float, max_records: int | None = None) -> list[LogRecord]:
        """
        Fetch the next records, waiting at most `timeout` seconds.

        Returns:
            Records grouped by partition, each partition in offset order
        """
        ...

    async def commit(self, record: LogRecord) -> None:
        """Mark `record` (and everything before it in its partition) as consumed."""
        ...

    async def rewind(self, record: LogRecord) -> None:
        """Move the read position back so `record` is returned by the next poll."""
        ...

    async def close(self) -> None:
        """Leave the group without committing anything further."""
        ...


class BrokerError(Exception):
    """Base exception for broker errors."""


class BrokerConnectionError(BrokerError):
    """Error connecting to the broker."""


class BrokerPublishError(BrokerError):
    """Error publishing a message."""


PublishError = BrokerPublishError


class BrokerConsumeError(BrokerError):
    """Error polling, committing or seeking on the consuming side."""


@dataclass
class BrokerConfig:
    """
    Base configuration for message brokers.

    Subclass for broker-specific config.
    """

    connection_timeout_seconds: float = 30.0
    publish_timeout_seconds: float = 10.0
    flush_timeout_seconds: float = 10.0


class BaseBroker(ABC):
    """
    Abstract base class for message broker implementations.

    Provides common functionality and enforces the MessageBroker protocol.
    """

    def __init__(self, config: BrokerConfig | None = None):
        self.config = config or BrokerConfig()
        self._connected = False

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the broker."""
        ...

    @abstractmethod
    async def send(
        self,
        topic: str,
        message: bytes,
        headers: dict[str, str] | None = None,
        key: str | None = None,
    ) -> "asyncio.Future[DeliveryReport]":
        """Hand a message to the broker."""
        ...

    @abstractmethod
    async def flush(self, timeout: float | None = None) -> None:
        """Wait for outstanding messages."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the broker connection."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check broker health."""
        ...

    @property
    def is_connected(self) -> bool:
        """Check if broker is connected."""
        return self._connected

    async def publish(
        self,
        topic: str,
        message: bytes,
        headers: dict[str, str] | None = None,
        key: str | None = None,
    ) -> DeliveryReport:
        """
        Append a message and wait for the broker's confirmation.

        Bounded by `config.publish_timeout_seconds`.
        """
        future = await self.send(topic, message, headers=headers, key=key)
        try:
            return await asyncio.wait_for(future, timeout=self.config.publish_timeout_seconds)
        except TimeoutError as e:
            msg = f"Timed out after {self.config.publish_timeout_seconds}s waiting for {topic}"
            raise BrokerPublishError(msg) from e
