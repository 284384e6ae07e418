"""
Broker Factory - Easy creation of durable log clients.

Usage:
    >>> from herald.brokers import create_broker, create_log_consumer
    >>>
    >>> broker = create_broker("kafka", bootstrap_servers="localhost:9092")
    >>> await broker.connect()
    >>>
    >>> log = InMemoryLog()
    >>> consumer = create_log_consumer("memory", log=log, group_id="email-service-group")
"""

from typing import Any

from herald.brokers.base import LogConsumer, MessageBroker
from herald.brokers.kafka import (
    KafkaBroker,
    KafkaBrokerConfig,
    KafkaConsumerConfig,
    KafkaLogConsumer,
)
from herald.brokers.memory import InMemoryBroker, InMemoryLog, InMemoryLogConsumer
from herald.core.env import get_env


def get_available_brokers() -> list[str]:
    """Broker types accepted by the factory functions."""
    return sorted(_BROKER_REGISTRY)


def _create_memory_broker(kwargs: dict) -> InMemoryBroker:
    return InMemoryBroker(kwargs.get("log"))


def _create_kafka_broker(kwargs: dict) -> KafkaBroker:
    config = kwargs.pop("config", None) or (KafkaBrokerConfig(**kwargs) if kwargs else None)
    return KafkaBroker(config)


def _create_memory_consumer(kwargs: dict) -> InMemoryLogConsumer:
    log = kwargs.pop("log", None) or InMemoryLog()
    return InMemoryLogConsumer(log, **kwargs)


def _create_kafka_consumer(kwargs: dict) -> KafkaLogConsumer:
    config = kwargs.pop("config", None) or (KafkaConsumerConfig(**kwargs) if kwargs else None)
    return KafkaLogConsumer(config)


# Broker registry: type -> (producer factory, consumer factory)
_BROKER_REGISTRY = {
    "memory": (_create_memory_broker, _create_memory_consumer),
    "kafka": (_create_kafka_broker, _create_kafka_consumer),
}


def _lookup(broker_type: str):
    broker_type = broker_type.lower().strip()
    if broker_type not in _BROKER_REGISTRY:
        msg = f"Unknown broker type: '{broker_type}'\nAvailable brokers: {', '.join(get_available_brokers())}"
        raise ValueError(msg)
    return _BROKER_REGISTRY[broker_type]


def create_broker(broker_type: str, **kwargs: Any) -> MessageBroker:
    """
    Create a producing-side broker.

    Args:
        broker_type: 'memory' or 'kafka'
        **kwargs: `config=` (a KafkaBrokerConfig) or its fields for kafka, `log=` for memory

    Raises:
        ValueError: If broker type is unknown
    """
    producer_factory, _ = _lookup(broker_type)
    return producer_factory(kwargs)  # type: ignore[no-any-return]


def create_log_consumer(broker_type: str, **kwargs: Any) -> LogConsumer:
    """
    Create a consuming-side log client.

    Args:
        broker_type: 'memory' or 'kafka'
        **kwargs: `config=` (a KafkaConsumerConfig) or its fields for kafka, `log=` and `group_id=` for memory

    Raises:
        ValueError: If broker type is unknown
    """
    _, consumer_factory = _lookup(broker_type)
    return consumer_factory(kwargs)  # type: ignore[no-any-return]


def create_broker_from_env() -> MessageBroker:
    """
    Create a producing-side broker from environment variables.

    Environment Variables:
        BROKER_TYPE: Broker type (kafka, memory). Defaults to kafka.
        KAFKA_BOOTSTRAP_SERVERS / KAFKA_BROKERS, KAFKA_CLIENT_ID,
        KAFKA_SASL_MECHANISM, KAFKA_SASL_USERNAME, KAFKA_SASL_PASSWORD,
        KAFKA_SECURITY_PROTOCOL
    """
    broker_type = (get_env().get("BROKER_TYPE") or "kafka").lower()
    if broker_type == "kafka":
        return KafkaBroker.from_env()
    return create_broker(broker_type)
