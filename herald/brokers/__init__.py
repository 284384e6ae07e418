"""
Durable Log Clients

Producer and consumer backends for the envelope log.

Available backends:
    - InMemoryBroker / InMemoryLogConsumer: For testing
    - KafkaBroker / KafkaLogConsumer: Apache Kafka (aiokafka)

Factory:
    >>> from herald.brokers import create_broker
    >>> broker = create_broker("kafka", bootstrap_servers="localhost:9092")
"""

from herald.brokers.base import (
    BaseBroker,
    BrokerConfig,
    BrokerConnectionError,
    BrokerConsumeError,
    BrokerError,
    BrokerPublishError,
    DeliveryReport,
    LogConsumer,
    LogRecord,
    MessageBroker,
    PublishError,
)
from herald.brokers.factory import (
    create_broker,
    create_broker_from_env,
    create_log_consumer,
    get_available_brokers,
)
from herald.brokers.kafka import (
    KafkaBroker,
    KafkaBrokerConfig,
    KafkaConsumerConfig,
    KafkaLogConsumer,
)
from herald.brokers.memory import InMemoryBroker, InMemoryLog, InMemoryLogConsumer

__all__ = [
    # Base
    "MessageBroker",
    "LogConsumer",
    "BaseBroker",
    "BrokerConfig",
    "BrokerError",
    "BrokerConnectionError",
    "BrokerConsumeError",
    "BrokerPublishError",
    "PublishError",
    "DeliveryReport",
    "LogRecord",
    # Implementations
    "InMemoryLog",
    "InMemoryBroker",
    "InMemoryLogConsumer",
    "KafkaBroker",
    "KafkaBrokerConfig",
    "KafkaConsumerConfig",
    "KafkaLogConsumer",
    # Factory
    "create_broker",
    "create_broker_from_env",
    "create_log_consumer",
    "get_available_brokers",
]
