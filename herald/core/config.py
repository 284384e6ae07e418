"""
Pipeline configuration.

Aggregates the per-component configs and reads them all from the
environment (after loading a local .env through EnvManager).

Example:
    >>> from herald.core.config import PipelineConfig
    >>> config = PipelineConfig.from_env()
    >>> config.validate()
    >>> config.consumer.topic
    'email-events'
"""

from dataclasses import dataclass, field

from herald.barrier.barrier import BarrierConfig
from herald.barrier.redis import redis_url_from_env
from herald.brokers.factory import get_available_brokers
from herald.brokers.kafka import KafkaBrokerConfig, KafkaConsumerConfig
from herald.core.env import EnvManager, get_env
from herald.core.exceptions import ConfigurationError
from herald.dispatch.retry import RetryPolicy
from herald.dispatch.transport import TransportConfig
from herald.types import ConsumerConfig


@dataclass
class PipelineConfig:
    """
    Complete configuration for one pipeline instance.

    Attributes:
        broker_type: Durable log backend (kafka, or memory for local runs)
        kafka: Producer settings (shared by the dead-letter sink)
        kafka_consumer: Consumer group settings
        consumer: Consumer loop settings
        barrier: Idempotency barrier settings
        retry: Dispatch retry policy
        transport: Transport selection and SMTP settings
        redis_url: Idempotency store URL
        service_host: Health surface bind address
        service_port: Health surface port
        metrics_port: Prometheus exporter port (0 disables it)
    """

    broker_type: str = "kafka"
    kafka: KafkaBrokerConfig = field(default_factory=KafkaBrokerConfig)
    kafka_consumer: KafkaConsumerConfig = field(default_factory=KafkaConsumerConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)
    barrier: BarrierConfig = field(default_factory=BarrierConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    transport: TransportConfig = field(default_factory=TransportConfig)
    redis_url: str = "redis://localhost:6379/0"
    service_host: str = "0.0.0.0"
    service_port: int = 8085
    metrics_port: int = 0

    @classmethod
    def from_env(cls, env: EnvManager | None = None) -> "PipelineConfig":
        """
        Build the configuration from environment variables.

        Raises:
            ConfigurationError: If a numeric or enumerated value cannot be parsed
        """
        env = env or get_env()
        try:
            consumer = ConsumerConfig.from_env()
            kafka_consumer = KafkaConsumerConfig.from_env()
            kafka_consumer.group_id = consumer.consumer_group
            return cls(
                broker_type=(env.get("BROKER_TYPE") or "kafka").lower(),
                kafka=KafkaBrokerConfig.from_env(),
                kafka_consumer=kafka_consumer,
                consumer=consumer,
                barrier=BarrierConfig.from_env(),
                retry=RetryPolicy.from_env(),
                transport=TransportConfig.from_env(),
                redis_url=redis_url_from_env(),
                service_host=env.get("EMAIL_SERVICE_HOST", "0.0.0.0"),
                service_port=int(env.get("EMAIL_SERVICE_PORT", "8085")),
                metrics_port=int(env.get("METRICS_PORT", "0")),
            )
        except ValueError as e:
            if isinstance(e, ConfigurationError):
                raise
            msg = f"Invalid configuration value: {e}"
            raise ConfigurationError(msg) from e

    def validate(self) -> None:
        """
        Check the configuration for values the pipeline cannot run with.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        if self.broker_type not in get_available_brokers():
            msg = f"BROKER_TYPE must be one of {get_available_brokers()}, got {self.broker_type!r}"
            raise ConfigurationError(msg)
        if not self.kafka.bootstrap_servers:
            msg = "KAFKA_BOOTSTRAP_SERVERS must not be empty"
            raise ConfigurationError(msg)
        if self.consumer.topic == self.consumer.dead_letter_topic:
            msg = "Envelope topic and dead-letter topic must differ"
            raise ConfigurationError(msg)
        if self.consumer.poll_timeout_seconds <= 0:
            msg = "POLL_TIMEOUT_SECONDS must be positive"
            raise ConfigurationError(msg)
        if self.consumer.max_poll_records < 1:
            msg = "MAX_POLL_RECORDS must be >= 1"
            raise ConfigurationError(msg)
        if self.barrier.ttl_seconds <= 0:
            msg = "IDEMPOTENCY_TTL_SECONDS must be positive"
            raise ConfigurationError(msg)
        if not self.barrier.key_prefix:
            msg = "IDEMPOTENCY_KEY_PREFIX must not be empty"
            raise ConfigurationError(msg)
        if not 0 < self.service_port < 65536:
            msg = f"EMAIL_SERVICE_PORT out of range: {self.service_port}"
            raise ConfigurationError(msg)
        if not 0 <= self.metrics_port < 65536:
            msg = f"METRICS_PORT out of range: {self.metrics_port}"
            raise ConfigurationError(msg)
        self.retry.validate()
        self.transport.validate()
