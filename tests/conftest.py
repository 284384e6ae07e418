"""
Pytest configuration and shared fixtures for pipeline tests.

Everything here runs in memory: the durable log, the idempotency store and
the transport all have in-memory implementations with failure switches.
"""

from dataclasses import dataclass

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from herald.barrier import BarrierConfig, IdempotencyBarrier, InMemoryKeyValueStore
from herald.brokers import InMemoryBroker, InMemoryLog, InMemoryLogConsumer
from herald.consumer import ConsumerLoop
from herald.dead_letter import DeadLetterSink
from herald.dispatch import InMemoryTransport, RetryPolicy, SideEffectExecutor
from herald.monitoring.metrics import PipelineMetrics
from herald.types import ConsumerConfig, Envelope, VerificationCodePayload

# ============================================
# ENVIRONMENT ISOLATION
# ============================================

_PIPELINE_ENV_VARS = (
    "KAFKA_BOOTSTRAP_SERVERS",
    "BROKER_TYPE",
    "KAFKA_BROKERS",
    "KAFKA_CLIENT_ID",
    "KAFKA_TOPIC_EMAIL_EVENTS",
    "KAFKA_TOPIC_EMAIL_DLQ",
    "KAFKA_CONSUMER_GROUP",
    "REDIS_URL",
    "REDIS_ADDR",
    "REDIS_PASSWORD",
    "REDIS_DB",
    "IDEMPOTENCY_TTL_SECONDS",
    "IDEMPOTENCY_KEY_PREFIX",
    "MAX_RETRIES",
    "RETRY_BACKOFF",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "POLL_TIMEOUT_SECONDS",
    "EMAIL_MODE",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USE_TLS",
    "EMAIL_SERVICE_HOST",
    "EMAIL_SERVICE_PORT",
    "METRICS_PORT",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_pipeline_env(monkeypatch):
    """Make sure a developer's shell or .env never leaks into a test."""
    for name in _PIPELINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ============================================
# COMPONENT FIXTURES
# ============================================


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def make_envelope():
    def _make(message_id: str = "m1", target: str = "a@x.com", code: str = "123456") -> Envelope:
        return Envelope(target=target, payload=VerificationCodePayload(code=code), message_id=message_id)

    return _make


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return PipelineMetrics(registry=registry)


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def barrier(store):
    return IdempotencyBarrier(store, BarrierConfig())


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def log():
    return InMemoryLog(partitions=1)


@pytest_asyncio.fixture
async def broker(log):
    broker = InMemoryBroker(log)
    await broker.connect()
    return broker


@dataclass
class Pipeline:
    log: InMemoryLog
    broker: InMemoryBroker
    store: InMemoryKeyValueStore
    barrier: IdempotencyBarrier
    transport: InMemoryTransport
    sleeper: SleepRecorder
    dead_letters: DeadLetterSink
    consumer: ConsumerLoop
    config: ConsumerConfig

    async def publish(self, envelope: Envelope) -> None:
        await self.broker.publish(self.config.topic, envelope.to_json(), key=envelope.target)

    async def publish_raw(self, value: bytes, key: str | None = None) -> None:
        await self.broker.publish(self.config.topic, value, key=key)

    def dead_lettered(self) -> list:
        return self.log.records(self.config.dead_letter_topic)

    def committed(self, partition: int = 0) -> int:
        return self.log.committed(self.config.consumer_group, self.config.topic, partition)


@pytest.fixture
def consumer_config():
    return ConsumerConfig(poll_timeout_seconds=0.01, barrier_retry_backoff_seconds=0.0)


@pytest_asyncio.fixture
async def pipeline(log, broker, store, barrier, transport, sleeper, metrics, consumer_config):
    executor = SideEffectExecutor(transport, RetryPolicy(max_attempts=3), metrics=metrics, sleep=sleeper)
    dead_letters = DeadLetterSink(
        broker,
        topic=consumer_config.dead_letter_topic,
        consumer_group=consumer_config.consumer_group,
        metrics=metrics,
    )
    consumer = ConsumerLoop(
        InMemoryLogConsumer(log, group_id=consumer_config.consumer_group),
        barrier,
        executor,
        dead_letters,
        config=consumer_config,
        metrics=metrics,
    )
    await consumer.subscribe()
    return Pipeline(
        log=log,
        broker=broker,
        store=store,
        barrier=barrier,
        transport=transport,
        sleeper=sleeper,
        dead_letters=dead_letters,
        consumer=consumer,
        config=consumer_config,
    )
