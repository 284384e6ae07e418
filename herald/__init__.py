"""
Herald - idempotent, retry-aware notification dispatch over a durable log.

Quick Start:
    >>> from herald import Envelope, EnvelopeProducer, VerificationCodePayload
    >>> from herald.brokers import KafkaBroker
    >>>
    >>> producer = EnvelopeProducer(KafkaBroker.from_env())
    >>> await producer.start()
    >>> await producer.publish(
    ...     "email-events",
    ...     Envelope(target="a@x.com", payload=VerificationCodePayload(code="123456")),
    ... )

    The consuming side runs as a service:

    $ herald consume
"""

from herald.barrier import BarrierConfig, IdempotencyBarrier, InMemoryKeyValueStore, RedisKeyValueStore
from herald.consumer import ConsumerLoop
from herald.core.config import PipelineConfig
from herald.core.exceptions import (
    BarrierError,
    ConfigurationError,
    DeadLetterWriteError,
    DeliveryError,
    DispatchError,
    EnvelopeParseError,
    EnvelopeValidationError,
    HeraldError,
    PermanentDeliveryError,
    SerializationError,
    UnknownEventKindError,
)
from herald.dead_letter import DeadLetterSink
from herald.dispatch import RetryPolicy, SideEffectExecutor
from herald.producer import EnvelopeProducer
from herald.types import (
    ConsumerConfig,
    DeadLetterRecord,
    Envelope,
    EventKind,
    PasswordResetPayload,
    ProcessedRecord,
    ProcessingOutcome,
    VerificationCodePayload,
    WelcomePayload,
)

__version__ = "0.1.0"

__all__ = [
    "BarrierConfig",
    "BarrierError",
    "ConfigurationError",
    "ConsumerConfig",
    "ConsumerLoop",
    "DeadLetterRecord",
    "DeadLetterSink",
    "DeadLetterWriteError",
    "DeliveryError",
    "DispatchError",
    "Envelope",
    "EnvelopeParseError",
    "EnvelopeProducer",
    "EnvelopeValidationError",
    "EventKind",
    "HeraldError",
    "IdempotencyBarrier",
    "InMemoryKeyValueStore",
    "PasswordResetPayload",
    "PermanentDeliveryError",
    "PipelineConfig",
    "ProcessedRecord",
    "ProcessingOutcome",
    "RedisKeyValueStore",
    "RetryPolicy",
    "SerializationError",
    "UnknownEventKindError",
    "SideEffectExecutor",
    "VerificationCodePayload",
    "WelcomePayload",
]
