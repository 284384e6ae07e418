"""
Core: configuration, environment handling, health primitives and errors.
"""

from herald.core.env import EnvManager, get_env
from herald.core.exceptions import (
    BarrierError,
    ConfigurationError,
    DeadLetterWriteError,
    DeliveryError,
    DispatchError,
    EnvelopeError,
    EnvelopeParseError,
    EnvelopeValidationError,
    HeraldError,
    PermanentDeliveryError,
    SerializationError,
    UnknownEventKindError,
)
from herald.core.health import HealthCheckResult, HealthStatus, check_health_with_timeout

__all__ = [
    "BarrierError",
    "ConfigurationError",
    "DeadLetterWriteError",
    "DeliveryError",
    "DispatchError",
    "EnvManager",
    "EnvelopeError",
    "EnvelopeParseError",
    "EnvelopeValidationError",
    "HealthCheckResult",
    "HealthStatus",
    "HeraldError",
    "PermanentDeliveryError",
    "SerializationError",
    "UnknownEventKindError",
    "check_health_with_timeout",
    "get_env",
]
