"""
All pipeline-related exceptions.

Only errors that leave the dedup state unknown (BarrierError) keep a record
from being committed; every content or dispatch error resolves to a
terminal, committed outcome.
"""


class HeraldError(Exception):
    """Base herald error"""


class ConfigurationError(HeraldError, ValueError):
    """Invalid or incomplete configuration"""


class EnvelopeError(HeraldError):
    """
    Envelope could not be decoded.

    Attributes:
        raw: The raw bytes (or partial value) that failed to decode
    """

    def __init__(self, message: str, raw: bytes | None = None):
        self.raw = raw
        super().__init__(message)


class EnvelopeParseError(EnvelopeError):
    """Record value is not a JSON object"""


class EnvelopeValidationError(EnvelopeError):
    """Required field missing or invalid"""

    def __init__(self, message: str, field: str | None = None, raw: bytes | None = None):
        self.field = field
        super().__init__(message, raw=raw)


class UnknownEventKindError(EnvelopeValidationError):
    """
    Envelope names an event kind this consumer cannot handle.

    Attributes:
        wire: The decoded envelope object, kept so it can be dead-lettered as is
    """

    def __init__(self, message: str, wire: dict | None = None):
        self.wire = wire
        super().__init__(message, field="event_type")


class SerializationError(HeraldError):
    """Envelope or record could not be encoded for the log"""


class DeliveryError(HeraldError):
    """Raised by transports when a single send attempt fails (retryable)."""


class PermanentDeliveryError(DeliveryError):
    """
    Raised by transports when retrying cannot help.

    The executor stops retrying immediately and the envelope is dead-lettered.
    """


class DispatchError(HeraldError):
    """
    Side effect could not be performed within the retry budget.

    Attributes:
        message_id: Envelope that failed
        attempts: Number of attempts made
        last_error: The error raised by the final attempt
    """

    def __init__(self, message_id: str, attempts: int, last_error: BaseException):
        self.message_id = message_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"max retries exceeded after {attempts} attempt(s): {last_error}")


class BarrierError(HeraldError):
    """
    Idempotency store unreachable; dedup state for the message is unknown.

    Attributes:
        operation: Barrier operation that failed ("is_processed", "mark_processed", ...)
        message_id: Message the operation concerned, if any
    """

    def __init__(self, operation: str, message_id: str | None, cause: BaseException | None = None):
        self.operation = operation
        self.message_id = message_id
        self.cause = cause
        detail = f" for {message_id}" if message_id else ""
        super().__init__(f"Idempotency barrier {operation} failed{detail}: {cause}")


class DeadLetterWriteError(HeraldError):
    """Dead-letter record could not be appended. Logged, never blocks commit."""

    def __init__(self, message_id: str, topic: str, cause: BaseException | None = None):
        self.message_id = message_id
        self.topic = topic
        self.cause = cause
        super().__init__(f"Failed to write {message_id} to dead-letter topic {topic}: {cause}")
