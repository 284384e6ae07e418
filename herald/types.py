"""
Envelope model - the unit of work carried by the durable log.

An envelope is produced once and never modified. Its `message_id` doubles as
the idempotency key: redelivering the same id must not repeat the side effect.

Wire format (JSON):

    {
        "message_id": "0b4c...",
        "event_type": "verification_code",
        "timestamp": "2026-10-19T10:00:00+00:00",
        "recipient": "a@x.com",
        "data": {"code": "123456", "expires_in": "10m"}
    }

The loosely typed `data` map is decoded at the boundary into one payload
dataclass per event kind, so dispatch code only ever sees typed payloads.

Quick Start:
    >>> from herald.types import Envelope, VerificationCodePayload
    >>>
    >>> envelope = Envelope(
    ...     target="a@x.com",
    ...     payload=VerificationCodePayload(code="123456"),
    ... )
    >>> raw = envelope.to_json()
    >>> Envelope.from_json(raw) == envelope
    True
"""

import json
import os
import uuid
from dataclasses import MISSING, dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from herald.core.exceptions import (
    EnvelopeParseError,
    EnvelopeValidationError,
    SerializationError,
    UnknownEventKindError,
)


class EventKind(Enum):
    """Kinds of notification an envelope can request."""

    VERIFICATION_CODE = "verification_code"
    """Authentication verification code"""

    WELCOME = "welcome"
    """Welcome message after sign-up"""

    PASSWORD_RESET = "password_reset"
    """Password reset link"""


@dataclass(frozen=True)
class VerificationCodePayload:
    kind: ClassVar[EventKind] = EventKind.VERIFICATION_CODE

    code: str
    expires_in: str = "10m"


@dataclass(frozen=True)
class WelcomePayload:
    kind: ClassVar[EventKind] = EventKind.WELCOME

    username: str


@dataclass(frozen=True)
class PasswordResetPayload:
    kind: ClassVar[EventKind] = EventKind.PASSWORD_RESET

    reset_link: str


NotificationPayload = VerificationCodePayload | WelcomePayload | PasswordResetPayload

PAYLOAD_TYPES: dict[EventKind, type] = {
    EventKind.VERIFICATION_CODE: VerificationCodePayload,
    EventKind.WELCOME: WelcomePayload,
    EventKind.PASSWORD_RESET: PasswordResetPayload,
}


def parse_kind(value: Any) -> EventKind:
    """Parse an event kind from its wire value."""
    if isinstance(value, EventKind):
        return value
    try:
        return EventKind(value)
    except ValueError:
        msg = f"Unsupported event_type: {value!r}"
        raise UnknownEventKindError(msg) from None


def decode_payload(kind: EventKind | str, data: Any) -> NotificationPayload:
    """
    Decode the wire `data` map into the payload variant for `kind`.

    Unknown keys are ignored. Every value must be a string.

    Raises:
        EnvelopeValidationError: If `data` is not a string map or a required key is missing
    """
    kind = parse_kind(kind)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"data must be an object, got {type(data).__name__}"
        raise EnvelopeValidationError(msg, field="data")

    payload_type = PAYLOAD_TYPES[kind]
    kwargs: dict[str, str] = {}
    for f in fields(payload_type):
        if f.name not in data:
            if f.default is MISSING:
                msg = f"{kind.value} payload missing required field {f.name!r}"
                raise EnvelopeValidationError(msg, field=f"data.{f.name}")
            continue
        value = data[f.name]
        if not isinstance(value, str):
            msg = f"data.{f.name} must be a string"
            raise EnvelopeValidationError(msg, field=f"data.{f.name}")
        kwargs[f.name] = value

    return payload_type(**kwargs)


def encode_payload(payload: NotificationPayload) -> dict[str, str]:
    """Convert a payload variant back into the wire `data` map."""
    return {f.name: getattr(payload, f.name) for f in fields(payload)}


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_time(value: Any, field_name: str) -> datetime | None:
    """Parse an RFC3339 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            msg = f"{field_name} is not an RFC3339 timestamp: {value!r}"
            raise EnvelopeValidationError(msg, field=field_name)
    else:
        msg = f"{field_name} must be a string"
        raise EnvelopeValidationError(msg, field=field_name)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _require_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        msg = f"Envelope missing {name}"
        raise EnvelopeValidationError(msg, field=name)
    return value


@dataclass(frozen=True)
class Envelope:
    """
    A request to perform one notification side effect.

    Attributes:
        target: Destination identifier (e.g. an email address)
        payload: Kind-specific payload; its type determines `kind`
        message_id: Globally unique id, assigned by the producer
        created_at: When the envelope was produced

    Example:
        >>> envelope = Envelope.create(
        ...     "verification_code",
        ...     target="a@x.com",
        ...     data={"code": "123456"},
        ...     message_id="m1",
        ... )
        >>> envelope.kind
        <EventKind.VERIFICATION_CODE: 'verification_code'>
    """

    target: str
    payload: NotificationPayload
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime | None = field(default_factory=lambda: datetime.now(UTC))

    @property
    def kind(self) -> EventKind:
        return self.payload.kind

    @classmethod
    def create(
        cls,
        kind: EventKind | str,
        target: str,
        data: dict[str, str] | None = None,
        message_id: str | None = None,
    ) -> "Envelope":
        """Build an envelope from an untyped data map, validating it."""
        payload = decode_payload(kind, data or {})
        if message_id is None:
            return cls(target=target, payload=payload)
        return cls(target=target, payload=payload, message_id=message_id)

    def to_wire(self) -> dict[str, Any]:
        """Convert to the JSON wire representation."""
        return {
            "message_id": self.message_id,
            "event_type": self.kind.value,
            "timestamp": _format_time(self.created_at),
            "recipient": self.target,
            "data": encode_payload(self.payload),
        }

    def to_json(self) -> bytes:
        """Serialize to UTF-8 JSON bytes."""
        try:
            return json.dumps(self.to_wire()).encode("utf-8")
        except (TypeError, ValueError) as e:
            msg = f"Failed to serialize envelope {self.message_id}: {e}"
            raise SerializationError(msg) from e

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Envelope":
        """
        Create an envelope from its decoded wire representation.

        Raises:
            EnvelopeValidationError: If a required field is missing or invalid
        """
        message_id = _require_str(data, "message_id")
        target = _require_str(data, "recipient")
        if "event_type" not in data:
            msg = "Envelope missing event_type"
            raise EnvelopeValidationError(msg, field="event_type")
        try:
            payload = decode_payload(data["event_type"], data.get("data"))
        except UnknownEventKindError as e:
            e.wire = data
            raise
        created_at = _parse_time(data.get("timestamp"), "timestamp")

        return cls(
            target=target,
            payload=payload,
            message_id=message_id,
            created_at=created_at,
        )

    @classmethod
    def from_json(cls, raw: bytes | str) -> "Envelope":
        """
        Parse and validate an envelope from raw log bytes.

        Raises:
            EnvelopeParseError: If the value is not a JSON object
            EnvelopeValidationError: If the object is not a valid envelope
        """
        raw_bytes = raw.encode("utf-8") if isinstance(raw, str) else raw
        try:
            data = json.loads(raw_bytes)
        except (TypeError, ValueError) as e:
            msg = f"Envelope is not valid JSON: {e}"
            raise EnvelopeParseError(msg, raw=raw_bytes) from e

        if not isinstance(data, dict):
            msg = f"Envelope must be a JSON object, got {type(data).__name__}"
            raise EnvelopeParseError(msg, raw=raw_bytes)

        try:
            return cls.from_wire(data)
        except EnvelopeValidationError as e:
            e.raw = raw_bytes
            raise


@dataclass(frozen=True)
class ProcessedRecord:
    """
    Metadata stored in the idempotency barrier once a side effect completed.

    Attributes:
        completed_at: When the side effect finished
        target: Destination it was delivered to
        kind: Event kind value
    """

    completed_at: datetime
    target: str
    kind: str

    @classmethod
    def for_envelope(cls, envelope: Envelope, completed_at: datetime | None = None) -> "ProcessedRecord":
        return cls(
            completed_at=completed_at or datetime.now(UTC),
            target=envelope.target,
            kind=envelope.kind.value,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "completed_at": self.completed_at.isoformat(),
                "target": self.target,
                "kind": self.kind,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ProcessedRecord":
        """
        Raises:
            ValueError: If `raw` is not a JSON object with a valid completed_at
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            msg = f"Processed record must be a JSON object, got {type(data).__name__}"
            raise ValueError(msg)
        try:
            completed_at = _parse_time(data.get("completed_at"), "completed_at")
        except EnvelopeValidationError as e:
            raise ValueError(str(e)) from e
        return cls(
            completed_at=completed_at or datetime.now(UTC),
            target=data.get("target", ""),
            kind=data.get("kind", ""),
        )


@dataclass(frozen=True)
class DeadLetterRecord:
    """
    An envelope whose side effect could not complete, with failure context.

    `original_event` is the decoded wire object instead of an Envelope when
    the consumer does not know the event kind.

    Wire format:
        {"original_event": <envelope>, "error": str, "failed_at": RFC3339,
         "consumer_group": str}
    """

    original_event: Envelope | dict[str, Any]
    error: str
    consumer_group: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_wire(self) -> dict[str, Any]:
        return {
            "original_event": (
                self.original_event.to_wire() if isinstance(self.original_event, Envelope) else self.original_event
            ),
            "error": self.error,
            "failed_at": self.failed_at.isoformat(),
            "consumer_group": self.consumer_group,
        }

    def to_json(self) -> bytes:
        try:
            return json.dumps(self.to_wire()).encode("utf-8")
        except (TypeError, ValueError) as e:
            msg = f"Failed to serialize dead-letter record: {e}"
            raise SerializationError(msg) from e

    @classmethod
    def from_json(cls, raw: bytes | str) -> "DeadLetterRecord":
        data = json.loads(raw)
        try:
            original_event: Envelope | dict[str, Any] = Envelope.from_wire(data["original_event"])
        except UnknownEventKindError:
            original_event = data["original_event"]
        return cls(
            original_event=original_event,
            error=data.get("error", ""),
            consumer_group=data.get("consumer_group", ""),
            failed_at=_parse_time(data.get("failed_at"), "failed_at") or datetime.now(UTC),
        )


class ProcessingOutcome(Enum):
    """
    Terminal state a consumed record reached.

    Every outcome except DEFERRED is committed.
    """

    SKIPPED_INVALID = "skipped_invalid"
    """Parse or validation failure, permanently skipped"""

    SKIPPED_DUPLICATE = "skipped_duplicate"
    """Barrier already holds a record for this message_id"""

    DELIVERED = "delivered"
    """Side effect performed (and marked, or lost the mark race)"""

    DEAD_LETTERED = "dead_lettered"
    """Retries exhausted, handed to the dead-letter sink"""

    DEFERRED = "deferred"
    """Dedup state unknown; left uncommitted for redelivery"""

    @property
    def committed(self) -> bool:
        return self is not ProcessingOutcome.DEFERRED


@dataclass
class ConsumerConfig:
    """
    Configuration for the consumer loop.

    Attributes:
        topic: Topic carrying envelopes
        dead_letter_topic: Topic receiving exhausted envelopes
        consumer_group: Consumer group id (also recorded in dead letters)
        poll_timeout_seconds: Bound on a single poll
        max_poll_records: Maximum records returned by one poll
        barrier_retry_backoff_seconds: Pause after a deferral before polling again
    """

    topic: str = "email-events"
    dead_letter_topic: str = "email-events-dlq"
    consumer_group: str = "email-service-group"
    poll_timeout_seconds: float = 1.0
    max_poll_records: int = 50
    barrier_retry_backoff_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "ConsumerConfig":
        """Create config from environment variables."""
        return cls(
            topic=os.getenv("KAFKA_TOPIC_EMAIL_EVENTS") or "email-events",
            dead_letter_topic=os.getenv("KAFKA_TOPIC_EMAIL_DLQ") or "email-events-dlq",
            consumer_group=os.getenv("KAFKA_CONSUMER_GROUP") or "email-service-group",
            poll_timeout_seconds=float(os.getenv("POLL_TIMEOUT_SECONDS", 1.0)),
            max_poll_records=int(os.getenv("MAX_POLL_RECORDS", 50)),
            barrier_retry_backoff_seconds=float(os.getenv("BARRIER_RETRY_BACKOFF_SECONDS", 1.0)),
        )
