"""
Tests for the envelope model and its wire format.
"""

import json
from datetime import UTC, datetime

import pytest

from herald.core.exceptions import EnvelopeParseError, EnvelopeValidationError, UnknownEventKindError
from herald.types import (
    DeadLetterRecord,
    Envelope,
    EventKind,
    PasswordResetPayload,
    ProcessedRecord,
    ProcessingOutcome,
    VerificationCodePayload,
    WelcomePayload,
    decode_payload,
    parse_kind,
)


def _wire(**overrides):
    data = {
        "message_id": "m1",
        "event_type": "verification_code",
        "timestamp": "2026-10-19T10:00:00Z",
        "recipient": "a@x.com",
        "data": {"code": "123456"},
    }
    data.update(overrides)
    return data


class TestEventKind:
    """Tests for event kind parsing."""

    def test_parse_known_kinds(self):
        """Each wire value maps to its kind."""
        assert parse_kind("verification_code") is EventKind.VERIFICATION_CODE
        assert parse_kind("welcome") is EventKind.WELCOME
        assert parse_kind("password_reset") is EventKind.PASSWORD_RESET

    def test_parse_kind_passthrough(self):
        assert parse_kind(EventKind.WELCOME) is EventKind.WELCOME

    def test_unknown_kind(self):
        """An unknown event_type cannot be dispatched."""
        with pytest.raises(UnknownEventKindError) as exc_info:
            parse_kind("sms_blast")
        assert exc_info.value.field == "event_type"
        assert isinstance(exc_info.value, EnvelopeValidationError)

    def test_unknown_kind_keeps_the_wire_object(self):
        wire = _wire(event_type="sms_blast")
        with pytest.raises(UnknownEventKindError) as exc_info:
            Envelope.from_json(json.dumps(wire))
        assert exc_info.value.wire == wire
        assert exc_info.value.raw is not None


class TestDecodePayload:
    """Tests for decoding the loosely typed data map."""

    def test_verification_code_defaults_expiry(self):
        payload = decode_payload("verification_code", {"code": "123456"})
        assert payload == VerificationCodePayload(code="123456", expires_in="10m")

    def test_unknown_keys_are_ignored(self):
        """Extra data keys from newer producers do not break decoding."""
        payload = decode_payload("welcome", {"username": "ada", "locale": "en"})
        assert payload == WelcomePayload(username="ada")

    def test_missing_required_key(self):
        with pytest.raises(EnvelopeValidationError) as exc_info:
            decode_payload("password_reset", {})
        assert exc_info.value.field == "data.reset_link"

    def test_non_string_value_rejected(self):
        with pytest.raises(EnvelopeValidationError):
            decode_payload("verification_code", {"code": 123456})

    def test_data_must_be_an_object(self):
        with pytest.raises(EnvelopeValidationError) as exc_info:
            decode_payload("welcome", ["ada"])
        assert exc_info.value.field == "data"


class TestEnvelope:
    """Tests for Envelope construction and parsing."""

    def test_defaults(self):
        """A new envelope gets a unique id and a creation time."""
        first = Envelope(target="a@x.com", payload=WelcomePayload(username="ada"))
        second = Envelope(target="a@x.com", payload=WelcomePayload(username="ada"))
        assert first.message_id != second.message_id
        assert first.created_at is not None
        assert first.kind is EventKind.WELCOME

    def test_create_from_untyped_data(self):
        envelope = Envelope.create("password_reset", "a@x.com", {"reset_link": "https://x/r"}, message_id="m9")
        assert envelope.message_id == "m9"
        assert envelope.payload == PasswordResetPayload(reset_link="https://x/r")

    def test_to_wire_field_names(self):
        """The wire format keeps the field names consumers depend on."""
        envelope = Envelope(target="a@x.com", payload=VerificationCodePayload(code="123456"), message_id="m1")
        wire = json.loads(envelope.to_json())
        assert wire["message_id"] == "m1"
        assert wire["event_type"] == "verification_code"
        assert wire["recipient"] == "a@x.com"
        assert wire["data"] == {"code": "123456", "expires_in": "10m"}

    def test_from_json_parses_timestamp_as_utc(self):
        envelope = Envelope.from_json(json.dumps(_wire()).encode())
        assert envelope.message_id == "m1"
        assert envelope.target == "a@x.com"
        assert envelope.created_at == datetime(2026, 10, 19, 10, 0, tzinfo=UTC)

    def test_timestamp_is_optional(self):
        wire = _wire()
        del wire["timestamp"]
        assert Envelope.from_wire(wire).created_at is None

    def test_message_id_need_not_be_a_uuid(self):
        assert Envelope.from_wire(_wire(message_id="order-42/verify")).message_id == "order-42/verify"

    def test_not_json(self):
        with pytest.raises(EnvelopeParseError) as exc_info:
            Envelope.from_json(b"not json")
        assert exc_info.value.raw == b"not json"

    def test_json_but_not_an_object(self):
        with pytest.raises(EnvelopeParseError):
            Envelope.from_json(b"[1, 2, 3]")

    @pytest.mark.parametrize("field", ["message_id", "recipient", "event_type"])
    def test_missing_required_field(self, field):
        wire = _wire()
        del wire[field]
        with pytest.raises(EnvelopeValidationError) as exc_info:
            Envelope.from_json(json.dumps(wire))
        assert exc_info.value.field == field
        assert exc_info.value.raw is not None

    def test_blank_message_id_rejected(self):
        with pytest.raises(EnvelopeValidationError):
            Envelope.from_wire(_wire(message_id="  "))

    def test_bad_timestamp_rejected(self):
        with pytest.raises(EnvelopeValidationError) as exc_info:
            Envelope.from_wire(_wire(timestamp="yesterday"))
        assert exc_info.value.field == "timestamp"


class TestProcessedRecord:
    """Tests for the barrier metadata record."""

    def test_for_envelope(self):
        envelope = Envelope(target="a@x.com", payload=VerificationCodePayload(code="1"), message_id="m1")
        completed = datetime(2026, 10, 19, tzinfo=UTC)
        record = ProcessedRecord.for_envelope(envelope, completed_at=completed)
        assert record == ProcessedRecord(completed_at=completed, target="a@x.com", kind="verification_code")

    def test_json_shape(self):
        record = ProcessedRecord(datetime(2026, 10, 19, tzinfo=UTC), "a@x.com", "welcome")
        data = json.loads(record.to_json())
        assert set(data) == {"completed_at", "target", "kind"}
        assert ProcessedRecord.from_json(record.to_json()) == record


class TestDeadLetterRecord:
    """Tests for the dead-letter wire format."""

    def test_wire_format(self):
        envelope = Envelope(target="a@x.com", payload=VerificationCodePayload(code="1"), message_id="m2")
        record = DeadLetterRecord(envelope, error="boom", consumer_group="email-service-group")
        data = json.loads(record.to_json())
        assert data["original_event"]["message_id"] == "m2"
        assert data["error"] == "boom"
        assert data["consumer_group"] == "email-service-group"
        assert "failed_at" in data

    def test_from_json_restores_original_event(self):
        envelope = Envelope(target="a@x.com", payload=WelcomePayload(username="ada"), message_id="m2")
        record = DeadLetterRecord.from_json(DeadLetterRecord(envelope, "boom", "g").to_json())
        assert record.original_event == envelope

    def test_unknown_kind_is_kept_as_wire_object(self):
        wire = _wire(event_type="sms_blast")
        record = DeadLetterRecord.from_json(DeadLetterRecord(wire, "Unsupported event_type", "g").to_json())
        assert record.original_event == wire


class TestProcessingOutcome:
    def test_only_deferred_is_uncommitted(self):
        """Every outcome except a deferral advances the offset."""
        uncommitted = [outcome for outcome in ProcessingOutcome if not outcome.committed]
        assert uncommitted == [ProcessingOutcome.DEFERRED]
