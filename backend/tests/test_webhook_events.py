import hashlib
import hmac

import pytest

from payments_api.domain.errors import AuthenticationError, MalformedEventError
from payments_api.domain.webhooks.events import (
    PaymentReceivedEvent,
    PaymentRefundedEvent,
    UnrecognizedEvent,
    extract_payment_id,
    parse_event,
)
from payments_api.domain.webhooks.signature import compute_signature, verify_signature


def test_parse_event_returns_typed_event():
    event = parse_event({"event": "PAYMENT_RECEIVED", "payment": {"id": "pay_123", "status": "RECEIVED"}})

    assert isinstance(event, PaymentReceivedEvent)
    assert event.payment_id == "pay_123"


def test_parse_event_keeps_unknown_payment_fields():
    event = parse_event(
        {"event": "PAYMENT_REFUNDED", "payment": {"id": "pay_9", "value": 49.9}, "dateCreated": "2026-10-01"}
    )

    assert isinstance(event, PaymentRefundedEvent)
    assert event.payment.model_extra == {"value": 49.9}


def test_unrecognized_event_type_is_not_an_error():
    event = parse_event({"event": "PAYMENT_UPDATED", "payment": {"id": "pay_1"}})

    assert event == UnrecognizedEvent(event_type="PAYMENT_UPDATED", payment_id="pay_1")


def test_missing_event_type_is_unrecognized():
    event = parse_event({"payment": {"id": "pay_1"}})

    assert isinstance(event, UnrecognizedEvent)
    assert event.event_type is None


@pytest.mark.parametrize(
    "payload",
    [
        {"event": "PAYMENT_RECEIVED"},
        {"event": "PAYMENT_RECEIVED", "payment": {}},
        {"event": "PAYMENT_RECEIVED", "payment": {"id": ""}},
        {"event": "PAYMENT_RECEIVED", "payment": "pay_123"},
    ],
)
def test_known_event_without_payment_id_is_malformed(payload):
    with pytest.raises(MalformedEventError) as exc_info:
        parse_event(payload)

    assert exc_info.value.status_code == 400
    assert "PAYMENT_RECEIVED" in exc_info.value.detail
    assert exc_info.value.errors


def test_extract_payment_id_ignores_non_string_ids():
    assert extract_payment_id({"payment": {"id": 123}}) is None
    assert extract_payment_id({"payment": None}) is None
    assert extract_payment_id({"payment": {"id": "pay_1"}}) == "pay_1"


def test_compute_signature_is_hex_hmac_sha256():
    raw = b'{"event":"PAYMENT_RECEIVED"}'

    expected = hmac.new(b"s3cret", raw, hashlib.sha256).hexdigest()

    assert compute_signature(raw, "s3cret") == expected


def test_verify_signature_accepts_matching_digest():
    raw = b'{"event":"PAYMENT_RECEIVED"}'

    verify_signature(raw, compute_signature(raw, "s3cret"), "s3cret")


@pytest.mark.parametrize("provided", [None, "", "deadbeef"])
def test_verify_signature_rejects_missing_or_wrong_digest(provided):
    with pytest.raises(AuthenticationError) as exc_info:
        verify_signature(b"{}", provided, "s3cret")

    assert exc_info.value.status_code == 401
