import json
import logging

from payments_api.infra.logging import (
    RedactingJsonFormatter,
    clear_log_context,
    redact_pii,
    update_log_context,
)


def _format(message: str, extra: dict | None = None) -> dict:
    record = logging.LogRecord("payments_api.test", logging.INFO, __file__, 1, message, None, None)
    if extra is not None:
        record.extra = extra
    return json.loads(RedactingJsonFormatter().format(record))


def test_message_pii_is_redacted():
    payload = _format("customer maria@example.com cpf 123.456.789-01 phone (11) 98765-4321")

    assert "maria@example.com" not in payload["message"]
    assert "[REDACTED_EMAIL]" in payload["message"]
    assert "[REDACTED_CPF]" in payload["message"]
    assert "[REDACTED_PHONE]" in payload["message"]


def test_sensitive_extra_keys_are_masked():
    payload = _format(
        "payment_created",
        {"gateway_payment_id": "pay_123", "email": "maria@example.com", "cpf": "12345678901", "access_token": "k"},
    )

    assert payload["message"] == "payment_created"
    assert payload["gateway_payment_id"] == "pay_123"
    assert payload["email"] == "[REDACTED]"
    assert payload["cpf"] == "[REDACTED]"
    assert payload["access_token"] == "[REDACTED]"


def test_nested_extra_values_are_sanitized():
    payload = _format("webhook_event_malformed", {"errors": [{"field": "payment.id", "email": "a@b.com"}]})

    assert payload["errors"] == [{"field": "payment.id", "email": "[REDACTED]"}]


def test_request_context_is_merged():
    update_log_context(request_id="req-1", path="/api/payments")
    try:
        payload = _format("request")
    finally:
        clear_log_context()

    assert payload["request_id"] == "req-1"
    assert payload["path"] == "/api/payments"
    assert payload["level"] == "INFO"


def test_tokens_in_urls_are_redacted():
    assert redact_pii("GET /x?access_token=abc&page=2") == "GET /x?access_token=[REDACTED_TOKEN]&page=2"
