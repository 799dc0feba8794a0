from datetime import date
from decimal import Decimal

from payments_api.domain.payments import statuses
from payments_api.domain.payments.schemas import PaymentCreateRequest
from payments_api.domain.payments.service import build_payment_spec, pix_from_transaction


def _request(**overrides) -> PaymentCreateRequest:
    data = {
        "nome": "Maria Silva",
        "cpf": "12345678901",
        "email": "maria@example.com",
        "telefone": "11987654321",
        "payment_method": "PIX",
        "plan_type": "COMPLETO",
        "amount": Decimal("99.90"),
    }
    data.update(overrides)
    return PaymentCreateRequest(**data)


def test_pix_spec():
    spec = build_payment_spec(_request(), "cus_1", due_days=2, today=date(2026, 10, 16), now_millis=1700000000000)

    assert spec == {
        "customer": "cus_1",
        "billingType": "PIX",
        "value": 99.9,
        "dueDate": "2026-10-18",
        "description": "Plano COMPLETO - Sistema de Gestão",
        "externalReference": "COMPLETO_1700000000000",
    }


def test_credit_card_spec_adds_single_installment():
    spec = build_payment_spec(
        _request(payment_method=statuses.CREDIT_CARD), "cus_1", today=date(2026, 12, 31), now_millis=1
    )

    assert spec["dueDate"] == "2027-01-01"
    assert spec["installmentCount"] == 1
    assert spec["installmentValue"] == 99.9


def test_pix_from_transaction_missing():
    assert pix_from_transaction({"id": "pay_1"}) is None


def test_pix_from_transaction_reads_nested_qr_code():
    pix = pix_from_transaction(
        {"pixTransaction": {"qrCode": {"payload": "000201", "encodedImage": "aW1n"}, "expirationDate": "2026-10-17"}}
    )

    assert pix.qr_code == "000201"
    assert pix.qr_code_image == "aW1n"
    assert pix.expiration_date == "2026-10-17"
