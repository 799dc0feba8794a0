import logging
import math
import time
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.activation.service import ActivatorFactory
from payments_api.domain.customers import store as customer_store
from payments_api.domain.customers.db_models import Customer
from payments_api.domain.errors import (
    CustomerConflictError,
    GatewayUnavailableError,
    NotFoundError,
    PaymentProcessingError,
    UpstreamCustomerCreationError,
    UpstreamPaymentCreationError,
    ValidationFailedError,
)
from payments_api.domain.payments import schemas, statuses
from payments_api.domain.payments import store as payment_store
from payments_api.domain.payments.db_models import Payment
from payments_api.domain.webhooks.transitions import TransitionOutcome, apply_transition
from payments_api.infra.asaas_client import AsaasClient, GatewayError
from payments_api.infra.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


async def create_payment(
    session: AsyncSession,
    gateway: AsaasClient,
    request: schemas.PaymentCreateRequest,
    *,
    due_days: int = 1,
    raw_request: dict[str, Any] | None = None,
    expose_errors: bool = False,
) -> schemas.PaymentCreateResponse:
    try:
        customer = await _resolve_customer(session, gateway, request)
        payment_spec = build_payment_spec(request, customer.gateway_customer_id, due_days=due_days)
        remote = await gateway.create_payment(payment_spec)
        gateway_payment_id = remote.get("id")
        if not gateway_payment_id:
            raise UpstreamPaymentCreationError()
        payment = await payment_store.insert_payment(
            session,
            customer_id=customer.id,
            gateway_payment_id=gateway_payment_id,
            plan_type=request.plan_type,
            payment_method=request.payment_method,
            amount=request.amount,
            external_reference=payment_spec["externalReference"],
            due_date=_parse_date(remote.get("dueDate")) or _parse_date(payment_spec["dueDate"]),
            invoice_url=remote.get("invoiceUrl"),
        )
        payment_id = payment.id
        due_date = payment.due_date
        await session.commit()
    except CustomerConflictError as exc:
        await session.rollback()
        logger.warning("payment_creation_customer_conflict")
        metrics.record_payment_created(request.payment_method, "conflict")
        await _audit_failure(session, exc.detail, raw_request)
        raise
    except Exception as exc:
        await session.rollback()
        logger.exception(
            "payment_creation_failed",
            extra={"extra": {"payment_method": request.payment_method, "plan_type": request.plan_type}},
        )
        metrics.record_payment_created(request.payment_method, "error")
        message = _error_message(exc)
        await _audit_failure(session, message, raw_request)
        if expose_errors:
            raise PaymentProcessingError(detail=message) from exc
        raise PaymentProcessingError() from exc

    metrics.record_payment_created(request.payment_method, "created")
    logger.info(
        "payment_created",
        extra={
            "extra": {
                "payment_id": payment_id,
                "gateway_payment_id": gateway_payment_id,
                "payment_method": request.payment_method,
            }
        },
    )

    response = schemas.PaymentCreateResponse(
        payment_id=payment_id,
        gateway_payment_id=gateway_payment_id,
        status=statuses.PENDING,
        value=float(remote.get("value") or request.amount),
        due_date=due_date,
        invoice_url=remote.get("invoiceUrl"),
    )
    if request.payment_method == statuses.PIX:
        response.pix = await _pix_details(gateway, gateway_payment_id, remote)
    else:
        response.credit_card = schemas.CreditCardDetails(
            invoice_url=remote.get("invoiceUrl"),
            bank_slip_url=remote.get("bankSlipUrl"),
        )
    return response


def build_payment_spec(
    request: schemas.PaymentCreateRequest,
    gateway_customer_id: str | None,
    *,
    due_days: int = 1,
    today: date | None = None,
    now_millis: int | None = None,
) -> dict[str, Any]:
    today = today or date.today()
    now_millis = now_millis if now_millis is not None else int(time.time() * 1000)
    amount = float(request.amount)
    spec: dict[str, Any] = {
        "customer": gateway_customer_id,
        "billingType": request.payment_method,
        "value": amount,
        "dueDate": (today + timedelta(days=due_days)).isoformat(),
        "description": f"Plano {request.plan_type} - Sistema de Gestão",
        "externalReference": f"{request.plan_type}_{now_millis}",
    }
    if request.payment_method == statuses.CREDIT_CARD:
        spec["installmentCount"] = 1
        spec["installmentValue"] = amount
    return spec


async def _resolve_customer(
    session: AsyncSession, gateway: AsaasClient, request: schemas.PaymentCreateRequest
) -> Customer:
    matches = await customer_store.find_by_identity(session, email=request.email, tax_id=request.cpf)
    if len(matches) > 1:
        raise CustomerConflictError(detail="Email e CPF pertencem a clientes diferentes")

    if matches:
        customer = await customer_store.refresh_contact(
            session, matches[0], name=request.nome, phone=request.telefone
        )
        if not customer.gateway_customer_id:
            customer.gateway_customer_id = await _create_remote_customer(gateway, request)
            await session.flush()
        return customer

    gateway_customer_id = await _create_remote_customer(gateway, request)
    return await customer_store.create_customer(
        session,
        name=request.nome,
        tax_id=request.cpf,
        email=request.email,
        phone=request.telefone,
        gateway_customer_id=gateway_customer_id,
    )


async def _create_remote_customer(gateway: AsaasClient, request: schemas.PaymentCreateRequest) -> str:
    remote = await gateway.create_customer(
        {
            "name": request.nome,
            "cpfCnpj": request.cpf,
            "email": request.email,
            "phone": request.telefone,
        }
    )
    gateway_customer_id = remote.get("id")
    if not gateway_customer_id:
        raise UpstreamCustomerCreationError()
    return gateway_customer_id


async def _pix_details(
    gateway: AsaasClient, gateway_payment_id: str, remote: dict[str, Any]
) -> schemas.PixDetails | None:
    pix = pix_from_transaction(remote)
    if pix is not None:
        return pix
    try:
        qr = await gateway.get_pix_qr_code(gateway_payment_id)
    except GatewayError:
        # the payment is already stored; the client can poll payment-status for the QR code
        logger.warning("pix_qr_code_unavailable", extra={"extra": {"gateway_payment_id": gateway_payment_id}})
        return None
    return schemas.PixDetails(
        qr_code=qr.get("payload"),
        qr_code_image=qr.get("encodedImage"),
        expiration_date=qr.get("expirationDate"),
    )


def pix_from_transaction(remote: dict[str, Any]) -> schemas.PixDetails | None:
    transaction = remote.get("pixTransaction")
    if not isinstance(transaction, dict):
        return None
    qr_code = transaction.get("qrCode") if isinstance(transaction.get("qrCode"), dict) else {}
    return schemas.PixDetails(
        qr_code=qr_code.get("payload"),
        qr_code_image=qr_code.get("encodedImage"),
        expiration_date=transaction.get("expirationDate"),
    )


async def _audit_failure(session: AsyncSession, message: str, raw_request: dict[str, Any] | None) -> None:
    try:
        await payment_store.record_payment_error(session, error_message=message, request_data=raw_request)
        await session.commit()
    except Exception:  # noqa: BLE001
        await session.rollback()
        logger.exception("payment_error_log_failed")


def _error_message(exc: Exception) -> str:
    detail = getattr(exc, "detail", None)
    if isinstance(detail, str) and detail:
        return detail
    return str(exc) or type(exc).__name__


async def refresh_payment_status(
    session: AsyncSession,
    gateway: AsaasClient,
    payment_id: int,
    *,
    policy: str,
    activator_factory: ActivatorFactory,
) -> schemas.PaymentStatusResponse:
    payment = await payment_store.get_payment_with_customer(session, payment_id)
    if payment is None:
        raise NotFoundError(detail="Pagamento não encontrado")
    customer = _customer_summary(payment)
    gateway_payment_id = payment.gateway_payment_id

    try:
        remote = await gateway.get_payment(gateway_payment_id)
    except GatewayError as exc:
        logger.warning(
            "payment_status_fetch_failed",
            extra={"extra": {"payment_id": payment_id, "status_code": exc.status_code}},
        )
        raise GatewayUnavailableError() from exc

    remote_status = remote.get("status")
    if statuses.is_known_status(remote_status):
        remote_status = remote_status.upper()
        if remote_status != payment.status:
            result = await apply_transition(
                session,
                gateway_payment_id,
                remote_status,
                policy=policy,
                activator=activator_factory(session),
            )
            if result.outcome == TransitionOutcome.CONFLICT:
                await session.rollback()
            else:
                await session.commit()
            await session.refresh(payment)
    elif remote_status:
        logger.info(
            "payment_remote_status_unmapped",
            extra={"extra": {"payment_id": payment_id, "remote_status": remote_status}},
        )

    return schemas.PaymentStatusResponse(
        id=payment.id,
        gateway_payment_id=gateway_payment_id,
        status=payment.status,
        value=float(payment.amount),
        payment_method=payment.payment_method,
        plan_type=payment.plan_type,
        customer=customer,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
        invoice_url=remote.get("invoiceUrl") or payment.invoice_url,
        pix=pix_from_transaction(remote),
    )


async def list_payments(
    session: AsyncSession,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    status: str | None = None,
) -> schemas.PaymentListResponse:
    if status:
        try:
            status = statuses.normalize_status(status)
        except ValueError as exc:
            raise ValidationFailedError(
                detail="Status inválido",
                errors=[{"field": "status", "message": f"Status deve ser um de: {', '.join(sorted(statuses.STATUSES))}"}],
            ) from exc

    payments, total = await payment_store.list_payments(session, page=page, limit=limit, status=status)
    total_pages = math.ceil(total / limit) if total else 0
    return schemas.PaymentListResponse(
        payments=[_list_item(payment) for payment in payments],
        pagination=schemas.Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


def _customer_summary(payment: Payment) -> schemas.CustomerSummary:
    return schemas.CustomerSummary(
        nome=payment.customer.name,
        email=payment.customer.email,
        cpf=payment.customer.tax_id,
    )


def _list_item(payment: Payment) -> schemas.PaymentListItem:
    return schemas.PaymentListItem(
        id=payment.id,
        gateway_payment_id=payment.gateway_payment_id,
        status=payment.status,
        value=float(payment.amount),
        payment_method=payment.payment_method,
        plan_type=payment.plan_type,
        external_reference=payment.external_reference,
        due_date=payment.due_date,
        payment_date=payment.payment_date,
        customer=_customer_summary(payment),
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.strptime(value[:10], "%Y-%m-%d").date()
        except ValueError:
            return None
    return None
