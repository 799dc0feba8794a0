import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.payments import schemas
from payments_api.domain.payments import service as payment_service
from payments_api.infra.db import get_db_session
from payments_api.services import activator_factory_for, asaas_client_for

router = APIRouter()
logger = logging.getLogger(__name__)


async def _raw_body(request: Request) -> dict[str, Any] | None:
    body = await request.body()
    try:
        decoded = json.loads(body or b"null")
    except ValueError:
        return None
    return decoded if isinstance(decoded, dict) else {"body": decoded}


@router.post(
    "/create-payment",
    response_model=schemas.PaymentCreateResponse,
    response_model_exclude_none=True,
)
@router.post(
    "/create-subscription",
    response_model=schemas.PaymentCreateResponse,
    response_model_exclude_none=True,
)
async def create_payment(
    payload: schemas.PaymentCreateRequest,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.PaymentCreateResponse:
    app_settings = http_request.app.state.app_settings
    return await payment_service.create_payment(
        session,
        asaas_client_for(http_request),
        payload,
        due_days=app_settings.payment_due_days,
        raw_request=await _raw_body(http_request),
        expose_errors=app_settings.expose_error_details,
    )


@router.get(
    "/payment-status/{payment_id}",
    response_model=schemas.PaymentStatusResponse,
    response_model_exclude_none=True,
)
async def payment_status(
    payment_id: int,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> schemas.PaymentStatusResponse:
    return await payment_service.refresh_payment_status(
        session,
        asaas_client_for(http_request),
        payment_id,
        policy=http_request.app.state.app_settings.transition_policy,
        activator_factory=activator_factory_for(http_request),
    )


@router.get("/payments", response_model=schemas.PaymentListResponse)
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(payment_service.DEFAULT_PAGE_SIZE, ge=1, le=payment_service.MAX_PAGE_SIZE),
    status: str | None = Query(None),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.PaymentListResponse:
    return await payment_service.list_payments(session, page=page, limit=limit, status=status)
