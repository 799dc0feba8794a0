import json
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.errors import AuthenticationError, ValidationFailedError
from payments_api.domain.webhooks import service as webhook_service
from payments_api.domain.webhooks.signature import SIGNATURE_HEADER, verify_signature
from payments_api.infra.db import get_db_session
from payments_api.infra.metrics import metrics
from payments_api.services import activator_factory_for

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook/asaas", status_code=status.HTTP_200_OK)
async def asaas_webhook(
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
):
    app_settings = http_request.app.state.app_settings
    raw_body = await http_request.body()

    if app_settings.webhook_secret_configured:
        try:
            verify_signature(raw_body, http_request.headers.get(SIGNATURE_HEADER), app_settings.asaas_webhook_secret)
        except AuthenticationError:
            metrics.record_webhook_error("invalid_signature")
            logger.warning("asaas_webhook_invalid_signature")
            raise

    try:
        payload = json.loads(raw_body or b"null")
    except ValueError as exc:
        metrics.record_webhook_error("invalid_json")
        raise ValidationFailedError(detail="Corpo do webhook não é um JSON válido") from exc
    if not isinstance(payload, dict):
        metrics.record_webhook_error("invalid_payload")
        raise ValidationFailedError(detail="Corpo do webhook deve ser um objeto JSON")

    await webhook_service.process_delivery(
        session,
        payload,
        policy=app_settings.transition_policy,
        activator_factory=activator_factory_for(http_request),
    )
    return {"success": True, "message": "Webhook processado"}


@router.post("/webhook/reprocess/{webhook_id}", status_code=status.HTTP_200_OK)
async def reprocess_webhook(
    webhook_id: int,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
):
    result = await webhook_service.reprocess_delivery(
        session,
        webhook_id,
        policy=http_request.app.state.app_settings.transition_policy,
        activator_factory=activator_factory_for(http_request),
    )
    success = result.transition is None or result.transition.success
    return {"success": success, "message": "Webhook reprocessado", "outcome": result.outcome}
