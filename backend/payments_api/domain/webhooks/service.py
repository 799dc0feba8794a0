import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.activation.service import ActivatorFactory
from payments_api.domain.errors import MalformedEventError, NotFoundError
from payments_api.domain.webhooks import store as webhook_store
from payments_api.domain.webhooks.events import (
    PaymentEvent,
    UnrecognizedEvent,
    extract_event_type,
    extract_payment_id,
    parse_event,
)
from payments_api.domain.webhooks.transitions import (
    TransitionOutcome,
    TransitionResult,
    apply_transition,
    target_for_event,
)
from payments_api.infra.metrics import metrics

logger = logging.getLogger(__name__)

UNHANDLED = "UNHANDLED"
CONFLICT_MESSAGE = "Conflito de atualização concorrente do status do pagamento"


@dataclass(frozen=True)
class WebhookResult:
    webhook_id: int
    event_type: str | None
    payment_id: str | None
    transition: TransitionResult | None

    @property
    def outcome(self) -> str:
        if self.transition is None:
            return UNHANDLED
        return self.transition.outcome.value


async def dispatch_event(
    session: AsyncSession,
    event: PaymentEvent | UnrecognizedEvent,
    *,
    policy: str,
    activator_factory: ActivatorFactory,
) -> TransitionResult | None:
    if isinstance(event, UnrecognizedEvent):
        logger.info(
            "webhook_event_unhandled",
            extra={"extra": {"event_type": event.event_type, "gateway_payment_id": event.payment_id}},
        )
        return None
    return await apply_transition(
        session,
        event.payment_id,
        target_for_event(event.event),
        policy=policy,
        activator=activator_factory(session),
    )


async def process_delivery(
    session: AsyncSession,
    payload: dict[str, Any],
    *,
    policy: str,
    activator_factory: ActivatorFactory,
) -> WebhookResult:
    """Log one delivery, apply its transition and mark the log row processed.

    The raw payload is committed before any parsing so that every delivery is
    auditable even when processing later fails.
    """
    event_type = extract_event_type(payload)
    payment_id = extract_payment_id(payload)

    log = await webhook_store.insert_log(session, payment_id=payment_id, event_type=event_type, payload=payload)
    webhook_id = log.id
    await session.commit()
    logger.info(
        "webhook_received",
        extra={"extra": {"webhook_id": webhook_id, "event_type": event_type, "gateway_payment_id": payment_id}},
    )

    try:
        event = parse_event(payload)
    except MalformedEventError as exc:
        await webhook_store.record_error(session, webhook_id, exc.detail)
        await session.commit()
        logger.warning(
            "webhook_event_malformed",
            extra={"extra": {"webhook_id": webhook_id, "event_type": event_type, "errors": exc.errors}},
        )
        metrics.record_webhook(event_type, "malformed")
        raise

    try:
        transition = await dispatch_event(session, event, policy=policy, activator_factory=activator_factory)
        if transition is not None and transition.outcome == TransitionOutcome.CONFLICT:
            await _record_conflict(session, webhook_id, event_type, payment_id)
            return WebhookResult(webhook_id, event_type, payment_id, transition)
        await webhook_store.mark_latest_processed(session, payment_id=payment_id, event_type=event_type)
        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.exception(
            "webhook_processing_failed",
            extra={"extra": {"webhook_id": webhook_id, "event_type": event_type, "gateway_payment_id": payment_id}},
        )
        metrics.record_webhook(event_type, "error")
        metrics.record_webhook_error(type(exc).__name__)
        await _record_failure(session, payment_id=payment_id, error_message=str(exc) or type(exc).__name__)
        raise

    metrics.record_webhook(event_type, "processed")
    logger.info(
        "webhook_processed",
        extra={
            "extra": {
                "webhook_id": webhook_id,
                "event_type": event_type,
                "gateway_payment_id": payment_id,
                "outcome": transition.outcome.value if transition else UNHANDLED,
            }
        },
    )
    return WebhookResult(webhook_id, event_type, payment_id, transition)


async def reprocess_delivery(
    session: AsyncSession,
    webhook_id: int,
    *,
    policy: str,
    activator_factory: ActivatorFactory,
) -> WebhookResult:
    log = await webhook_store.get_log(session, webhook_id)
    if log is None:
        raise NotFoundError(detail="Webhook não encontrado")
    payload = log.payload if isinstance(log.payload, dict) else {}
    event_type = log.event_type
    payment_id = log.payment_id

    try:
        event = parse_event(payload)
    except MalformedEventError as exc:
        await webhook_store.record_error(session, webhook_id, exc.detail)
        await session.commit()
        metrics.record_webhook(event_type, "malformed")
        raise

    try:
        transition = await dispatch_event(session, event, policy=policy, activator_factory=activator_factory)
        if transition is not None and transition.outcome == TransitionOutcome.CONFLICT:
            await _record_conflict(session, webhook_id, event_type, payment_id)
            return WebhookResult(webhook_id, event_type, payment_id, transition)
        await webhook_store.mark_processed(session, webhook_id)
        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.exception("webhook_reprocess_failed", extra={"extra": {"webhook_id": webhook_id}})
        metrics.record_webhook_error(type(exc).__name__)
        await _record_failure(session, webhook_id=webhook_id, error_message=str(exc) or type(exc).__name__)
        raise

    logger.info(
        "webhook_reprocessed",
        extra={
            "extra": {
                "webhook_id": webhook_id,
                "event_type": event_type,
                "outcome": transition.outcome.value if transition else UNHANDLED,
            }
        },
    )
    return WebhookResult(webhook_id, event_type, payment_id, transition)


async def _record_conflict(
    session: AsyncSession, webhook_id: int, event_type: str | None, payment_id: str | None
) -> None:
    """Keep the row unprocessed with the conflict noted so it can be replayed via reprocess."""
    await session.rollback()
    await webhook_store.record_error(session, webhook_id, CONFLICT_MESSAGE)
    await session.commit()
    logger.warning(
        "webhook_transition_conflict",
        extra={"extra": {"webhook_id": webhook_id, "event_type": event_type, "gateway_payment_id": payment_id}},
    )
    metrics.record_webhook(event_type, "conflict")


async def _record_failure(
    session: AsyncSession,
    *,
    error_message: str,
    payment_id: str | None = None,
    webhook_id: int | None = None,
) -> None:
    try:
        if webhook_id is not None:
            await webhook_store.record_error(session, webhook_id, error_message)
        else:
            await webhook_store.record_latest_error(session, payment_id=payment_id, error_message=error_message)
        await session.commit()
    except Exception:  # noqa: BLE001
        await session.rollback()
        logger.exception(
            "webhook_error_log_failed",
            extra={"extra": {"gateway_payment_id": payment_id, "webhook_id": webhook_id}},
        )
