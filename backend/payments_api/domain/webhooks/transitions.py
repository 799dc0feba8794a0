"""Status transition engine shared by webhook deliveries and explicit status refreshes.

Transitions are applied with a compare-and-set UPDATE so that concurrent
writers for the same payment cannot both win; duplicate deliveries of an event
whose status is already stored are reported as ALREADY_APPLIED and trigger no
side effects.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.activation.service import ServiceActivator
from payments_api.domain.payments import statuses
from payments_api.domain.payments import store as payment_store
from payments_api.infra.metrics import metrics

logger = logging.getLogger(__name__)

LENIENT = "lenient"
STRICT = "strict"

EVENT_TRANSITIONS = {
    "PAYMENT_CREATED": statuses.PENDING,
    "PAYMENT_AWAITING_CONFIRMATION": statuses.PENDING,
    "PAYMENT_CONFIRMED": statuses.CONFIRMED,
    "PAYMENT_RECEIVED": statuses.RECEIVED,
    "PAYMENT_OVERDUE": statuses.OVERDUE,
    "PAYMENT_DELETED": statuses.CANCELLED,
    "PAYMENT_RESTORED": statuses.PENDING,
    "PAYMENT_REFUNDED": statuses.REFUNDED,
}


class TransitionOutcome(str, Enum):
    APPLIED = "APPLIED"
    ALREADY_APPLIED = "ALREADY_APPLIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    previous_status: str | None = None
    status: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome in {TransitionOutcome.APPLIED, TransitionOutcome.ALREADY_APPLIED}


def target_for_event(event_type: str) -> str | None:
    return EVENT_TRANSITIONS.get(event_type)


async def apply_transition(
    session: AsyncSession,
    gateway_payment_id: str,
    target: str,
    *,
    policy: str,
    activator: ServiceActivator,
) -> TransitionResult:
    target = statuses.normalize_status(target)
    log_extra = {"gateway_payment_id": gateway_payment_id, "target_status": target}

    payment = await payment_store.get_by_gateway_id(session, gateway_payment_id)
    if payment is None:
        logger.warning("payment_transition_payment_not_found", extra={"extra": log_extra})
        metrics.record_transition(target, TransitionOutcome.NOT_FOUND.value)
        return TransitionResult(TransitionOutcome.NOT_FOUND, status=target)

    current = payment.status
    customer_id = payment.customer_id
    plan_type = payment.plan_type
    log_extra["previous_status"] = current

    if current == target:
        logger.info("payment_transition_already_applied", extra={"extra": log_extra})
        metrics.record_transition(target, TransitionOutcome.ALREADY_APPLIED.value)
        return TransitionResult(TransitionOutcome.ALREADY_APPLIED, previous_status=current, status=target)

    if policy == STRICT and not statuses.is_lifecycle_transition(current, target):
        logger.warning("payment_transition_rejected", extra={"extra": log_extra})
        metrics.record_transition(target, TransitionOutcome.REJECTED.value)
        return TransitionResult(TransitionOutcome.REJECTED, previous_status=current, status=current)

    updated = await payment_store.compare_and_set_status(
        session,
        gateway_payment_id=gateway_payment_id,
        current=current,
        target=target,
    )
    if updated != 1:
        logger.warning("payment_transition_conflict", extra={"extra": log_extra})
        metrics.record_transition(target, TransitionOutcome.CONFLICT.value)
        return TransitionResult(TransitionOutcome.CONFLICT, previous_status=current, status=None)

    logger.info("payment_status_updated", extra={"extra": log_extra})
    if target == statuses.RECEIVED:
        await activator.activate(customer_id, plan_type)
    elif target == statuses.REFUNDED:
        await activator.deactivate(customer_id)

    metrics.record_transition(target, TransitionOutcome.APPLIED.value)
    return TransitionResult(TransitionOutcome.APPLIED, previous_status=current, status=target)
