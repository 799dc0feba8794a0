from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.webhooks.db_models import WebhookLog


def _payment_filter(payment_id: str | None):
    if payment_id is None:
        return WebhookLog.payment_id.is_(None)
    return WebhookLog.payment_id == payment_id


async def insert_log(
    session: AsyncSession,
    *,
    payment_id: str | None,
    event_type: str | None,
    payload: dict[str, Any],
) -> WebhookLog:
    log = WebhookLog(payment_id=payment_id, event_type=event_type, payload=payload, processed=False)
    session.add(log)
    await session.flush()
    return log


async def get_log(session: AsyncSession, webhook_id: int) -> WebhookLog | None:
    return await session.get(WebhookLog, webhook_id)


async def _latest_log_id(session: AsyncSession, *filters) -> int | None:
    stmt = (
        sa.select(WebhookLog.id)
        .where(*filters)
        .order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def mark_latest_processed(session: AsyncSession, *, payment_id: str | None, event_type: str | None) -> int | None:
    event_filter = WebhookLog.event_type.is_(None) if event_type is None else WebhookLog.event_type == event_type
    log_id = await _latest_log_id(session, _payment_filter(payment_id), event_filter)
    if log_id is None:
        return None
    await session.execute(sa.update(WebhookLog).where(WebhookLog.id == log_id).values(processed=True))
    return log_id


async def mark_processed(session: AsyncSession, webhook_id: int) -> None:
    await session.execute(
        sa.update(WebhookLog).where(WebhookLog.id == webhook_id).values(processed=True, error_message=None)
    )


async def record_error(session: AsyncSession, webhook_id: int, error_message: str) -> None:
    await session.execute(
        sa.update(WebhookLog).where(WebhookLog.id == webhook_id).values(error_message=error_message)
    )


async def record_latest_error(session: AsyncSession, *, payment_id: str | None, error_message: str) -> int | None:
    log_id = await _latest_log_id(session, _payment_filter(payment_id))
    if log_id is None:
        return None
    await record_error(session, log_id, error_message)
    return log_id
