from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payments_api.domain.payments import statuses
from payments_api.domain.payments.db_models import Payment, PaymentError


async def insert_payment(
    session: AsyncSession,
    *,
    customer_id: int,
    gateway_payment_id: str,
    plan_type: str,
    payment_method: str,
    amount: Decimal,
    external_reference: str | None,
    due_date: date | None,
    invoice_url: str | None,
) -> Payment:
    payment = Payment(
        customer_id=customer_id,
        gateway_payment_id=gateway_payment_id,
        plan_type=plan_type,
        payment_method=payment_method,
        amount=amount,
        status=statuses.PENDING,
        external_reference=external_reference,
        due_date=due_date,
        invoice_url=invoice_url,
    )
    session.add(payment)
    await session.flush()
    return payment


async def get_payment_with_customer(session: AsyncSession, payment_id: int) -> Payment | None:
    stmt = sa.select(Payment).options(selectinload(Payment.customer)).where(Payment.id == payment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_gateway_id(session: AsyncSession, gateway_payment_id: str) -> Payment | None:
    stmt = sa.select(Payment).where(Payment.gateway_payment_id == gateway_payment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def compare_and_set_status(
    session: AsyncSession,
    *,
    gateway_payment_id: str,
    current: str,
    target: str,
) -> int:
    """Move the row from `current` to `target`; returns the number of rows changed."""
    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {"status": target, "updated_at": now}
    if target == statuses.RECEIVED:
        values["payment_date"] = now
    stmt = (
        sa.update(Payment)
        .where(Payment.gateway_payment_id == gateway_payment_id, Payment.status == current)
        .values(**values)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0


async def list_payments(
    session: AsyncSession,
    *,
    page: int,
    limit: int,
    status: str | None = None,
) -> tuple[list[Payment], int]:
    filters = []
    if status:
        filters.append(Payment.status == status)

    count_stmt = sa.select(sa.func.count()).select_from(Payment).where(*filters)
    total = int((await session.execute(count_stmt)).scalar_one())

    stmt = (
        sa.select(Payment)
        .options(selectinload(Payment.customer))
        .where(*filters)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


async def record_payment_error(
    session: AsyncSession, *, error_message: str, request_data: dict[str, Any] | None
) -> PaymentError:
    record = PaymentError(error_message=error_message, request_data=request_data)
    session.add(record)
    await session.flush()
    return record
