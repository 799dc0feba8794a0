import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.customers.db_models import Customer


async def find_by_identity(session: AsyncSession, *, email: str, tax_id: str) -> list[Customer]:
    stmt = (
        sa.select(Customer)
        .where(sa.or_(Customer.email == email, Customer.tax_id == tax_id))
        .order_by(Customer.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_customer(
    session: AsyncSession,
    *,
    name: str,
    tax_id: str,
    email: str,
    phone: str | None,
    gateway_customer_id: str | None,
) -> Customer:
    customer = Customer(
        name=name,
        tax_id=tax_id,
        email=email,
        phone=phone,
        gateway_customer_id=gateway_customer_id,
    )
    session.add(customer)
    await session.flush()
    return customer


async def refresh_contact(session: AsyncSession, customer: Customer, *, name: str, phone: str | None) -> Customer:
    customer.name = name
    customer.phone = phone
    await session.flush()
    return customer
