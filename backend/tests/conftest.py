import asyncio
import inspect
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ["APP_ENV"] = "dev"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["ASAAS_API_KEY"] = "test-api-key"
os.environ["ASAAS_WEBHOOK_SECRET"] = ""
os.environ["METRICS_ENABLED"] = "false"

from decimal import Decimal  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import payments_api.infra.models  # noqa: F401,E402
from payments_api.domain.customers.db_models import Customer  # noqa: E402
from payments_api.domain.payments.db_models import Payment  # noqa: E402
from payments_api.infra.asaas_client import GatewayError  # noqa: E402
from payments_api.infra.db import Base, Database  # noqa: E402
from payments_api.main import app  # noqa: E402


class FakeAsaasClient:
    """In-memory stand-in for the Asaas API used by route tests."""

    def __init__(self) -> None:
        self.customers: list[dict[str, Any]] = []
        self.payments: list[dict[str, Any]] = []
        self.remote_payments: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, GatewayError] = {}
        self.include_pix_transaction = False
        self.qr_code = {
            "encodedImage": "aVZCT1J3MEtHZ28=",
            "payload": "00020101021226820014br.gov.bcb.pix",
            "expirationDate": "2026-10-17 23:59:59",
        }

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    async def create_customer(self, identity: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("create_customer")
        self.customers.append(identity)
        return {"id": f"cus_{len(self.customers):06d}", **identity}

    async def create_payment(self, payment_spec: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("create_payment")
        self.payments.append(payment_spec)
        gateway_id = f"pay_{len(self.payments):06d}"
        remote = {
            "id": gateway_id,
            "status": "PENDING",
            "value": payment_spec["value"],
            "dueDate": payment_spec["dueDate"],
            "billingType": payment_spec["billingType"],
            "invoiceUrl": f"https://sandbox.asaas.com/i/{gateway_id}",
            "bankSlipUrl": None,
        }
        if self.include_pix_transaction and payment_spec["billingType"] == "PIX":
            remote["pixTransaction"] = {
                "qrCode": {"payload": "inline-payload", "encodedImage": "aW5saW5l"},
                "expirationDate": "2026-10-18 23:59:59",
            }
        self.remote_payments[gateway_id] = remote
        return remote

    async def get_payment(self, gateway_payment_id: str) -> dict[str, Any]:
        self._maybe_fail("get_payment")
        if gateway_payment_id not in self.remote_payments:
            raise GatewayError("Cobrança não encontrada", status_code=404, body={"errors": []})
        return self.remote_payments[gateway_payment_id]

    async def get_pix_qr_code(self, gateway_payment_id: str) -> dict[str, Any]:
        self._maybe_fail("get_pix_qr_code")
        return dict(self.qr_code)

    async def close(self) -> None:
        return None


def _reset_rate_limiter() -> None:
    rate_limiter = getattr(app.state, "rate_limiter", None)
    reset = getattr(rate_limiter, "reset", None) if rate_limiter else None
    if reset and inspect.iscoroutinefunction(reset):
        asyncio.run(reset())


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    _reset_rate_limiter()
    yield


@pytest.fixture()
def fake_asaas():
    return FakeAsaasClient()


def _build_client(test_engine, fake_asaas, *, raise_server_exceptions: bool = True):
    app.state.database = Database(test_engine)
    app.state.asaas_client = fake_asaas
    return TestClient(app, raise_server_exceptions=raise_server_exceptions)


@pytest.fixture()
def client(test_engine, fake_asaas):
    with _build_client(test_engine, fake_asaas) as test_client:
        yield test_client
    app.state.asaas_client = None
    app.state.database = None


@pytest.fixture()
def client_no_raise(test_engine, fake_asaas):
    """Test client that returns HTTP responses instead of raising server exceptions."""

    with _build_client(test_engine, fake_asaas, raise_server_exceptions=False) as test_client:
        yield test_client
    app.state.asaas_client = None
    app.state.database = None


@pytest.fixture()
def seed_payment(async_session_maker):
    """Return a helper that stores a customer (reused by email) plus one payment."""

    def _seed(
        gateway_payment_id: str = "pay_123",
        *,
        status: str = "PENDING",
        plan_type: str = "ESSENCIAL",
        payment_method: str = "PIX",
        amount: str = "49.90",
        email: str = "maria@example.com",
        tax_id: str = "12345678901",
    ) -> tuple[int, int]:
        async def _run() -> tuple[int, int]:
            async with async_session_maker() as session:
                customer = (
                    await session.execute(Customer.__table__.select().where(Customer.email == email))
                ).first()
                if customer is None:
                    record = Customer(
                        name="Maria Silva",
                        tax_id=tax_id,
                        email=email,
                        phone="11987654321",
                        gateway_customer_id=f"cus_{tax_id}",
                    )
                    session.add(record)
                    await session.flush()
                    customer_id = record.id
                else:
                    customer_id = customer.id
                payment = Payment(
                    customer_id=customer_id,
                    gateway_payment_id=gateway_payment_id,
                    plan_type=plan_type,
                    payment_method=payment_method,
                    amount=Decimal(amount),
                    status=status,
                    external_reference=f"{plan_type}_1700000000000",
                )
                session.add(payment)
                await session.commit()
                return customer_id, payment.id

        return asyncio.run(_run())

    return _seed
