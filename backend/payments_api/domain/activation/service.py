import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from payments_api.domain.activation.db_models import CustomerFeature
from payments_api.domain.payments import statuses

logger = logging.getLogger(__name__)

PLAN_FEATURES = {
    statuses.ESSENCIAL: "automation.essential",
    statuses.COMPLETO: "automation.complete",
}


class ServiceActivator(Protocol):
    async def activate(self, customer_id: int, plan_type: str) -> None: ...

    async def deactivate(self, customer_id: int) -> None: ...


ActivatorFactory = Callable[[AsyncSession], ServiceActivator]


class DatabaseServiceActivator:
    """Grants plan features through customer_features rows in the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def activate(self, customer_id: int, plan_type: str) -> None:
        feature_key = PLAN_FEATURES.get(plan_type)
        if feature_key is None:
            logger.warning(
                "customer_services_unknown_plan",
                extra={"extra": {"customer_id": customer_id, "plan_type": plan_type}},
            )
            return

        now = datetime.now(timezone.utc)
        stmt = sa.select(CustomerFeature).where(
            CustomerFeature.customer_id == customer_id,
            CustomerFeature.feature_key == feature_key,
        )
        feature = (await self._session.execute(stmt)).scalar_one_or_none()
        if feature is None:
            feature = CustomerFeature(
                customer_id=customer_id,
                feature_key=feature_key,
                active=True,
                activated_at=now,
            )
            self._session.add(feature)
        else:
            feature.active = True
            feature.activated_at = now
        await self._session.flush()
        logger.info(
            "customer_services_activated",
            extra={"extra": {"customer_id": customer_id, "plan_type": plan_type, "feature_key": feature_key}},
        )

    async def deactivate(self, customer_id: int) -> None:
        stmt = sa.select(CustomerFeature.feature_key).where(
            CustomerFeature.customer_id == customer_id,
            CustomerFeature.active.is_(True),
        )
        feature_keys = sorted((await self._session.execute(stmt)).scalars().all())
        logger.info(
            "customer_services_deactivation_requested",
            extra={"extra": {"customer_id": customer_id, "feature_keys": feature_keys}},
        )


def database_activator_factory(session: AsyncSession) -> ServiceActivator:
    return DatabaseServiceActivator(session)
