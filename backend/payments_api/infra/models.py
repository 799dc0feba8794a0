"""Imports every ORM module so Base.metadata is complete for create_all and Alembic."""

from payments_api.domain.customers import db_models as customer_db_models  # noqa: F401
from payments_api.domain.payments import db_models as payment_db_models  # noqa: F401
from payments_api.domain.webhooks import db_models as webhook_db_models  # noqa: F401
from payments_api.domain.activation import db_models as activation_db_models  # noqa: F401
