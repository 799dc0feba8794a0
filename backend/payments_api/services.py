from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from payments_api.domain.activation.service import ActivatorFactory, database_activator_factory
from payments_api.infra.metrics import Metrics, configure_metrics
from payments_api.infra.security import RateLimiter, create_rate_limiter


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    activator_factory: ActivatorFactory
    rate_limiter: RateLimiter
    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        activator_factory=database_activator_factory,
        rate_limiter=create_rate_limiter(app_settings),
        metrics=metrics_client,
    )


def resolve_services(container_like: Any) -> AppServices | None:
    if isinstance(container_like, AppServices):
        return container_like
    if container_like is None:
        return None
    state = getattr(container_like, "state", container_like)
    return getattr(state, "services", None)


def asaas_client_for(request):
    client = getattr(request.app.state, "asaas_client", None)
    if client is None:
        raise RuntimeError("Asaas client is not initialised for this application")
    return client


def activator_factory_for(request) -> ActivatorFactory:
    factory = getattr(request.app.state, "activator_factory", None)
    if factory is not None:
        return factory
    return resolve_services(request.app).activator_factory
