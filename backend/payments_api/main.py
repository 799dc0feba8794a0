import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from payments_api.api.problem_details import (
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_RATE_LIMIT,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    problem_details,
)
from payments_api.api.routes_health import router as health_router
from payments_api.api.routes_payments import router as payments_router
from payments_api.api.routes_webhooks import router as webhooks_router
from payments_api.domain.errors import DomainError
from payments_api.infra.asaas_client import AsaasClient
from payments_api.infra.db import Database
from payments_api.infra.logging import clear_log_context, configure_logging, update_log_context
from payments_api.infra.metrics import metrics
from payments_api.infra.security import RateLimiter, resolve_client_key
from payments_api.services import build_app_services
from payments_api.settings import settings

logger = logging.getLogger(__name__)

DEV_CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_logger = logging.getLogger("payments_api.request")
        start = time.time()
        request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
        if not request_id:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)

        response = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.time() - start) * 1000)
            update_log_context(status_code=status_code, latency_ms=latency_ms)
            request_logger.info("request")
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            clear_log_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        route_label = "unmatched"
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            self.metrics.record_http_latency(request.method, route_label, status_code, time.perf_counter() - start)
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, route_label)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, limiter: RateLimiter, app_settings) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.app_settings = app_settings
        prefix = app_settings.api_prefix
        self.limited_prefix = f"{prefix}/" if prefix else "/"
        self.exempt_prefixes = (f"{prefix}/webhook/",)
        self.exempt_paths = {"/health", "/healthz", "/metrics"}

    async def dispatch(self, request: Request, call_next: Callable):
        if request.method == "OPTIONS":
            return await call_next(request)
        path = request.url.path
        normalized = path.rstrip("/") or "/"
        if (
            normalized in self.exempt_paths
            or not path.startswith(self.limited_prefix)
            or path.startswith(self.exempt_prefixes)
        ):
            return await call_next(request)

        client = resolve_client_key(
            request,
            trust_proxy_headers=self.app_settings.trust_proxy_headers,
            trusted_proxy_cidrs=self.app_settings.trusted_proxy_cidrs,
        )
        if not await self.limiter.allow(client):
            metrics.record_rate_limit_block()
            logger.warning(
                "rate_limit_blocked",
                extra={
                    "extra": {
                        "request_id": getattr(request.state, "request_id", None),
                        "limit": self.app_settings.rate_limit_requests,
                        "window_seconds": self.app_settings.rate_limit_window_seconds,
                    }
                },
            )
            return problem_details(
                request=request,
                status=429,
                title="Too Many Requests",
                detail="Muitas tentativas. Tente novamente em 15 minutos.",
                type_=PROBLEM_TYPE_RATE_LIMIT,
            )
        return await call_next(request)


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.app_env == "dev":
        return DEV_CORS_ORIGINS
    return []


def create_app(app_settings) -> FastAPI:
    configure_logging()
    services = build_app_services(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state_services = getattr(app.state, "services", None) or services
        app.state.services = state_services
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.rate_limiter = getattr(app.state, "rate_limiter", None) or state_services.rate_limiter
        app.state.metrics = getattr(app.state, "metrics", None) or state_services.metrics
        owns_asaas_client = getattr(app.state, "asaas_client", None) is None
        if owns_asaas_client:
            app.state.asaas_client = AsaasClient.from_settings(app.state.app_settings)
        app.state.activator_factory = (
            getattr(app.state, "activator_factory", None) or state_services.activator_factory
        )
        owns_database = getattr(app.state, "database", None) is None
        if owns_database:
            app.state.database = Database.from_settings(app.state.app_settings)
        logger.info("app_started", extra={"extra": {"app_env": app_settings.app_env}})
        yield
        await app.state.rate_limiter.close()
        if owns_asaas_client:
            await app.state.asaas_client.close()
            app.state.asaas_client = None
        if owns_database:
            await app.state.database.dispose()
            app.state.database = None

    app = FastAPI(title="Asaas Payments API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=services.metrics)
    app.add_middleware(RateLimitMiddleware, limiter=services.rate_limiter, app_settings=app_settings)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            message = error.get("msg", "Invalid value")
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.append({"field": field, "message": message})
        return problem_details(
            request=request,
            status=400,
            title="Validation Error",
            detail="Dados inválidos",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        error_type = type(exc).__name__
        update_log_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=500,
            error_type=error_type,
        )
        logger.exception(
            "unhandled_exception",
            extra={"request_id": request_id, "path": request.url.path, "error_type": error_type},
        )
        detail = str(exc) if app_settings.expose_error_details and str(exc) else "Erro interno do servidor"
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail=detail,
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(payments_router, prefix=app_settings.api_prefix)
    app.include_router(webhooks_router, prefix=app_settings.api_prefix)
    if app_settings.metrics_enabled:
        from payments_api.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)
    return app


app = create_app(settings)
