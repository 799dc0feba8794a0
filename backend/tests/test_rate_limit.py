import anyio
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from payments_api.infra.db import Database
from payments_api.infra.security import InMemoryRateLimiter, resolve_client_key
from payments_api.main import create_app
from payments_api.settings import settings


@pytest.fixture()
def limited_client(test_engine, fake_asaas):
    limited_app = create_app(settings.model_copy(update={"rate_limit_requests": 2}))
    limited_app.state.database = Database(test_engine)
    limited_app.state.asaas_client = fake_asaas
    with TestClient(limited_app) as test_client:
        yield test_client


def _request(client_host: str, forwarded_for: str | None = None) -> Request:
    headers = []
    if forwarded_for is not None:
        headers.append((b"x-forwarded-for", forwarded_for.encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers, "client": (client_host, 5000)})


def test_api_requests_beyond_limit_get_429(limited_client):
    assert limited_client.get("/api/payments").status_code == 200
    assert limited_client.get("/api/payments").status_code == 200

    blocked = limited_client.get("/api/payments")

    assert blocked.status_code == 429
    body = blocked.json()
    assert body["detail"] == "Muitas tentativas. Tente novamente em 15 minutos."
    assert body["type"].endswith("/rate-limit")


def test_webhooks_and_health_are_not_limited(limited_client):
    for _ in range(4):
        assert limited_client.get("/healthz").status_code == 200
        response = limited_client.post(
            "/api/webhook/asaas", json={"event": "PAYMENT_UPDATED", "payment": {"id": "pay_1"}}
        )
        assert response.status_code == 200

    assert limited_client.get("/api/payments").status_code == 200


def test_limiter_window_is_per_key():
    limiter = InMemoryRateLimiter(limit=1, window_seconds=60)

    async def _run():
        return [
            await limiter.allow("10.0.0.1"),
            await limiter.allow("10.0.0.1"),
            await limiter.allow("10.0.0.2"),
        ]

    assert anyio.run(_run) == [True, False, True]


def test_limiter_reset_clears_history():
    limiter = InMemoryRateLimiter(limit=1, window_seconds=60)

    async def _run():
        await limiter.allow("10.0.0.1")
        await limiter.reset()
        return await limiter.allow("10.0.0.1")

    assert anyio.run(_run) is True


def test_forwarded_for_ignored_without_trust():
    request = _request("10.0.0.2", "203.0.113.5")

    assert resolve_client_key(request, trust_proxy_headers=False, trusted_proxy_cidrs=["10.0.0.0/8"]) == "10.0.0.2"


def test_forwarded_for_used_from_trusted_proxy():
    request = _request("10.0.0.2", "203.0.113.5, 10.0.0.1")

    assert resolve_client_key(request, trust_proxy_headers=True, trusted_proxy_cidrs=["10.0.0.0/8"]) == "203.0.113.5"


def test_forwarded_for_ignored_from_untrusted_peer():
    request = _request("198.51.100.7", "203.0.113.5")

    assert (
        resolve_client_key(request, trust_proxy_headers=True, trusted_proxy_cidrs=["10.0.0.0/8"]) == "198.51.100.7"
    )


def test_invalid_forwarded_for_falls_back_to_peer():
    request = _request("10.0.0.2", "not-an-ip")

    assert resolve_client_key(request, trust_proxy_headers=True, trusted_proxy_cidrs=["10.0.0.0/8"]) == "10.0.0.2"
