import json

from starlette.requests import Request

from payments_api.api.problem_details import PROBLEM_TYPE_UPSTREAM, problem_details, problem_type
from payments_api.main import app


class _UnreachableDatabase:
    def session(self):
        raise OSError("connection refused")


def test_healthz_is_static(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_healthz_head(client):
    response = client.head("/healthz")

    assert response.status_code == 200


def test_health_reports_connected_database(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "OK"
    assert data["database"] == "connected"
    assert data["message"] == "Servidor funcionando"
    assert data["timestamp"]


def test_health_reports_unreachable_database(client):
    database = app.state.database
    app.state.database = _UnreachableDatabase()
    try:
        response = client.get("/health")
    finally:
        app.state.database = database

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "ERROR"
    assert data["database"] == "disconnected"
    assert data["reason"] == "OSError"


def test_responses_carry_request_id_and_security_headers(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_problem_details_echo_request_id(client):
    response = client.get("/api/payment-status/999", headers={"X-Request-ID": "req-404"})

    assert response.status_code == 404
    body = response.json()
    assert body["request_id"] == "req-404"
    assert body["type"].endswith("/not-found")
    assert body["title"] == "Not Found"


def _bare_request(headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers or []})


def test_problem_details_default_type_and_title_follow_status():
    request = _bare_request([(b"x-request-id", b"req-502")])

    response = problem_details(request, status=502, title=None, detail="Asaas fora")

    body = json.loads(response.body)
    assert response.media_type == "application/problem+json"
    assert response.headers["X-Request-ID"] == "req-502"
    assert body == {
        "type": PROBLEM_TYPE_UPSTREAM,
        "title": "Bad Gateway",
        "status": 502,
        "detail": "Asaas fora",
        "request_id": "req-502",
        "errors": [],
    }


def test_problem_details_explicit_type_wins_and_unknown_status_falls_back():
    request = _bare_request()

    conflict = json.loads(
        problem_details(
            request, status=409, title="Conflito", detail="x", type_=problem_type("customer-conflict")
        ).body
    )
    unknown = json.loads(problem_details(request, status=599, title=None, detail="y").body)

    assert conflict["type"].endswith("/customer-conflict")
    assert conflict["title"] == "Conflito"
    assert unknown["type"].endswith("/server-error")
    assert unknown["title"] == "Error"
    assert conflict["request_id"] == unknown["request_id"]
