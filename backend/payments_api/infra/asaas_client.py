import logging
from typing import Any

import httpx

from payments_api.infra.metrics import metrics
from payments_api.settings import Settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """A single gateway round-trip failed; never retried."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class AsaasClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "access_token": api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, app_settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "AsaasClient":
        return cls(
            base_url=app_settings.asaas_api_url,
            api_key=app_settings.asaas_api_key or "",
            timeout_seconds=app_settings.asaas_timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def create_customer(self, identity: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/customers", operation="create_customer", json=identity)

    async def create_payment(self, payment_spec: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/payments", operation="create_payment", json=payment_spec)

    async def get_payment(self, gateway_payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{gateway_payment_id}", operation="get_payment")

    async def get_pix_qr_code(self, gateway_payment_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", f"/payments/{gateway_payment_id}/pixQrCode", operation="get_pix_qr_code"
        )

    async def _request(self, method: str, path: str, *, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            metrics.record_gateway_error(operation)
            logger.warning(
                "asaas_request_failed",
                extra={"extra": {"operation": operation, "error": type(exc).__name__}},
            )
            raise GatewayError(str(exc) or type(exc).__name__) from exc

        body = _decode_body(response)
        if response.status_code >= 400:
            metrics.record_gateway_error(operation)
            logger.warning(
                "asaas_request_rejected",
                extra={"extra": {"operation": operation, "status_code": response.status_code}},
            )
            raise GatewayError(
                _error_message(body) or f"Asaas returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        if not isinstance(body, dict):
            metrics.record_gateway_error(operation)
            raise GatewayError(
                "Asaas returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            )
        return body


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None if not response.content else response.text


def _error_message(body: Any) -> str | None:
    # Asaas reports failures as {"errors": [{"code": ..., "description": ...}]}
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict) and first.get("description"):
                return str(first["description"])
    return None
