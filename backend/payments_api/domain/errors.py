from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None
    status_code: int = 400

    def __str__(self) -> str:
        return self.detail


@dataclass
class ValidationFailedError(DomainError):
    title: str = "Validation Error"
    type: str = "https://example.com/problems/validation-error"
    status_code: int = 400


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = "https://example.com/problems/not-found"
    status_code: int = 404


@dataclass
class AuthenticationError(DomainError):
    title: str = "Unauthorized"
    type: str = "https://example.com/problems/unauthorized"
    status_code: int = 401


@dataclass
class CustomerConflictError(DomainError):
    """Email and CPF resolve to two different stored customers."""

    title: str = "Customer Conflict"
    type: str = "https://example.com/problems/customer-conflict"
    status_code: int = 409


@dataclass
class UpstreamGatewayError(DomainError):
    title: str = "Payment Gateway Error"
    type: str = "https://example.com/problems/upstream-gateway"
    status_code: int = 500


@dataclass
class UpstreamCustomerCreationError(UpstreamGatewayError):
    detail: str = "Falha ao criar cliente no Asaas"


@dataclass
class UpstreamPaymentCreationError(UpstreamGatewayError):
    detail: str = "Falha ao criar pagamento no Asaas"


@dataclass
class MalformedEventError(DomainError):
    title: str = "Malformed Webhook Event"
    type: str = "https://example.com/problems/malformed-event"
    status_code: int = 400


@dataclass
class PaymentProcessingError(DomainError):
    detail: str = "Erro ao processar pagamento"
    title: str = "Payment Processing Error"
    type: str = "https://example.com/problems/payment-processing"
    status_code: int = 500


@dataclass
class GatewayUnavailableError(DomainError):
    detail: str = "Erro ao consultar o gateway de pagamento"
    title: str = "Bad Gateway"
    type: str = "https://example.com/problems/upstream-gateway"
    status_code: int = 502
