import hashlib
import hmac

from payments_api.domain.errors import AuthenticationError

SIGNATURE_HEADER = "asaas-signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, provided: str | None, secret: str) -> None:
    """Raise AuthenticationError unless `provided` is the HMAC-SHA256 hex of the raw body."""
    if not provided:
        raise AuthenticationError(detail="Assinatura do webhook ausente")
    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected, provided.strip().lower()):
        raise AuthenticationError(detail="Assinatura do webhook inválida")
