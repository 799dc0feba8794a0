PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
RECEIVED = "RECEIVED"
OVERDUE = "OVERDUE"
CANCELLED = "CANCELLED"
REFUNDED = "REFUNDED"

STATUSES = {PENDING, CONFIRMED, RECEIVED, OVERDUE, CANCELLED, REFUNDED}

PIX = "PIX"
CREDIT_CARD = "CREDIT_CARD"

PAYMENT_METHODS = {PIX, CREDIT_CARD}

ESSENCIAL = "ESSENCIAL"
COMPLETO = "COMPLETO"

PLAN_TYPES = {ESSENCIAL, COMPLETO}

# Allowed moves under TRANSITION_POLICY=strict. CANCELLED -> PENDING is a restore.
LIFECYCLE = {
    PENDING: {CONFIRMED, RECEIVED, OVERDUE, CANCELLED},
    CONFIRMED: {RECEIVED, CANCELLED},
    OVERDUE: {CONFIRMED, RECEIVED, CANCELLED},
    RECEIVED: {REFUNDED, CANCELLED},
    CANCELLED: {PENDING},
    REFUNDED: {CANCELLED},
}


def normalize_status(value: str) -> str:
    upper = value.strip().upper()
    if upper not in STATUSES:
        raise ValueError("Invalid payment status")
    return upper


def is_known_status(value: str | None) -> bool:
    return bool(value) and value.upper() in STATUSES


def is_lifecycle_transition(current: str, target: str) -> bool:
    return target in LIFECYCLE.get(current, set())
