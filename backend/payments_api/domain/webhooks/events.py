from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from payments_api.domain.errors import MalformedEventError
from payments_api.domain.webhooks.transitions import EVENT_TRANSITIONS


class PaymentRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    status: str | None = None


class _PaymentEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payment: PaymentRef

    @property
    def payment_id(self) -> str:
        return self.payment.id


class PaymentCreatedEvent(_PaymentEvent):
    event: Literal["PAYMENT_CREATED"]


class PaymentAwaitingConfirmationEvent(_PaymentEvent):
    event: Literal["PAYMENT_AWAITING_CONFIRMATION"]


class PaymentConfirmedEvent(_PaymentEvent):
    event: Literal["PAYMENT_CONFIRMED"]


class PaymentReceivedEvent(_PaymentEvent):
    event: Literal["PAYMENT_RECEIVED"]


class PaymentOverdueEvent(_PaymentEvent):
    event: Literal["PAYMENT_OVERDUE"]


class PaymentDeletedEvent(_PaymentEvent):
    event: Literal["PAYMENT_DELETED"]


class PaymentRestoredEvent(_PaymentEvent):
    event: Literal["PAYMENT_RESTORED"]


class PaymentRefundedEvent(_PaymentEvent):
    event: Literal["PAYMENT_REFUNDED"]


PaymentEvent = Annotated[
    Union[
        PaymentCreatedEvent,
        PaymentAwaitingConfirmationEvent,
        PaymentConfirmedEvent,
        PaymentReceivedEvent,
        PaymentOverdueEvent,
        PaymentDeletedEvent,
        PaymentRestoredEvent,
        PaymentRefundedEvent,
    ],
    Field(discriminator="event"),
]

_EVENT_ADAPTER: TypeAdapter[PaymentEvent] = TypeAdapter(PaymentEvent)

KNOWN_EVENT_TYPES = frozenset(EVENT_TRANSITIONS)


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_type: str | None
    payment_id: str | None


def extract_event_type(payload: dict[str, Any]) -> str | None:
    event_type = payload.get("event")
    return event_type if isinstance(event_type, str) else None


def extract_payment_id(payload: dict[str, Any]) -> str | None:
    payment = payload.get("payment")
    if not isinstance(payment, dict):
        return None
    payment_id = payment.get("id")
    return payment_id if isinstance(payment_id, str) and payment_id else None


def parse_event(payload: dict[str, Any]) -> PaymentEvent | UnrecognizedEvent:
    event_type = extract_event_type(payload)
    if event_type not in KNOWN_EVENT_TYPES:
        return UnrecognizedEvent(event_type=event_type, payment_id=extract_payment_id(payload))
    try:
        return _EVENT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"][1:]) or "body", "message": error["msg"]}
            for error in exc.errors()
        ]
        raise MalformedEventError(
            detail=f"Evento {event_type} com formato inválido",
            errors=errors,
        ) from exc
