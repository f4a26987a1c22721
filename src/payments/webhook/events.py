"""Typed gateway events.

Raw payloads are parsed into one closed set of event models, discriminated
on the event type. Anything outside the set is ``UnknownEventType`` and is
never dispatched.

Payload shape (Stripe style)::

    {
        "id": "evt_...",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_...", "amount": 2500, "currency": "usd"}}
    }
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PayloadError

from shared.exceptions import ValidationError

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_CANCELED = "payment_intent.canceled"
PAYMENT_PROCESSING = "payment_intent.processing"

KNOWN_EVENT_TYPES = frozenset({PAYMENT_SUCCEEDED, PAYMENT_FAILED, PAYMENT_CANCELED, PAYMENT_PROCESSING})


class UnknownEventType(ValidationError):
    code = "unknown_event_type"


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PaymentError(_Lenient):
    code: str | None = None
    message: str | None = None


class IntentObject(_Lenient):
    id: str
    amount: int | None = None  # minor units
    currency: str | None = None
    last_payment_error: PaymentError | None = None
    cancellation_reason: str | None = None


class EventData(_Lenient):
    object: IntentObject


class PaymentIntentSucceeded(_Lenient):
    type: Literal["payment_intent.succeeded"]
    data: EventData

    @property
    def intent_id(self) -> str:
        return self.data.object.id


class PaymentIntentFailed(_Lenient):
    type: Literal["payment_intent.payment_failed"]
    data: EventData

    @property
    def intent_id(self) -> str:
        return self.data.object.id

    @property
    def reason(self) -> str:
        error = self.data.object.last_payment_error
        if error and error.message:
            return error.message
        return "Payment failed"


class PaymentIntentCanceled(_Lenient):
    type: Literal["payment_intent.canceled"]
    data: EventData

    @property
    def intent_id(self) -> str:
        return self.data.object.id

    @property
    def reason(self) -> str:
        return self.data.object.cancellation_reason or "Payment canceled"


class PaymentIntentProcessing(_Lenient):
    """The customer confirmed the intent; the outcome is still pending."""

    type: Literal["payment_intent.processing"]
    data: EventData

    @property
    def intent_id(self) -> str:
        return self.data.object.id


PaymentEvent = Annotated[
    Union[PaymentIntentSucceeded, PaymentIntentFailed, PaymentIntentCanceled, PaymentIntentProcessing],
    Field(discriminator="type"),
]

_payment_event_adapter = TypeAdapter(PaymentEvent)


def parse_event(event_type: str, payload: dict) -> PaymentEvent:
    """Parse a raw payload; raises ``UnknownEventType`` or ``ValidationError``."""
    if event_type not in KNOWN_EVENT_TYPES:
        raise UnknownEventType({"type": [f"Unhandled event type {event_type}"]}, event_type=event_type)
    if not isinstance(payload, dict):
        raise ValidationError({"payload": ["Payload must be a JSON object"]}, event_type=event_type)
    try:
        return _payment_event_adapter.validate_python({**payload, "type": event_type})
    except PayloadError as exc:
        raise ValidationError({"payload": [str(exc)]}, event_type=event_type) from exc
