"""Payment gateway port (abstract interface).

The core never talks to a payment provider directly. Checkout asks the port
for a payment intent, refunds go through it, and the webhook adapter uses it
to authenticate incoming events. The outcome of a payment always arrives
later as a webhook.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class IntentResult:
    """Result of asking the gateway for a payment intent."""

    success: bool
    intent_id: str | None = None
    client_secret: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        order_id: str,
        idempotency_key: str,
    ) -> IntentResult:
        """Open a payment intent the client can confirm."""
        ...

    @abstractmethod
    def create_refund(
        self,
        intent_id: str,
        amount: Decimal,
        reason: str,
    ) -> RefundResult:
        """Refund a captured intent."""
        ...

    @abstractmethod
    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
