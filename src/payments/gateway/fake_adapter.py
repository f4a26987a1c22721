"""Configurable fake payment gateway for development and testing.

Hands out ``pi_fake_*`` intent ids without any external calls and records
every call it receives. It can be told to refuse intents and refunds, which
is how tests exercise gateway failures. Webhook signatures are accepted when
they equal ``signing_secret``.
"""

from decimal import Decimal
from uuid import uuid4

from payments.gateway.port import IntentResult, PaymentGateway, RefundResult


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, signing_secret: str = "test-signature") -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.signing_secret = signing_secret
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        order_id: str,
        idempotency_key: str,
    ) -> IntentResult:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": amount,
                "currency": currency,
                "order_id": order_id,
                "idempotency_key": idempotency_key,
            }
        )

        if self.should_succeed:
            intent_id = f"pi_fake_{uuid4().hex[:16]}"
            return IntentResult(
                success=True,
                intent_id=intent_id,
                client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            )
        return IntentResult(success=False, failure_reason=self.failure_reason)

    def create_refund(
        self,
        intent_id: str,
        amount: Decimal,
        reason: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "intent_id": intent_id,
                "amount": amount,
                "reason": reason,
            }
        )

        if self.should_succeed:
            return RefundResult(success=True, gateway_refund_id=f"re_fake_{uuid4().hex[:12]}")
        return RefundResult(success=False, failure_reason=self.failure_reason)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:  # noqa: ARG002
        return signature == self.signing_secret
