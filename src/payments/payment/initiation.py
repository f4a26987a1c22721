"""Payment initiation: command and handler.

Asks the gateway for a payment intent for a placed order, then records a
pending Payment and moves the order to ``payment_processing``. The outcome
arrives later through the webhook.
"""

from dataclasses import dataclass
from decimal import Decimal

import structlog
from pydantic import BaseModel

from ordering.order.order import OrderTrigger, get_order
from payments.gateway import get_gateway
from payments.payment.payment import Payment, PaymentStatus
from shared.config import get_settings
from shared.database import new_id, retry_on_conflict, unit_of_work, utcnow
from shared.exceptions import InvalidTransition, PaymentGatewayError

logger = structlog.get_logger(__name__)


class InitiatePayment(BaseModel):
    """Start paying for an order."""

    order_id: str
    currency: str | None = None  # Defaults to the configured currency


@dataclass(frozen=True)
class PaymentIntent:
    payment_id: str
    order_id: str
    intent_id: str
    client_secret: str | None
    amount: Decimal
    currency: str
    status: str


def _amount_due(order_id: str) -> Decimal:
    with unit_of_work() as session:
        order = get_order(session, order_id)
        if not order.can_apply(OrderTrigger.INITIATE_PAYMENT):
            raise InvalidTransition(
                {"status": [f"Cannot pay for an order in {order.status} state"]},
                order_id=order_id,
            )
        return order.total


@retry_on_conflict
def _record_intent(order_id: str, intent_id: str, amount: Decimal, currency: str) -> Payment:
    with unit_of_work() as session:
        order = get_order(session, order_id, for_update=True)
        order.apply(OrderTrigger.INITIATE_PAYMENT)

        now = utcnow()
        payment = Payment(
            id=new_id(),
            order_id=order.id,
            external_intent_id=intent_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        session.add(payment)
        order.payment_id = payment.id
    return payment


def initiate_payment(command: InitiatePayment) -> PaymentIntent:
    currency = (command.currency or get_settings().default_currency).lower()
    amount = _amount_due(command.order_id)

    result = get_gateway().create_payment_intent(
        amount=amount,
        currency=currency,
        order_id=command.order_id,
        idempotency_key=f"order-{command.order_id}",
    )
    if not result.success:
        logger.warning("Gateway refused payment intent", order_id=command.order_id, reason=result.failure_reason)
        raise PaymentGatewayError(
            {"gateway": [result.failure_reason or "Payment gateway refused the request"]},
            order_id=command.order_id,
        )

    payment = _record_intent(command.order_id, result.intent_id, amount, currency)
    logger.info(
        "Payment initiated",
        order_id=command.order_id,
        payment_id=payment.id,
        intent_id=result.intent_id,
        amount=str(amount),
        currency=currency,
    )
    return PaymentIntent(
        payment_id=payment.id,
        order_id=payment.order_id,
        intent_id=payment.external_intent_id,
        client_secret=result.client_secret,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
    )
