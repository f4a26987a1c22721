"""Refunds: command and handler.

Refunds a captured payment through the gateway and moves the order to
``refunded``. Sold units go back on the shelf only when the
restock-on-refund policy is enabled, either in settings or per request.
"""

from decimal import Decimal

import structlog
from pydantic import BaseModel

from inventory.stock.stock import lock_products
from ordering.order.order import Order, OrderTrigger, get_order
from payments.gateway import get_gateway
from payments.payment.payment import Payment, PaymentStatus, get_payment
from shared.config import get_settings
from shared.database import retry_on_conflict, unit_of_work
from shared.exceptions import InvalidTransition, PaymentGatewayError, PaymentNotFound

logger = structlog.get_logger(__name__)


class RefundOrder(BaseModel):
    order_id: str
    reason: str = "requested_by_customer"
    restock: bool | None = None  # Defaults to the configured policy


def _refundable_payment(order_id: str) -> tuple[str, Decimal]:
    with unit_of_work() as session:
        order = get_order(session, order_id)
        if not order.can_apply(OrderTrigger.REFUND):
            raise InvalidTransition(
                {"status": [f"Cannot refund an order in {order.status} state"]},
                order_id=order_id,
            )
        if not order.payment_id:
            raise PaymentNotFound({"payment_id": ["Order has no payment"]}, order_id=order_id)
        payment = get_payment(session, order.payment_id)
        if payment.current_status != PaymentStatus.SUCCEEDED:
            raise InvalidTransition(
                {"payment": [f"Cannot refund a payment in {payment.status} state"]},
                order_id=order_id,
            )
        return payment.external_intent_id, payment.amount


@retry_on_conflict
def _record_refund(order_id: str, reason: str, restock: bool) -> tuple[Order, Payment]:
    with unit_of_work() as session:
        order = get_order(session, order_id, for_update=True)
        order.apply(OrderTrigger.REFUND)
        payment = get_payment(session, order.payment_id, for_update=True)
        payment.record_cancellation(f"Refunded: {reason}")

        if restock:
            products = lock_products(session, [item.product_id for item in order.items])
            for item in order.items:
                product = products[item.product_id]
                if product.track_inventory:
                    product.receive(item.quantity, reference_id=order.id, notes="Restocked after refund")
    return order, payment


def refund_order(command: RefundOrder) -> Order:
    restock = get_settings().restock_on_refund if command.restock is None else command.restock
    intent_id, amount = _refundable_payment(command.order_id)

    result = get_gateway().create_refund(intent_id=intent_id, amount=amount, reason=command.reason)
    if not result.success:
        logger.warning("Gateway refused refund", order_id=command.order_id, reason=result.failure_reason)
        raise PaymentGatewayError(
            {"gateway": [result.failure_reason or "Payment gateway refused the refund"]},
            order_id=command.order_id,
        )

    order, payment = _record_refund(command.order_id, command.reason, restock)
    logger.info(
        "Order refunded",
        order_id=order.id,
        payment_id=payment.id,
        gateway_refund_id=result.gateway_refund_id,
        restocked=restock,
    )
    return order
