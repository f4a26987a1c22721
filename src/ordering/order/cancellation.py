"""Order cancellation by the customer before payment completes."""

import structlog
from pydantic import BaseModel

from ordering.order.holds import release_holds
from ordering.order.order import Order, OrderTrigger, get_order
from payments.payment.payment import PaymentStatus, get_payment
from shared.database import retry_on_conflict, unit_of_work

logger = structlog.get_logger(__name__)


class CancelOrder(BaseModel):
    order_id: str
    reason: str = "Cancelled by customer"


@retry_on_conflict
def cancel_order(command: CancelOrder) -> Order:
    with unit_of_work() as session:
        order = get_order(session, command.order_id, for_update=True)
        order.apply(OrderTrigger.CANCEL)

        if order.payment_id:
            payment = get_payment(session, order.payment_id, for_update=True)
            if payment.current_status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
                payment.record_cancellation(command.reason)

        released = release_holds(session, order, reason=command.reason)

    logger.info("Order cancelled", order_id=order.id, released_holds=released, reason=command.reason)
    return order
