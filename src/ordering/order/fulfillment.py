"""Fulfilment status updates made by administrators."""

import structlog
from pydantic import BaseModel

from ordering.order.order import ADMIN_TRIGGERS, Order, OrderStatus, get_order
from shared.database import retry_on_conflict, unit_of_work
from shared.exceptions import InvalidTransition

logger = structlog.get_logger(__name__)


class UpdateOrderStatus(BaseModel):
    """Advance a paid order along processing -> shipped -> delivered."""

    order_id: str
    status: OrderStatus


@retry_on_conflict
def update_order_status(command: UpdateOrderStatus) -> Order:
    trigger = ADMIN_TRIGGERS.get(command.status)
    if trigger is None:
        raise InvalidTransition(
            {"status": [f"Status {command.status.value} cannot be set directly"]},
            order_id=command.order_id,
        )

    with unit_of_work() as session:
        order = get_order(session, command.order_id, for_update=True)
        previous = order.status
        order.apply(trigger)

    logger.info("Order status updated", order_id=order.id, previous=previous, status=order.status)
    return order
