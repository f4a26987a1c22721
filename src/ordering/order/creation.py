"""Order creation: converting a cart into an order.

The whole conversion is one transaction. Every cart hold is re-parented to
the new order (with a fresh expiry window for payment); a hold the sweeper
already reclaimed is re-reserved against current availability. If anything
does not fit, nothing changes and the cart stays usable.
"""

from collections import defaultdict

import structlog
from pydantic import BaseModel

from inventory.stock import reservation as reservations
from inventory.stock.stock import HolderType, get_reservation, lock_products
from ordering.cart.cart import get_cart
from ordering.order.order import Order, OrderStatus
from shared.database import new_id, retry_on_conflict, unit_of_work, utcnow
from shared.exceptions import PartialCartInvalid, ProductNotFound, ValidationError

logger = structlog.get_logger(__name__)


class CreateOrder(BaseModel):
    """Place an order for everything in a cart."""

    cart_id: str
    user_id: str | None = None  # When given, must own the cart


@retry_on_conflict
def create_order(command: CreateOrder) -> Order:
    with unit_of_work() as session:
        cart = get_cart(session, command.cart_id, for_update=True)
        if command.user_id is not None and cart.user_id != command.user_id:
            raise ValidationError({"cart_id": ["Cart belongs to another user"]})
        cart.assert_active()
        if not cart.items:
            raise PartialCartInvalid({"cart": ["Cart is empty"]}, cart_id=cart.id)

        try:
            products = lock_products(session, [item.product_id for item in cart.items])
        except ProductNotFound as exc:
            raise PartialCartInvalid(
                {"items": ["Cart refers to a product that no longer exists"]},
                cart_id=cart.id,
                **exc.context,
            ) from exc

        now = utcnow()
        order = Order(
            id=new_id(),
            user_id=cart.user_id,
            cart_id=cart.id,
            status=OrderStatus.CART.value,
            created_at=now,
            updated_at=now,
        )
        session.add(order)

        quantities: dict[str, int] = defaultdict(int)
        for item in cart.items:
            quantities[item.product_id] += item.quantity
            hold = get_reservation(session, item.reservation_id)
            if hold.is_active:
                reservations.transfer(session, hold.id, order.id, HolderType.ORDER)
            else:
                reservations.reserve(
                    session,
                    product_id=item.product_id,
                    holder_id=order.id,
                    quantity=item.quantity,
                    holder_type=HolderType.ORDER,
                )
                logger.info(
                    "Lapsed cart hold re-reserved at checkout",
                    cart_id=cart.id,
                    product_id=item.product_id,
                    previous_status=hold.status,
                )

        for product_id in sorted(quantities):
            order.add_item(product_id, quantities[product_id], products[product_id].price)
        order.place()
        cart.convert()

    logger.info(
        "Order created",
        order_id=order.id,
        cart_id=command.cart_id,
        total=str(order.total),
        item_count=len(order.items),
    )
    return order
