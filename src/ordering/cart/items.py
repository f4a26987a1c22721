"""Cart item management: commands and handlers.

Adding an item reserves stock for the cart in the same transaction, so a
cart never shows an item whose stock is not held. Removing an item releases
its reservation.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog
from pydantic import BaseModel

from inventory.stock import reservation as reservations
from inventory.stock.stock import HolderType
from ordering.cart.cart import Cart, active_cart_for, get_cart
from shared.database import new_id, retry_on_conflict, unit_of_work, utcnow
from shared.exceptions import AlreadyTerminal, ValidationError

logger = structlog.get_logger(__name__)


class AddToCart(BaseModel):
    user_id: str
    product_id: str
    quantity: int
    cart_id: str | None = None  # Optional; defaults to the user's active cart


class RemoveFromCart(BaseModel):
    cart_id: str
    item_id: str


@dataclass(frozen=True)
class CartLine:
    cart_id: str
    item_id: str
    product_id: str
    quantity: int
    reservation_id: str
    expires_at: datetime


def _cart_for(session, command: AddToCart) -> Cart:
    if command.cart_id:
        cart = get_cart(session, command.cart_id, for_update=True)
        if cart.user_id != command.user_id:
            raise ValidationError({"cart_id": ["Cart belongs to another user"]})
        cart.assert_active()
        return cart

    cart = active_cart_for(session, command.user_id)
    if cart is None:
        now = utcnow()
        cart = Cart(id=new_id(), user_id=command.user_id, created_at=now, updated_at=now)
        session.add(cart)
        session.flush()
        logger.info("Cart created", cart_id=cart.id, user_id=command.user_id)
    return cart


@retry_on_conflict
def add_to_cart(command: AddToCart) -> CartLine:
    with unit_of_work() as session:
        cart = _cart_for(session, command)
        reservation = reservations.reserve(
            session,
            product_id=command.product_id,
            holder_id=cart.id,
            quantity=command.quantity,
            holder_type=HolderType.CART,
        )
        session.flush()
        item = cart.add_item(command.product_id, command.quantity, reservation.id)

    logger.info(
        "Item added to cart",
        cart_id=cart.id,
        product_id=command.product_id,
        quantity=command.quantity,
        reservation_id=reservation.id,
    )
    return CartLine(
        cart_id=cart.id,
        item_id=item.id,
        product_id=item.product_id,
        quantity=item.quantity,
        reservation_id=reservation.id,
        expires_at=reservation.expires_at,
    )


@retry_on_conflict
def remove_from_cart(command: RemoveFromCart) -> None:
    with unit_of_work() as session:
        cart = get_cart(session, command.cart_id, for_update=True)
        item = cart.remove_item(command.item_id)
        try:
            reservations.cancel(session, item.reservation_id, reason="Removed from cart")
        except AlreadyTerminal:
            # Already reclaimed by the sweeper; the item just goes away.
            logger.info("Cart item hold already closed", reservation_id=item.reservation_id)

    logger.info("Item removed from cart", cart_id=command.cart_id, item_id=command.item_id)
