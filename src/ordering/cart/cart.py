"""Shopping cart: the holder of cart-scoped stock reservations.

Every cart item is backed by exactly one reservation held by the cart. At
checkout the reservations are re-parented to the new order and the cart is
marked converted; a user then gets a fresh cart on the next add.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import ForeignKey, Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from shared.database import Base, UTCDateTime, new_id, utcnow
from shared.exceptions import CartNotFound, PartialCartInvalid, ValidationError


class CartStatus(Enum):
    ACTIVE = "active"
    CONVERTED = "converted"


class CartItem(Base):
    __tablename__ = "cart_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    cart_id: Mapped[str] = mapped_column(String(36), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reservation_id: Mapped[str] = mapped_column(String(36), ForeignKey("stock_reservations.id"), nullable=False)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    cart: Mapped["Cart"] = relationship(back_populates="items")


class Cart(Base):
    __tablename__ = "carts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CartStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    items: Mapped[list[CartItem]] = relationship(
        back_populates="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by=CartItem.added_at,
    )

    @property
    def is_active(self) -> bool:
        return self.status == CartStatus.ACTIVE.value

    def assert_active(self) -> None:
        if not self.is_active:
            raise PartialCartInvalid({"cart_id": [f"Cart is already {self.status}"]}, cart_id=self.id)

    def add_item(self, product_id: str, quantity: int, reservation_id: str) -> CartItem:
        self.assert_active()
        item = CartItem(
            id=new_id(),
            product_id=product_id,
            quantity=quantity,
            reservation_id=reservation_id,
            added_at=utcnow(),
        )
        self.items.append(item)
        self.updated_at = utcnow()
        return item

    def remove_item(self, item_id: str) -> CartItem:
        self.assert_active()
        item = next((item for item in self.items if item.id == item_id), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})
        self.items.remove(item)
        self.updated_at = utcnow()
        return item

    def convert(self) -> None:
        self.assert_active()
        if not self.items:
            raise PartialCartInvalid({"cart": ["Cannot convert an empty cart to an order"]}, cart_id=self.id)
        self.status = CartStatus.CONVERTED.value
        self.updated_at = utcnow()


def get_cart(session: Session, cart_id: str, for_update: bool = False) -> Cart:
    query = select(Cart).where(Cart.id == cart_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    cart = session.execute(query).scalar_one_or_none()
    if cart is None:
        raise CartNotFound({"cart_id": ["Cart not found"]}, cart_id=cart_id)
    return cart


def active_cart_for(session: Session, user_id: str) -> Cart | None:
    query = (
        select(Cart)
        .where(Cart.user_id == user_id, Cart.status == CartStatus.ACTIVE.value)
        .order_by(Cart.created_at.desc())
        .limit(1)
        .with_for_update()
    )
    return session.execute(query).scalar_one_or_none()
