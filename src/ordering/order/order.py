"""Order aggregate and its state machine.

State machine:
    CART -> PENDING_PAYMENT -> PAYMENT_PROCESSING -> PAID -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING_PAYMENT | PAYMENT_PROCESSING -> CANCELLED
    PAID | PROCESSING | SHIPPED | DELIVERED -> REFUNDED

Every status change goes through ``Order.apply`` which consults one table of
(status, trigger) pairs. A pair missing from the table is an invalid
transition. Order total and item prices are snapshotted at creation and never
change afterwards.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Integer, Numeric, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from shared.database import Base, UTCDateTime, new_id, utcnow
from shared.exceptions import InvalidTransition, OrderNotFound, ValidationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    CART = "cart"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_PROCESSING = "payment_processing"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderTrigger(Enum):
    CHECKOUT = "checkout"
    INITIATE_PAYMENT = "initiate_payment"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    START_PROCESSING = "start_processing"
    SHIP = "ship"
    DELIVER = "deliver"
    REFUND = "refund"


_TRANSITIONS = {
    (OrderStatus.CART, OrderTrigger.CHECKOUT): OrderStatus.PENDING_PAYMENT,
    (OrderStatus.PENDING_PAYMENT, OrderTrigger.INITIATE_PAYMENT): OrderStatus.PAYMENT_PROCESSING,
    # A succeeded event can land before we saw the intent being processed
    (OrderStatus.PENDING_PAYMENT, OrderTrigger.PAYMENT_SUCCEEDED): OrderStatus.PAID,
    (OrderStatus.PAYMENT_PROCESSING, OrderTrigger.PAYMENT_SUCCEEDED): OrderStatus.PAID,
    (OrderStatus.PENDING_PAYMENT, OrderTrigger.PAYMENT_FAILED): OrderStatus.CANCELLED,
    (OrderStatus.PAYMENT_PROCESSING, OrderTrigger.PAYMENT_FAILED): OrderStatus.CANCELLED,
    (OrderStatus.PENDING_PAYMENT, OrderTrigger.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PAYMENT_PROCESSING, OrderTrigger.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PAID, OrderTrigger.START_PROCESSING): OrderStatus.PROCESSING,
    (OrderStatus.PROCESSING, OrderTrigger.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderTrigger.DELIVER): OrderStatus.DELIVERED,
    (OrderStatus.PAID, OrderTrigger.REFUND): OrderStatus.REFUNDED,
    (OrderStatus.PROCESSING, OrderTrigger.REFUND): OrderStatus.REFUNDED,
    (OrderStatus.SHIPPED, OrderTrigger.REFUND): OrderStatus.REFUNDED,
    (OrderStatus.DELIVERED, OrderTrigger.REFUND): OrderStatus.REFUNDED,
}

# Admin status updates may only walk the fulfilment chain one step at a time
ADMIN_TRIGGERS = {
    OrderStatus.PROCESSING: OrderTrigger.START_PROCESSING,
    OrderStatus.SHIPPED: OrderTrigger.SHIP,
    OrderStatus.DELIVERED: OrderTrigger.DELIVER,
}

# Statuses in which the payment has been captured
SETTLED_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.REFUNDED,
    }
)

AWAITING_PAYMENT_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_PROCESSING})


def next_status(current: OrderStatus, trigger: OrderTrigger) -> OrderStatus:
    """Look up the status ``trigger`` leads to from ``current``."""
    target = _TRANSITIONS.get((current, trigger))
    if target is None:
        raise InvalidTransition(
            {"status": [f"Cannot {trigger.value.replace('_', ' ')} an order in {current.value} state"]},
            current=current.value,
            trigger=trigger.value,
        )
    return target


def allowed_edges() -> set[tuple[OrderStatus, OrderStatus]]:
    return {(current, target) for (current, _), target in _TRANSITIONS.items()}


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship(back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    cart_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("carts.id"))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=OrderStatus.CART.value)
    payment_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by=OrderItem.product_id,
    )

    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def add_item(self, product_id: str, quantity: int, price: Decimal) -> OrderItem:
        """Snapshot one line; only allowed before checkout."""
        if self.current_status != OrderStatus.CART:
            raise InvalidTransition({"items": ["Items are frozen once the order is placed"]})
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        item = OrderItem(id=new_id(), product_id=product_id, quantity=quantity, price=price)
        self.items.append(item)
        return item

    def place(self) -> None:
        """Freeze items and total, moving the order out of the cart state."""
        if not self.items:
            raise ValidationError({"items": ["An order needs at least one item"]})
        self.total = sum((item.line_total for item in self.items), Decimal("0.00")).quantize(Decimal("0.01"))
        self.apply(OrderTrigger.CHECKOUT)

    def apply(self, trigger: OrderTrigger) -> OrderStatus:
        """Move to the status ``trigger`` leads to, or raise ``InvalidTransition``."""
        self.status = next_status(self.current_status, trigger).value
        self.updated_at = utcnow()
        return self.current_status

    def can_apply(self, trigger: OrderTrigger) -> bool:
        return (self.current_status, trigger) in _TRANSITIONS


def get_order(session: Session, order_id: str, for_update: bool = False) -> Order:
    query = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    order = session.execute(query).scalar_one_or_none()
    if order is None:
        raise OrderNotFound({"order_id": ["Order not found"]}, order_id=order_id)
    return order


def list_orders(
    session: Session,
    user_id: str | None = None,
    status: OrderStatus | None = None,
    limit: int = 100,
) -> list[Order]:
    """Orders newest first, optionally narrowed to one customer or one status."""
    query = select(Order).order_by(Order.created_at.desc(), Order.id).limit(max(1, min(limit, 500)))
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    if status is not None:
        query = query.where(Order.status == status.value)
    return list(session.scalars(query))
