"""Product stock and reservations: the core of the inventory context.

Stock model:
    stock:     physical on-hand count, never negative
    reserved:  sum of active tracked reservations
    available: stock - reserved (what can still be promised)

A reservation holds availability for a cart or an order until it is
committed (sold), released (cancelled) or expired by the sweeper. Only
``ACTIVE`` reservations can change and every transition is one-way.

Every mutation here appends to the inventory ledger through the product's own
session. Callers must hold the product row lock (see ``lock_product``) for
the whole transaction so that availability checks and ledger order are
serialised per product.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, object_session

from inventory.ledger import ledger
from inventory.ledger.ledger import ChangeType
from shared.config import get_settings
from shared.database import Base, UTCDateTime, new_id, utcnow
from shared.exceptions import (
    AlreadyTerminal,
    InsufficientStock,
    ProductNotFound,
    ReservationExpired,
    ReservationNotFound,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ReservationStatus(Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    RELEASED = "released"
    EXPIRED = "expired"


class HolderType(Enum):
    CART = "cart"
    ORDER = "order"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class StockReservation(Base):
    """A temporary hold on a product's availability."""

    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_reservations_status_expires", "status", "expires_at"),
        Index("ix_reservations_holder", "holder_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    holder_id: Mapped[str] = mapped_column(String(36), nullable=False)
    holder_type: Mapped[str] = mapped_column(String(10), nullable=False, default=HolderType.CART.value)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReservationStatus.ACTIVE.value)
    reserved_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE.value

    def is_past_due(self, as_of: datetime) -> bool:
        return self.expires_at < as_of


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_product_reserved_non_negative"),
        CheckConstraint("reserved <= stock", name="ck_product_reserved_within_stock"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    track_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __mapper_args__ = {"version_id_col": version}

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def available(self) -> int:
        return self.stock - self.reserved

    @property
    def is_low_stock(self) -> bool:
        return self.track_inventory and self.available < self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.track_inventory and self.available <= 0

    def _session(self) -> Session:
        session = object_session(self)
        if session is None:
            raise RuntimeError(f"Product {self.id} is not attached to a session")
        return session

    def _touch(self) -> datetime:
        now = utcnow()
        self.updated_at = now
        return now

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def reserve(
        self,
        holder_id: str,
        quantity: int,
        holder_type: HolderType = HolderType.CART,
        expires_at: datetime | None = None,
    ) -> StockReservation:
        """Hold ``quantity`` units for ``holder_id``.

        Untracked products always succeed and never consume availability.
        """
        if quantity is None or quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        tracked = self.track_inventory
        if tracked and quantity > self.available:
            raise InsufficientStock(
                {"quantity": [f"Insufficient stock: {self.available} available, {quantity} requested"]},
                product_id=self.id,
                available=self.available,
                requested=quantity,
            )

        now = self._touch()
        if expires_at is None:
            expires_at = now + timedelta(minutes=get_settings().reservation_ttl_minutes)

        reservation = StockReservation(
            id=new_id(),
            product_id=self.id,
            holder_id=holder_id,
            holder_type=holder_type.value,
            quantity=quantity,
            tracked=tracked,
            status=ReservationStatus.ACTIVE.value,
            reserved_at=now,
            expires_at=expires_at,
        )
        session = self._session()
        session.add(reservation)

        if tracked:
            self.reserved += quantity

        ledger.append(
            session,
            product_id=self.id,
            change_type=ChangeType.RESERVED,
            quantity_change=-quantity if tracked else 0,
            previous_stock=self.stock,
            new_stock=self.stock,
            reference_id=holder_id,
            notes=f"Reserved by {holder_type.value} (reservation {reservation.id})",
        )
        return reservation

    def _assert_active(self, reservation: StockReservation) -> None:
        if reservation.product_id != self.id:
            raise ReservationNotFound({"reservation_id": ["Reservation not found"]}, reservation_id=reservation.id)
        if reservation.status == ReservationStatus.EXPIRED.value:
            raise ReservationExpired(
                {"reservation_id": ["Reservation has expired"]},
                reservation_id=reservation.id,
                status=reservation.status,
            )
        if reservation.status != ReservationStatus.ACTIVE.value:
            raise AlreadyTerminal(
                {"reservation_id": [f"Reservation is already {reservation.status}"]},
                reservation_id=reservation.id,
                status=reservation.status,
            )

    def _unreserve(self, reservation: StockReservation, status: ReservationStatus, notes: str) -> None:
        self._assert_active(reservation)
        now = self._touch()
        if reservation.tracked:
            self.reserved -= reservation.quantity

        reservation.status = status.value
        reservation.closed_at = now

        ledger.append(
            self._session(),
            product_id=self.id,
            change_type=ChangeType.UNRESERVED,
            quantity_change=reservation.quantity if reservation.tracked else 0,
            previous_stock=self.stock,
            new_stock=self.stock,
            reference_id=reservation.holder_id,
            notes=f"{notes} (reservation {reservation.id})",
        )

    def release(self, reservation: StockReservation, reason: str = "Cancelled") -> None:
        """Give the held quantity back to availability."""
        self._unreserve(reservation, ReservationStatus.RELEASED, reason)

    def expire(self, reservation: StockReservation) -> None:
        """Same as release, but records that the hold timed out."""
        self._unreserve(reservation, ReservationStatus.EXPIRED, "Expired")

    def commit(self, reservation: StockReservation) -> None:
        """Turn a hold into a permanent stock deduction."""
        self._assert_active(reservation)
        now = self._touch()
        previous_stock = self.stock
        if reservation.tracked:
            self.reserved -= reservation.quantity
            self.stock -= reservation.quantity

        reservation.status = ReservationStatus.COMMITTED.value
        reservation.closed_at = now

        ledger.append(
            self._session(),
            product_id=self.id,
            change_type=ChangeType.SOLD,
            quantity_change=-reservation.quantity if reservation.tracked else 0,
            previous_stock=previous_stock,
            new_stock=self.stock,
            reference_id=reservation.holder_id,
            notes=f"Sold (reservation {reservation.id})",
        )

    def transfer(
        self,
        reservation: StockReservation,
        holder_id: str,
        holder_type: HolderType,
        expires_at: datetime | None = None,
    ) -> None:
        """Re-parent an active hold, e.g. from a cart to the order created from it."""
        self._assert_active(reservation)
        now = self._touch()
        reservation.holder_id = holder_id
        reservation.holder_type = holder_type.value
        reservation.expires_at = expires_at or now + timedelta(minutes=get_settings().reservation_ttl_minutes)

    # -------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------
    def receive(self, quantity: int, reference_id: str | None = None, notes: str | None = None) -> None:
        """Add units to physical stock."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        self._move_stock(self.stock + quantity, ChangeType.STOCK_IN, reference_id, notes)

    def set_stock(self, new_stock: int, notes: str | None = None, reference_id: str | None = None) -> bool:
        """Set physical stock to an absolute count.

        Returns False when the count is unchanged (nothing is logged).
        """
        if new_stock is None or new_stock < 0:
            raise ValidationError({"quantity": ["Stock cannot be negative"]})
        if self.track_inventory and new_stock < self.reserved:
            raise InsufficientStock(
                {"quantity": [f"Cannot set stock to {new_stock}: {self.reserved} units are reserved"]},
                product_id=self.id,
                reserved=self.reserved,
                requested=new_stock,
            )
        if new_stock == self.stock:
            return False

        change_type = ChangeType.STOCK_IN if new_stock > self.stock else ChangeType.STOCK_OUT
        self._move_stock(new_stock, change_type, reference_id, notes or "Manual stock adjustment")
        return True

    def _move_stock(self, new_stock: int, change_type: ChangeType, reference_id: str | None, notes: str | None):
        previous_stock = self.stock
        self.stock = new_stock
        self._touch()
        ledger.append(
            self._session(),
            product_id=self.id,
            change_type=change_type,
            quantity_change=new_stock - previous_stock,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reference_id=reference_id,
            notes=notes,
        )

    def change_price(self, price: Decimal) -> None:
        if price is None or price <= 0:
            raise ValidationError({"price": ["Price must be positive"]})
        self.price = price
        self._touch()


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------
def lock_product(session: Session, product_id: str) -> Product:
    """Load a product and hold its row lock until the transaction ends."""
    product = session.execute(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if product is None:
        raise ProductNotFound({"product_id": ["Product not found"]}, product_id=product_id)
    return product


def lock_products(session: Session, product_ids) -> dict[str, Product]:
    """Lock several products in id order so concurrent callers cannot deadlock."""
    return {product_id: lock_product(session, product_id) for product_id in sorted(set(product_ids))}


def get_product(session: Session, product_id: str) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise ProductNotFound({"product_id": ["Product not found"]}, product_id=product_id)
    return product


def get_reservation(session: Session, reservation_id: str) -> StockReservation:
    """Load a reservation, refreshing it from the database."""
    reservation = session.execute(
        select(StockReservation)
        .where(StockReservation.id == reservation_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if reservation is None:
        raise ReservationNotFound({"reservation_id": ["Reservation not found"]}, reservation_id=reservation_id)
    return reservation


def active_reservations_for(session: Session, holder_id: str) -> list[StockReservation]:
    query = (
        select(StockReservation)
        .where(
            StockReservation.holder_id == holder_id,
            StockReservation.status == ReservationStatus.ACTIVE.value,
        )
        .order_by(StockReservation.product_id, StockReservation.reserved_at)
        .execution_options(populate_existing=True)
    )
    return list(session.scalars(query))


def reservations_for(session: Session, holder_id: str) -> list[StockReservation]:
    query = (
        select(StockReservation)
        .where(StockReservation.holder_id == holder_id)
        .order_by(StockReservation.reserved_at)
        .execution_options(populate_existing=True)
    )
    return list(session.scalars(query))
