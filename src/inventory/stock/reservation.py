"""Stock reservation: commands and handlers.

The session-level functions (``reserve``, ``cancel``, ``commit``, ``expire``,
``transfer``) are the building blocks other contexts compose inside their own
unit of work. The command handlers wrap one of them in a fresh unit of work
with conflict retry.
"""

from datetime import datetime

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inventory.stock.stock import (
    HolderType,
    Product,
    StockReservation,
    get_reservation,
    lock_product,
)
from shared.database import retry_on_conflict, unit_of_work

logger = structlog.get_logger(__name__)


class ReserveStock(BaseModel):
    """Hold stock for a cart or an order."""

    product_id: str
    holder_id: str
    quantity: int
    holder_type: HolderType = HolderType.CART
    expires_at: datetime | None = None  # Optional; defaults to the configured TTL


class CancelReservation(BaseModel):
    reservation_id: str
    reason: str = "Cancelled"


class CommitReservation(BaseModel):
    reservation_id: str


# ---------------------------------------------------------------------------
# Session-level operations
# ---------------------------------------------------------------------------
def lock_reservation(session: Session, reservation_id: str) -> tuple[Product, StockReservation]:
    """Lock the reservation's product, then re-read the reservation under that lock."""
    reservation = get_reservation(session, reservation_id)
    product = lock_product(session, reservation.product_id)
    return product, get_reservation(session, reservation_id)


def reserve(
    session: Session,
    product_id: str,
    holder_id: str,
    quantity: int,
    holder_type: HolderType = HolderType.CART,
    expires_at: datetime | None = None,
) -> StockReservation:
    product = lock_product(session, product_id)
    reservation = product.reserve(holder_id, quantity, holder_type=holder_type, expires_at=expires_at)
    logger.info(
        "Stock reserved",
        product_id=product_id,
        holder_id=holder_id,
        reservation_id=reservation.id,
        quantity=quantity,
        available=product.available,
    )
    return reservation


def cancel(session: Session, reservation_id: str, reason: str = "Cancelled") -> StockReservation:
    product, reservation = lock_reservation(session, reservation_id)
    product.release(reservation, reason=reason)
    logger.info(
        "Reservation released",
        reservation_id=reservation_id,
        product_id=product.id,
        quantity=reservation.quantity,
        reason=reason,
    )
    return reservation


def commit(session: Session, reservation_id: str) -> StockReservation:
    product, reservation = lock_reservation(session, reservation_id)
    product.commit(reservation)
    logger.info(
        "Reservation committed",
        reservation_id=reservation_id,
        product_id=product.id,
        quantity=reservation.quantity,
        stock=product.stock,
    )
    return reservation


def expire(session: Session, reservation_id: str) -> StockReservation:
    product, reservation = lock_reservation(session, reservation_id)
    product.expire(reservation)
    logger.info(
        "Reservation expired",
        reservation_id=reservation_id,
        product_id=product.id,
        quantity=reservation.quantity,
        expired_at=reservation.expires_at.isoformat(),
    )
    return reservation


def transfer(
    session: Session,
    reservation_id: str,
    holder_id: str,
    holder_type: HolderType = HolderType.ORDER,
) -> StockReservation:
    product, reservation = lock_reservation(session, reservation_id)
    previous_holder = reservation.holder_id
    product.transfer(reservation, holder_id, holder_type)
    logger.debug(
        "Reservation transferred",
        reservation_id=reservation_id,
        from_holder=previous_holder,
        to_holder=holder_id,
    )
    return reservation


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------
@retry_on_conflict
def reserve_stock(command: ReserveStock) -> StockReservation:
    with unit_of_work() as session:
        return reserve(
            session,
            product_id=command.product_id,
            holder_id=command.holder_id,
            quantity=command.quantity,
            holder_type=command.holder_type,
            expires_at=command.expires_at,
        )


@retry_on_conflict
def cancel_reservation(command: CancelReservation) -> StockReservation:
    with unit_of_work() as session:
        return cancel(session, command.reservation_id, reason=command.reason)


@retry_on_conflict
def commit_reservation(command: CommitReservation) -> StockReservation:
    with unit_of_work() as session:
        return commit(session, command.reservation_id)
