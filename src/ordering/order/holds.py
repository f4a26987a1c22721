"""Order-scoped stock holds: committing or releasing everything an order holds.

Used by the payment outcome handlers and by cancellation. The order's
products are locked in id order before its holds are read, so the sweeper
cannot expire a hold between the read and the commit. A hold that still
turns out closed when it is visited is skipped.
"""

from collections import defaultdict
from dataclasses import dataclass

import structlog
from sqlalchemy.orm import Session

from inventory.stock import reservation as reservations
from inventory.stock.stock import (
    HolderType,
    ReservationStatus,
    active_reservations_for,
    lock_products,
    reservations_for,
)
from ordering.order.order import Order
from shared.exceptions import AlreadyTerminal, InsufficientStock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Shortfall:
    product_id: str
    missing: int


def _lock_order_products(session: Session, order: Order) -> None:
    lock_products(session, [item.product_id for item in order.items])


def release_holds(session: Session, order: Order, reason: str) -> int:
    """Release every active hold of the order; returns how many were released."""
    _lock_order_products(session, order)
    released = 0
    for hold in sorted(active_reservations_for(session, order.id), key=lambda r: (r.product_id, r.id)):
        try:
            reservations.cancel(session, hold.id, reason=reason)
        except AlreadyTerminal:
            logger.info("Hold already closed, nothing to release", order_id=order.id, reservation_id=hold.id)
            continue
        released += 1
    return released


def commit_holds(session: Session, order: Order) -> list[Shortfall]:
    """Turn the order's holds into sales.

    A hold that expired before payment arrived is replaced by a fresh
    reservation committed on the spot if stock allows. Whatever still cannot
    be covered is returned as a shortfall for the caller to report.
    """
    _lock_order_products(session, order)
    committed: dict[str, int] = defaultdict(int)
    for hold in sorted(reservations_for(session, order.id), key=lambda r: (r.product_id, r.id)):
        if hold.status == ReservationStatus.ACTIVE.value:
            try:
                reservations.commit(session, hold.id)
            except AlreadyTerminal:
                logger.info("Hold closed before commit", order_id=order.id, reservation_id=hold.id)
                continue
            committed[hold.product_id] += hold.quantity
        elif hold.status == ReservationStatus.COMMITTED.value:
            committed[hold.product_id] += hold.quantity

    shortfalls = []
    for item in order.items:
        missing = item.quantity - committed[item.product_id]
        if missing <= 0:
            continue
        try:
            replacement = reservations.reserve(
                session,
                product_id=item.product_id,
                holder_id=order.id,
                quantity=missing,
                holder_type=HolderType.ORDER,
            )
            reservations.commit(session, replacement.id)
            logger.info(
                "Expired hold replaced at payment time",
                order_id=order.id,
                product_id=item.product_id,
                quantity=missing,
            )
        except InsufficientStock:
            shortfalls.append(Shortfall(product_id=item.product_id, missing=missing))
    return shortfalls
