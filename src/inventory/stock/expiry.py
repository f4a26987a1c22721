"""Reservation expiry: command and handler for reclaiming abandoned holds.

Run periodically by ``ReservationSweeper`` and on demand through the
maintenance endpoint. Each stale reservation is expired in its own
transaction through the same locked path as a cancellation, so a checkout
that commits the hold first simply wins and the sweep skips it.
"""

from datetime import UTC, datetime

import structlog
from pydantic import BaseModel
from sqlalchemy import select

from inventory.stock.reservation import lock_reservation
from inventory.stock.stock import ReservationStatus, StockReservation
from shared.database import retry_on_conflict, unit_of_work, utcnow
from shared.exceptions import AlreadyTerminal, OptimisticConflict

logger = structlog.get_logger(__name__)


class ExpireStaleReservations(BaseModel):
    """Expire active reservations whose ``expires_at`` is before ``as_of``."""

    as_of: datetime | None = None  # Optional: defaults to now
    batch_size: int = 500


def _stale_reservation_ids(as_of: datetime, batch_size: int) -> list[str]:
    with unit_of_work() as session:
        query = (
            select(StockReservation.id)
            .where(
                StockReservation.status == ReservationStatus.ACTIVE.value,
                StockReservation.expires_at < as_of,
            )
            .order_by(StockReservation.expires_at)
            .limit(batch_size)
        )
        return list(session.scalars(query))


@retry_on_conflict
def _expire_one(reservation_id: str, as_of: datetime) -> bool:
    with unit_of_work() as session:
        product, reservation = lock_reservation(session, reservation_id)
        if not reservation.is_past_due(as_of):
            # Re-parented to an order with a fresh window since the scan
            return False
        try:
            product.expire(reservation)
        except AlreadyTerminal:
            return False
        return True


def expire_stale_reservations(command: ExpireStaleReservations | None = None) -> int:
    command = command or ExpireStaleReservations()
    as_of = command.as_of or utcnow()
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=UTC)

    stale_ids = _stale_reservation_ids(as_of, command.batch_size)
    if not stale_ids:
        logger.debug("No stale reservations found", as_of=as_of.isoformat())
        return 0

    logger.info("Expiring stale reservations", candidates=len(stale_ids), as_of=as_of.isoformat())

    expired_count = 0
    for reservation_id in stale_ids:
        try:
            if _expire_one(reservation_id, as_of):
                expired_count += 1
                logger.info("Expired stale reservation", reservation_id=reservation_id)
            else:
                logger.debug("Reservation no longer stale, skipped", reservation_id=reservation_id)
        except OptimisticConflict as exc:
            # Left active; the next sweep picks it up again.
            logger.warning(
                "Failed to expire stale reservation",
                reservation_id=reservation_id,
                error=str(exc),
            )

    logger.info("Stale reservation cleanup complete", expired_count=expired_count)
    return expired_count
