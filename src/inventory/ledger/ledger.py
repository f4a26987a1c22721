"""Inventory ledger: the append-only audit trail of stock movements.

Every change to a product's stock or availability is written here inside the
same transaction as the change itself, while the product row is locked. The
autoincrement id therefore totally orders the entries of one product and
doubles as the pagination cursor for ``history``.

Change kinds and what they move:

    stock_in / stock_out  physical stock (receiving, manual adjustment, restock)
    reserved / unreserved availability only; stock is unchanged
    sold                  physical stock, consuming an existing hold

Replaying a product's entries therefore rebuilds stock from
{stock_in, stock_out, sold} and availability from everything except sold.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import ForeignKey, Index, Integer, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from shared.database import Base, UTCDateTime, utcnow

logger = structlog.get_logger(__name__)


class ChangeType(Enum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    RESERVED = "reserved"
    UNRESERVED = "unreserved"
    SOLD = "sold"


_STOCK_MOVING = {ChangeType.STOCK_IN.value, ChangeType.STOCK_OUT.value, ChangeType.SOLD.value}


class InventoryLogEntry(Base):
    __tablename__ = "inventory_logs"
    __table_args__ = (Index("ix_inventory_logs_product_created", "product_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(36))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<InventoryLogEntry #{self.id} {self.change_type} {self.quantity_change:+d} "
            f"product={self.product_id}>"
        )


def append(
    session: Session,
    product_id: str,
    change_type: ChangeType,
    quantity_change: int,
    previous_stock: int,
    new_stock: int,
    reference_id: str | None = None,
    notes: str | None = None,
) -> InventoryLogEntry:
    """Add an entry to the current transaction. Never called outside one."""
    entry = InventoryLogEntry(
        product_id=product_id,
        change_type=change_type.value,
        quantity_change=quantity_change,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference_id=reference_id,
        notes=notes,
        created_at=utcnow(),
    )
    session.add(entry)
    logger.debug(
        "Ledger entry appended",
        product_id=product_id,
        change_type=change_type.value,
        quantity_change=quantity_change,
        reference_id=reference_id,
    )
    return entry


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LedgerPage:
    entries: list[InventoryLogEntry]
    next_cursor: int | None


@dataclass(frozen=True)
class LedgerReplay:
    stock: int
    available: int


def history(
    session: Session,
    product_id: str,
    since: datetime | None = None,
    until: datetime | None = None,
    cursor: int | None = None,
    limit: int = 50,
) -> LedgerPage:
    """Return one page of a product's entries in commit order.

    ``cursor`` is the ``next_cursor`` of the previous page; iteration is
    restartable from any cursor. ``next_cursor`` is None on the last page.
    """
    limit = max(1, min(limit, 500))
    query = select(InventoryLogEntry).where(InventoryLogEntry.product_id == product_id)
    if since is not None:
        query = query.where(InventoryLogEntry.created_at >= since)
    if until is not None:
        query = query.where(InventoryLogEntry.created_at < until)
    if cursor is not None:
        query = query.where(InventoryLogEntry.id > cursor)

    rows = list(session.scalars(query.order_by(InventoryLogEntry.id).limit(limit + 1)))
    has_more = len(rows) > limit
    entries = rows[:limit]
    next_cursor = entries[-1].id if has_more and entries else None
    return LedgerPage(entries=entries, next_cursor=next_cursor)


def entries_for(session: Session, product_id: str) -> list[InventoryLogEntry]:
    """Every entry of a product, oldest first."""
    query = select(InventoryLogEntry).where(InventoryLogEntry.product_id == product_id)
    return list(session.scalars(query.order_by(InventoryLogEntry.id)))


def replay(entries: Iterable[InventoryLogEntry], initial_stock: int = 0) -> LedgerReplay:
    """Rebuild stock and availability by folding entries over ``initial_stock``."""
    stock = initial_stock
    available = initial_stock
    for entry in entries:
        if entry.change_type in _STOCK_MOVING:
            stock += entry.quantity_change
        if entry.change_type != ChangeType.SOLD.value:
            available += entry.quantity_change
    return LedgerReplay(stock=stock, available=available)
