"""Payment aggregate and the anomaly log.

State machine:
    PENDING -> PROCESSING -> SUCCEEDED -> CANCELED (refunded)
    PENDING | PROCESSING -> FAILED | CANCELED

A payment is created when checkout asks the gateway for an intent and is
matched to gateway events through ``external_intent_id``.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

import structlog
from sqlalchemy import ForeignKey, Numeric, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from shared.database import Base, UTCDateTime, new_id, utcnow
from shared.exceptions import InvalidTransition, PaymentNotFound

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.SUCCEEDED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED},
    PaymentStatus.SUCCEEDED: {PaymentStatus.CANCELED},  # refund
    PaymentStatus.FAILED: set(),  # Terminal
    PaymentStatus.CANCELED: set(),  # Terminal
}


class AnomalyKind(Enum):
    UNMATCHED_INTENT = "unmatched_intent"
    UNKNOWN_EVENT_TYPE = "unknown_event_type"
    FAILED_AFTER_PAID = "failed_after_paid"
    SUCCEEDED_AFTER_CANCEL = "succeeded_after_cancel"
    AMOUNT_MISMATCH = "amount_mismatch"
    STOCK_SHORTFALL = "stock_shortfall"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    external_intent_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    @property
    def current_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def amount_minor(self) -> int:
        """Amount in the currency's minor unit, as gateways report it."""
        return int((self.amount * 100).to_integral_value())

    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = self.current_status
        if target_status not in _VALID_TRANSITIONS[current]:
            raise InvalidTransition(
                {"status": [f"Cannot transition payment from {current.value} to {target_status.value}"]},
                payment_id=self.id,
            )

    def _move_to(self, target_status: PaymentStatus) -> None:
        self._assert_can_transition(target_status)
        self.status = target_status.value
        self.updated_at = utcnow()

    def record_processing(self) -> None:
        self._move_to(PaymentStatus.PROCESSING)

    def record_success(self) -> None:
        self._move_to(PaymentStatus.SUCCEEDED)
        self.failure_reason = None

    def record_failure(self, reason: str | None) -> None:
        self._move_to(PaymentStatus.FAILED)
        self.failure_reason = reason or "Unknown failure"

    def record_cancellation(self, reason: str | None = None) -> None:
        self._move_to(PaymentStatus.CANCELED)
        if reason:
            self.failure_reason = reason


class PaymentAnomaly(Base):
    """A payment event that could not be reconciled with current state."""

    __tablename__ = "payment_anomalies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    kind: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    external_event_id: Mapped[str | None] = mapped_column(String(255))
    external_intent_id: Mapped[str | None] = mapped_column(String(255))
    order_id: Mapped[str | None] = mapped_column(String(36))
    details: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)


def record_anomaly(
    session: Session,
    kind: AnomalyKind,
    details: str,
    external_event_id: str | None = None,
    external_intent_id: str | None = None,
    order_id: str | None = None,
) -> PaymentAnomaly:
    anomaly = PaymentAnomaly(
        id=new_id(),
        kind=kind.value,
        external_event_id=external_event_id,
        external_intent_id=external_intent_id,
        order_id=order_id,
        details=details,
        created_at=utcnow(),
    )
    session.add(anomaly)
    logger.warning(
        "Payment anomaly recorded",
        kind=kind.value,
        external_event_id=external_event_id,
        external_intent_id=external_intent_id,
        order_id=order_id,
        details=details,
    )
    return anomaly


def get_payment(session: Session, payment_id: str, for_update: bool = False) -> Payment:
    query = select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    payment = session.execute(query).scalar_one_or_none()
    if payment is None:
        raise PaymentNotFound({"payment_id": ["Payment not found"]}, payment_id=payment_id)
    return payment


def find_payment_by_intent(session: Session, external_intent_id: str) -> Payment | None:
    query = (
        select(Payment)
        .where(Payment.external_intent_id == external_intent_id)
        .execution_options(populate_existing=True)
    )
    return session.execute(query).scalar_one_or_none()


def list_anomalies(session: Session, limit: int = 100) -> list[PaymentAnomaly]:
    query = select(PaymentAnomaly).order_by(PaymentAnomaly.created_at.desc()).limit(limit)
    return list(session.scalars(query))


def find_payment_for_order(session: Session, order_id: str) -> Payment | None:
    """The order's most recent payment, if it ever got as far as an intent."""
    query = (
        select(Payment)
        .where(Payment.order_id == order_id)
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    return session.execute(query).scalar_one_or_none()


def has_anomaly(session: Session, kind: AnomalyKind, external_event_id: str) -> bool:
    query = select(PaymentAnomaly.id).where(
        PaymentAnomaly.kind == kind.value,
        PaymentAnomaly.external_event_id == external_event_id,
    )
    return session.execute(query.limit(1)).first() is not None
