"""Applying payment outcomes to orders, payments and stock.

These functions run inside the caller's unit of work (the webhook
processor's dispatch transaction), so the order transition, the stock
commits or releases and the payment status change land together or not at
all. Lock order is order row, then payment row, then products in id order.

Outcomes that contradict the current state are never applied:

- a success for an order that is already paid (or later) is a no-op;
- a failure for an order that is already paid (or later) is discarded and
  recorded as an anomaly, the order is never regressed;
- a success for a cancelled order is recorded as an anomaly for manual
  refund;
- a processing notice only moves a pending payment forward;
- a success whose amount or currency differs from the payment raises
  ``PaymentMismatch`` and changes nothing.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.orm import Session

from ordering.order.holds import commit_holds, release_holds
from ordering.order.order import (
    AWAITING_PAYMENT_STATUSES,
    SETTLED_STATUSES,
    Order,
    OrderStatus,
    OrderTrigger,
    get_order,
)
from payments.payment.payment import (
    AnomalyKind,
    Payment,
    PaymentStatus,
    find_payment_by_intent,
    get_payment,
    record_anomaly,
)
from shared.exceptions import PaymentMismatch, PaymentNotFound

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SettlementOutcome:
    applied: bool
    order_id: str
    order_status: str
    note: str | None = None


def _lock_payment_and_order(session: Session, intent_id: str) -> tuple[Payment, Order]:
    payment = find_payment_by_intent(session, intent_id)
    if payment is None:
        raise PaymentNotFound(
            {"intent_id": [f"No payment matches intent {intent_id}"]},
            external_intent_id=intent_id,
        )
    order = get_order(session, payment.order_id, for_update=True)
    payment = get_payment(session, payment.id, for_update=True)
    return payment, order


def settle_success(
    session: Session,
    intent_id: str,
    amount_minor: int | None = None,
    currency: str | None = None,
    external_event_id: str | None = None,
) -> SettlementOutcome:
    payment, order = _lock_payment_and_order(session, intent_id)
    status = order.current_status

    if status in SETTLED_STATUSES:
        logger.info("Payment success already applied", order_id=order.id, order_status=order.status)
        return SettlementOutcome(applied=False, order_id=order.id, order_status=order.status, note="already settled")

    if status == OrderStatus.CANCELLED:
        record_anomaly(
            session,
            AnomalyKind.SUCCEEDED_AFTER_CANCEL,
            details=f"Payment succeeded for cancelled order; captured {payment.amount} {payment.currency} needs refund",
            external_event_id=external_event_id,
            external_intent_id=intent_id,
            order_id=order.id,
        )
        return SettlementOutcome(
            applied=False, order_id=order.id, order_status=order.status, note="order already cancelled"
        )

    if (amount_minor is not None and amount_minor != payment.amount_minor) or (
        currency is not None and currency.lower() != payment.currency.lower()
    ):
        raise PaymentMismatch(
            {
                "amount": [
                    f"Gateway reported {amount_minor} {currency}, expected {payment.amount_minor} {payment.currency}"
                ]
            },
            external_intent_id=intent_id,
            order_id=order.id,
        )

    order.apply(OrderTrigger.PAYMENT_SUCCEEDED)
    shortfalls = commit_holds(session, order)
    for shortfall in shortfalls:
        record_anomaly(
            session,
            AnomalyKind.STOCK_SHORTFALL,
            details=f"Paid order is short {shortfall.missing} unit(s) of product {shortfall.product_id}",
            external_event_id=external_event_id,
            external_intent_id=intent_id,
            order_id=order.id,
        )
    if payment.current_status != PaymentStatus.SUCCEEDED:
        payment.record_success()

    logger.info("Order paid", order_id=order.id, payment_id=payment.id, shortfalls=len(shortfalls))
    return SettlementOutcome(applied=True, order_id=order.id, order_status=order.status)


def settle_failure(
    session: Session,
    intent_id: str,
    reason: str | None = None,
    canceled: bool = False,
    external_event_id: str | None = None,
) -> SettlementOutcome:
    payment, order = _lock_payment_and_order(session, intent_id)
    status = order.current_status

    if status in SETTLED_STATUSES:
        record_anomaly(
            session,
            AnomalyKind.FAILED_AFTER_PAID,
            details=f"Payment {'canceled' if canceled else 'failure'} reported for {order.status} order: {reason}",
            external_event_id=external_event_id,
            external_intent_id=intent_id,
            order_id=order.id,
        )
        return SettlementOutcome(
            applied=False, order_id=order.id, order_status=order.status, note="discarded, order already paid"
        )

    if status not in AWAITING_PAYMENT_STATUSES:
        logger.info("Payment failure already applied", order_id=order.id, order_status=order.status)
        return SettlementOutcome(applied=False, order_id=order.id, order_status=order.status, note="already closed")

    order.apply(OrderTrigger.PAYMENT_FAILED)
    released = release_holds(session, order, reason="Payment failed")
    if payment.current_status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
        if canceled:
            payment.record_cancellation(reason)
        else:
            payment.record_failure(reason)

    logger.info(
        "Order cancelled after payment failure",
        order_id=order.id,
        payment_id=payment.id,
        released_holds=released,
        reason=reason,
    )
    return SettlementOutcome(applied=True, order_id=order.id, order_status=order.status)


def settle_processing(session: Session, intent_id: str) -> SettlementOutcome:
    """The gateway started processing the intent; only the payment moves."""
    payment, order = _lock_payment_and_order(session, intent_id)
    if payment.current_status != PaymentStatus.PENDING:
        return SettlementOutcome(
            applied=False, order_id=order.id, order_status=order.status, note=f"payment already {payment.status}"
        )

    payment.record_processing()
    logger.info("Payment processing", order_id=order.id, payment_id=payment.id)
    return SettlementOutcome(applied=True, order_id=order.id, order_status=order.status)
