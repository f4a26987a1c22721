"""Tests for the Payment aggregate state machine."""

from decimal import Decimal

import pytest

from payments.payment.payment import Payment, PaymentStatus
from shared.exceptions import InvalidTransition


def _make_payment(**overrides):
    defaults = {
        "id": "pay-001",
        "order_id": "ord-001",
        "external_intent_id": "pi_test_001",
        "amount": Decimal("25.00"),
        "currency": "usd",
        "status": PaymentStatus.PENDING.value,
    }
    defaults.update(overrides)
    return Payment(**defaults)


class TestPaymentTransitions:
    def test_pending_to_succeeded(self):
        payment = _make_payment()
        payment.record_success()
        assert payment.current_status == PaymentStatus.SUCCEEDED

    def test_processing_then_success(self):
        payment = _make_payment()
        payment.record_processing()
        payment.record_success()
        assert payment.status == PaymentStatus.SUCCEEDED.value

    def test_failure_keeps_reason(self):
        payment = _make_payment()
        payment.record_failure("Card declined")
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "Card declined"

    def test_failure_without_reason(self):
        payment = _make_payment()
        payment.record_failure(None)
        assert payment.failure_reason == "Unknown failure"

    def test_succeeded_payment_can_be_cancelled_by_refund(self):
        payment = _make_payment(status=PaymentStatus.SUCCEEDED.value)
        payment.record_cancellation("Refunded")
        assert payment.status == PaymentStatus.CANCELED.value

    def test_succeeded_payment_cannot_fail(self):
        payment = _make_payment(status=PaymentStatus.SUCCEEDED.value)
        with pytest.raises(InvalidTransition) as exc_info:
            payment.record_failure("late failure")
        assert "status" in exc_info.value.messages
        assert payment.status == PaymentStatus.SUCCEEDED.value

    @pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.CANCELED])
    def test_terminal_statuses(self, status):
        payment = _make_payment(status=status.value)
        with pytest.raises(InvalidTransition):
            payment.record_success()
        with pytest.raises(InvalidTransition):
            payment.record_processing()


class TestAmountMinor:
    @pytest.mark.parametrize(
        "amount,expected",
        [(Decimal("25.00"), 2500), (Decimal("0.99"), 99), (Decimal("1234.5"), 123450)],
    )
    def test_minor_units(self, amount, expected):
        assert _make_payment(amount=amount).amount_minor == expected
