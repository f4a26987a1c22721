"""Tests for the error kinds shared by every context."""

from decimal import Decimal

import pytest
from protean.exceptions import InvalidOperationError, ObjectNotFoundError
from protean.exceptions import ValidationError as ProteanValidationError

from inventory.stock.initialization import RegisterProduct, register_product
from inventory.stock.reservation import CancelReservation, ReserveStock, cancel_reservation, reserve_stock
from shared.exceptions import (
    AlreadyTerminal,
    CartNotFound,
    DomainError,
    DuplicateWebhookEvent,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    PartialCartInvalid,
    PaymentMismatch,
    PaymentNotFound,
    ProductNotFound,
    ReservationExpired,
    ReservationNotFound,
    ValidationError,
)
from shared.http import status_code_for


class TestHierarchy:
    @pytest.mark.parametrize(
        "error_type", [ProductNotFound, ReservationNotFound, CartNotFound, OrderNotFound, PaymentNotFound]
    )
    def test_missing_records(self, error_type):
        assert issubclass(error_type, ObjectNotFoundError)

    @pytest.mark.parametrize(
        "error_type", [ValidationError, InsufficientStock, InvalidTransition, PartialCartInvalid, PaymentMismatch]
    )
    def test_rule_violations(self, error_type):
        assert issubclass(error_type, ProteanValidationError)

    @pytest.mark.parametrize("error_type", [AlreadyTerminal, ReservationExpired, DuplicateWebhookEvent])
    def test_closed_records(self, error_type):
        assert issubclass(error_type, InvalidOperationError)


class TestMessages:
    def test_messages_and_context(self):
        exc = InsufficientStock({"quantity": ["Only 2 available"]}, product_id="prod-1", available=2)

        assert exc.messages == {"quantity": ["Only 2 available"]}
        assert exc.context == {"product_id": "prod-1", "available": 2}
        assert exc.code == "insufficient_stock"

    def test_plain_message_is_keyed_on_entity(self):
        assert DomainError("Something broke").messages == {"_entity": ["Something broke"]}

    @pytest.mark.parametrize(
        "exc,status_code",
        [
            (ProductNotFound({"product_id": ["Product not found"]}), 404),
            (InsufficientStock({"quantity": ["Too many"]}), 409),
            (ReservationExpired({"reservation_id": ["Reservation has expired"]}), 409),
            (ValidationError({"quantity": ["Quantity must be positive"]}), 422),
        ],
    )
    def test_http_status(self, exc, status_code):
        assert status_code_for(exc) == status_code


class TestRaisedByHandlers:
    def test_insufficient_stock_is_a_protean_validation_error(self):
        product = register_product(RegisterProduct(name="Lamp", price=Decimal("20.00"), initial_stock=1))

        with pytest.raises(ProteanValidationError) as exc_info:
            reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-1", quantity=2))
        assert "quantity" in exc_info.value.messages

    def test_closing_a_closed_reservation_is_an_invalid_operation(self):
        product = register_product(RegisterProduct(name="Lamp", price=Decimal("20.00"), initial_stock=1))
        reservation = reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-1", quantity=1))
        cancel_reservation(CancelReservation(reservation_id=reservation.id))

        with pytest.raises(InvalidOperationError):
            cancel_reservation(CancelReservation(reservation_id=reservation.id))

    def test_unknown_product_is_object_not_found(self):
        with pytest.raises(ObjectNotFoundError):
            reserve_stock(ReserveStock(product_id="missing", holder_id="cart-1", quantity=1))
