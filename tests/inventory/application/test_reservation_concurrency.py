"""Concurrent reservations never oversell and never corrupt the ledger."""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from functools import partial

import pytest

from inventory.ledger.ledger import entries_for, replay
from inventory.stock.availability import available_stock
from inventory.stock.initialization import RegisterProduct, register_product
from inventory.stock.reservation import (
    CancelReservation,
    CommitReservation,
    ReserveStock,
    cancel_reservation,
    commit_reservation,
    reserve_stock,
)
from shared.database import unit_of_work
from shared.exceptions import AlreadyTerminal, InsufficientStock

pytestmark = pytest.mark.slow


def _register_product(initial_stock):
    return register_product(RegisterProduct(name="Limited Print", price=Decimal("30.00"), initial_stock=initial_stock))


def _run_concurrently(*calls):
    """Start every call at the same moment; return (result, error) per call."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        barrier.wait()
        try:
            return call(), None
        except Exception as exc:  # noqa: BLE001
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


class TestConcurrentReservations:
    def test_two_reservations_for_the_last_units(self):
        product = _register_product(initial_stock=5)

        outcomes = _run_concurrently(
            lambda: reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-a", quantity=3)),
            lambda: reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-b", quantity=3)),
        )

        successes = [result for result, error in outcomes if error is None]
        failures = [error for _, error in outcomes if error is not None]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStock)

        availability = available_stock(product.id)
        assert availability.reserved == 3
        assert availability.available == 2

    def test_many_buyers_never_oversell(self):
        product = _register_product(initial_stock=10)

        outcomes = _run_concurrently(
            *[
                partial(reserve_stock, ReserveStock(product_id=product.id, holder_id=f"cart-{index}", quantity=1))
                for index in range(16)
            ]
        )

        successes = [result for result, error in outcomes if error is None]
        assert len(successes) == 10
        assert all(isinstance(error, InsufficientStock) for _, error in outcomes if error is not None)
        assert available_stock(product.id).available == 0

        with unit_of_work() as session:
            result = replay(entries_for(session, product.id))
        assert result.stock == 10
        assert result.available == 0

    def test_cancel_and_commit_race_on_one_reservation(self):
        product = _register_product(initial_stock=5)
        reservation = reserve_stock(ReserveStock(product_id=product.id, holder_id="order-1", quantity=2))

        outcomes = _run_concurrently(
            lambda: cancel_reservation(CancelReservation(reservation_id=reservation.id)),
            lambda: commit_reservation(CommitReservation(reservation_id=reservation.id)),
        )

        errors = [error for _, error in outcomes if error is not None]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyTerminal)

        availability = available_stock(product.id)
        assert availability.reserved == 0
        assert availability.stock in (3, 5)
