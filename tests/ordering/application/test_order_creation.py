"""Application tests for converting a cart into an order."""

from datetime import timedelta
from decimal import Decimal

import pytest

from inventory.stock.availability import available_stock
from inventory.stock.expiry import ExpireStaleReservations, expire_stale_reservations
from inventory.stock.initialization import ChangePrice, RegisterProduct, change_price, register_product
from inventory.stock.stock import HolderType, ReservationStatus, active_reservations_for, get_reservation
from ordering.cart.cart import CartStatus, get_cart
from ordering.cart.items import AddToCart, add_to_cart
from ordering.order.creation import CreateOrder, create_order
from ordering.order.order import OrderStatus, get_order
from shared.database import unit_of_work, utcnow
from shared.exceptions import CartNotFound, InsufficientStock, PartialCartInvalid, ValidationError


def _register_product(price="10.00", initial_stock=10, name="Widget"):
    return register_product(RegisterProduct(name=name, price=Decimal(price), initial_stock=initial_stock))


def _add(product_id, quantity=1, user_id="user-001"):
    return add_to_cart(AddToCart(user_id=user_id, product_id=product_id, quantity=quantity))


class TestCreateOrder:
    def test_total_is_snapshotted(self):
        """Cart of A(2 x 10.00) + B(1 x 5.00) gives 25.00, whatever prices do later."""
        product_a = _register_product(price="10.00", name="A")
        product_b = _register_product(price="5.00", name="B")
        line = _add(product_a.id, quantity=2)
        _add(product_b.id, quantity=1)

        order = create_order(CreateOrder(cart_id=line.cart_id))
        change_price(ChangePrice(product_id=product_a.id, price=Decimal("99.00")))

        with unit_of_work() as session:
            stored = get_order(session, order.id)
            assert stored.total == Decimal("25.00")
            assert stored.status == OrderStatus.PENDING_PAYMENT.value
            prices = {item.product_id: item.price for item in stored.items}
        assert prices == {product_a.id: Decimal("10.00"), product_b.id: Decimal("5.00")}

    def test_holds_move_to_the_order(self):
        product = _register_product(initial_stock=10)
        line = _add(product.id, quantity=3)

        order = create_order(CreateOrder(cart_id=line.cart_id))

        with unit_of_work() as session:
            hold = get_reservation(session, line.reservation_id)
            assert hold.holder_id == order.id
            assert hold.holder_type == HolderType.ORDER.value
            assert hold.status == ReservationStatus.ACTIVE.value
            assert get_cart(session, line.cart_id).status == CartStatus.CONVERTED.value
        availability = available_stock(product.id)
        assert availability.reserved == 3
        assert availability.stock == 10

    def test_order_hold_gets_a_fresh_window(self):
        product = _register_product()
        line = _add(product.id)
        with unit_of_work() as session:
            cart_expiry = get_reservation(session, line.reservation_id).expires_at

        create_order(CreateOrder(cart_id=line.cart_id))

        with unit_of_work() as session:
            assert get_reservation(session, line.reservation_id).expires_at >= cart_expiry

    def test_same_product_twice_becomes_one_line(self):
        product = _register_product(price="2.50")
        line = _add(product.id, quantity=1)
        _add(product.id, quantity=3)

        order = create_order(CreateOrder(cart_id=line.cart_id))

        assert [(item.product_id, item.quantity) for item in order.items] == [(product.id, 4)]
        assert order.total == Decimal("10.00")

    def test_lapsed_hold_is_reserved_again(self):
        product = _register_product(initial_stock=10)
        line = _add(product.id, quantity=4)
        expire_stale_reservations(ExpireStaleReservations(as_of=utcnow() + timedelta(hours=1)))

        order = create_order(CreateOrder(cart_id=line.cart_id))

        with unit_of_work() as session:
            holds = active_reservations_for(session, order.id)
            assert [hold.quantity for hold in holds] == [4]
        assert available_stock(product.id).available == 6

    def test_lapsed_hold_without_stock_fails_whole_order(self):
        product = _register_product(initial_stock=4)
        line = _add(product.id, quantity=4)
        expire_stale_reservations(ExpireStaleReservations(as_of=utcnow() + timedelta(hours=1)))
        _add(product.id, quantity=2, user_id="user-002")

        with pytest.raises(InsufficientStock):
            create_order(CreateOrder(cart_id=line.cart_id))

        with unit_of_work() as session:
            assert get_cart(session, line.cart_id).status == CartStatus.ACTIVE.value
        assert available_stock(product.id).reserved == 2

    def test_empty_cart(self):
        product = _register_product()
        line = _add(product.id)
        with unit_of_work() as session:
            cart = get_cart(session, line.cart_id, for_update=True)
            cart.items.clear()

        with pytest.raises(PartialCartInvalid):
            create_order(CreateOrder(cart_id=line.cart_id))

    def test_cart_converted_once(self):
        product = _register_product()
        line = _add(product.id)
        create_order(CreateOrder(cart_id=line.cart_id))

        with pytest.raises(PartialCartInvalid):
            create_order(CreateOrder(cart_id=line.cart_id))

    def test_unknown_cart(self):
        with pytest.raises(CartNotFound):
            create_order(CreateOrder(cart_id="missing"))

    def test_cart_of_another_user(self):
        product = _register_product()
        line = _add(product.id, user_id="user-a")

        with pytest.raises(ValidationError):
            create_order(CreateOrder(cart_id=line.cart_id, user_id="user-b"))
