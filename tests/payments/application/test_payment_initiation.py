"""Application tests for initiating a payment for an order."""

from decimal import Decimal

import pytest

from inventory.stock.initialization import RegisterProduct, register_product
from ordering.cart.items import AddToCart, add_to_cart
from ordering.order.cancellation import CancelOrder, cancel_order
from ordering.order.creation import CreateOrder, create_order
from ordering.order.order import OrderStatus, get_order
from payments.gateway import get_gateway
from payments.payment.initiation import InitiatePayment, initiate_payment
from payments.payment.payment import PaymentStatus, get_payment
from shared.database import unit_of_work
from shared.exceptions import InvalidTransition, OrderNotFound, PaymentGatewayError


def _place_order(price="12.50", quantity=2):
    product = register_product(RegisterProduct(name="Candle", price=Decimal(price), initial_stock=10))
    line = add_to_cart(AddToCart(user_id="user-001", product_id=product.id, quantity=quantity))
    return create_order(CreateOrder(cart_id=line.cart_id))


class TestInitiatePayment:
    def test_records_pending_payment(self):
        order = _place_order(price="12.50", quantity=2)

        intent = initiate_payment(InitiatePayment(order_id=order.id))

        assert intent.amount == Decimal("25.00")
        assert intent.currency == "usd"
        assert intent.status == PaymentStatus.PENDING.value
        assert intent.intent_id.startswith("pi_fake_")
        with unit_of_work() as session:
            stored_order = get_order(session, order.id)
            payment = get_payment(session, intent.payment_id)
            assert stored_order.status == OrderStatus.PAYMENT_PROCESSING.value
            assert stored_order.payment_id == payment.id
            assert payment.external_intent_id == intent.intent_id

    def test_gateway_receives_order_total_and_idempotency_key(self):
        order = _place_order(price="12.50", quantity=2)
        initiate_payment(InitiatePayment(order_id=order.id, currency="EUR"))

        call = get_gateway().calls[-1]
        assert call["amount"] == Decimal("25.00")
        assert call["currency"] == "eur"
        assert call["idempotency_key"] == f"order-{order.id}"

    def test_gateway_refusal_leaves_order_pending(self):
        order = _place_order()
        get_gateway().configure(should_succeed=False, failure_reason="Gateway down")

        with pytest.raises(PaymentGatewayError) as exc_info:
            initiate_payment(InitiatePayment(order_id=order.id))
        assert exc_info.value.messages == {"gateway": ["Gateway down"]}

        with unit_of_work() as session:
            stored = get_order(session, order.id)
            assert stored.status == OrderStatus.PENDING_PAYMENT.value
            assert stored.payment_id is None

    def test_cannot_pay_twice(self):
        order = _place_order()
        initiate_payment(InitiatePayment(order_id=order.id))

        with pytest.raises(InvalidTransition):
            initiate_payment(InitiatePayment(order_id=order.id))
        assert len(get_gateway().calls) == 1

    def test_cannot_pay_cancelled_order(self):
        order = _place_order()
        cancel_order(CancelOrder(order_id=order.id))

        with pytest.raises(InvalidTransition):
            initiate_payment(InitiatePayment(order_id=order.id))

    def test_unknown_order(self):
        with pytest.raises(OrderNotFound):
            initiate_payment(InitiatePayment(order_id="missing"))
