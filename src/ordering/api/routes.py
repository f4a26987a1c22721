"""FastAPI routes for the Ordering context: carts and orders."""

from dataclasses import asdict

from fastapi import APIRouter, Query

from ordering.api.schemas import (
    AddToCartRequest,
    CancelOrderRequest,
    CartLineResponse,
    CreateOrderRequest,
    OrderItemResponse,
    OrderResponse,
    PaymentIntentResponse,
    PayOrderRequest,
    RefundOrderRequest,
    StatusResponse,
    UpdateOrderStatusRequest,
)
from ordering.cart.items import AddToCart, RemoveFromCart, add_to_cart, remove_from_cart
from ordering.order.cancellation import CancelOrder, cancel_order
from ordering.order.creation import CreateOrder, create_order
from ordering.order.fulfillment import UpdateOrderStatus, update_order_status
from ordering.order.order import Order, OrderStatus, get_order, list_orders
from payments.payment.initiation import InitiatePayment, initiate_payment
from payments.payment.refund import RefundOrder, refund_order
from shared.database import unit_of_work


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        order_id=order.id,
        user_id=order.user_id,
        cart_id=order.cart_id,
        status=order.status,
        total=order.total,
        payment_id=order.payment_id,
        items=[
            OrderItemResponse(
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                line_total=item.line_total,
            )
            for item in order.items
        ],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/cart", tags=["carts"])


@cart_router.post("/add", status_code=201, response_model=CartLineResponse)
def add_item_to_cart(body: AddToCartRequest) -> CartLineResponse:
    """Add a product to the user's cart, holding the stock for it."""
    command = AddToCart(
        user_id=body.user_id,
        product_id=body.product_id,
        quantity=body.quantity,
        cart_id=body.cart_id,
    )
    return CartLineResponse(**asdict(add_to_cart(command)))


@cart_router.delete("/{cart_id}/items/{item_id}", response_model=StatusResponse)
def remove_item_from_cart(cart_id: str, item_id: str) -> StatusResponse:
    remove_from_cart(RemoveFromCart(cart_id=cart_id, item_id=item_id))
    return StatusResponse(status="removed")


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/order", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderResponse)
def place_order(body: CreateOrderRequest) -> OrderResponse:
    """Convert a cart into an order, snapshotting its prices."""
    order = create_order(CreateOrder(cart_id=body.cart_id, user_id=body.user_id))
    return _order_response(order)


@order_router.get("/my", response_model=list[OrderResponse])
def my_orders(user_id: str, limit: int = Query(default=50, ge=1, le=500)) -> list[OrderResponse]:
    """A customer's own orders, newest first."""
    with unit_of_work() as session:
        return [_order_response(order) for order in list_orders(session, user_id=user_id, limit=limit)]


@order_router.get("/all", response_model=list[OrderResponse])
def all_orders(
    status: OrderStatus | None = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[OrderResponse]:
    """Every order, optionally only those in one status. For admins."""
    with unit_of_work() as session:
        return [_order_response(order) for order in list_orders(session, status=status, limit=limit)]


@order_router.get("/{order_id}", response_model=OrderResponse)
def get_order_details(order_id: str) -> OrderResponse:
    with unit_of_work() as session:
        return _order_response(get_order(session, order_id))


@order_router.post("/{order_id}/pay", status_code=201, response_model=PaymentIntentResponse)
def pay_order(order_id: str, body: PayOrderRequest | None = None) -> PaymentIntentResponse:
    """Open a payment intent with the gateway; the outcome arrives by webhook."""
    command = InitiatePayment(order_id=order_id, currency=body.currency if body else None)
    return PaymentIntentResponse(**asdict(initiate_payment(command)))


@order_router.put("/{order_id}/status", response_model=OrderResponse)
def set_order_status(order_id: str, body: UpdateOrderStatusRequest) -> OrderResponse:
    order = update_order_status(UpdateOrderStatus(order_id=order_id, status=body.status))
    return _order_response(order)


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel(order_id: str, body: CancelOrderRequest | None = None) -> OrderResponse:
    command = CancelOrder(order_id=order_id, reason=body.reason) if body else CancelOrder(order_id=order_id)
    return _order_response(cancel_order(command))


@order_router.post("/{order_id}/refund", response_model=OrderResponse)
def refund(order_id: str, body: RefundOrderRequest | None = None) -> OrderResponse:
    body = body or RefundOrderRequest()
    order = refund_order(RefundOrder(order_id=order_id, reason=body.reason, restock=body.restock))
    return _order_response(order)
