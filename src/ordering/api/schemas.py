"""Pydantic request/response schemas for the Ordering API.

These are external contracts, kept separate from the internal commands.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from ordering.order.order import OrderStatus


# ---------------------------------------------------------------------------
# Cart Request Schemas
# ---------------------------------------------------------------------------
class AddToCartRequest(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(ge=1)
    cart_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-001",
                    "product_id": "prod-001",
                    "quantity": 2,
                }
            ]
        }
    }


# ---------------------------------------------------------------------------
# Order Request Schemas
# ---------------------------------------------------------------------------
class CreateOrderRequest(BaseModel):
    cart_id: str
    user_id: str | None = None


class PayOrderRequest(BaseModel):
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class CancelOrderRequest(BaseModel):
    reason: str = "Cancelled by customer"


class RefundOrderRequest(BaseModel):
    reason: str = "requested_by_customer"
    restock: bool | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class CartLineResponse(BaseModel):
    cart_id: str
    item_id: str
    product_id: str
    quantity: int
    reservation_id: str
    expires_at: datetime


class StatusResponse(BaseModel):
    status: str


class OrderItemResponse(BaseModel):
    product_id: str
    quantity: int
    price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    order_id: str
    user_id: str
    cart_id: str | None = None
    status: str
    total: Decimal
    payment_id: str | None = None
    items: list[OrderItemResponse]
    created_at: datetime
    updated_at: datetime


class PaymentIntentResponse(BaseModel):
    payment_id: str
    order_id: str
    intent_id: str
    client_secret: str | None = None
    amount: Decimal
    currency: str
    status: str
