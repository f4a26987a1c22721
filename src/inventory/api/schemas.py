"""Pydantic request/response schemas for the Inventory API.

These are external contracts, kept separate from the internal commands.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class RegisterProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    initial_stock: int = Field(ge=0, default=0)
    low_stock_threshold: int = Field(ge=0, default=10)
    track_inventory: bool = True

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Black T-Shirt (M)",
                    "price": "19.99",
                    "initial_stock": 100,
                    "low_stock_threshold": 10,
                    "track_inventory": True,
                }
            ]
        }
    }


class SetStockRequest(BaseModel):
    quantity: int = Field(ge=0)
    notes: str | None = None


class ChangePriceRequest(BaseModel):
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class ReserveStockRequest(BaseModel):
    product_id: str
    holder_id: str
    quantity: int = Field(ge=1)
    holder_type: str = Field(default="cart", pattern="^(cart|order)$")
    expires_in_minutes: int | None = Field(default=None, ge=1)


class CancelReservationRequest(BaseModel):
    reason: str = "Cancelled"


class CleanupExpiredRequest(BaseModel):
    as_of: datetime | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class ProductResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal
    stock: int
    reserved: int
    available: int
    low_stock_threshold: int
    track_inventory: bool


class AvailabilityResponse(BaseModel):
    product_id: str
    stock: int
    reserved: int
    available: int
    track_inventory: bool


class ReservationResponse(BaseModel):
    reservation_id: str
    product_id: str
    holder_id: str
    holder_type: str
    quantity: int
    status: str
    reserved_at: datetime
    expires_at: datetime


class LedgerEntryResponse(BaseModel):
    id: int
    change_type: str
    quantity_change: int
    previous_stock: int
    new_stock: int
    reference_id: str | None = None
    notes: str | None = None
    created_at: datetime


class HistoryResponse(BaseModel):
    product_id: str
    entries: list[LedgerEntryResponse]
    next_cursor: int | None = None


class LowStockAlertResponse(BaseModel):
    product_id: str
    product_name: str
    current_stock: int
    reserved: int
    available: int
    threshold: int
    is_critical: bool


class InventoryReportResponse(BaseModel):
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_stock: int
    total_reserved: int
    total_available: int
    alerts: list[LowStockAlertResponse]


class CleanupExpiredResponse(BaseModel):
    expired_count: int
