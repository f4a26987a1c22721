"""FastAPI routes for the Inventory context: products, stock, reservations, reports."""

from dataclasses import asdict
from datetime import datetime, timedelta

from fastapi import APIRouter, Query

from inventory.api.schemas import (
    AvailabilityResponse,
    CancelReservationRequest,
    ChangePriceRequest,
    CleanupExpiredRequest,
    CleanupExpiredResponse,
    HistoryResponse,
    InventoryReportResponse,
    LedgerEntryResponse,
    LowStockAlertResponse,
    ProductResponse,
    RegisterProductRequest,
    ReservationResponse,
    ReserveStockRequest,
    SetStockRequest,
)
from inventory.stock.adjustment import SetStockLevel, set_stock_level
from inventory.stock.availability import available_stock, inventory_report, low_stock_alerts, stock_history
from inventory.stock.expiry import ExpireStaleReservations, expire_stale_reservations
from inventory.stock.initialization import ChangePrice, RegisterProduct, change_price, register_product
from inventory.stock.reservation import CancelReservation, ReserveStock, cancel_reservation, reserve_stock
from inventory.stock.stock import HolderType, Product, StockReservation
from shared.database import utcnow


def _product_response(product: Product) -> ProductResponse:
    return ProductResponse(
        product_id=product.id,
        name=product.name,
        price=product.price,
        stock=product.stock,
        reserved=product.reserved,
        available=product.available,
        low_stock_threshold=product.low_stock_threshold,
        track_inventory=product.track_inventory,
    )


def _reservation_response(reservation: StockReservation) -> ReservationResponse:
    return ReservationResponse(
        reservation_id=reservation.id,
        product_id=reservation.product_id,
        holder_id=reservation.holder_id,
        holder_type=reservation.holder_type,
        quantity=reservation.quantity,
        status=reservation.status,
        reserved_at=reservation.reserved_at,
        expires_at=reservation.expires_at,
    )


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/products", status_code=201, response_model=ProductResponse)
def register(body: RegisterProductRequest) -> ProductResponse:
    command = RegisterProduct(
        name=body.name,
        price=body.price,
        initial_stock=body.initial_stock,
        low_stock_threshold=body.low_stock_threshold,
        track_inventory=body.track_inventory,
    )
    return _product_response(register_product(command))


@inventory_router.get("/products/{product_id}/available", response_model=AvailabilityResponse)
def get_available_stock(product_id: str) -> AvailabilityResponse:
    return AvailabilityResponse(**asdict(available_stock(product_id)))


@inventory_router.put("/products/{product_id}/stock", response_model=ProductResponse)
def set_stock(product_id: str, body: SetStockRequest) -> ProductResponse:
    command = SetStockLevel(product_id=product_id, quantity=body.quantity, notes=body.notes)
    return _product_response(set_stock_level(command))


@inventory_router.put("/products/{product_id}/price", response_model=ProductResponse)
def set_price(product_id: str, body: ChangePriceRequest) -> ProductResponse:
    return _product_response(change_price(ChangePrice(product_id=product_id, price=body.price)))


@inventory_router.get("/products/{product_id}/history", response_model=HistoryResponse)
def get_history(
    product_id: str,
    since: datetime | None = None,
    until: datetime | None = None,
    cursor: int | None = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> HistoryResponse:
    page = stock_history(product_id, since=since, until=until, cursor=cursor, limit=limit)
    return HistoryResponse(
        product_id=product_id,
        entries=[
            LedgerEntryResponse(
                id=entry.id,
                change_type=entry.change_type,
                quantity_change=entry.quantity_change,
                previous_stock=entry.previous_stock,
                new_stock=entry.new_stock,
                reference_id=entry.reference_id,
                notes=entry.notes,
                created_at=entry.created_at,
            )
            for entry in page.entries
        ],
        next_cursor=page.next_cursor,
    )


@inventory_router.post("/reservations", status_code=201, response_model=ReservationResponse)
def reserve(body: ReserveStockRequest) -> ReservationResponse:
    expires_at = None
    if body.expires_in_minutes:
        expires_at = utcnow() + timedelta(minutes=body.expires_in_minutes)
    command = ReserveStock(
        product_id=body.product_id,
        holder_id=body.holder_id,
        quantity=body.quantity,
        holder_type=HolderType(body.holder_type),
        expires_at=expires_at,
    )
    return _reservation_response(reserve_stock(command))


@inventory_router.post("/reservations/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel(reservation_id: str, body: CancelReservationRequest | None = None) -> ReservationResponse:
    reason = body.reason if body else "Cancelled"
    return _reservation_response(cancel_reservation(CancelReservation(reservation_id=reservation_id, reason=reason)))


@inventory_router.get("/alerts", response_model=list[LowStockAlertResponse])
def get_alerts() -> list[LowStockAlertResponse]:
    return [LowStockAlertResponse(**asdict(alert)) for alert in low_stock_alerts()]


@inventory_router.get("/report", response_model=InventoryReportResponse)
def get_report() -> InventoryReportResponse:
    return InventoryReportResponse(**asdict(inventory_report()))


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
@inventory_router.post("/cleanup-expired", response_model=CleanupExpiredResponse)
def cleanup_expired(body: CleanupExpiredRequest | None = None) -> CleanupExpiredResponse:
    """Expire stale reservations now instead of waiting for the sweeper."""
    command = ExpireStaleReservations(as_of=body.as_of if body else None)
    return CleanupExpiredResponse(expired_count=expire_stale_reservations(command))
