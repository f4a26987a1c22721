"""Read-side queries: available stock, low-stock alerts and the inventory report."""

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select

from inventory.ledger import ledger
from inventory.ledger.ledger import LedgerPage
from inventory.stock.stock import Product, get_product
from shared.database import unit_of_work


@dataclass(frozen=True)
class StockAvailability:
    product_id: str
    stock: int
    reserved: int
    available: int
    track_inventory: bool


@dataclass(frozen=True)
class LowStockAlert:
    product_id: str
    product_name: str
    current_stock: int
    reserved: int
    available: int
    threshold: int
    is_critical: bool  # nothing left to sell


@dataclass(frozen=True)
class InventoryReport:
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_stock: int
    total_reserved: int
    total_available: int
    alerts: list[LowStockAlert] = field(default_factory=list)


def _alert_for(product: Product) -> LowStockAlert:
    return LowStockAlert(
        product_id=product.id,
        product_name=product.name,
        current_stock=product.stock,
        reserved=product.reserved,
        available=product.available,
        threshold=product.low_stock_threshold,
        is_critical=product.available <= 0,
    )


def available_stock(product_id: str) -> StockAvailability:
    with unit_of_work() as session:
        product = get_product(session, product_id)
        return StockAvailability(
            product_id=product.id,
            stock=product.stock,
            reserved=product.reserved,
            available=product.available,
            track_inventory=product.track_inventory,
        )


def low_stock_alerts() -> list[LowStockAlert]:
    """Tracked products below their threshold, least available first."""
    with unit_of_work() as session:
        query = (
            select(Product)
            .where(
                Product.track_inventory.is_(True),
                (Product.stock - Product.reserved) < Product.low_stock_threshold,
            )
            .order_by(Product.stock - Product.reserved, Product.name)
        )
        return [_alert_for(product) for product in session.scalars(query)]


def inventory_report() -> InventoryReport:
    with unit_of_work() as session:
        products = list(session.scalars(select(Product).order_by(Product.name)))

    tracked = [product for product in products if product.track_inventory]
    alerts = sorted(
        (_alert_for(product) for product in tracked if product.is_low_stock),
        key=lambda alert: (alert.available, alert.product_name),
    )
    return InventoryReport(
        total_products=len(products),
        low_stock_products=len(alerts),
        out_of_stock_products=sum(1 for product in tracked if product.is_out_of_stock),
        total_stock=sum(product.stock for product in tracked),
        total_reserved=sum(product.reserved for product in tracked),
        total_available=sum(product.available for product in tracked),
        alerts=alerts,
    )


def stock_history(
    product_id: str,
    since: datetime | None = None,
    until: datetime | None = None,
    cursor: int | None = None,
    limit: int = 50,
) -> LedgerPage:
    """One page of a product's ledger; raises ``ProductNotFound`` for unknown ids."""
    with unit_of_work() as session:
        get_product(session, product_id)
        return ledger.history(session, product_id, since=since, until=until, cursor=cursor, limit=limit)
