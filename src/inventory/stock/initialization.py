"""Product registration and pricing: commands and handlers."""

from decimal import Decimal

import structlog
from pydantic import BaseModel

from inventory.stock.stock import Product, lock_product
from shared.database import new_id, retry_on_conflict, unit_of_work
from shared.exceptions import ValidationError

logger = structlog.get_logger(__name__)


class RegisterProduct(BaseModel):
    """Create a stock record for a sellable product."""

    name: str
    price: Decimal
    initial_stock: int = 0
    low_stock_threshold: int = 10
    track_inventory: bool = True


class ChangePrice(BaseModel):
    product_id: str
    price: Decimal


def register_product(command: RegisterProduct) -> Product:
    if not command.name or not command.name.strip():
        raise ValidationError({"name": ["Name is required"]})
    if command.price <= 0:
        raise ValidationError({"price": ["Price must be positive"]})
    if command.initial_stock < 0:
        raise ValidationError({"initial_stock": ["Initial stock cannot be negative"]})
    if command.low_stock_threshold < 0:
        raise ValidationError({"low_stock_threshold": ["Threshold cannot be negative"]})

    with unit_of_work() as session:
        product = Product(
            id=new_id(),
            name=command.name.strip(),
            price=command.price,
            stock=0,
            reserved=0,
            low_stock_threshold=command.low_stock_threshold,
            track_inventory=command.track_inventory,
        )
        session.add(product)
        session.flush()
        if command.initial_stock:
            product.receive(command.initial_stock, reference_id=product.id, notes="Initial stock")

    logger.info(
        "Product registered",
        product_id=product.id,
        initial_stock=command.initial_stock,
        track_inventory=command.track_inventory,
    )
    return product


@retry_on_conflict
def change_price(command: ChangePrice) -> Product:
    """Change the list price. Orders already placed keep their snapshot."""
    with unit_of_work() as session:
        product = lock_product(session, command.product_id)
        previous_price = product.price
        product.change_price(command.price)

    logger.info(
        "Product price changed",
        product_id=command.product_id,
        previous_price=str(previous_price),
        price=str(command.price),
    )
    return product
