"""Stock adjustment: command and handler for setting an absolute stock count."""

import structlog
from pydantic import BaseModel

from inventory.stock.stock import Product, lock_product
from shared.database import retry_on_conflict, unit_of_work

logger = structlog.get_logger(__name__)


class SetStockLevel(BaseModel):
    """Set physical stock after a count or a delivery.

    Logged as ``stock_in`` when the count goes up and ``stock_out`` when it
    goes down. The new count may not drop below what is currently reserved.
    """

    product_id: str
    quantity: int
    notes: str | None = None
    reference_id: str | None = None


@retry_on_conflict
def set_stock_level(command: SetStockLevel) -> Product:
    with unit_of_work() as session:
        product = lock_product(session, command.product_id)
        previous_stock = product.stock
        changed = product.set_stock(command.quantity, notes=command.notes, reference_id=command.reference_id)

    if changed:
        logger.info(
            "Stock level set",
            product_id=command.product_id,
            previous_stock=previous_stock,
            new_stock=product.stock,
        )
    return product
