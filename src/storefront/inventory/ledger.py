"""Inventory Ledger: reserve and release stock on behalf of other aggregates.

These functions join the caller's UnitOfWork. A reservation made during
checkout is therefore committed or rolled back together with the Order it
belongs to.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.errors import InsufficientStock
from storefront.inventory.stock import StockItem, stock_key

logger = structlog.get_logger(__name__)


def available(product_id, variant_id=None) -> int:
    try:
        item = current_domain.repository_for(StockItem).get(stock_key(product_id, variant_id))
    except ObjectNotFoundError:
        return 0
    return item.quantity


def reserve(product_id, variant_id, quantity: int, reference: str | None = None) -> int:
    """Reserve ``quantity`` units. Returns the remaining stock level.

    Raises InsufficientStock when the level would go negative or the product
    has no stock record at all.
    """
    key = stock_key(product_id, variant_id)
    repo = current_domain.repository_for(StockItem)
    try:
        item = repo.get(key)
    except ObjectNotFoundError:
        raise InsufficientStock(key, 0, quantity) from None

    item.reserve(quantity, reference=reference)
    repo.add(item)

    logger.info("stock_reserved", stock_key=key, quantity=quantity, remaining=item.quantity, reference=reference)
    return item.quantity


def release(product_id, variant_id, quantity: int, reference: str | None = None) -> int:
    """Return ``quantity`` units to stock unconditionally."""
    key = stock_key(product_id, variant_id)
    repo = current_domain.repository_for(StockItem)
    try:
        item = repo.get(key)
    except ObjectNotFoundError:
        item = StockItem.create(product_id, variant_id)

    item.release(quantity, reference=reference)
    repo.add(item)

    logger.info("stock_released", stock_key=key, quantity=quantity, level=item.quantity, reference=reference)
    return item.quantity
