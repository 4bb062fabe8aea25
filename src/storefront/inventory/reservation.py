"""Stock reservation: commands and handler.

Checkout reserves through the ledger inside its own UnitOfWork. These
commands expose the same primitive on its own, for callers outside checkout.
Dispatch them with ``reserve_stock``/``release_stock`` so concurrent callers
on the same stock key are serialized.
"""

from protean import handle
from protean.fields import Identifier, Integer, String

from storefront.domain import storefront
from storefront.inventory import ledger
from storefront.inventory.stock import StockItem, stock_key
from storefront.utils.locks import process_serialized, stock_lock_key


@storefront.command(part_of="StockItem")
class ReserveStock:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    reference = String(max_length=255)


@storefront.command(part_of="StockItem")
class ReleaseStock:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    reference = String(max_length=255)


@storefront.command_handler(part_of=StockItem)
class StockReservationHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        return ledger.reserve(command.product_id, command.variant_id, command.quantity, command.reference)

    @handle(ReleaseStock)
    def release_stock(self, command):
        return ledger.release(command.product_id, command.variant_id, command.quantity, command.reference)


def reserve_stock(product_id, quantity, variant_id=None, reference=None) -> int:
    command = ReserveStock(product_id=product_id, variant_id=variant_id, quantity=quantity, reference=reference)
    return process_serialized(command, stock_lock_key(stock_key(product_id, variant_id)))


def release_stock(product_id, quantity, variant_id=None, reference=None) -> int:
    command = ReleaseStock(product_id=product_id, variant_id=variant_id, quantity=quantity, reference=reference)
    return process_serialized(command, stock_lock_key(stock_key(product_id, variant_id)))
