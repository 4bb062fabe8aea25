"""Stock intake and counts: commands and handler."""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.inventory.stock import StockItem, stock_key
from storefront.utils.locks import process_serialized, stock_lock_key


@storefront.command(part_of="StockItem")
class ReceiveStock:
    """Add units to a product or variant, creating its stock record if needed."""

    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)


@storefront.command(part_of="StockItem")
class AdjustStock:
    """Set a stock level to a counted value."""

    product_id = Identifier(required=True)
    variant_id = Identifier()
    new_level = Integer(required=True, min_value=0)
    reason = String(required=True, max_length=255)


@storefront.command_handler(part_of=StockItem)
class StockIntakeHandler:
    @handle(ReceiveStock)
    def receive_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        try:
            item = repo.get(stock_key(command.product_id, command.variant_id))
        except ObjectNotFoundError:
            item = StockItem.create(command.product_id, command.variant_id)

        item.receive(command.quantity)
        repo.add(item)
        return item.key

    @handle(AdjustStock)
    def adjust_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        try:
            item = repo.get(stock_key(command.product_id, command.variant_id))
        except ObjectNotFoundError:
            item = StockItem.create(command.product_id, command.variant_id)

        item.adjust(command.new_level, command.reason)
        repo.add(item)
        return item.key


def receive_stock(product_id, quantity, variant_id=None) -> str:
    command = ReceiveStock(product_id=product_id, variant_id=variant_id, quantity=quantity)
    return process_serialized(command, stock_lock_key(stock_key(product_id, variant_id)))


def adjust_stock(product_id, new_level, reason, variant_id=None) -> str:
    command = AdjustStock(product_id=product_id, variant_id=variant_id, new_level=new_level, reason=reason)
    return process_serialized(command, stock_lock_key(stock_key(product_id, variant_id)))
