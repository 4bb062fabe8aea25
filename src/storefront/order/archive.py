"""Order archival. Orders are financial records and are never deleted."""

from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.order.order import Order
from storefront.utils.locks import order_lock_key, process_serialized


@storefront.command(part_of="Order")
class ArchiveOrder:
    order_id = Identifier(required=True)


@storefront.command_handler(part_of=Order)
class ArchiveOrderHandler:
    @handle(ArchiveOrder)
    def archive_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.archive()
        repo.add(order)


def archive_order(order_id) -> None:
    process_serialized(ArchiveOrder(order_id=order_id), order_lock_key(str(order_id)))
