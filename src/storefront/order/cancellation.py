"""Order cancellation: command and handler.

Only pending and processing orders can be cancelled. Every reserved unit is
released back to stock in the same UnitOfWork. Refunding a paid order is a
separate, explicit ``RefundPayment``.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import StorefrontError
from storefront.inventory import ledger
from storefront.inventory.stock import stock_key
from storefront.order.order import Order
from storefront.utils.locks import order_lock_key, process_serialized, stock_lock_key

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    customer_id = Identifier()  # set when the customer cancels their own order
    reason = String(max_length=500)


@storefront.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        if command.customer_id and str(order.customer_id) != str(command.customer_id):
            raise StorefrontError("Order does not belong to this customer", field="order_id")

        items = order.cancel(command.reason)
        for item in items:
            ledger.release(item.product_id, item.variant_id, item.quantity, reference=order.order_number)
        repo.add(order)

        logger.info(
            "order_cancelled",
            order_id=str(order.id),
            order_number=order.order_number,
            reason=command.reason,
            items_released=len(items),
        )


def cancel_order(order_id, reason: str | None = None, customer_id=None) -> None:
    """Cancel an order while holding its key and the stock keys of its lines."""
    order = current_domain.repository_for(Order).get(order_id)
    keys = [order_lock_key(str(order_id))]
    keys += [stock_lock_key(stock_key(item.product_id, item.variant_id)) for item in order.items]
    process_serialized(CancelOrder(order_id=order_id, customer_id=customer_id, reason=reason), *keys)
