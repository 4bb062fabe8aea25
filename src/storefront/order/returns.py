"""Order returns: request, approve and complete.

A delivered order can be returned within the configured window after
delivery. The customer requests, an operator approves (the order becomes
``returned``), and completing the return refunds whatever is still
outstanding through the payment's gateway.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.config import get_settings
from storefront.domain import storefront
from storefront.errors import ReturnNotAllowed, StorefrontError
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus
from storefront.payment.payment import Payment
from storefront.payment.refund import refund_at_gateway
from storefront.pricing.engine import round_money, to_decimal
from storefront.utils.locks import order_lock_key, payment_lock_key, process_serialized

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class RequestReturn:
    order_id = Identifier(required=True)
    customer_id = Identifier()
    reason = String(required=True, max_length=255)
    description = String(max_length=1000)


@storefront.command(part_of="Order")
class ApproveReturn:
    order_id = Identifier(required=True)


@storefront.command(part_of="Order")
class CompleteReturn:
    order_id = Identifier(required=True)


def settled_payment_for(order_id) -> Payment | None:
    """The attempt that actually collected money for an order."""
    payments = current_domain.repository_for(Payment).for_order(order_id)
    settled = [p for p in payments if p.has_succeeded]
    return settled[-1] if settled else None


@storefront.command_handler(part_of=Order)
class OrderReturnsHandler:
    @handle(RequestReturn)
    def request_return(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if command.customer_id and str(order.customer_id) != str(command.customer_id):
            raise StorefrontError("Order does not belong to this customer", field="order_id")

        order.request_return(
            command.reason,
            description=command.description,
            window_days=get_settings().return_window_days,
        )
        repo.add(order)

    @handle(ApproveReturn)
    def approve_return(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.approve_return()
        repo.add(order)

    @handle(CompleteReturn)
    def complete_return(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)

        if OrderStatus(order.status) != OrderStatus.RETURNED:
            raise ReturnNotAllowed("Only returned orders can complete a return")
        if order.return_completed_at is not None:
            raise ReturnNotAllowed("Return has already been completed")
        if order.payment_status not in (OrderPaymentStatus.PAID.value, OrderPaymentStatus.PARTIALLY_REFUNDED.value):
            raise ReturnNotAllowed(f"Order payment is {order.payment_status}; nothing can be refunded")

        payment = settled_payment_for(order.id)
        if payment is None:
            raise ReturnNotAllowed("Order has no settled payment to refund")

        unrefunded = to_decimal(order.total) - to_decimal(order.refunded_amount)
        outstanding = round_money(min(unrefunded, to_decimal(payment.refundable_amount)))
        if outstanding > 0:
            result = refund_at_gateway(payment, outstanding, reason="Return completed")
            payment.record_refund(outstanding, gateway_refund_id=result.gateway_refund_id, reason="Return completed")
            current_domain.repository_for(Payment).add(payment)

        order.complete_return(outstanding)
        order_repo.add(order)

        logger.info(
            "return_completed",
            order_id=str(order.id),
            payment_id=str(payment.id),
            refunded_amount=outstanding,
        )
        return outstanding


def complete_return(order_id) -> float:
    """Complete a return while holding the order key and the settled payment's key."""
    payment = settled_payment_for(order_id)
    keys = [order_lock_key(str(order_id))]
    if payment:
        keys.append(payment_lock_key(str(payment.id)))
    return process_serialized(CompleteReturn(order_id=order_id), *keys)


def request_return(order_id, reason: str, customer_id=None, description: str | None = None) -> None:
    command = RequestReturn(order_id=order_id, customer_id=customer_id, reason=reason, description=description)
    process_serialized(command, order_lock_key(str(order_id)))


def approve_return(order_id) -> None:
    process_serialized(ApproveReturn(order_id=order_id), order_lock_key(str(order_id)))
