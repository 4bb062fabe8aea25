"""Payment refunds: command and handler.

The refund is first confirmed by the gateway. Only then are the Payment and
its Order updated, together, in one UnitOfWork. A gateway refusal leaves both
untouched and surfaces as ``RefundFailed``. Nothing is ever marked refunded
speculatively.
"""

import json

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import InvalidRefund, RefundFailed
from storefront.gateway import get_gateway
from storefront.order.order import Order, OrderPaymentStatus
from storefront.payment.payment import Payment
from storefront.utils.locks import order_lock_key, payment_lock_key, process_serialized

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Payment")
class RefundPayment:
    payment_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=500)
    items = Text()  # JSON: {order_item_id: quantity}


def refund_at_gateway(payment: Payment, amount: float, reason: str | None = None):
    """Ask the payment's gateway to refund ``amount``. Raises RefundFailed on refusal."""
    result = get_gateway(payment.payment_method).refund(payment, amount, reason)
    if not result.success:
        logger.warning(
            "refund_rejected_by_gateway",
            payment_id=str(payment.id),
            amount=amount,
            reason=result.failure_reason,
        )
        raise RefundFailed(result.failure_reason or "Gateway rejected the refund")
    return result


def _item_quantities(order: Order, raw) -> dict:
    if not raw:
        return {}
    try:
        quantities = json.loads(raw) if isinstance(raw, str) else dict(raw)
    except (ValueError, TypeError) as exc:
        raise InvalidRefund("Refund items must be a JSON object", field="items") from exc

    for item_id, quantity in quantities.items():
        item = next((i for i in order.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise InvalidRefund(f"Item {item_id} is not part of this order", field="items")
        if not isinstance(quantity, int) or quantity < 1:
            raise InvalidRefund(f"Refund quantity for item {item_id} must be a positive integer", field="items")
        if quantity > item.refundable_quantity:
            raise InvalidRefund(
                f"Only {item.refundable_quantity} unit(s) of item {item_id} can still be refunded",
                field="items",
            )
    return quantities


@storefront.command_handler(part_of=Payment)
class RefundPaymentHandler:
    @handle(RefundPayment)
    def refund_payment(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        payment = payment_repo.get(command.payment_id)
        order = order_repo.get(payment.order_id)

        payment.validate_refund(command.amount)
        if order.payment_status not in (OrderPaymentStatus.PAID.value, OrderPaymentStatus.PARTIALLY_REFUNDED.value):
            raise InvalidRefund(f"Order payment is {order.payment_status} and cannot be refunded", field="status")
        quantities = _item_quantities(order, command.items)

        result = refund_at_gateway(payment, command.amount, command.reason)

        payment.record_refund(command.amount, gateway_refund_id=result.gateway_refund_id, reason=command.reason)
        order.record_refund(command.amount, item_quantities=quantities)
        payment_repo.add(payment)
        order_repo.add(order)

        logger.info(
            "payment_refunded",
            payment_id=str(payment.id),
            order_id=str(order.id),
            amount=command.amount,
            refunded_amount=payment.refunded_amount,
            status=payment.status,
        )
        return payment.status


def refund_payment(payment_id, amount: float, reason: str | None = None, items: dict | None = None) -> str:
    payment = current_domain.repository_for(Payment).get(payment_id)
    command = RefundPayment(
        payment_id=payment_id,
        amount=amount,
        reason=reason,
        items=json.dumps(items) if items else None,
    )
    return process_serialized(command, payment_lock_key(str(payment_id)), order_lock_key(str(payment.order_id)))
