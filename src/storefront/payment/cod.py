"""Cash-on-delivery confirmation.

Cash orders are placed straight into processing with their payment pending.
When the courier hands over the cash, an operator confirms it here: the
payment completes and the order is marked paid, keeping whatever fulfillment
status it has reached.
"""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import InvalidTransition, StorefrontError
from storefront.order.order import Order, OrderStatus
from storefront.payment.payment import Payment, PaymentMethod
from storefront.utils.locks import order_lock_key, payment_lock_key, process_serialized


@storefront.command(part_of="Payment")
class ConfirmCashPayment:
    payment_id = Identifier(required=True)
    receipt_number = String(max_length=255)


@storefront.command_handler(part_of=Payment)
class ConfirmCashPaymentHandler:
    @handle(ConfirmCashPayment)
    def confirm_cash_payment(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        payment = payment_repo.get(command.payment_id)

        if payment.payment_method != PaymentMethod.COD.value:
            raise StorefrontError("Only cash-on-delivery payments can be confirmed by hand", field="payment_method")
        if payment.has_succeeded:
            return payment.status

        order = order_repo.get(payment.order_id)
        if OrderStatus(order.status) == OrderStatus.CANCELLED:
            raise InvalidTransition("Cannot collect cash for a cancelled order")

        payment.mark_completed(transaction_id=command.receipt_number or f"COD-{payment.order_number}")
        order.mark_paid()

        payment_repo.add(payment)
        order_repo.add(order)
        return payment.status


def confirm_cash_payment(payment_id, receipt_number: str | None = None) -> str:
    payment = current_domain.repository_for(Payment).get(payment_id)
    command = ConfirmCashPayment(payment_id=payment_id, receipt_number=receipt_number)
    return process_serialized(command, payment_lock_key(str(payment_id)), order_lock_key(str(payment.order_id)))
