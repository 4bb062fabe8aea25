"""Payment retry: open a new attempt on an order that is still unpaid.

Allowed while the order is pending (card and hosted orders wait in pending
until paid) and none of its attempts has succeeded. The previous attempts
are kept as they are; the new one gets the next attempt number.
"""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import InvalidTransition, StorefrontError
from storefront.order.order import Order, OrderStatus
from storefront.payment.payment import Payment, PaymentMethod
from storefront.utils.locks import order_lock_key, process_serialized


@storefront.command(part_of="Payment")
class RetryPayment:
    order_id = Identifier(required=True)
    customer_id = Identifier()
    payment_method = String(max_length=50)  # defaults to the method of the last attempt


@storefront.command_handler(part_of=Payment)
class RetryPaymentHandler:
    @handle(RetryPayment)
    def retry_payment(self, command):
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        order = order_repo.get(command.order_id)

        if command.customer_id and str(order.customer_id) != str(command.customer_id):
            raise StorefrontError("Order does not belong to this customer", field="order_id")
        if OrderStatus(order.status) != OrderStatus.PENDING:
            raise InvalidTransition(f"Order is {order.status}; payment can only be retried on pending orders")

        attempts = payment_repo.for_order(order.id)
        if any(p.has_succeeded for p in attempts):
            raise InvalidTransition("Order already has a completed payment")

        method = command.payment_method or (attempts[-1].payment_method if attempts else PaymentMethod.CARD.value)
        if method not in {m.value for m in PaymentMethod} or method == PaymentMethod.COD.value:
            raise StorefrontError(f"Payment method {method} cannot be retried online", field="payment_method")

        order.reopen_payment()
        order_repo.add(order)

        payment = Payment.create(order, method, attempt_number=len(attempts) + 1)
        payment_repo.add(payment)
        return str(payment.id)


def retry_payment(order_id, customer_id=None, payment_method: str | None = None) -> str:
    command = RetryPayment(order_id=order_id, customer_id=customer_id, payment_method=payment_method)
    return process_serialized(command, order_lock_key(str(order_id)))
