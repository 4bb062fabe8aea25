"""Payment initiation: open a session for a pending payment at its gateway.

Runs after checkout has committed. A gateway that cannot be reached does not
undo the checkout: the order stays pending, the payment stays pending with
the failure recorded, and the customer can try again. ``initiate_payment()``
surfaces that outcome as ``PaymentInitiationFailed`` once the failure has
been saved.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from storefront.config import get_settings
from storefront.domain import storefront
from storefront.errors import GatewayError, InvalidTransition, PaymentInitiationFailed
from storefront.gateway import get_gateway
from storefront.gateway.port import ReturnUrls
from storefront.order.order import Order
from storefront.payment.payment import Payment
from storefront.utils.locks import payment_lock_key, process_serialized

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Payment")
class InitiatePayment:
    payment_id = Identifier(required=True)


@dataclass(frozen=True)
class PaymentSession:
    payment_id: str
    reference: str | None = None
    redirect_url: str | None = None
    client_secret: str | None = None
    failure_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure_reason is None


def return_urls_for(payment: Payment) -> ReturnUrls:
    base = get_settings().base_url.rstrip("/")
    return ReturnUrls(
        success=f"{base}/payments/{payment.id}/success",
        failure=f"{base}/payments/{payment.id}/failure",
        cancel=f"{base}/payments/{payment.id}/cancel",
        notify=f"{base}/webhooks/payments/{payment.payment_method}",
    )


@storefront.command_handler(part_of=Payment)
class InitiatePaymentHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        if not payment.is_pending:
            raise InvalidTransition(f"Payment is {payment.status}; only pending payments can be initiated")

        order = current_domain.repository_for(Order).get(payment.order_id)
        gateway = get_gateway(payment.payment_method)

        try:
            result = gateway.initialize(payment, order, return_urls_for(payment))
        except GatewayError as exc:
            payment.record_initiation_failure(exc.message)
            repo.add(payment)
            logger.warning(
                "payment_initiation_failed",
                payment_id=str(payment.id),
                order_number=payment.order_number,
                gateway=gateway.name,
                reason=exc.message,
            )
            return PaymentSession(payment_id=str(payment.id), failure_reason=exc.message)

        payment.attach_gateway_session(
            result.reference,
            redirect_url=result.redirect_url,
            client_secret=result.client_secret,
            raw=result.raw,
        )
        repo.add(payment)

        logger.info(
            "payment_initiated",
            payment_id=str(payment.id),
            order_number=payment.order_number,
            gateway=gateway.name,
            reference=result.reference,
        )
        return PaymentSession(
            payment_id=str(payment.id),
            reference=result.reference,
            redirect_url=result.redirect_url,
            client_secret=result.client_secret,
        )


def initiate_payment(payment_id) -> PaymentSession:
    session = process_serialized(InitiatePayment(payment_id=payment_id), payment_lock_key(str(payment_id)))
    if not session.succeeded:
        raise PaymentInitiationFailed(f"Payment initiation failed, please retry: {session.failure_reason}")
    return session
