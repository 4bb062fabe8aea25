"""Cash-on-delivery gateway.

No external calls are made. The payment stays pending until it is confirmed
by hand when the courier hands over the cash. Callbacks are never accepted:
nobody is entitled to post settlement notices for cash.
"""

from storefront.errors import MalformedCallback
from storefront.gateway.port import (
    CallbackEvent,
    InitResult,
    PaymentGateway,
    RefundResult,
    ReturnUrls,
    VerifyResult,
)


class CashOnDeliveryGateway(PaymentGateway):
    name = "cod"

    def initialize(self, payment, order, urls: ReturnUrls) -> InitResult:  # noqa: ARG002
        return InitResult(reference=f"COD-{order.order_number}")

    def verify(self, reference: str) -> VerifyResult:
        return VerifyResult(reference=reference, succeeded=False, status="pending")

    def refund(self, payment, amount: float, reason: str | None = None) -> RefundResult:  # noqa: ARG002
        # Cash refunds are handed back manually
        return RefundResult(success=True, gateway_status="manual")

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:  # noqa: ARG002
        return False

    def parse_callback(self, payload: bytes) -> CallbackEvent:  # noqa: ARG002
        raise MalformedCallback("Cash-on-delivery payments do not accept callbacks")
