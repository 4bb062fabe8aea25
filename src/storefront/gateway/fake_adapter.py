"""Configurable fake payment gateway for development and testing.

Simulates a gateway without any external calls. It can be told to succeed
or fail at runtime and records every call it receives, so tests can assert
on what the pipeline asked of it.

Callbacks are JSON bodies and the only accepted signature is
``"test-signature"``::

    {"event": "succeeded" | "failed" | "refunded" | "<anything else>",
     "reference": "...", "order_number": "...", "transaction_id": "...",
     "amount": 29.4, "currency": "USD", "refunded_amount": 0.0,
     "reason": "..."}
"""

import json
from uuid import uuid4

from storefront.errors import GatewayError, MalformedCallback
from storefront.gateway.port import (
    CallbackEvent,
    CallbackOutcome,
    InitResult,
    PaymentGateway,
    RefundResult,
    ReturnUrls,
    VerifyResult,
)

TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    signature_header = "X-Signature"

    def __init__(self, name: str = "fake") -> None:
        self.name = name
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []
        self.verified: dict[str, VerifyResult] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def initialize(self, payment, order, urls: ReturnUrls) -> InitResult:
        self.calls.append(
            {
                "method": "initialize",
                "payment_id": str(payment.id),
                "order_number": order.order_number,
                "amount": payment.amount,
                "notify_url": urls.notify,
            }
        )
        if not self.should_succeed:
            raise GatewayError(self.failure_reason)

        reference = f"fake_{uuid4().hex[:12]}"
        return InitResult(
            reference=reference,
            redirect_url=f"https://pay.example.test/checkout/{reference}",
            client_secret=f"{reference}_secret",
        )

    def verify(self, reference: str) -> VerifyResult:
        self.calls.append({"method": "verify", "reference": reference})
        return self.verified.get(reference, VerifyResult(reference=reference, succeeded=False, status="pending"))

    def refund(self, payment, amount: float, reason: str | None = None) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "payment_id": str(payment.id),
                "reference": payment.gateway_reference,
                "amount": amount,
                "reason": reason,
            }
        )
        if self.should_succeed:
            refund_id = f"fake_ref_{uuid4().hex[:12]}"
            return RefundResult(success=True, gateway_refund_id=refund_id, gateway_status="succeeded")
        return RefundResult(success=False, failure_reason=self.failure_reason)

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:  # noqa: ARG002
        return signature == TEST_SIGNATURE

    def parse_callback(self, payload: bytes) -> CallbackEvent:
        try:
            body = json.loads(payload)
            event = body["event"]
        except (ValueError, KeyError, TypeError) as exc:
            raise MalformedCallback("Callback body is not a valid fake gateway event") from exc

        outcomes = {
            "succeeded": CallbackOutcome.SUCCEEDED,
            "failed": CallbackOutcome.FAILED,
            "refunded": CallbackOutcome.REFUNDED,
        }
        return CallbackEvent(
            outcome=outcomes.get(event, CallbackOutcome.IGNORED),
            reference=body.get("reference"),
            order_number=body.get("order_number"),
            transaction_id=body.get("transaction_id"),
            amount=body.get("amount"),
            currency=body.get("currency"),
            refunded_amount=body.get("refunded_amount"),
            failure_reason=body.get("reason"),
            event_type=event,
            event_id=body.get("id"),
            raw=body,
        )
