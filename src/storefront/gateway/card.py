"""Card-redirect gateway adapter.

Speaks the payment-intent protocol: the server creates an intent, the client
confirms the card off-band with the returned ``client_secret``, and the
gateway reports the outcome through a signed webhook.

Webhook signatures arrive as ``t=<unix ts>,v1=<hex>[,v1=<hex>...]`` where
each ``v1`` is HMAC-SHA256 of ``"<ts>.<raw body>"`` keyed by the webhook
secret. Signatures older than the tolerance window are rejected to defeat
replays.
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal

import httpx
import structlog

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
from storefront.pricing.engine import round_money, to_decimal
from storefront.utils.http import send

logger = structlog.get_logger(__name__)


def to_minor_units(amount) -> int:
    return int((to_decimal(amount) * 100).to_integral_value())


def from_minor_units(value) -> float:
    return round_money(Decimal(int(value or 0)) / 100)


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Build a signature header for ``payload``, as the gateway would."""
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class CardRedirectGateway(PaymentGateway):
    name = "card"
    signature_header = "Stripe-Signature"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 10.0,
        tolerance_seconds: int = 300,
        transport: httpx.BaseTransport | None = None,
        clock=time.time,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.tolerance_seconds = tolerance_seconds
        self.transport = transport
        self.clock = clock

    def _headers(self, idempotency_key: str | None = None) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _call(self, method: str, path: str, retries: int, idempotency_key: str | None = None, **kwargs) -> dict:
        try:
            response = send(
                method,
                f"{self.api_base}{path}",
                timeout=self.timeout,
                retries=retries,
                transport=self.transport,
                headers=self._headers(idempotency_key),
                **kwargs,
            )
        except httpx.HTTPStatusError as exc:
            message = exc.response.text
            try:
                message = exc.response.json().get("error", {}).get("message", message)
            except ValueError:
                pass
            raise GatewayError(f"Card gateway rejected {path}: {message}") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Card gateway unreachable: {exc}") from exc
        return response.json()

    # -------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------
    def initialize(self, payment, order, urls: ReturnUrls) -> InitResult:
        # The idempotency key makes a retried create safe
        body = self._call(
            "POST",
            "/payment_intents",
            retries=1,
            idempotency_key=f"intent-{payment.id}",
            data={
                "amount": to_minor_units(payment.amount),
                "currency": payment.currency.lower(),
                "metadata[order_number]": order.order_number,
                "metadata[payment_id]": str(payment.id),
                "metadata[order_id]": str(order.id),
                "automatic_payment_methods[enabled]": "true",
            },
        )
        logger.info("card_intent_created", payment_id=str(payment.id), reference=body.get("id"))
        return InitResult(
            reference=body["id"],
            client_secret=body.get("client_secret"),
            raw=body,
        )

    def verify(self, reference: str) -> VerifyResult:
        body = self._call("GET", f"/payment_intents/{reference}", retries=1)
        received = body.get("amount_received") or body.get("amount")
        return VerifyResult(
            reference=reference,
            succeeded=body.get("status") == "succeeded",
            amount=from_minor_units(received),
            currency=(body.get("currency") or "").upper() or None,
            transaction_id=body.get("latest_charge"),
            status=body.get("status"),
            raw=body,
        )

    def refund(self, payment, amount: float, reason: str | None = None) -> RefundResult:
        minor = to_minor_units(amount)
        already = to_minor_units(payment.refunded_amount)
        try:
            body = self._call(
                "POST",
                "/refunds",
                retries=1,
                idempotency_key=f"refund-{payment.id}-{already}-{minor}",
                data={"payment_intent": payment.gateway_reference, "amount": minor},
            )
        except GatewayError as exc:
            return RefundResult(success=False, failure_reason=exc.message)

        status = body.get("status")
        if status in ("succeeded", "pending"):
            return RefundResult(success=True, gateway_refund_id=body.get("id"), gateway_status=status)
        return RefundResult(
            success=False,
            gateway_refund_id=body.get("id"),
            gateway_status=status,
            failure_reason=body.get("failure_reason") or "Refund was not accepted",
        )

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------
    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        if not signature or not self.webhook_secret:
            return False

        timestamp = None
        candidates = []
        for part in signature.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)

        if timestamp is None or not candidates:
            return False
        try:
            ts = int(timestamp)
        except ValueError:
            return False
        if abs(self.clock() - ts) > self.tolerance_seconds:
            return False

        expected = sign_payload(payload, self.webhook_secret, ts).split("v1=", 1)[1]
        return any(hmac.compare_digest(expected, candidate) for candidate in candidates)

    def parse_callback(self, payload: bytes) -> CallbackEvent:
        try:
            body = json.loads(payload)
            event_type = body["type"]
            obj = body["data"]["object"]
        except (ValueError, KeyError, TypeError) as exc:
            raise MalformedCallback("Card webhook body is not a valid event") from exc

        metadata = obj.get("metadata") or {}
        event_id = body.get("id")

        if event_type == "payment_intent.succeeded":
            return CallbackEvent(
                outcome=CallbackOutcome.SUCCEEDED,
                reference=obj.get("id"),
                order_number=metadata.get("order_number"),
                transaction_id=obj.get("latest_charge") or obj.get("id"),
                amount=from_minor_units(obj.get("amount_received") or obj.get("amount")),
                currency=(obj.get("currency") or "").upper() or None,
                event_type=event_type,
                event_id=event_id,
                raw=body,
            )

        if event_type == "payment_intent.payment_failed":
            error = obj.get("last_payment_error") or {}
            return CallbackEvent(
                outcome=CallbackOutcome.FAILED,
                reference=obj.get("id"),
                order_number=metadata.get("order_number"),
                failure_reason=error.get("message") or "Payment failed",
                event_type=event_type,
                event_id=event_id,
                raw=body,
            )

        if event_type == "charge.refunded":
            return CallbackEvent(
                outcome=CallbackOutcome.REFUNDED,
                reference=obj.get("payment_intent"),
                order_number=metadata.get("order_number"),
                transaction_id=obj.get("id"),
                refunded_amount=from_minor_units(obj.get("amount_refunded")),
                currency=(obj.get("currency") or "").upper() or None,
                event_type=event_type,
                event_id=event_id,
                raw=body,
            )

        if event_type == "charge.dispute.created":
            logger.warning(
                "card_dispute_opened",
                reference=obj.get("payment_intent"),
                charge=obj.get("charge"),
                reason=obj.get("reason"),
                amount=from_minor_units(obj.get("amount")),
            )

        return CallbackEvent(
            outcome=CallbackOutcome.IGNORED,
            reference=obj.get("payment_intent") or obj.get("id"),
            event_type=event_type,
            event_id=event_id,
            raw=body,
        )
