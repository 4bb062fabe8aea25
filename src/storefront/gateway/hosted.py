"""Hosted-redirect gateway adapter.

The server opens a session with the order number as the transaction id and
sends the customer to the gateway's hosted page. The gateway then posts an
IPN (a form-encoded body) back to us.

IPN authenticity: the form carries ``verify_key``, a comma-separated list of
field names, and ``verify_sign``. The checksum is the md5 hex digest of the
listed fields' values concatenated in that order, followed by the store
password.
"""

import hashlib
import hmac
from urllib.parse import parse_qsl

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
from storefront.pricing.engine import round_money
from storefront.utils.http import send

logger = structlog.get_logger(__name__)

_SUCCESS_STATUSES = {"VALID", "VALIDATED"}
_FAILURE_STATUSES = {"FAILED", "CANCELLED", "EXPIRED"}


def transaction_id_for(payment) -> str:
    """The merchant transaction id sent to the gateway for an attempt.

    The first attempt uses the bare order number. Retries are suffixed so the
    gateway sees a fresh transaction.
    """
    if (payment.attempt_number or 1) <= 1:
        return payment.order_number
    return f"{payment.order_number}-{payment.attempt_number}"


def order_number_from(tran_id: str) -> str:
    """Strip the retry suffix from a transaction id."""
    head, sep, tail = tran_id.rpartition("-")
    if sep and tail.isdigit() and head.count("-") >= 2:
        return head
    return tran_id


def ipn_checksum(fields: dict, store_password: str) -> str:
    keys = [key for key in (fields.get("verify_key") or "").split(",") if key]
    values = "".join(str(fields[key]) for key in keys if key in fields)
    return hashlib.md5((values + store_password).encode()).hexdigest()


def _parse_form(payload: bytes) -> dict:
    try:
        return dict(parse_qsl(payload.decode("utf-8"), keep_blank_values=True, strict_parsing=bool(payload)))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedCallback("IPN body is not a valid form") from exc


class HostedRedirectGateway(PaymentGateway):
    name = "hosted"

    def __init__(
        self,
        store_id: str,
        store_password: str,
        api_base: str = "https://sandbox.sslcommerz.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.store_id = store_id
        self.store_password = store_password
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _post(self, path: str, data: dict, retries: int) -> dict:
        payload = {"store_id": self.store_id, "store_passwd": self.store_password, **data}
        try:
            response = send(
                "POST",
                f"{self.api_base}{path}",
                timeout=self.timeout,
                retries=retries,
                transport=self.transport,
                data=payload,
            )
        except httpx.HTTPError as exc:
            raise GatewayError(f"Hosted gateway request to {path} failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"Hosted gateway returned an unreadable response from {path}") from exc

    # -------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------
    def initialize(self, payment, order, urls: ReturnUrls) -> InitResult:
        tran_id = transaction_id_for(payment)
        address = order.shipping_address

        # Session creation is not idempotent at the gateway: no retry
        body = self._post(
            "/gwprocess/v4/api.php",
            {
                "total_amount": f"{payment.amount:.2f}",
                "currency": payment.currency,
                "tran_id": tran_id,
                "success_url": urls.success,
                "fail_url": urls.failure,
                "cancel_url": urls.cancel,
                "ipn_url": urls.notify,
                "cus_name": address.name if address else "",
                "cus_phone": address.phone if address else "",
                "cus_add1": address.line1 if address else "",
                "cus_city": address.city if address else "",
                "cus_postcode": address.postal_code if address else "",
                "cus_country": address.country if address else "",
                "shipping_method": "YES",
                "ship_name": address.name if address else "",
                "ship_add1": address.line1 if address else "",
                "ship_city": address.city if address else "",
                "ship_postcode": address.postal_code if address else "",
                "ship_country": address.country if address else "",
                "product_name": f"Order {order.order_number}",
                "product_category": "E-commerce",
                "product_profile": "general",
                "value_a": str(order.id),
                "value_b": str(payment.id),
            },
            retries=0,
        )

        if body.get("status") != "SUCCESS" or not body.get("GatewayPageURL"):
            raise GatewayError(body.get("failedreason") or "Hosted gateway refused the session")

        logger.info("hosted_session_created", payment_id=str(payment.id), tran_id=tran_id)
        return InitResult(reference=tran_id, redirect_url=body["GatewayPageURL"], raw=body)

    def verify(self, reference: str) -> VerifyResult:
        body = self._post(
            "/validator/api/validationserverAPI.php",
            {"tran_id": reference, "format": "json"},
            retries=1,
        )
        status = (body.get("status") or "").upper()
        amount = body.get("amount")
        return VerifyResult(
            reference=reference,
            succeeded=status in _SUCCESS_STATUSES,
            amount=round_money(amount) if amount not in (None, "") else None,
            currency=body.get("currency"),
            transaction_id=body.get("val_id"),
            status=status or None,
            raw=body,
        )

    def refund(self, payment, amount: float, reason: str | None = None) -> RefundResult:
        try:
            body = self._post(
                "/validator/api/merchantTransIDvalidationAPI.php",
                {
                    "tran_id": payment.gateway_reference or transaction_id_for(payment),
                    "bank_tran_id": payment.transaction_id or "",
                    "refund_amount": f"{amount:.2f}",
                    "refund_remarks": reason or "Customer refund",
                    "format": "json",
                },
                retries=0,
            )
        except GatewayError as exc:
            return RefundResult(success=False, failure_reason=exc.message)

        if (body.get("status") or "").lower() == "success":
            return RefundResult(success=True, gateway_refund_id=body.get("refund_ref_id"), gateway_status="success")
        reason = body.get("errorReason") or body.get("error") or "Refund failed"
        return RefundResult(success=False, failure_reason=reason)

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------
    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.store_password:
            return False
        try:
            fields = _parse_form(payload)
        except MalformedCallback:
            return False

        supplied = signature or fields.get("verify_sign")
        if not supplied or not fields.get("verify_key"):
            return False
        return hmac.compare_digest(ipn_checksum(fields, self.store_password), supplied)

    def parse_callback(self, payload: bytes) -> CallbackEvent:
        fields = _parse_form(payload)
        tran_id = fields.get("tran_id")
        status = (fields.get("status") or "").upper()
        if not tran_id or not status:
            raise MalformedCallback("IPN is missing tran_id or status")

        amount = fields.get("amount") or fields.get("currency_amount")
        try:
            amount = round_money(amount) if amount else None
        except ArithmeticError as exc:
            raise MalformedCallback("IPN amount is not a number") from exc

        common = {
            "reference": tran_id,
            "order_number": order_number_from(tran_id),
            "event_type": status,
            "event_id": fields.get("val_id"),
            "raw": fields,
        }

        if status in _SUCCESS_STATUSES:
            return CallbackEvent(
                outcome=CallbackOutcome.SUCCEEDED,
                transaction_id=fields.get("val_id") or fields.get("bank_tran_id"),
                amount=amount,
                currency=fields.get("currency_type") or fields.get("currency"),
                **common,
            )
        if status in _FAILURE_STATUSES:
            return CallbackEvent(
                outcome=CallbackOutcome.FAILED,
                failure_reason=fields.get("error") or f"Payment {status.lower()}",
                **common,
            )
        return CallbackEvent(outcome=CallbackOutcome.IGNORED, **common)
