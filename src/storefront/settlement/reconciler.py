"""Settlement Reconciler: the entry point for gateway callbacks.

``handle_callback(gateway, payload, signature)`` never raises. It answers
``Accepted`` or ``Rejected(reason, retryable)`` so the HTTP layer can decide
on a status code without knowing about gateways.

1. Verify authenticity before anything else. A bad signature is rejected
   without parsing the body.
2. Parse the body into a ``CallbackEvent``. Events the pipeline does not act
   on are acknowledged.
3. Resolve the callback to exactly one Payment, by gateway reference first
   and the merchant order number second. Unknown references are rejected and
   logged for manual reconciliation.
4. Apply the outcome through ``ApplySettlement`` while holding the payment's
   key, so two deliveries of the same callback are applied one after the
   other and the second one sees the first one's result.
"""

import json
from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from storefront.errors import (
    InvalidSignature,
    MalformedCallback,
    ReconciliationError,
    StorefrontError,
    UnknownReference,
)
from storefront.gateway import GATEWAY_NAMES, get_gateway
from storefront.gateway.port import CallbackEvent
from storefront.order.order import Order
from storefront.payment.payment import Payment
from storefront.settlement.settlement import ApplySettlement
from storefront.utils.locks import order_lock_key, payment_lock_key, process_serialized

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Accepted:
    outcome: str  # applied | duplicate | stale | ignored
    payment_id: str | None = None
    event_type: str | None = None


@dataclass(frozen=True)
class Rejected:
    reason: str
    detail: str
    retryable: bool = False


def resolve_payment(event: CallbackEvent, gateway_name: str) -> Payment | None:
    payments = current_domain.repository_for(Payment)
    for reference in (event.reference, event.transaction_id):
        if reference:
            payment = payments.find_by_gateway_reference(reference)
            if payment is not None:
                return payment

    if event.order_number:
        order = current_domain.repository_for(Order).find_by_order_number(event.order_number)
        if order is not None:
            attempts = [p for p in payments.for_order(order.id) if p.payment_method == gateway_name]
            if attempts:
                return attempts[-1]
    return None


def _reject(error: ReconciliationError, gateway_name: str, **context) -> Rejected:
    logger.warning(
        "callback_rejected",
        gateway=gateway_name,
        reason=error.code,
        detail=error.message,
        retryable=error.retryable,
        **context,
    )
    return Rejected(reason=error.code, detail=error.message, retryable=error.retryable)


def handle_callback(gateway_name: str, payload: bytes, signature: str | None = None) -> Accepted | Rejected:
    if gateway_name not in GATEWAY_NAMES:
        return Rejected(reason="unknown_gateway", detail=f"No gateway named {gateway_name}")
    gateway = get_gateway(gateway_name)

    if not gateway.verify_signature(payload, signature):
        return _reject(InvalidSignature("Callback signature does not match"), gateway_name)

    try:
        event = gateway.parse_callback(payload)
    except MalformedCallback as exc:
        return _reject(exc, gateway_name)

    if not event.is_actionable:
        logger.info("callback_ignored", gateway=gateway_name, event_type=event.event_type, reference=event.reference)
        return Accepted(outcome="ignored", event_type=event.event_type)

    payment = resolve_payment(event, gateway_name)
    if payment is None:
        return _reject(
            UnknownReference(f"No payment matches reference {event.reference or event.order_number}"),
            gateway_name,
            reference=event.reference,
            order_number=event.order_number,
            event_type=event.event_type,
            needs_manual_reconciliation=True,
        )

    command = ApplySettlement(
        payment_id=str(payment.id),
        outcome=event.outcome.value,
        transaction_id=event.transaction_id,
        amount=event.amount,
        currency=event.currency,
        refunded_amount=event.refunded_amount,
        failure_reason=event.failure_reason,
        event_id=event.event_id,
        raw=json.dumps(event.raw, default=str),
    )
    try:
        outcome = process_serialized(command, payment_lock_key(str(payment.id)), order_lock_key(str(payment.order_id)))
    except ReconciliationError as exc:
        return _reject(exc, gateway_name, payment_id=str(payment.id), event_type=event.event_type)
    except StorefrontError as exc:
        logger.warning(
            "callback_not_applicable",
            gateway=gateway_name,
            payment_id=str(payment.id),
            reason=exc.code,
            detail=exc.message,
        )
        return Rejected(reason=exc.code, detail=exc.message)

    logger.info(
        "callback_accepted",
        gateway=gateway_name,
        payment_id=str(payment.id),
        event_type=event.event_type,
        outcome=outcome,
    )
    return Accepted(outcome=outcome, payment_id=str(payment.id), event_type=event.event_type)
