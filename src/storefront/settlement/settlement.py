"""Applying a verified gateway callback to a Payment and its Order.

``ApplySettlement`` is only ever dispatched by the reconciler, after the
callback's signature was checked and its payment resolved, while the payment
and order keys are held. Its handler is idempotent: a callback whose outcome
is already reflected in the payment is acknowledged without side effects.

Outcomes returned by the handler:

- ``applied``: state changed
- ``duplicate``: the callback had already been applied
- ``stale``: a failure report for an attempt that has since succeeded
"""

import json

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import AmountMismatch, OutOfOrderCallback
from storefront.gateway.port import CallbackOutcome
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus
from storefront.payment.payment import Payment
from storefront.pricing.engine import round_money, to_decimal

logger = structlog.get_logger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"

_TOLERANCE = to_decimal("0.01")
_OPEN_PAYMENT_STATES = (OrderPaymentStatus.PENDING.value, OrderPaymentStatus.FAILED.value)
_REFUNDABLE_STATES = (OrderPaymentStatus.PAID.value, OrderPaymentStatus.PARTIALLY_REFUNDED.value)


@storefront.command(part_of="Payment")
class ApplySettlement:
    payment_id = Identifier(required=True)
    outcome = String(required=True, max_length=20)
    transaction_id = String(max_length=255)
    amount = Float()
    currency = String(max_length=3)
    refunded_amount = Float()
    failure_reason = String(max_length=500)
    event_id = String(max_length=255)
    raw = Text()  # JSON: the callback body


@storefront.command_handler(part_of=Payment)
class ApplySettlementHandler:
    @handle(ApplySettlement)
    def apply_settlement(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        payment = payment_repo.get(command.payment_id)
        order = order_repo.get(payment.order_id)
        raw = json.loads(command.raw) if command.raw else None

        outcome = CallbackOutcome(command.outcome)
        if outcome == CallbackOutcome.SUCCEEDED:
            result = self._succeeded(command, payment, order, raw)
        elif outcome == CallbackOutcome.FAILED:
            result = self._failed(command, payment, order, raw)
        else:
            result = self._refunded(command, payment, order)

        if result == APPLIED:
            payment_repo.add(payment)
            order_repo.add(order)
        return result

    def _succeeded(self, command, payment, order, raw) -> str:
        if payment.has_succeeded:
            return DUPLICATE

        if command.amount is not None and abs(to_decimal(command.amount) - to_decimal(payment.amount)) > _TOLERANCE:
            raise AmountMismatch(f"Gateway reported {command.amount:.2f}, payment is for {payment.amount:.2f}")
        if command.currency and command.currency.upper() != (payment.currency or "").upper():
            raise AmountMismatch(f"Gateway reported currency {command.currency}, payment is in {payment.currency}")

        payment.mark_completed(transaction_id=command.transaction_id, raw=raw)

        if OrderStatus(order.status) == OrderStatus.CANCELLED:
            # Money was taken for an order that will not ship. The order stays cancelled and unpaid.
            logger.warning(
                "settlement_for_cancelled_order",
                order_id=str(order.id),
                payment_id=str(payment.id),
                amount=payment.amount,
                needs_manual_reconciliation=True,
            )
        elif order.payment_status in _OPEN_PAYMENT_STATES:
            order.mark_paid()
        else:
            # Another attempt already settled this order: money was taken twice
            logger.warning(
                "duplicate_settlement",
                order_id=str(order.id),
                payment_id=str(payment.id),
                order_payment_status=order.payment_status,
                needs_manual_reconciliation=True,
            )
        return APPLIED

    def _failed(self, command, payment, order, raw) -> str:
        if payment.has_succeeded:
            logger.info("stale_payment_failure", payment_id=str(payment.id), status=payment.status)
            return STALE
        if payment.has_failed:
            return DUPLICATE

        payment.mark_failed(reason=command.failure_reason, raw=raw)

        # A failure of an older attempt must not mark a newer attempt's order failed
        latest = current_domain.repository_for(Payment).latest_for_order(order.id)
        if latest is None or str(latest.id) == str(payment.id):
            order.mark_payment_failed(command.failure_reason)
        return APPLIED

    def _refunded(self, command, payment, order) -> str:
        if not payment.has_succeeded:
            raise OutOfOrderCallback(f"Refund reported for a payment that is {payment.status}")
        if command.refunded_amount is None:
            raise AmountMismatch("Refund notification carries no refunded amount")

        reported = to_decimal(command.refunded_amount)
        if reported > to_decimal(payment.amount) + _TOLERANCE:
            raise AmountMismatch(
                f"Gateway reported {command.refunded_amount:.2f} refunded, payment is for {payment.amount:.2f}"
            )

        delta = round_money(min(reported, to_decimal(payment.amount)) - to_decimal(payment.refunded_amount))
        if delta <= 0:
            return DUPLICATE

        payment.record_refund(delta, gateway_refund_id=command.event_id, reason="Refunded at gateway")
        if order.payment_status in _REFUNDABLE_STATES:
            order.record_refund(delta)
        return APPLIED
