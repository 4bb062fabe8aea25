"""Payment aggregate: one row per attempt to collect money for an order.

An order can have several payments when a first attempt fails and the
customer retries. The ``payment_method`` discriminator picks the gateway
adapter that handles the attempt.

State Machine:
    PENDING -> COMPLETED | FAILED
    FAILED -> COMPLETED (the gateway reports a late success on the same attempt)
    COMPLETED -> PARTIALLY_REFUNDED -> ... -> REFUNDED
    COMPLETED -> REFUNDED

``refunded_amount`` never decreases and never exceeds ``amount``. A payment
is REFUNDED exactly when ``refunded_amount == amount``.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.errors import InvalidRefund, InvalidTransition
from storefront.payment.events import (
    PaymentCompleted,
    PaymentCreated,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefunded,
)
from storefront.pricing.engine import round_money, to_decimal


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    CARD = "card"  # card-redirect gateway (payment intents + signed webhooks)
    HOSTED = "hosted"  # hosted-redirect gateway (redirect session + IPN checksum)
    COD = "cod"  # cash on delivery


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),  # Terminal
}

_SUCCEEDED_STATES = {PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Payment")
class PaymentRefund:
    """A gateway-confirmed refund against this payment."""

    amount = Float(required=True, min_value=0.0)
    reason = String(max_length=500)
    gateway_refund_id = String(max_length=255)
    refunded_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Payment:
    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=32)
    customer_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    payment_method = String(required=True, choices=PaymentMethod)
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    attempt_number = Integer(default=1)
    gateway_reference = String(max_length=255)  # assigned by the gateway at initiation
    transaction_id = String(max_length=255)  # settled transaction id reported by the gateway
    redirect_url = String(max_length=2000)
    client_secret = String(max_length=255)
    gateway_response = Text()  # last raw gateway payload, JSON
    failure_reason = String(max_length=500)
    refunded_amount = Float(default=0.0)
    refunds = HasMany(PaymentRefund)
    paid_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def refunded_amount_within_amount(self):
        if to_decimal(self.refunded_amount) > to_decimal(self.amount):
            raise ValidationError({"refunded_amount": ["Refunded amount cannot exceed the payment amount"]})

    @invariant.post
    def refunded_status_means_fully_refunded(self):
        if self.status == PaymentStatus.REFUNDED.value and abs(
            to_decimal(self.refunded_amount) - to_decimal(self.amount)
        ) > Decimal("0.001"):
            raise ValidationError({"status": ["A refunded payment must be refunded in full"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, order, payment_method: str, attempt_number: int = 1):
        now = datetime.now(UTC)
        payment = cls(
            order_id=str(order.id),
            order_number=order.order_number,
            customer_id=str(order.customer_id),
            amount=order.total,
            currency=order.currency,
            payment_method=payment_method,
            status=PaymentStatus.PENDING.value,
            attempt_number=attempt_number,
            refunded_amount=0.0,
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentCreated(
                payment_id=str(payment.id),
                order_id=str(order.id),
                order_number=order.order_number,
                amount=payment.amount,
                currency=payment.currency,
                payment_method=payment_method,
                attempt_number=attempt_number,
                created_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = PaymentStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot transition payment from {current.value} to {target_status.value}")

    def _store_response(self, raw) -> None:
        if raw is not None:
            self.gateway_response = raw if isinstance(raw, str) else json.dumps(raw, default=str)

    @property
    def is_pending(self) -> bool:
        return PaymentStatus(self.status) == PaymentStatus.PENDING

    @property
    def has_succeeded(self) -> bool:
        return PaymentStatus(self.status) in _SUCCEEDED_STATES

    @property
    def has_failed(self) -> bool:
        return PaymentStatus(self.status) == PaymentStatus.FAILED

    @property
    def refundable_amount(self) -> float:
        return round_money(to_decimal(self.amount) - to_decimal(self.refunded_amount))

    # -------------------------------------------------------------------
    # Gateway lifecycle
    # -------------------------------------------------------------------
    def attach_gateway_session(self, reference: str, redirect_url=None, client_secret=None, raw=None) -> None:
        if not self.is_pending:
            raise InvalidTransition("Only pending payments can be initiated at the gateway")

        now = datetime.now(UTC)
        self.gateway_reference = reference
        self.redirect_url = redirect_url
        self.client_secret = client_secret
        self.failure_reason = None
        self._store_response(raw)
        self.updated_at = now

        self.raise_(
            PaymentInitiated(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                gateway_reference=reference,
                initiated_at=now,
            )
        )

    def record_initiation_failure(self, reason: str) -> None:
        """The gateway could not start the attempt. The payment stays pending for a retry."""
        self.failure_reason = reason
        self.updated_at = datetime.now(UTC)

    def mark_completed(self, transaction_id: str | None = None, raw=None) -> None:
        self._assert_can_transition(PaymentStatus.COMPLETED)

        now = datetime.now(UTC)
        self.status = PaymentStatus.COMPLETED.value
        if transaction_id:
            self.transaction_id = transaction_id
        self.failure_reason = None
        self.paid_at = now
        self.updated_at = now
        self._store_response(raw)

        self.raise_(
            PaymentCompleted(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                currency=self.currency,
                transaction_id=self.transaction_id,
                completed_at=now,
            )
        )

    def mark_failed(self, reason: str | None = None, raw=None) -> None:
        self._assert_can_transition(PaymentStatus.FAILED)

        now = datetime.now(UTC)
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason or "Payment failed"
        self.updated_at = now
        self._store_response(raw)

        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                reason=self.failure_reason,
                failed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def validate_refund(self, amount: float) -> None:
        if not self.has_succeeded:
            raise InvalidRefund("Only completed payments can be refunded", field="status")
        if amount is None or amount <= 0:
            raise InvalidRefund("Refund amount must be greater than zero")
        if to_decimal(amount) > to_decimal(self.refundable_amount):
            raise InvalidRefund(f"Refund amount {amount:.2f} exceeds refundable balance {self.refundable_amount:.2f}")

    def record_refund(self, amount: float, gateway_refund_id: str | None = None, reason: str | None = None) -> None:
        """Apply a refund the gateway has already confirmed."""
        self.validate_refund(amount)

        now = datetime.now(UTC)
        new_total = round_money(to_decimal(self.refunded_amount) + to_decimal(amount))
        target = PaymentStatus.REFUNDED if new_total >= self.amount else PaymentStatus.PARTIALLY_REFUNDED
        self._assert_can_transition(target)

        with atomic_change(self):
            self.add_refunds(
                PaymentRefund(
                    amount=round_money(amount),
                    reason=reason,
                    gateway_refund_id=gateway_refund_id,
                    refunded_at=now,
                )
            )
            self.refunded_amount = new_total
            self.status = target.value
            self.updated_at = now

        self.raise_(
            PaymentRefunded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=round_money(amount),
                refunded_amount=self.refunded_amount,
                status=self.status,
                gateway_refund_id=gateway_refund_id,
                refunded_at=now,
            )
        )


@storefront.repository(part_of=Payment)
class PaymentRepository:
    def find_by_gateway_reference(self, reference: str) -> Payment | None:
        """Match a gateway-side id against either the initiation reference or the settled transaction id."""
        for field_name in ("gateway_reference", "transaction_id"):
            matches = self._dao.query.filter(**{field_name: reference}).all().items
            if matches:
                return matches[0]
        return None

    def for_order(self, order_id) -> list[Payment]:
        payments = self._dao.query.filter(order_id=str(order_id)).all().items
        return sorted(payments, key=lambda p: p.attempt_number or 0)

    def latest_for_order(self, order_id) -> Payment | None:
        payments = self.for_order(order_id)
        return payments[-1] if payments else None
