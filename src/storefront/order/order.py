"""Order aggregate: the financial record produced by a successful checkout.

An Order is written once, at checkout, with its line items, prices and totals
copied from the live catalog at that moment. Line items never change
afterwards, and the totals only move through explicit refunds. Orders are
never deleted, only archived.

Two state machines run side by side:

    status:          PENDING -> PROCESSING -> SHIPPED -> DELIVERED
                     PENDING/PROCESSING -> CANCELLED
                     DELIVERED (+ return flag) -> RETURNED

    payment_status:  PENDING -> PAID | FAILED
                     FAILED -> PAID (a retried attempt succeeded)
                     PAID -> PARTIALLY_REFUNDED -> REFUNDED
"""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from storefront.domain import storefront
from storefront.errors import InvalidTransition, OrderNotCancellable, ReturnNotAllowed
from storefront.order.events import (
    OrderArchived,
    OrderCancelled,
    OrderDelivered,
    OrderPaid,
    OrderPaymentFailed,
    OrderPlaced,
    OrderRefunded,
    OrderReturnApproved,
    OrderReturnCompleted,
    OrderReturnRequested,
    OrderShipped,
)
from storefront.pricing.engine import round_money, to_decimal

DEFAULT_RETURN_WINDOW_DAYS = 14


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class OrderPaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.RETURNED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.RETURNED: set(),  # Terminal
}

# States from which cancellation is allowed
_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.PROCESSING}

# Position along the forward fulfillment path
_FULFILLMENT_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 3,
}

_NEXT_STATUS = {
    OrderStatus.PENDING: OrderStatus.PROCESSING,
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Order")
class Address:
    """A delivery or billing address captured at checkout time.

    Once recorded on an Order it represents where the order went, regardless
    of later changes to the customer's address book.
    """

    name = String(max_length=255)
    phone = String(max_length=50)
    line1 = String(max_length=255)
    line2 = String(max_length=255)
    city = String(max_length=100)
    state = String(max_length=100)
    postal_code = String(max_length=20)
    country = String(max_length=100)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Order")
class OrderItem:
    """A line item, snapshotted from the catalog when the order was placed."""

    product_id = Identifier(required=True)
    variant_id = Identifier()
    product_name = String(required=True, max_length=255)
    sku = String(required=True, max_length=100)
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    line_total = Float(required=True, min_value=0.0)
    refunded_quantity = Integer(default=0, min_value=0)

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Order:
    order_number = String(required=True, max_length=32, unique=True)
    customer_id = Identifier(required=True)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=OrderPaymentStatus, default=OrderPaymentStatus.PENDING.value)
    items = HasMany(OrderItem)
    shipping_address = ValueObject(Address)
    billing_address = ValueObject(Address)
    shipping_method = String(max_length=50)
    payment_method = String(max_length=50)
    coupon_code = String(max_length=50)

    subtotal = Float(default=0.0)
    discount_amount = Float(default=0.0)
    shipping_cost = Float(default=0.0)
    tax = Float(default=0.0)
    total = Float(default=0.0)
    refunded_amount = Float(default=0.0)
    currency = String(max_length=3, default="USD")

    notes = String(max_length=1000)
    timeline = Text()  # JSON array of {"status", "at", "note"}

    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    cancellation_reason = String(max_length=500)

    return_requested = Boolean(default=False)
    return_reason = String(max_length=255)
    return_description = String(max_length=1000)
    return_requested_at = DateTime()
    returned_at = DateTime()
    return_completed_at = DateTime()

    is_archived = Boolean(default=False)
    archived_at = DateTime()
    placed_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_must_match_components(self):
        expected = (
            to_decimal(self.subtotal)
            - to_decimal(self.discount_amount)
            + to_decimal(self.shipping_cost)
            + to_decimal(self.tax)
        )
        if abs(to_decimal(self.total) - expected) > Decimal("0.01"):
            raise ValidationError({"total": ["Total must equal subtotal - discount + shipping + tax"]})

    @invariant.post
    def refunded_quantity_within_quantity(self):
        for item in self.items:
            if (item.refunded_quantity or 0) > item.quantity:
                raise ValidationError({"items": [f"Refunded quantity exceeds ordered quantity for {item.sku}"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_number: str,
        customer_id: str,
        lines: list[dict],
        quote,
        shipping_address: dict,
        billing_address: dict | None = None,
        payment_method: str = "card",
        notes: str | None = None,
        awaiting_payment: bool = True,
    ):
        """Create an order from priced lines and a PriceQuote.

        Orders that are paid on delivery do not wait for a payment and start
        out as processing.
        """
        now = datetime.now(UTC)
        status = OrderStatus.PENDING if awaiting_payment else OrderStatus.PROCESSING

        order = cls(
            order_number=order_number,
            customer_id=customer_id,
            status=status.value,
            payment_status=OrderPaymentStatus.PENDING.value,
            shipping_address=Address(**shipping_address),
            billing_address=Address(**(billing_address or shipping_address)),
            shipping_method=quote.shipping_method,
            payment_method=payment_method,
            coupon_code=quote.coupon_code,
            subtotal=quote.subtotal,
            discount_amount=quote.discount_amount,
            shipping_cost=quote.shipping_cost,
            tax=quote.tax,
            total=quote.total,
            currency=quote.currency,
            notes=notes,
            timeline=json.dumps([{"status": status.value, "at": now.isoformat(), "note": "Order placed"}]),
            placed_at=now,
            updated_at=now,
        )

        for line in lines:
            order.add_items(
                OrderItem(
                    product_id=line["product_id"],
                    variant_id=line.get("variant_id"),
                    product_name=line["product_name"],
                    sku=line["sku"],
                    unit_price=line["unit_price"],
                    quantity=line["quantity"],
                    line_total=round_money(to_decimal(line["unit_price"]) * line["quantity"]),
                )
            )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                customer_id=str(customer_id),
                item_count=sum(line["quantity"] for line in lines),
                total=order.total,
                currency=order.currency,
                payment_method=payment_method,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot transition from {current.value} to {target_status.value}")

    def _record(self, status: str, note: str, at: datetime) -> None:
        entries = json.loads(self.timeline) if self.timeline else []
        entries.append({"status": status, "at": at.isoformat(), "note": note})
        self.timeline = json.dumps(entries)
        self.updated_at = at

    def _transition(self, target: OrderStatus, note: str, at: datetime) -> None:
        self._assert_can_transition(target)
        self.status = target.value
        self._record(target.value, note, at)

    @property
    def history(self) -> list[dict]:
        return json.loads(self.timeline) if self.timeline else []

    @property
    def next_status(self) -> str | None:
        target = _NEXT_STATUS.get(OrderStatus(self.status))
        return target.value if target else None

    @property
    def can_be_cancelled(self) -> bool:
        return OrderStatus(self.status) in _CANCELLABLE_STATES

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID.value

    def can_be_returned(self, now: datetime | None = None, window_days: int = DEFAULT_RETURN_WINDOW_DAYS) -> bool:
        if OrderStatus(self.status) != OrderStatus.DELIVERED or self.return_requested or not self.delivered_at:
            return False
        now = now or datetime.now(UTC)
        delivered_at = self.delivered_at
        if delivered_at.tzinfo is None:
            delivered_at = delivered_at.replace(tzinfo=UTC)
        return now - delivered_at <= timedelta(days=window_days)

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def mark_paid(self) -> bool:
        """Record a settled payment. Returns False if already paid.

        A pending order moves to processing. An order that has already moved
        on (e.g. shipped cash-on-delivery) keeps its status.
        """
        if self.payment_status == OrderPaymentStatus.PAID.value:
            return False
        if self.payment_status not in (OrderPaymentStatus.PENDING.value, OrderPaymentStatus.FAILED.value):
            raise InvalidTransition(f"Cannot mark an order with payment {self.payment_status} as paid")

        now = datetime.now(UTC)
        self.payment_status = OrderPaymentStatus.PAID.value
        if OrderStatus(self.status) == OrderStatus.PENDING:
            self._transition(OrderStatus.PROCESSING, "Payment received", now)
        else:
            self._record(self.status, "Payment received", now)

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                order_number=self.order_number,
                status=self.status,
                paid_at=now,
            )
        )
        return True

    def mark_payment_failed(self, reason: str | None = None) -> bool:
        """Record a failed payment attempt. The order itself stays open for a retry."""
        if self.payment_status != OrderPaymentStatus.PENDING.value:
            return False

        now = datetime.now(UTC)
        self.payment_status = OrderPaymentStatus.FAILED.value
        self._record(self.status, f"Payment failed: {reason}" if reason else "Payment failed", now)

        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                order_number=self.order_number,
                reason=reason,
                failed_at=now,
            )
        )
        return True

    def reopen_payment(self) -> None:
        """Put a failed payment back to pending for a retry attempt."""
        if self.payment_status == OrderPaymentStatus.FAILED.value:
            self.payment_status = OrderPaymentStatus.PENDING.value
            self._record(self.status, "Payment retried", datetime.now(UTC))

    def record_refund(self, amount: float, item_quantities: dict | None = None) -> None:
        """Record a gateway-confirmed refund of ``amount``.

        ``item_quantities`` optionally maps order item ids to the number of
        units the refund covers.
        """
        if self.payment_status not in (OrderPaymentStatus.PAID.value, OrderPaymentStatus.PARTIALLY_REFUNDED.value):
            raise InvalidTransition(f"Cannot refund an order with payment {self.payment_status}")

        now = datetime.now(UTC)
        with atomic_change(self):
            for item_id, quantity in (item_quantities or {}).items():
                item = next((i for i in self.items if str(i.id) == str(item_id)), None)
                if item is None:
                    raise ValidationError({"items": [f"Item {item_id} is not part of this order"]})
                item.refunded_quantity = (item.refunded_quantity or 0) + quantity
                self.add_items(item)

            self.refunded_amount = round_money(to_decimal(self.refunded_amount) + to_decimal(amount))
            if self.refunded_amount >= self.total:
                self.payment_status = OrderPaymentStatus.REFUNDED.value
            else:
                self.payment_status = OrderPaymentStatus.PARTIALLY_REFUNDED.value
            self._record(self.status, f"Refunded {amount:.2f}", now)

        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                order_number=self.order_number,
                amount=amount,
                payment_status=self.payment_status,
                refunded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def mark_shipped(self, shipment_id=None, shipped_at: datetime | None = None) -> None:
        now = shipped_at or datetime.now(UTC)
        self._transition(OrderStatus.SHIPPED, "Handed to courier", now)
        self.shipped_at = now

        self.raise_(
            OrderShipped(
                order_id=str(self.id),
                order_number=self.order_number,
                shipment_id=str(shipment_id) if shipment_id else None,
                shipped_at=now,
            )
        )

    def mark_delivered(self, delivered_at: datetime | None = None) -> None:
        now = delivered_at or datetime.now(UTC)
        self._transition(OrderStatus.DELIVERED, "Delivered", now)
        self.delivered_at = now

        self.raise_(
            OrderDelivered(
                order_id=str(self.id),
                order_number=self.order_number,
                delivered_at=now,
            )
        )

    def advance_to(self, target: str, at: datetime | None = None, shipment_id=None) -> bool:
        """Move forward along pending -> processing -> shipped -> delivered.

        Never moves backwards and never leaves cancelled or returned. Skipped
        steps are filled in. Returns True if the status changed.
        """
        current = OrderStatus(self.status)
        target_status = OrderStatus(target)
        if current not in _FULFILLMENT_RANK or target_status not in _FULFILLMENT_RANK:
            return False
        if _FULFILLMENT_RANK[target_status] <= _FULFILLMENT_RANK[current]:
            return False

        now = at or datetime.now(UTC)
        while OrderStatus(self.status) != target_status:
            step = _NEXT_STATUS[OrderStatus(self.status)]
            if step == OrderStatus.SHIPPED:
                self.mark_shipped(shipment_id=shipment_id, shipped_at=now)
            elif step == OrderStatus.DELIVERED:
                self.mark_delivered(delivered_at=now)
            else:
                self._transition(step, "Courier picked up order", now)
        return True

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel(self, reason: str | None = None) -> list[OrderItem]:
        """Cancel a pending or processing order. Returns the items whose stock must be released."""
        current = OrderStatus(self.status)
        if current not in _CANCELLABLE_STATES:
            raise OrderNotCancellable(
                f"Order cannot be cancelled in {current.value} state; use the return flow instead"
            )

        now = datetime.now(UTC)
        self._transition(OrderStatus.CANCELLED, reason or "Cancelled", now)
        self.cancelled_at = now
        self.cancellation_reason = reason

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=current.value,
                reason=reason,
                cancelled_at=now,
            )
        )
        return list(self.items)

    # -------------------------------------------------------------------
    # Returns
    # -------------------------------------------------------------------
    def request_return(
        self,
        reason: str,
        description: str | None = None,
        now: datetime | None = None,
        window_days: int = DEFAULT_RETURN_WINDOW_DAYS,
    ) -> None:
        now = now or datetime.now(UTC)
        if OrderStatus(self.status) != OrderStatus.DELIVERED:
            raise ReturnNotAllowed("Only delivered orders can be returned")
        if self.return_requested:
            raise ReturnNotAllowed("A return has already been requested for this order")
        if not self.can_be_returned(now=now, window_days=window_days):
            raise ReturnNotAllowed(f"Returns are accepted within {window_days} days of delivery")

        with atomic_change(self):
            self.return_requested = True
            self.return_reason = reason
            self.return_description = description
            self.return_requested_at = now
            self._record(self.status, f"Return requested: {reason}", now)

        self.raise_(
            OrderReturnRequested(
                order_id=str(self.id),
                order_number=self.order_number,
                reason=reason,
                requested_at=now,
            )
        )

    def approve_return(self) -> None:
        if not self.return_requested:
            raise ReturnNotAllowed("No return has been requested for this order")

        now = datetime.now(UTC)
        self._transition(OrderStatus.RETURNED, "Return approved", now)
        self.returned_at = now

        self.raise_(
            OrderReturnApproved(
                order_id=str(self.id),
                order_number=self.order_number,
                approved_at=now,
            )
        )

    def complete_return(self, refunded_amount: float) -> None:
        """Close a return after the outstanding amount was refunded."""
        if OrderStatus(self.status) != OrderStatus.RETURNED:
            raise ReturnNotAllowed("Only returned orders can complete a return")
        if self.return_completed_at is not None:
            raise ReturnNotAllowed("Return has already been completed")

        now = datetime.now(UTC)
        with atomic_change(self):
            for item in self.items:
                item.refunded_quantity = item.quantity
                self.add_items(item)
            self.refunded_amount = round_money(to_decimal(self.refunded_amount) + to_decimal(refunded_amount))
            self.payment_status = OrderPaymentStatus.REFUNDED.value
            self.return_completed_at = now
            self._record(self.status, "Return completed", now)

        self.raise_(
            OrderReturnCompleted(
                order_id=str(self.id),
                order_number=self.order_number,
                refunded_amount=refunded_amount,
                completed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Archival
    # -------------------------------------------------------------------
    def archive(self) -> None:
        if self.is_archived:
            raise ValidationError({"is_archived": ["Order is already archived"]})

        now = datetime.now(UTC)
        self.is_archived = True
        self.archived_at = now
        self.updated_at = now

        self.raise_(
            OrderArchived(
                order_id=str(self.id),
                order_number=self.order_number,
                archived_at=now,
            )
        )


@storefront.repository(part_of=Order)
class OrderRepository:
    def find_by_order_number(self, order_number: str) -> Order | None:
        orders = self._dao.query.filter(order_number=order_number).all().items
        return orders[0] if orders else None

    def for_customer(self, customer_id) -> list[Order]:
        return self._dao.query.filter(customer_id=str(customer_id), is_archived=False).all().items
