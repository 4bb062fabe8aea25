"""Domain events for the Payment aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Payment")
class PaymentCreated:
    """A payment attempt was opened for an order."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    order_number = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    payment_method = String(required=True)
    attempt_number = Integer(required=True)
    created_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentInitiated:
    """The gateway accepted the attempt and handed back a reference."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    gateway_reference = String(required=True)
    initiated_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentCompleted:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    transaction_id = String()
    completed_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentRefunded:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    refunded_amount = Float(required=True)
    status = String(required=True)
    gateway_refund_id = String()
    refunded_at = DateTime(required=True)
