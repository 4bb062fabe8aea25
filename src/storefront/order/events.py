"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A cart was checked out into a new order."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    item_count = Integer(required=True)
    total = Float(required=True)
    currency = String(required=True)
    payment_method = String(required=True)
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaid:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    status = String(required=True)
    paid_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaymentFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    shipment_id = Identifier()
    shipped_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    delivered_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderReturnRequested:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String(required=True)
    requested_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderReturnApproved:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    approved_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderReturnCompleted:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    refunded_amount = Float(required=True)
    completed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderRefunded:
    """Money was returned to the customer, fully or partially."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    amount = Float(required=True)
    payment_status = String(required=True)
    refunded_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderArchived:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    archived_at = DateTime(required=True)
