"""Domain events for coupons and the coupon usage ledger."""

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="Coupon")
class CouponCreated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    discount_type = String(required=True)
    value = Float(required=True)


@storefront.event(part_of="Coupon")
class CouponDeactivated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    deactivated_at = DateTime(required=True)


@storefront.event(part_of="CouponUsage")
class CouponRedeemed:
    """A coupon was applied to a placed order."""

    __version__ = 1

    usage_id = Identifier(required=True)
    coupon_id = Identifier(required=True)
    code = String(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    discount_amount = Float(required=True)
    used_at = DateTime(required=True)
