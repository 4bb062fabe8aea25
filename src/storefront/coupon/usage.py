"""CouponUsage: the append-only redemption ledger.

One row is written per order a coupon was applied to. Global and per-user
limits are enforced by counting rows, never by incrementing a counter.
"""

from datetime import UTC, datetime

from protean.fields import DateTime, Float, Identifier, String

from storefront.coupon.events import CouponRedeemed
from storefront.domain import storefront


@storefront.aggregate
class CouponUsage:
    coupon_id = Identifier(required=True)
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    discount_amount = Float(required=True, min_value=0.0)
    used_at = DateTime(required=True)

    @classmethod
    def record(cls, coupon_id, code, order_id, customer_id, discount_amount):
        now = datetime.now(UTC)
        usage = cls(
            coupon_id=coupon_id,
            code=code,
            order_id=order_id,
            customer_id=customer_id,
            discount_amount=discount_amount,
            used_at=now,
        )
        usage.raise_(
            CouponRedeemed(
                usage_id=str(usage.id),
                coupon_id=str(coupon_id),
                code=code,
                order_id=str(order_id),
                customer_id=str(customer_id),
                discount_amount=discount_amount,
                used_at=now,
            )
        )
        return usage


@storefront.repository(part_of=CouponUsage)
class CouponUsageRepository:
    def count_for_code(self, code: str) -> int:
        return self._dao.query.filter(code=code).all().total

    def count_for_customer(self, code: str, customer_id) -> int:
        return self._dao.query.filter(code=code, customer_id=str(customer_id)).all().total

    def for_order(self, order_id) -> list[CouponUsage]:
        return self._dao.query.filter(order_id=str(order_id)).all().items
