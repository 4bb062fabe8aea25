"""Coupon evaluation against a cart snapshot.

Checks run in a fixed order and stop at the first failure:

1. the code exists, is active and inside its validity window
2. the global usage limit, counted from the CouponUsage ledger
3. the user allow-list and the per-user usage limit (ledger again)
4. the minimum order amount
5. applicability to the products or categories in the cart
6. the computed discount, which must be positive

Evaluation runs when a coupon is applied to a cart and again at checkout,
inside the checkout transaction, so a limit reached in between is caught.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from protean.utils.globals import current_domain

from storefront.coupon.coupon import Coupon, normalize_code
from storefront.coupon.usage import CouponUsage
from storefront.errors import CouponLimitReached, InvalidCoupon


@dataclass(frozen=True)
class CouponLine:
    product_id: str
    amount: float
    category_ids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AppliedCoupon:
    coupon_id: str
    code: str
    discount_amount: float


def evaluate_coupon(code, customer_id, lines, subtotal: float, now: datetime | None = None) -> AppliedCoupon:
    now = now or datetime.now(UTC)
    code = normalize_code(code)

    coupon = current_domain.repository_for(Coupon).find_by_code(code)
    if coupon is None:
        raise InvalidCoupon("Invalid coupon code")
    if not coupon.is_active:
        raise InvalidCoupon("Coupon is no longer active")
    if not coupon.has_started(now):
        raise InvalidCoupon("Coupon is not yet valid")
    if coupon.has_expired(now):
        raise InvalidCoupon("Coupon has expired")

    usage = current_domain.repository_for(CouponUsage)
    if coupon.usage_limit is not None and usage.count_for_code(code) >= coupon.usage_limit:
        raise CouponLimitReached("Coupon usage limit has been reached")

    if not coupon.allows_user(customer_id):
        raise InvalidCoupon("Coupon is not available for this account")
    if (
        coupon.usage_limit_per_user is not None
        and customer_id is not None
        and usage.count_for_customer(code, customer_id) >= coupon.usage_limit_per_user
    ):
        raise CouponLimitReached("You have already used this coupon the maximum number of times")

    if coupon.min_order_amount and subtotal < coupon.min_order_amount:
        raise InvalidCoupon(f"Minimum order amount of {coupon.min_order_amount:.2f} required")

    base = coupon.applicable_amount(lines)
    if base <= 0:
        raise InvalidCoupon("Coupon is not applicable to the items in your cart")

    discount = coupon.discount_for(base)
    if discount <= 0:
        raise InvalidCoupon("Coupon cannot be applied")

    return AppliedCoupon(coupon_id=str(coupon.id), code=coupon.code, discount_amount=discount)
