"""Coupon aggregate: a discount code and the rules that govern it.

How often a coupon has been used is deliberately not stored here. The
``CouponUsage`` ledger is the only record of redemptions, and limits are
checked by counting ledger rows.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String, Text

from storefront.coupon.events import CouponCreated, CouponDeactivated
from storefront.domain import storefront
from storefront.pricing.engine import DiscountType, compute_discount, round_money


class CouponScope(Enum):
    ALL_PRODUCTS = "all_products"
    SPECIFIC_PRODUCTS = "specific_products"
    SPECIFIC_CATEGORIES = "specific_categories"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@storefront.aggregate
class Coupon:
    code = String(required=True, max_length=50, unique=True)
    description = String(max_length=255)
    discount_type = String(choices=DiscountType, default=DiscountType.PERCENTAGE.value)
    value = Float(required=True, min_value=0.0)
    min_order_amount = Float(default=0.0)
    max_discount_amount = Float()
    usage_limit = Integer(min_value=1)
    usage_limit_per_user = Integer(min_value=1)
    starts_at = DateTime()
    expires_at = DateTime()
    is_active = Boolean(default=True)
    applicable_to = String(choices=CouponScope, default=CouponScope.ALL_PRODUCTS.value)
    product_ids = Text()  # JSON array
    category_ids = Text()  # JSON array
    allowed_user_ids = Text()  # JSON array, empty means everyone
    created_at = DateTime()

    @invariant.post
    def percentage_cannot_exceed_hundred(self):
        if self.discount_type == DiscountType.PERCENTAGE.value and self.value is not None and self.value > 100:
            raise ValidationError({"value": ["Percentage discount cannot exceed 100"]})

    @classmethod
    def create(
        cls,
        code,
        discount_type,
        value,
        description=None,
        min_order_amount=0.0,
        max_discount_amount=None,
        usage_limit=None,
        usage_limit_per_user=None,
        starts_at=None,
        expires_at=None,
        applicable_to=CouponScope.ALL_PRODUCTS.value,
        product_ids=None,
        category_ids=None,
        allowed_user_ids=None,
    ):
        coupon = cls(
            code=normalize_code(code),
            description=description,
            discount_type=discount_type,
            value=value,
            min_order_amount=min_order_amount or 0.0,
            max_discount_amount=max_discount_amount,
            usage_limit=usage_limit,
            usage_limit_per_user=usage_limit_per_user,
            starts_at=starts_at,
            expires_at=expires_at,
            applicable_to=applicable_to,
            product_ids=json.dumps([str(p) for p in product_ids or []]),
            category_ids=json.dumps([str(c) for c in category_ids or []]),
            allowed_user_ids=json.dumps([str(u) for u in allowed_user_ids or []]),
            is_active=True,
            created_at=datetime.now(UTC),
        )
        coupon.raise_(
            CouponCreated(
                coupon_id=str(coupon.id),
                code=coupon.code,
                discount_type=coupon.discount_type,
                value=coupon.value,
            )
        )
        return coupon

    def deactivate(self) -> None:
        if not self.is_active:
            raise ValidationError({"is_active": ["Coupon is already inactive"]})
        self.is_active = False
        self.raise_(
            CouponDeactivated(
                coupon_id=str(self.id),
                code=self.code,
                deactivated_at=datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------
    def _json_list(self, value) -> list[str]:
        return json.loads(value) if value else []

    def has_started(self, now: datetime) -> bool:
        return self.starts_at is None or as_utc(self.starts_at) <= now

    def has_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) < now

    def allows_user(self, customer_id) -> bool:
        allowed = self._json_list(self.allowed_user_ids)
        return not allowed or (customer_id is not None and str(customer_id) in allowed)

    def applicable_amount(self, lines) -> float:
        """Sum of the line amounts this coupon applies to.

        ``lines`` are objects with ``product_id``, ``category_ids`` and
        ``amount`` attributes.
        """
        scope = CouponScope(self.applicable_to)
        if scope == CouponScope.ALL_PRODUCTS:
            return round_money(sum(line.amount for line in lines))

        if scope == CouponScope.SPECIFIC_PRODUCTS:
            product_ids = set(self._json_list(self.product_ids))
            return round_money(sum(line.amount for line in lines if str(line.product_id) in product_ids))

        category_ids = set(self._json_list(self.category_ids))
        return round_money(sum(line.amount for line in lines if category_ids.intersection(line.category_ids)))

    def discount_for(self, base_amount: float) -> float:
        return compute_discount(self.discount_type, self.value, base_amount, self.max_discount_amount)


@storefront.repository(part_of=Coupon)
class CouponRepository:
    def find_by_code(self, code: str) -> Coupon | None:
        matches = self._dao.query.filter(code=normalize_code(code)).all().items
        return matches[0] if matches else None
