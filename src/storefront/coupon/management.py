"""Coupon administration: commands and handler."""

import json

from protean import handle
from protean.fields import DateTime, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.coupon.coupon import Coupon, CouponScope
from storefront.domain import storefront
from storefront.errors import InvalidCoupon
from storefront.pricing.engine import DiscountType


@storefront.command(part_of="Coupon")
class CreateCoupon:
    code = String(required=True, max_length=50)
    discount_type = String(required=True, choices=DiscountType)
    value = Float(required=True, min_value=0.0)
    description = String(max_length=255)
    min_order_amount = Float(default=0.0)
    max_discount_amount = Float()
    usage_limit = Integer(min_value=1)
    usage_limit_per_user = Integer(min_value=1)
    starts_at = DateTime()
    expires_at = DateTime()
    applicable_to = String(choices=CouponScope, default=CouponScope.ALL_PRODUCTS.value)
    product_ids = Text()  # JSON array
    category_ids = Text()  # JSON array
    allowed_user_ids = Text()  # JSON array


@storefront.command(part_of="Coupon")
class DeactivateCoupon:
    coupon_id = Identifier(required=True)


@storefront.command_handler(part_of=Coupon)
class CouponManagementHandler:
    @handle(CreateCoupon)
    def create_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        if repo.find_by_code(command.code) is not None:
            raise InvalidCoupon(f"Coupon code {command.code.upper()} already exists", field="code")

        coupon = Coupon.create(
            code=command.code,
            discount_type=command.discount_type,
            value=command.value,
            description=command.description,
            min_order_amount=command.min_order_amount,
            max_discount_amount=command.max_discount_amount,
            usage_limit=command.usage_limit,
            usage_limit_per_user=command.usage_limit_per_user,
            starts_at=command.starts_at,
            expires_at=command.expires_at,
            applicable_to=command.applicable_to,
            product_ids=json.loads(command.product_ids) if command.product_ids else None,
            category_ids=json.loads(command.category_ids) if command.category_ids else None,
            allowed_user_ids=json.loads(command.allowed_user_ids) if command.allowed_user_ids else None,
        )
        repo.add(coupon)
        return str(coupon.id)

    @handle(DeactivateCoupon)
    def deactivate_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        coupon.deactivate()
        repo.add(coupon)
