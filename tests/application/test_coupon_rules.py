"""Coupon administration and evaluation against the redemption ledger."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from storefront.coupon.coupon import Coupon
from storefront.coupon.evaluation import CouponLine, evaluate_coupon
from storefront.coupon.management import DeactivateCoupon
from storefront.coupon.usage import CouponUsage
from storefront.errors import CouponLimitReached, InvalidCoupon

LINES = [CouponLine(product_id="prod-a", amount=20.0, category_ids=("shoes",))]


def _record_usage(code="SAVE10", customer_id="cust-001"):
    coupon = current_domain.repository_for(Coupon).find_by_code(code)
    current_domain.repository_for(CouponUsage).add(
        CouponUsage.record(
            coupon_id=str(coupon.id),
            code=coupon.code,
            order_id="order-x",
            customer_id=customer_id,
            discount_amount=1.0,
        )
    )


class TestCreateCoupon:
    def test_persists_normalized(self, coupon):
        coupon_id = coupon(code=" summer ")

        stored = current_domain.repository_for(Coupon).get(coupon_id)
        assert stored.code == "SUMMER"

    def test_duplicate_code(self, coupon):
        coupon()

        with pytest.raises(InvalidCoupon) as exc:
            coupon(code="save10")

        assert "already exists" in str(exc.value)

    def test_deactivate(self, coupon):
        coupon_id = coupon()
        current_domain.process(DeactivateCoupon(coupon_id=coupon_id), asynchronous=False)

        assert current_domain.repository_for(Coupon).get(coupon_id).is_active is False


class TestEvaluateCoupon:
    def test_applies(self, coupon):
        coupon()
        applied = evaluate_coupon("save10", "cust-001", LINES, 20.0)

        assert applied.code == "SAVE10"
        assert applied.discount_amount == 2.0

    def test_unknown_code(self):
        with pytest.raises(InvalidCoupon) as exc:
            evaluate_coupon("NOPE", "cust-001", LINES, 20.0)

        assert "Invalid coupon code" in str(exc.value)

    def test_inactive(self, coupon):
        coupon_id = coupon()
        current_domain.process(DeactivateCoupon(coupon_id=coupon_id), asynchronous=False)

        with pytest.raises(InvalidCoupon) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert "no longer active" in str(exc.value)

    def test_not_yet_valid(self, coupon):
        coupon(starts_at=datetime.now(UTC) + timedelta(days=2))

        with pytest.raises(InvalidCoupon) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert "not yet valid" in str(exc.value)

    def test_expired(self, coupon):
        coupon(expires_at=datetime.now(UTC) - timedelta(days=1))

        with pytest.raises(InvalidCoupon) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert "expired" in str(exc.value)

    def test_global_limit_counts_ledger(self, coupon):
        coupon(usage_limit=1)
        _record_usage(customer_id="cust-999")

        with pytest.raises(CouponLimitReached) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert exc.value.category == "conflict"

    def test_per_user_limit(self, coupon):
        coupon(usage_limit_per_user=1)
        _record_usage(customer_id="cust-001")

        with pytest.raises(CouponLimitReached) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert "maximum number of times" in str(exc.value)
        assert evaluate_coupon("SAVE10", "cust-002", LINES, 20.0).discount_amount == 2.0

    def test_allow_list(self, coupon):
        coupon(allowed_user_ids=["cust-vip"])

        with pytest.raises(InvalidCoupon):
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)
        assert evaluate_coupon("SAVE10", "cust-vip", LINES, 20.0).discount_amount == 2.0

    def test_minimum_order_amount(self, coupon):
        coupon(min_order_amount=50.0)

        with pytest.raises(InvalidCoupon) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert "Minimum order amount of 50.00" in str(exc.value)

    def test_not_applicable_to_cart(self, coupon):
        coupon(applicable_to="specific_categories", category_ids=["hats"])

        with pytest.raises(InvalidCoupon) as exc:
            evaluate_coupon("SAVE10", "cust-001", LINES, 20.0)

        assert "not applicable" in str(exc.value)

    def test_category_scope(self, coupon):
        coupon(applicable_to="specific_categories", category_ids=["shoes"], discount_type="fixed", value=5.0)

        assert evaluate_coupon("SAVE10", "cust-001", LINES, 20.0).discount_amount == 5.0
