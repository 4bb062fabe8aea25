"""Pricing engine: discount clamping, shipping, tax base and rounding."""

from dataclasses import dataclass

import pytest
from protean.exceptions import ValidationError

from storefront.pricing.engine import (
    PricingConfig,
    PricingEngine,
    compute_discount,
    round_money,
)


@dataclass
class Line:
    unit_price: float
    quantity: int


def engine(**overrides) -> PricingEngine:
    return PricingEngine(PricingConfig(**overrides))


class TestRounding:
    def test_half_up(self):
        assert round_money(2.345) == 2.35
        assert round_money(2.344) == 2.34

    def test_none_is_zero(self):
        assert round_money(None) == 0.0


class TestComputeDiscount:
    def test_percentage_of_base(self):
        assert compute_discount("percentage", 10, 20.0) == 2.0

    def test_fixed_value(self):
        assert compute_discount("fixed", 5, 20.0) == 5.0

    def test_fixed_clamped_to_base(self):
        assert compute_discount("fixed", 50, 20.0) == 20.0

    def test_clamped_to_max_discount(self):
        assert compute_discount("percentage", 50, 200.0, max_discount=30.0) == 30.0

    def test_percentage_rounded_half_up(self):
        # 15% of 9.99 = 1.4985
        assert compute_discount("percentage", 15, 9.99) == 1.50

    def test_never_negative(self):
        assert compute_discount("fixed", -5, 20.0) == 0.0


class TestQuote:
    def test_discount_before_tax_and_shipping_taxed(self):
        quote = engine().quote([Line(10.0, 2)], discount_amount=2.0)

        assert quote.subtotal == 20.0
        assert quote.discount_amount == 2.0
        assert quote.shipping_cost == 10.0
        assert quote.tax == 1.40
        assert quote.total == 29.40

    def test_total_equals_components(self):
        quote = engine(tax_rate=0.075).quote([Line(19.99, 3), Line(4.35, 1)], discount_amount=3.33)

        assert quote.total == round_money(quote.subtotal - quote.discount_amount + quote.shipping_cost + quote.tax)

    def test_free_standard_shipping_at_threshold(self):
        quote = engine().quote([Line(50.0, 2)])

        assert quote.shipping_cost == 0.0
        assert quote.tax == 5.0
        assert quote.total == 105.0

    def test_threshold_uses_discounted_subtotal(self):
        quote = engine().quote([Line(50.0, 2)], discount_amount=10.0)

        assert quote.shipping_cost == 10.0

    def test_express_is_never_free(self):
        quote = engine().quote([Line(100.0, 2)], shipping_method="express")

        assert quote.shipping_cost == 20.0

    def test_no_threshold_means_no_free_shipping(self):
        quote = engine(free_shipping_threshold=None).quote([Line(500.0, 1)])

        assert quote.shipping_cost == 10.0

    def test_discount_clamped_to_subtotal(self):
        quote = engine().quote([Line(5.0, 1)], discount_amount=50.0)

        assert quote.discount_amount == 5.0
        assert quote.total == round_money(quote.shipping_cost + quote.tax)

    def test_coupon_code_dropped_without_discount(self):
        quote = engine().quote([Line(5.0, 1)], discount_amount=0.0, coupon_code="SAVE10")

        assert quote.coupon_code is None

    def test_unknown_shipping_method(self):
        with pytest.raises(ValidationError) as exc:
            engine().quote([Line(5.0, 1)], shipping_method="teleport")

        assert "Unknown shipping method" in str(exc.value)

    def test_rates_come_from_config(self):
        quote = engine(tax_rate=0.0, standard_shipping=0.0, currency="BDT").quote([Line(10.0, 1)])

        assert quote.total == 10.0
        assert quote.currency == "BDT"


class TestPricingConfig:
    def test_from_settings(self):
        from storefront.config import Settings

        settings = Settings(tax_rate=0.1, standard_shipping=5.0, free_shipping_threshold=None)
        config = PricingConfig.from_settings(settings)

        assert config.tax_rate == 0.1
        assert config.standard_shipping == 5.0
        assert config.free_shipping_threshold is None

    def test_shipping_methods(self):
        methods = PricingConfig().shipping_methods

        assert set(methods) == {"standard", "express"}
        assert methods["standard"].free_eligible is True
        assert methods["express"].estimate == "1-2 business days"
