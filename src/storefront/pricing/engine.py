"""Pricing & Discount Engine.

Computes the money side of a cart or order: subtotal, coupon discount,
shipping, tax and total. The engine is pure: it reads nothing from the
environment and writes nothing. Rates come in through an explicit
``PricingConfig``, so the same inputs always produce the same quote.

Canonical order of operations:

    subtotal  = sum(unit_price * quantity)
    discount  = clamp(coupon discount, 0, subtotal)
    shipping  = method cost, or 0 for standard shipping when the
                discounted subtotal reaches the free-shipping threshold
    tax       = tax_rate * (subtotal - discount + shipping)
    total     = subtotal - discount + shipping + tax

Every component is rounded to 2 decimals (half-up) before it is used in the
next step, so ``total`` always equals the sum of its displayed parts.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from protean.exceptions import ValidationError

from storefront.config import get_settings

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    return Decimal(str(value or 0))


def round_money(value) -> float:
    """Round to currency precision, half-up (2.345 -> 2.35)."""
    return float(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def compute_discount(discount_type: str, value: float, base_amount: float, max_discount: float | None = None) -> float:
    """Discount for ``base_amount``, clamped to [0, min(max_discount, base_amount)]."""
    base = to_decimal(base_amount)
    if DiscountType(discount_type) == DiscountType.PERCENTAGE:
        raw = to_decimal(value) / Decimal(100) * base
    else:
        raw = to_decimal(value)

    ceiling = base
    if max_discount is not None:
        ceiling = min(ceiling, to_decimal(max_discount))

    clamped = max(Decimal(0), min(raw, ceiling))
    return round_money(clamped)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ShippingMethod:
    code: str
    label: str
    cost: float
    estimate: str
    free_eligible: bool = False


@dataclass(frozen=True)
class PricingConfig:
    tax_rate: float = 0.05
    currency: str = "USD"
    standard_shipping: float = 10.0
    express_shipping: float = 20.0
    free_shipping_threshold: float | None = 100.0

    @classmethod
    def from_settings(cls, settings) -> "PricingConfig":
        return cls(
            tax_rate=settings.tax_rate,
            currency=settings.currency,
            standard_shipping=settings.standard_shipping,
            express_shipping=settings.express_shipping,
            free_shipping_threshold=settings.free_shipping_threshold,
        )

    @property
    def shipping_methods(self) -> dict[str, ShippingMethod]:
        return {
            "standard": ShippingMethod(
                code="standard",
                label="Standard Delivery",
                cost=self.standard_shipping,
                estimate="3-5 business days",
                free_eligible=True,
            ),
            "express": ShippingMethod(
                code="express",
                label="Express Delivery",
                cost=self.express_shipping,
                estimate="1-2 business days",
            ),
        }


# ---------------------------------------------------------------------------
# Quote
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class PriceQuote:
    subtotal: float
    discount_amount: float
    shipping_cost: float
    tax: float
    total: float
    currency: str
    shipping_method: str
    coupon_code: str | None = None

    @property
    def taxable_amount(self) -> float:
        base = to_decimal(self.subtotal) - to_decimal(self.discount_amount) + to_decimal(self.shipping_cost)
        return round_money(base)


class PricingEngine:
    def __init__(self, config: PricingConfig):
        self.config = config

    def subtotal(self, lines: Iterable) -> float:
        """Sum of ``unit_price * quantity`` over objects exposing both attributes."""
        total = sum((to_decimal(line.unit_price) * line.quantity for line in lines), Decimal(0))
        return round_money(total)

    def shipping_cost(self, method: str, discounted_subtotal: float) -> float:
        shipping = self.config.shipping_methods.get(method)
        if shipping is None:
            raise ValidationError({"shipping_method": [f"Unknown shipping method: {method}"]})

        threshold = self.config.free_shipping_threshold
        if shipping.free_eligible and threshold is not None and discounted_subtotal >= threshold:
            return 0.0
        return round_money(shipping.cost)

    def tax(self, taxable_amount: float) -> float:
        return round_money(to_decimal(self.config.tax_rate) * to_decimal(taxable_amount))

    def quote(
        self,
        lines: Iterable,
        discount_amount: float = 0.0,
        shipping_method: str = "standard",
        coupon_code: str | None = None,
    ) -> PriceQuote:
        subtotal = self.subtotal(lines)
        discount = round_money(max(Decimal(0), min(to_decimal(discount_amount), to_decimal(subtotal))))
        discounted = round_money(to_decimal(subtotal) - to_decimal(discount))
        shipping = self.shipping_cost(shipping_method, discounted)
        tax = self.tax(to_decimal(discounted) + to_decimal(shipping))
        total = round_money(to_decimal(discounted) + to_decimal(shipping) + to_decimal(tax))

        return PriceQuote(
            subtotal=subtotal,
            discount_amount=discount,
            shipping_cost=shipping,
            tax=tax,
            total=total,
            currency=self.config.currency,
            shipping_method=shipping_method,
            coupon_code=coupon_code if discount > 0 else None,
        )


def default_engine() -> PricingEngine:
    return PricingEngine(PricingConfig.from_settings(get_settings()))
