"""Cart totals: live coupon evaluation and a price quote for display."""

from dataclasses import dataclass

from storefront.cart.cart import ShoppingCart
from storefront.catalog import get_catalog
from storefront.coupon.evaluation import CouponLine, evaluate_coupon
from storefront.errors import StorefrontError
from storefront.pricing.engine import PriceQuote, PricingEngine, default_engine


def coupon_lines(cart: ShoppingCart, catalog=None) -> list[CouponLine]:
    catalog = catalog or get_catalog()
    lines = []
    for item in cart.items:
        product = catalog.get_product(str(item.product_id), str(item.variant_id) if item.variant_id else None)
        lines.append(
            CouponLine(
                product_id=str(item.product_id),
                amount=item.line_total,
                category_ids=product.category_ids if product else (),
            )
        )
    return lines


@dataclass(frozen=True)
class CartSummary:
    quote: PriceQuote
    coupon_error: str | None = None


def summarize_cart(
    cart: ShoppingCart,
    shipping_method: str = "standard",
    engine: PricingEngine | None = None,
) -> CartSummary:
    """Price the cart as it stands. An applied coupon that no longer
    qualifies is reported, not applied."""
    engine = engine or default_engine()
    discount = 0.0
    coupon_error = None

    if cart.coupon_code and cart.items:
        try:
            applied = evaluate_coupon(cart.coupon_code, cart.customer_id, coupon_lines(cart), cart.subtotal)
            discount = applied.discount_amount
        except StorefrontError as exc:
            coupon_error = exc.message

    quote = engine.quote(
        cart.items,
        discount_amount=discount,
        shipping_method=shipping_method,
        coupon_code=cart.coupon_code,
    )
    return CartSummary(quote=quote, coupon_error=coupon_error)
