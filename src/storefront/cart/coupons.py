"""Cart coupon management: commands and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.cart.cart import ShoppingCart
from storefront.cart.summary import coupon_lines
from storefront.coupon.evaluation import evaluate_coupon
from storefront.domain import storefront
from storefront.errors import EmptyCart


@storefront.command(part_of="ShoppingCart")
class ApplyCouponToCart:
    """Apply a coupon code to a shopping cart."""

    cart_id = Identifier(required=True)
    coupon_code = String(required=True, max_length=50)


@storefront.command(part_of="ShoppingCart")
class RemoveCouponFromCart:
    cart_id = Identifier(required=True)


@storefront.command_handler(part_of=ShoppingCart)
class CartCouponHandler:
    @handle(ApplyCouponToCart)
    def apply_coupon(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        if not cart.items:
            raise EmptyCart("Add items before applying a coupon")

        applied = evaluate_coupon(command.coupon_code, cart.customer_id, coupon_lines(cart), cart.subtotal)
        cart.apply_coupon(applied.code)
        repo.add(cart)
        return applied.discount_amount

    @handle(RemoveCouponFromCart)
    def remove_coupon(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.remove_coupon()
        repo.add(cart)
