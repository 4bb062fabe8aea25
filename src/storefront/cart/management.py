"""Cart lifecycle: clearing, guest-cart merging and revalidation."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.cart.cart import ShoppingCart
from storefront.cart.items import check_stock, live_product
from storefront.domain import storefront
from storefront.errors import StorefrontError
from storefront.inventory import ledger

logger = structlog.get_logger(__name__)


@storefront.command(part_of="ShoppingCart")
class ClearCart:
    cart_id = Identifier(required=True)


@storefront.command(part_of="ShoppingCart")
class MergeGuestCart:
    """Move a guest session's cart into the customer's cart at login."""

    session_id = String(required=True, max_length=255)
    customer_id = Identifier(required=True)


@storefront.command(part_of="ShoppingCart")
class ValidateCart:
    """Re-check every line against the live catalog and stock levels."""

    cart_id = Identifier(required=True)


@storefront.command_handler(part_of=ShoppingCart)
class CartLifecycleHandler:
    @handle(ClearCart)
    def clear_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.clear()
        repo.add(cart)

    @handle(MergeGuestCart)
    def merge_guest_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        guest = repo.find_active_for_session(command.session_id)
        customer_cart = repo.find_active_for_customer(command.customer_id)

        if guest is None:
            return {
                "cart_id": str(customer_cart.id) if customer_cart else None,
                "merged": 0,
                "skipped": [],
            }

        if customer_cart is None:
            guest.claim(command.customer_id)
            guest.record_merge(command.session_id, len(guest.items))
            repo.add(guest)
            return {"cart_id": str(guest.id), "merged": len(guest.items), "skipped": []}

        merged = 0
        skipped = []
        for item in guest.items:
            existing = customer_cart.find_item(item.product_id, item.variant_id)
            try:
                product = live_product(item.product_id, item.variant_id)
                check_stock(
                    item.product_id,
                    item.variant_id,
                    item.quantity + (existing.quantity if existing else 0),
                )
            except StorefrontError as exc:
                skipped.append({"product_id": str(item.product_id), "reason": exc.message})
                continue

            customer_cart.add_item(
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=product.price,
                product_name=product.name,
                sku=product.sku,
            )
            merged += 1

        if not customer_cart.coupon_code and guest.coupon_code:
            customer_cart.coupon_code = guest.coupon_code

        customer_cart.record_merge(command.session_id, merged)
        guest.clear()
        repo.add(customer_cart)
        repo.add(guest)

        if skipped:
            logger.info("guest_cart_items_skipped", cart_id=str(customer_cart.id), skipped=len(skipped))
        return {"cart_id": str(customer_cart.id), "merged": merged, "skipped": skipped}

    @handle(ValidateCart)
    def validate_cart(self, command):
        """Drop unavailable lines, clamp quantities to stock, refresh prices.

        Returns the list of adjustments made.
        """
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        issues = []

        for item in list(cart.items):
            product_id = str(item.product_id)
            try:
                product = live_product(item.product_id, item.variant_id)
            except StorefrontError:
                cart.remove_item(item.id)
                issues.append({"product_id": product_id, "issue": "unavailable"})
                continue

            on_hand = ledger.available(item.product_id, item.variant_id)
            if on_hand <= 0:
                cart.remove_item(item.id)
                issues.append({"product_id": product_id, "issue": "out_of_stock"})
                continue
            if on_hand < item.quantity:
                cart.update_item(item.id, on_hand)
                issues.append({"product_id": product_id, "issue": "quantity_adjusted", "quantity": on_hand})

            if product.price != item.unit_price:
                previous_price = cart.reprice_item(item.id, product.price)
                issues.append(
                    {
                        "product_id": product_id,
                        "issue": "price_changed",
                        "previous_price": previous_price,
                        "price": product.price,
                    }
                )

        repo.add(cart)
        return issues
