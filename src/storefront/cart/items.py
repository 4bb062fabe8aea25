"""Cart item management: commands and handler.

Adding or raising a quantity re-checks the live catalog price and the
current stock level.
"""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.cart.cart import ShoppingCart
from storefront.catalog import get_catalog
from storefront.domain import storefront
from storefront.errors import InsufficientStock, ProductUnavailable
from storefront.inventory import ledger
from storefront.inventory.stock import stock_key


@storefront.command(part_of="ShoppingCart")
class AddToCart:
    """Add a product to a cart. The cart is created on first use."""

    cart_id = Identifier()
    customer_id = Identifier()
    session_id = String(max_length=255)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)


@storefront.command(part_of="ShoppingCart")
class UpdateCartItem:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    quantity = Integer(required=True)  # below 1 removes the item


@storefront.command(part_of="ShoppingCart")
class RemoveFromCart:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)


def resolve_cart(repo, cart_id=None, customer_id=None, session_id=None) -> ShoppingCart:
    """Load the addressed cart, or the owner's active cart, creating one if needed."""
    if cart_id:
        return repo.get(cart_id)

    cart = None
    if customer_id:
        cart = repo.find_active_for_customer(customer_id)
    elif session_id:
        cart = repo.find_active_for_session(session_id)
    else:
        raise ValidationError({"cart": ["A cart id, customer id or session id is required"]})

    return cart or ShoppingCart.create(customer_id=customer_id, session_id=session_id if not customer_id else None)


def check_stock(product_id, variant_id, quantity: int) -> None:
    on_hand = ledger.available(product_id, variant_id)
    if on_hand < quantity:
        raise InsufficientStock(stock_key(product_id, variant_id), on_hand, quantity)


def live_product(product_id, variant_id):
    product = get_catalog().get_product(str(product_id), str(variant_id) if variant_id else None)
    if product is None or not product.is_available:
        raise ProductUnavailable(f"Product {product_id} is not available")
    return product


@storefront.command_handler(part_of=ShoppingCart)
class ManageCartItemsHandler:
    @handle(AddToCart)
    def add_to_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = resolve_cart(repo, command.cart_id, command.customer_id, command.session_id)

        product = live_product(command.product_id, command.variant_id)
        existing = cart.find_item(command.product_id, command.variant_id)
        check_stock(
            command.product_id,
            command.variant_id,
            command.quantity + (existing.quantity if existing else 0),
        )

        cart.add_item(
            product_id=command.product_id,
            variant_id=command.variant_id,
            quantity=command.quantity,
            unit_price=product.price,
            product_name=product.name,
            sku=product.sku,
        )
        repo.add(cart)
        return str(cart.id)

    @handle(UpdateCartItem)
    def update_cart_item(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)

        if command.quantity >= 1:
            item = cart.get_item(command.item_id)
            if command.quantity > item.quantity:
                check_stock(item.product_id, item.variant_id, command.quantity)

        cart.update_item(command.item_id, command.quantity)
        repo.add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.remove_item(command.item_id)
        repo.add(cart)
