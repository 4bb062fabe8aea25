"""Shopping Cart aggregate: the mutable basket a checkout is built from.

A cart belongs either to a customer (one active cart per customer) or to an
anonymous session token. At login a session cart is merged into the
customer's cart. Each line keeps the price seen when the item was added, but
checkout re-reads live prices and stock and never charges the cached price.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from storefront.cart.events import (
    CartCleared,
    CartConverted,
    CartCouponApplied,
    CartCouponRemoved,
    CartItemAdded,
    CartItemRemoved,
    CartItemUpdated,
    CartsMerged,
)
from storefront.domain import storefront
from storefront.errors import EmptyCart
from storefront.pricing.engine import round_money, to_decimal


class CartStatus(Enum):
    ACTIVE = "Active"
    CONVERTED = "Converted"


@storefront.entity(part_of="ShoppingCart")
class CartItem:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    product_name = String(max_length=255)
    sku = String(max_length=100)
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    added_at = DateTime()

    @property
    def line_total(self) -> float:
        return round_money(to_decimal(self.unit_price) * self.quantity)


def _same_variant(a, b) -> bool:
    return str(a or "") == str(b or "")


@storefront.aggregate
class ShoppingCart:
    customer_id = Identifier()  # Nullable for guest carts
    session_id = String(max_length=255)  # For guest cart identification
    items = HasMany(CartItem)
    coupon_code = String(max_length=50)
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    order_id = Identifier()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def cart_must_have_an_owner(self):
        if not self.customer_id and not self.session_id:
            raise ValidationError({"cart": ["A cart belongs to a customer or a session"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_id=None):
        now = datetime.now(UTC)
        return cls(
            customer_id=customer_id,
            session_id=session_id,
            status=CartStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_active(self) -> bool:
        return CartStatus(self.status) == CartStatus.ACTIVE

    @property
    def subtotal(self) -> float:
        return round_money(sum((to_decimal(item.line_total) for item in self.items), Decimal(0)))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, product_id, variant_id=None):
        return next(
            (i for i in self.items if str(i.product_id) == str(product_id) and _same_variant(i.variant_id, variant_id)),
            None,
        )

    def get_item(self, item_id):
        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})
        return item

    def _assert_active(self, action: str) -> None:
        if not self.is_active:
            raise ValidationError({"status": [f"Cannot {action}: cart is no longer active"]})

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, product_id, variant_id, quantity, unit_price, product_name=None, sku=None):
        """Add an item, or increase its quantity if the product+variant is already in the cart.

        The price snapshot is refreshed to ``unit_price`` either way.
        """
        self._assert_active("add items")
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        now = datetime.now(UTC)
        existing = self.find_item(product_id, variant_id)

        if existing:
            existing.quantity += quantity
            existing.unit_price = unit_price
            self.add_items(existing)  # re-register so the change is persisted
            item = existing
        else:
            item = CartItem(
                product_id=product_id,
                variant_id=variant_id,
                product_name=product_name,
                sku=sku,
                unit_price=unit_price,
                quantity=quantity,
                added_at=now,
            )
            self.add_items(item)

        self.updated_at = now

        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=str(item.id),
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                quantity=quantity,
                unit_price=unit_price,
            )
        )
        return item

    def update_item(self, item_id, quantity: int) -> None:
        """Set a line's quantity. A quantity below 1 removes the line."""
        self._assert_active("update items")
        if quantity < 1:
            self.remove_item(item_id)
            return

        item = self.get_item(item_id)
        previous_quantity = item.quantity
        item.quantity = quantity
        self.add_items(item)
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemUpdated(
                cart_id=str(self.id),
                item_id=str(item_id),
                previous_quantity=previous_quantity,
                new_quantity=quantity,
            )
        )

    def reprice_item(self, item_id, unit_price: float) -> float:
        """Refresh a line's price snapshot. Returns the previous price."""
        self._assert_active("reprice items")
        item = self.get_item(item_id)
        previous_price = item.unit_price
        item.unit_price = unit_price
        self.add_items(item)
        self.updated_at = datetime.now(UTC)
        return previous_price

    def remove_item(self, item_id) -> None:
        self._assert_active("remove items")
        item = self.get_item(item_id)

        self.remove_items(item)
        self.updated_at = datetime.now(UTC)

        self.raise_(CartItemRemoved(cart_id=str(self.id), item_id=str(item_id)))

    def clear(self) -> None:
        self._assert_active("clear the cart")
        removed = len(self.items)
        for item in list(self.items):
            self.remove_items(item)
        self.coupon_code = None
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCleared(cart_id=str(self.id), items_removed=removed))

    # -------------------------------------------------------------------
    # Coupon management
    # -------------------------------------------------------------------
    def apply_coupon(self, coupon_code: str) -> None:
        """Attach an evaluated coupon code, replacing any previous one."""
        self._assert_active("apply coupons")
        if not self.items:
            raise EmptyCart("Add items before applying a coupon")

        self.coupon_code = coupon_code
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCouponApplied(cart_id=str(self.id), coupon_code=coupon_code))

    def remove_coupon(self) -> None:
        self._assert_active("remove coupons")
        if not self.coupon_code:
            raise ValidationError({"coupon_code": ["No coupon applied to this cart"]})

        code = self.coupon_code
        self.coupon_code = None
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCouponRemoved(cart_id=str(self.id), coupon_code=code))

    # -------------------------------------------------------------------
    # Guest carts
    # -------------------------------------------------------------------
    def claim(self, customer_id) -> None:
        """Hand a guest cart over to a customer who has no cart of their own."""
        self._assert_active("claim the cart")
        self.customer_id = customer_id
        self.session_id = None
        self.updated_at = datetime.now(UTC)

    def record_merge(self, source_session_id, items_merged: int) -> None:
        self.updated_at = datetime.now(UTC)
        self.raise_(
            CartsMerged(
                cart_id=str(self.id),
                source_session_id=source_session_id,
                items_merged_count=items_merged,
            )
        )

    # -------------------------------------------------------------------
    # Cart lifecycle
    # -------------------------------------------------------------------
    def convert_to_order(self, order_id) -> None:
        """Empty the cart after its order was placed."""
        self._assert_active("check out")
        if not self.items:
            raise EmptyCart("Cannot check out an empty cart")

        for item in list(self.items):
            self.remove_items(item)
        self.coupon_code = None
        self.status = CartStatus.CONVERTED.value
        self.order_id = order_id
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartConverted(
                cart_id=str(self.id),
                order_id=str(order_id),
                customer_id=str(self.customer_id),
            )
        )


@storefront.repository(part_of=ShoppingCart)
class ShoppingCartRepository:
    def find_active_for_customer(self, customer_id) -> ShoppingCart | None:
        carts = self._dao.query.filter(customer_id=str(customer_id), status=CartStatus.ACTIVE.value).all().items
        return carts[0] if carts else None

    def find_active_for_session(self, session_id) -> ShoppingCart | None:
        carts = self._dao.query.filter(session_id=session_id, status=CartStatus.ACTIVE.value).all().items
        return carts[0] if carts else None
