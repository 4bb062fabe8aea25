"""Checkout: turn an active cart into an Order, its reservations and a Payment.

Everything runs inside the one UnitOfWork of ``PlaceOrderHandler``:

1. validate the cart (active, owned by the customer, not empty), the
   shipping address and the payment method
2. re-read live price and availability for every line from the catalog and
   re-check stock
3. re-evaluate the cart's coupon against the live lines
4. compute totals
5. reserve stock, insert the Order, record the coupon usage, insert a
   pending Payment and convert the cart

Steps 1 to 4 only read. Any failure in any step raises, and the UnitOfWork
rolls back every reservation and insert together. The cart is left intact.

Use ``place_order()`` to dispatch: it holds the cart key, the stock keys of
every line and the coupon key while the command runs and commits, so two
checkouts for the last unit cannot both succeed. The keys come from a read
taken before locking, so the handler re-derives them from the locked cart and
raises ``ConcurrentUpdate`` if the cart gained a line or a coupon meanwhile.
"""

import json
from dataclasses import dataclass

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.cart.cart import ShoppingCart
from storefront.cart.items import check_stock, live_product
from storefront.coupon.evaluation import CouponLine, evaluate_coupon
from storefront.coupon.usage import CouponUsage
from storefront.domain import storefront
from storefront.errors import ConcurrentUpdate, EmptyCart, InvalidAddress, StorefrontError
from storefront.inventory import ledger
from storefront.inventory.stock import stock_key
from storefront.order.numbering import next_order_number
from storefront.order.order import Order
from storefront.payment.payment import Payment, PaymentMethod
from storefront.pricing.engine import default_engine, round_money, to_decimal
from storefront.utils.locks import cart_lock_key, coupon_lock_key, process_serialized, row_locks, stock_lock_key

logger = structlog.get_logger(__name__)

_ADDRESS_FIELDS = {"name", "phone", "line1", "line2", "city", "state", "postal_code", "country"}
_REQUIRED_ADDRESS_FIELDS = ("name", "line1", "city", "postal_code", "country")


@storefront.command(part_of="Order")
class PlaceOrder:
    cart_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    shipping_address = Text(required=True)  # JSON: address dict
    billing_address = Text()  # JSON: address dict, defaults to the shipping address
    shipping_method = String(max_length=50, default="standard")
    payment_method = String(max_length=50, default=PaymentMethod.CARD.value)
    notes = String(max_length=1000)


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    variant_id: str | None
    product_name: str
    sku: str
    unit_price: float
    quantity: int
    category_ids: tuple = ()

    @property
    def line_total(self) -> float:
        return round_money(to_decimal(self.unit_price) * self.quantity)

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    order_number: str
    payment_id: str
    total: float
    status: str


def _load_json(value):
    if value is None or isinstance(value, dict):
        return value
    try:
        return json.loads(value)
    except ValueError as exc:
        raise InvalidAddress("Address must be a JSON object") from exc


def validate_address(data, field: str = "shipping_address") -> dict:
    if not isinstance(data, dict):
        raise InvalidAddress("Address must be an object", field=field)

    unknown = set(data) - _ADDRESS_FIELDS
    if unknown:
        raise InvalidAddress(f"Unknown address fields: {', '.join(sorted(unknown))}", field=field)

    missing = [name for name in _REQUIRED_ADDRESS_FIELDS if not str(data.get(name) or "").strip()]
    if missing:
        raise InvalidAddress(f"Address is missing: {', '.join(missing)}", field=field)
    return {key: value for key, value in data.items() if value is not None}


def price_cart(cart: ShoppingCart) -> list[PricedLine]:
    """Live price and availability for every cart line."""
    lines = []
    for item in cart.items:
        product = live_product(item.product_id, item.variant_id)
        check_stock(item.product_id, item.variant_id, item.quantity)
        lines.append(
            PricedLine(
                product_id=str(item.product_id),
                variant_id=str(item.variant_id) if item.variant_id else None,
                product_name=product.name,
                sku=product.sku,
                unit_price=product.price,
                quantity=item.quantity,
                category_ids=tuple(product.category_ids),
            )
        )
    return lines


@storefront.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        cart_repo = current_domain.repository_for(ShoppingCart)
        order_repo = current_domain.repository_for(Order)
        cart = cart_repo.get(command.cart_id)

        # Validation: reads only
        if not cart.is_active:
            raise EmptyCart("This cart has already been checked out")
        if str(cart.customer_id or "") != str(command.customer_id):
            raise StorefrontError("Cart does not belong to this customer", field="cart_id")
        if not cart.items:
            raise EmptyCart("Cannot check out an empty cart")
        # The keys were chosen from a read taken before locking
        if not set(checkout_lock_keys(cart)) <= row_locks.held():
            raise ConcurrentUpdate("The cart changed while checkout was starting. Please retry.")

        shipping_address = validate_address(_load_json(command.shipping_address))
        billing_address = _load_json(command.billing_address)
        if billing_address:
            billing_address = validate_address(billing_address, field="billing_address")

        payment_method = command.payment_method or PaymentMethod.CARD.value
        if payment_method not in {m.value for m in PaymentMethod}:
            raise StorefrontError(f"Unsupported payment method: {payment_method}", field="payment_method")

        lines = price_cart(cart)
        engine = default_engine()

        applied = None
        if cart.coupon_code:
            applied = evaluate_coupon(
                cart.coupon_code,
                command.customer_id,
                [CouponLine(line.product_id, line.line_total, line.category_ids) for line in lines],
                engine.subtotal(lines),
            )

        quote = engine.quote(
            lines,
            discount_amount=applied.discount_amount if applied else 0.0,
            shipping_method=command.shipping_method or "standard",
            coupon_code=applied.code if applied else None,
        )
        order_number = next_order_number(order_repo)

        # Mutation
        for line in lines:
            ledger.reserve(line.product_id, line.variant_id, line.quantity, reference=order_number)

        order = Order.place(
            order_number=order_number,
            customer_id=str(command.customer_id),
            lines=[line.as_dict() for line in lines],
            quote=quote,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method=payment_method,
            notes=command.notes,
            awaiting_payment=payment_method != PaymentMethod.COD.value,
        )
        order_repo.add(order)

        if applied:
            current_domain.repository_for(CouponUsage).add(
                CouponUsage.record(
                    coupon_id=applied.coupon_id,
                    code=applied.code,
                    order_id=str(order.id),
                    customer_id=str(command.customer_id),
                    discount_amount=quote.discount_amount,
                )
            )

        payment = Payment.create(order, payment_method)
        current_domain.repository_for(Payment).add(payment)

        cart.convert_to_order(order.id)
        cart_repo.add(cart)

        logger.info(
            "order_placed",
            order_id=str(order.id),
            order_number=order_number,
            total=order.total,
            payment_method=payment_method,
            coupon_code=quote.coupon_code,
        )
        return CheckoutResult(
            order_id=str(order.id),
            order_number=order_number,
            payment_id=str(payment.id),
            total=order.total,
            status=order.status,
        )


def checkout_lock_keys(cart: ShoppingCart) -> list[str]:
    keys = [cart_lock_key(str(cart.id))]
    keys += [stock_lock_key(stock_key(item.product_id, item.variant_id)) for item in cart.items]
    if cart.coupon_code:
        keys.append(coupon_lock_key(cart.coupon_code))
    return keys


def place_order(
    cart_id,
    customer_id,
    shipping_address: dict,
    billing_address: dict | None = None,
    shipping_method: str = "standard",
    payment_method: str = PaymentMethod.CARD.value,
    notes: str | None = None,
) -> CheckoutResult:
    """Run checkout for a cart while holding its stock and coupon keys."""
    cart = current_domain.repository_for(ShoppingCart).get(cart_id)
    command = PlaceOrder(
        cart_id=cart_id,
        customer_id=customer_id,
        shipping_address=json.dumps(shipping_address),
        billing_address=json.dumps(billing_address) if billing_address else None,
        shipping_method=shipping_method,
        payment_method=payment_method,
        notes=notes,
    )
    return process_serialized(command, *checkout_lock_keys(cart))
