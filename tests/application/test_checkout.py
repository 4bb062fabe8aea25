"""Checkout: one atomic transition from cart to order, reservations and payment."""

import threading

import pytest
from protean import current_domain

from storefront.cart.cart import CartStatus, ShoppingCart
from storefront.coupon.usage import CouponUsage
from storefront.domain import storefront
from storefront.errors import (
    CouponLimitReached,
    EmptyCart,
    InsufficientStock,
    InvalidAddress,
    ProductUnavailable,
    StorefrontError,
)
from storefront.inventory import ledger
from storefront.inventory.receiving import adjust_stock
from storefront.order.checkout import place_order
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus
from storefront.payment.payment import Payment, PaymentStatus


class TestPlaceOrder:
    def test_discounted_order_with_shipping_and_tax(self, product, coupon, checkout):
        product(price=10.0, stock=5)
        coupon(code="SAVE10", value=10.0)

        result = checkout(lines=(("prod-a", 2),), coupon_code="SAVE10")

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.subtotal == 20.0
        assert order.discount_amount == 2.0
        assert order.shipping_cost == 10.0
        assert order.tax == 1.40
        assert order.total == 29.40
        assert result.total == 29.40
        assert order.status == OrderStatus.PENDING.value
        assert order.coupon_code == "SAVE10"
        assert order.order_number.startswith("ORD-")

    def test_reserves_stock(self, product, checkout):
        product(stock=5)
        checkout(lines=(("prod-a", 2),))

        assert ledger.available("prod-a") == 3

    def test_records_coupon_usage(self, product, coupon, checkout):
        product()
        coupon()
        result = checkout(coupon_code="SAVE10")

        usages = current_domain.repository_for(CouponUsage).for_order(result.order_id)
        assert len(usages) == 1
        assert usages[0].code == "SAVE10"
        assert usages[0].discount_amount == 2.0

    def test_creates_pending_payment(self, product, checkout):
        product()
        result = checkout()

        payment = current_domain.repository_for(Payment).get(result.payment_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.amount == result.total
        assert payment.attempt_number == 1
        assert payment.order_number == result.order_number

    def test_converts_cart(self, product, fill_cart, address):
        product()
        cart_id = fill_cart()
        result = place_order(cart_id, "cust-001", address)

        cart = current_domain.repository_for(ShoppingCart).get(cart_id)
        assert cart.status == CartStatus.CONVERTED.value
        assert cart.items == []
        assert cart.order_id == result.order_id

    def test_charges_live_price_not_cached_price(self, product, catalog, fill_cart, address):
        product(price=10.0)
        cart_id = fill_cart(lines=(("prod-a", 2),))
        catalog.update_price("prod-a", 12.5)

        result = place_order(cart_id, "cust-001", address)

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.items[0].unit_price == 12.5
        assert order.subtotal == 25.0

    def test_cash_on_delivery_starts_processing(self, product, checkout):
        product()
        result = checkout(payment_method="cod")

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.status == OrderStatus.PROCESSING.value
        assert order.payment_status == OrderPaymentStatus.PENDING.value
        assert result.status == "processing"

    def test_billing_address_defaults_to_shipping(self, product, checkout):
        product()
        result = checkout()

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.billing_address.line1 == order.shipping_address.line1


class TestCheckoutRejections:
    def test_insufficient_stock_leaves_everything_intact(self, product, fill_cart, address):
        product(stock=2)
        cart_id = fill_cart(lines=(("prod-a", 2),))
        adjust_stock("prod-a", 1, reason="Damaged")

        with pytest.raises(InsufficientStock) as exc:
            place_order(cart_id, "cust-001", address)

        assert exc.value.available == 1
        assert ledger.available("prod-a") == 1
        cart = current_domain.repository_for(ShoppingCart).get(cart_id)
        assert cart.is_active
        assert cart.items[0].quantity == 2
        assert current_domain.repository_for(Order)._dao.query.all().total == 0

    def test_product_withdrawn_after_add(self, product, catalog, fill_cart, address):
        product()
        cart_id = fill_cart()
        catalog.set_status("prod-a", "archived")

        with pytest.raises(ProductUnavailable):
            place_order(cart_id, "cust-001", address)

        assert ledger.available("prod-a") == 5

    def test_empty_cart(self, product, fill_cart, address):
        product()
        cart_id = fill_cart()
        cart = current_domain.repository_for(ShoppingCart).get(cart_id)
        cart.clear()
        current_domain.repository_for(ShoppingCart).add(cart)

        with pytest.raises(EmptyCart):
            place_order(cart_id, "cust-001", address)

    def test_converted_cart_cannot_check_out_twice(self, product, fill_cart, address):
        product()
        cart_id = fill_cart()
        place_order(cart_id, "cust-001", address)

        with pytest.raises(EmptyCart):
            place_order(cart_id, "cust-001", address)

        assert ledger.available("prod-a") == 3

    def test_cart_of_another_customer(self, product, fill_cart, address):
        product()
        cart_id = fill_cart(customer_id="cust-001")

        with pytest.raises(StorefrontError) as exc:
            place_order(cart_id, "cust-002", address)

        assert "does not belong" in str(exc.value)

    def test_incomplete_address(self, product, fill_cart):
        product()
        cart_id = fill_cart()

        with pytest.raises(InvalidAddress) as exc:
            place_order(cart_id, "cust-001", {"name": "Jane", "city": "Springfield"})

        assert "line1" in str(exc.value)
        assert ledger.available("prod-a") == 5

    def test_unsupported_payment_method(self, product, fill_cart, address):
        product()
        cart_id = fill_cart()

        with pytest.raises(StorefrontError) as exc:
            place_order(cart_id, "cust-001", address, payment_method="barter")

        assert "Unsupported payment method" in str(exc.value)

    def test_coupon_limit_reached_between_apply_and_checkout(self, product, coupon, fill_cart, address):
        product(stock=10)
        coupon(usage_limit=1)
        first = fill_cart(customer_id="cust-001", coupon_code="SAVE10")
        second = fill_cart(customer_id="cust-002", coupon_code="SAVE10")

        place_order(first, "cust-001", address)

        with pytest.raises(CouponLimitReached):
            place_order(second, "cust-002", address)

        assert ledger.available("prod-a") == 8
        assert current_domain.repository_for(CouponUsage).count_for_code("SAVE10") == 1
        assert current_domain.repository_for(ShoppingCart).get(second).is_active

    def test_per_user_limit_blocks_second_cart(self, product, coupon, checkout, fill_cart):
        product(stock=10)
        coupon(usage_limit_per_user=1)
        checkout(customer_id="cust-001", coupon_code="SAVE10")

        with pytest.raises(CouponLimitReached):
            fill_cart(customer_id="cust-001", coupon_code="SAVE10")


class TestConcurrentCheckout:
    def test_last_unit_sells_once(self, product, fill_cart, address):
        product(stock=1)
        carts = {
            "cust-001": fill_cart(customer_id="cust-001", lines=(("prod-a", 1),)),
            "cust-002": fill_cart(customer_id="cust-002", lines=(("prod-a", 1),)),
        }
        barrier = threading.Barrier(len(carts))
        placed, rejected = [], []

        def attempt(customer_id, cart_id):
            with storefront.domain_context():
                barrier.wait()
                try:
                    placed.append(place_order(cart_id, customer_id, dict(address)))
                except InsufficientStock as exc:
                    rejected.append(exc)

        threads = [threading.Thread(target=attempt, args=item) for item in carts.items()]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(placed) == 1
        assert len(rejected) == 1
        assert ledger.available("prod-a") == 0
        assert current_domain.repository_for(Order)._dao.query.all().total == 1
