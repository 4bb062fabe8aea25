"""Integration tests for cart, coupon and checkout endpoints via TestClient."""

import json

from protean import current_domain

from storefront.gateway.fake_adapter import TEST_SIGNATURE
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus


def _add_to_cart(client, quantity=2, customer_id="cust-api-001"):
    response = client.post(
        "/carts/items",
        json={"customer_id": customer_id, "product_id": "prod-a", "quantity": quantity},
    )
    return response


class TestCartEndpoints:
    def test_add_and_price_cart(self, client, product):
        product(price=10.0, stock=5)

        cart_id = _add_to_cart(client).json()["cart_id"]
        cart = client.get(f"/carts/{cart_id}").json()

        assert cart["subtotal"] == 20.0
        assert cart["shipping_cost"] == 10.0
        assert cart["tax"] == 1.5
        assert cart["total"] == 31.5
        assert cart["items"][0]["line_total"] == 20.0

    def test_apply_coupon(self, client, product):
        product()
        client.post("/coupons", json={"code": "SAVE10", "value": 10})
        cart_id = _add_to_cart(client).json()["cart_id"]

        response = client.post(f"/carts/{cart_id}/coupon", json={"coupon_code": " save10 "})

        assert response.status_code == 200
        assert response.json() == {"coupon_code": "SAVE10", "discount_amount": 2.0}
        assert client.get(f"/carts/{cart_id}").json()["total"] == 29.40

    def test_unknown_coupon_is_unprocessable(self, client, product):
        product()
        cart_id = _add_to_cart(client, quantity=1).json()["cart_id"]

        response = client.post(f"/carts/{cart_id}/coupon", json={"coupon_code": "NOPE"})

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_coupon"

    def test_quantity_beyond_stock_conflicts(self, client, product):
        product(stock=1)

        response = _add_to_cart(client, quantity=3)

        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_stock"


class TestCheckoutEndpoint:
    def test_checkout_then_settle(self, client, product, coupon, api_checkout):
        product(stock=5)
        coupon()

        placed = api_checkout(coupon_code="SAVE10")

        assert placed["total"] == 29.40
        assert placed["status"] == OrderStatus.PENDING.value
        assert client.get("/inventory/prod-a").json()["available"] == 3

        session = client.post(f"/payments/{placed['payment_id']}/initiate").json()
        body = {
            "event": "succeeded",
            "reference": session["reference"],
            "transaction_id": "txn-api-1",
            "amount": 29.40,
            "currency": "USD",
        }
        response = client.post(
            "/webhooks/payments/card",
            content=json.dumps(body),
            headers={"X-Signature": TEST_SIGNATURE},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
        order = client.get(f"/orders/{placed['order_id']}").json()
        assert order["status"] == OrderStatus.PROCESSING.value
        assert order["payment_status"] == OrderPaymentStatus.PAID.value
        assert order["discount_amount"] == 2.0

    def test_stock_gone_before_checkout(self, client, product, address):
        product(stock=5)
        cart_id = _add_to_cart(client).json()["cart_id"]
        client.put("/inventory/adjust", json={"product_id": "prod-a", "new_level": 1, "reason": "Stock count"})

        response = client.post(
            f"/carts/{cart_id}/checkout",
            json={"customer_id": "cust-api-001", "shipping_address": address},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_stock"
        assert current_domain.repository_for(Order).for_customer("cust-api-001") == []
        assert client.get("/inventory/prod-a").json()["available"] == 1

    def test_missing_address_field(self, client, product, address):
        product()
        cart_id = _add_to_cart(client, quantity=1).json()["cart_id"]
        del address["line1"]

        response = client.post(
            f"/carts/{cart_id}/checkout",
            json={"customer_id": "cust-api-001", "shipping_address": address},
        )

        assert response.status_code == 422

    def test_gateway_outage_keeps_order(self, client, product, card_gateway, api_checkout):
        product()
        placed = api_checkout()
        card_gateway.configure(should_succeed=False, failure_reason="Gateway timeout")

        response = client.post(f"/payments/{placed['payment_id']}/initiate")

        assert response.status_code == 502
        assert response.json()["error"] == "payment_initiation_failed"
        assert client.get(f"/orders/{placed['order_id']}").json()["status"] == OrderStatus.PENDING.value

    def test_cancel_restores_stock(self, client, product, api_checkout):
        product(stock=5)
        placed = api_checkout()

        response = client.put(f"/orders/{placed['order_id']}/cancel", json={"reason": "Changed my mind"})

        assert response.status_code == 200
        assert client.get("/inventory/prod-a").json()["available"] == 5
