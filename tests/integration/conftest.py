import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from storefront.api import (
    cart_router,
    coupon_router,
    inventory_router,
    order_router,
    payment_router,
    shipment_router,
    webhook_router,
)
from storefront.api.errors import register_exception_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    for router in (
        cart_router,
        coupon_router,
        order_router,
        payment_router,
        shipment_router,
        inventory_router,
        webhook_router,
    ):
        app.include_router(router)
    register_exception_handlers(app)
    return TestClient(app)


@pytest.fixture()
def api_checkout(client, address):
    """Fill a cart over HTTP and check it out. Returns the checkout response body."""

    def _checkout(customer_id="cust-api-001", product_id="prod-a", quantity=2, coupon_code=None, **body):
        response = client.post(
            "/carts/items",
            json={"customer_id": customer_id, "product_id": product_id, "quantity": quantity},
        )
        assert response.status_code == 201
        cart_id = response.json()["cart_id"]
        if coupon_code:
            assert client.post(f"/carts/{cart_id}/coupon", json={"coupon_code": coupon_code}).status_code == 200

        response = client.post(
            f"/carts/{cart_id}/checkout",
            json={"customer_id": customer_id, "shipping_address": address, **body},
        )
        assert response.status_code == 201
        return response.json()

    return _checkout
