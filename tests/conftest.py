import os
from pathlib import Path

import pytest

ADDRESS = {
    "name": "Jane Doe",
    "phone": "+15550100",
    "line1": "123 Main St",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def _storefront(request):
    """Initialize the storefront domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from storefront.domain import storefront

    storefront.init()
    return storefront


@pytest.fixture(scope="session", autouse=True)
def setup_db(_storefront):
    from storefront.utils.db import drop_db, setup_db

    setup_db(_storefront)

    yield

    drop_db(_storefront)


@pytest.fixture(autouse=True)
def run_around_tests(_storefront):
    """Push domain context before each test, cleanup after."""
    ctx = _storefront.domain_context()
    ctx.push()

    yield

    from protean import current_domain

    from storefront.catalog import reset_catalog
    from storefront.config import get_settings
    from storefront.fulfillment.couriers import reset_couriers
    from storefront.gateway import reset_gateways

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()

    reset_gateways()
    reset_couriers()
    reset_catalog()
    get_settings.cache_clear()
    ctx.pop()


# ---------------------------------------------------------------------------
# Shared builders
# ---------------------------------------------------------------------------
@pytest.fixture
def catalog():
    """An empty in-memory catalog installed as the live catalog."""
    from storefront.catalog import set_catalog
    from storefront.catalog.memory_adapter import InMemoryCatalog

    live = InMemoryCatalog()
    set_catalog(live)
    return live


@pytest.fixture
def product(catalog):
    """Register a product with stock. Returns its product id."""
    from storefront.inventory.receiving import receive_stock

    def _product(product_id="prod-a", price=10.0, stock=5, name=None, category_ids=(), variant_id=None):
        catalog.register(
            product_id,
            name=name or f"Product {product_id}",
            price=price,
            variant_id=variant_id,
            category_ids=category_ids,
        )
        if stock:
            receive_stock(product_id, stock, variant_id=variant_id)
        return product_id

    return _product


@pytest.fixture
def coupon():
    """Create a coupon through its command. Returns the coupon id."""
    import json

    from protean import current_domain

    from storefront.coupon.management import CreateCoupon

    def _coupon(code="SAVE10", discount_type="percentage", value=10.0, **kwargs):
        for key in ("product_ids", "category_ids", "allowed_user_ids"):
            if key in kwargs:
                kwargs[key] = json.dumps(kwargs[key])
        return current_domain.process(
            CreateCoupon(code=code, discount_type=discount_type, value=value, **kwargs),
            asynchronous=False,
        )

    return _coupon


@pytest.fixture
def fill_cart():
    """Add ``(product_id, quantity)`` lines to a customer's active cart. Returns the cart id."""
    from protean import current_domain

    from storefront.cart.coupons import ApplyCouponToCart
    from storefront.cart.items import AddToCart

    def _fill(customer_id="cust-001", lines=(("prod-a", 2),), coupon_code=None):
        cart_id = None
        for product_id, quantity in lines:
            cart_id = current_domain.process(
                AddToCart(customer_id=customer_id, product_id=product_id, quantity=quantity),
                asynchronous=False,
            )
        if coupon_code:
            current_domain.process(ApplyCouponToCart(cart_id=cart_id, coupon_code=coupon_code), asynchronous=False)
        return cart_id

    return _fill


@pytest.fixture
def checkout(fill_cart):
    """Fill a cart and place its order. Returns the CheckoutResult."""
    from storefront.order.checkout import place_order

    def _checkout(customer_id="cust-001", lines=(("prod-a", 2),), coupon_code=None, payment_method="card", **kwargs):
        cart_id = fill_cart(customer_id=customer_id, lines=lines, coupon_code=coupon_code)
        return place_order(cart_id, customer_id, dict(ADDRESS), payment_method=payment_method, **kwargs)

    return _checkout


@pytest.fixture
def card_gateway():
    from storefront.gateway import get_gateway

    return get_gateway("card")


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def deliver():
    """Post a fake-gateway callback through the reconciler."""
    import json

    from storefront.gateway.fake_adapter import TEST_SIGNATURE
    from storefront.settlement.reconciler import handle_callback

    def _deliver(event, gateway="card", signature=TEST_SIGNATURE, **fields):
        body = json.dumps({"event": event, **fields}).encode()
        return handle_callback(gateway, body, signature)

    return _deliver


@pytest.fixture
def settle(deliver):
    """Initiate a payment and deliver its success callback. Returns the reconciler's answer."""
    from protean import current_domain

    from storefront.payment.initiation import initiate_payment
    from storefront.payment.payment import Payment

    def _settle(payment_id):
        session = initiate_payment(payment_id)
        payment = current_domain.repository_for(Payment).get(payment_id)
        return deliver(
            "succeeded",
            gateway=payment.payment_method,
            reference=session.reference,
            transaction_id=f"txn-{session.reference}",
            amount=payment.amount,
            currency=payment.currency,
        )

    return _settle
