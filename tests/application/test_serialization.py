"""Commands on unrelated rows, and commands racing on one order, never lose each other's writes."""

import json
import threading

import pytest
from protean import current_domain
from structlog.testing import capture_logs

from storefront.cart.cart import ShoppingCart
from storefront.domain import storefront
from storefront.errors import ConcurrentUpdate
from storefront.inventory import ledger
from storefront.order.cancellation import cancel_order
from storefront.order.checkout import PlaceOrder, checkout_lock_keys, place_order
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus
from storefront.payment.initiation import initiate_payment
from storefront.payment.payment import Payment
from storefront.utils.locks import process_serialized

TOTAL = 31.50


def _pause(monkeypatch, name, product_id):
    """Make ``ledger.<name>`` wait before touching ``product_id`` until released.

    Returns ``(entered, proceed)``: ``entered`` is set once a caller is
    waiting, and setting ``proceed`` lets it continue.
    """
    original = getattr(ledger, name)
    entered, proceed = threading.Event(), threading.Event()

    def _paused(pid, *args, **kwargs):
        if str(pid) == product_id:
            entered.set()
            proceed.wait(timeout=5)
        return original(pid, *args, **kwargs)

    monkeypatch.setattr(ledger, name, _paused)
    return entered, proceed


def _in_thread(target, errors):
    def _run():
        with storefront.domain_context():
            try:
                target()
            except Exception as exc:  # surfaced by the assertions below
                errors.append(exc)

    return threading.Thread(target=_run)


class TestDisjointCheckouts:
    def test_both_orders_are_kept(self, product, fill_cart, address, monkeypatch):
        product("prod-a")
        product("prod-b")
        cart_a = fill_cart(customer_id="cust-a", lines=(("prod-a", 2),))
        cart_b = fill_cart(customer_id="cust-b", lines=(("prod-b", 2),))
        entered, proceed = _pause(monkeypatch, "reserve", "prod-a")
        errors = []

        first = _in_thread(lambda: place_order(cart_a, "cust-a", dict(address)), errors)
        second = _in_thread(lambda: place_order(cart_b, "cust-b", dict(address)), errors)
        first.start()
        assert entered.wait(timeout=5)
        second.start()
        second.join(timeout=0.3)
        proceed.set()
        first.join()
        second.join()

        assert errors == []
        orders = current_domain.repository_for(Order)._dao.query.all().items
        assert sorted(str(order.customer_id) for order in orders) == ["cust-a", "cust-b"]
        assert ledger.available("prod-a") == 3
        assert ledger.available("prod-b") == 3
        carts = current_domain.repository_for(ShoppingCart)
        assert not carts.get(cart_a).is_active
        assert not carts.get(cart_b).is_active


class TestCancelRacingSettlement:
    def test_cancellation_survives_a_concurrent_success_callback(self, product, checkout, deliver, monkeypatch):
        product()
        result = checkout()
        session = initiate_payment(result.payment_id)
        entered, proceed = _pause(monkeypatch, "release", "prod-a")
        errors, answers = [], []

        cancelling = _in_thread(lambda: cancel_order(result.order_id, reason="Changed my mind"), errors)
        settling = _in_thread(
            lambda: answers.append(deliver("succeeded", reference=session.reference, amount=TOTAL)),
            errors,
        )
        with capture_logs() as logs:
            cancelling.start()
            assert entered.wait(timeout=5)
            settling.start()
            settling.join(timeout=0.3)
            assert settling.is_alive()
            proceed.set()
            cancelling.join()
            settling.join()

        assert errors == []
        assert [answer.outcome for answer in answers] == ["applied"]
        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == OrderPaymentStatus.PENDING.value
        assert "Changed my mind" in [entry["note"] for entry in order.history]
        assert ledger.available("prod-a") == 5
        assert current_domain.repository_for(Payment).get(result.payment_id).has_succeeded
        assert any(
            entry["event"] == "settlement_for_cancelled_order" and entry["needs_manual_reconciliation"]
            for entry in logs
        )


class TestCheckoutKeys:
    def test_cart_changed_after_keys_were_chosen(self, product, fill_cart, address):
        product("prod-a")
        product("prod-b")
        cart_id = fill_cart(customer_id="cust-001", lines=(("prod-a", 1),))
        stale_keys = checkout_lock_keys(current_domain.repository_for(ShoppingCart).get(cart_id))
        fill_cart(customer_id="cust-001", lines=(("prod-b", 1),))
        command = PlaceOrder(cart_id=cart_id, customer_id="cust-001", shipping_address=json.dumps(address))

        with pytest.raises(ConcurrentUpdate):
            process_serialized(command, *stale_keys)

        assert current_domain.repository_for(ShoppingCart).get(cart_id).is_active
        assert ledger.available("prod-a") == 5
        assert ledger.available("prod-b") == 5

    def test_checkout_derives_keys_from_the_current_cart(self, product, fill_cart, address):
        product("prod-a")
        product("prod-b")
        cart_id = fill_cart(customer_id="cust-001", lines=(("prod-a", 1),))
        fill_cart(customer_id="cust-001", lines=(("prod-b", 1),))

        result = place_order(cart_id, "cust-001", address)

        assert len(current_domain.repository_for(Order).get(result.order_id).items) == 2
