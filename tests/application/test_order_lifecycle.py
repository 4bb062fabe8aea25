"""Cancellation, returns and archival of placed orders."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from storefront.errors import OrderNotCancellable, RefundFailed, ReturnNotAllowed, StorefrontError
from storefront.fulfillment.shipment import Shipment
from storefront.fulfillment.shipping import CreateShipment
from storefront.fulfillment.tracking import record_courier_webhook
from storefront.inventory import ledger
from storefront.order.archive import ArchiveOrder
from storefront.order.cancellation import cancel_order
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus
from storefront.order.returns import ApproveReturn, RequestReturn, complete_return
from storefront.payment.payment import Payment, PaymentStatus
from storefront.payment.refund import refund_payment


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _ship(order_id, courier="pathao") -> Shipment:
    shipment_id = current_domain.process(CreateShipment(order_id=order_id, courier=courier), asynchronous=False)
    return current_domain.repository_for(Shipment).get(shipment_id)


def _delivered_order(product, checkout, settle):
    product()
    result = checkout()
    settle(result.payment_id)
    shipment = _ship(result.order_id)
    record_courier_webhook("pathao", {"consignment_id": shipment.consignment_id, "status": "Delivered"})
    return result


class TestCancelOrder:
    def test_cancel_releases_stock(self, product, checkout):
        product(stock=5)
        result = checkout(lines=(("prod-a", 2),))
        assert ledger.available("prod-a") == 3

        cancel_order(result.order_id, reason="Changed my mind", customer_id="cust-001")

        order = _order(result.order_id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason == "Changed my mind"
        assert ledger.available("prod-a") == 5

    def test_cancel_paid_order_keeps_payment(self, product, checkout, settle):
        product()
        result = checkout()
        settle(result.payment_id)

        cancel_order(result.order_id)

        order = _order(result.order_id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == OrderPaymentStatus.PAID.value

    def test_shipped_order_cannot_be_cancelled(self, product, checkout, settle):
        product()
        result = checkout()
        settle(result.payment_id)
        _ship(result.order_id)

        with pytest.raises(OrderNotCancellable) as exc:
            cancel_order(result.order_id)

        assert "return flow" in str(exc.value)
        assert ledger.available("prod-a") == 3

    def test_cancel_twice(self, product, checkout):
        product()
        result = checkout()
        cancel_order(result.order_id)

        with pytest.raises(OrderNotCancellable):
            cancel_order(result.order_id)

        assert ledger.available("prod-a") == 5

    def test_someone_elses_order(self, product, checkout):
        product()
        result = checkout()

        with pytest.raises(StorefrontError):
            cancel_order(result.order_id, customer_id="cust-002")

        assert _order(result.order_id).status == OrderStatus.PENDING.value


class TestReturns:
    def test_full_return_refunds_outstanding_amount(self, product, checkout, settle, card_gateway):
        result = _delivered_order(product, checkout, settle)

        current_domain.process(RequestReturn(order_id=result.order_id, reason="Damaged"), asynchronous=False)
        current_domain.process(ApproveReturn(order_id=result.order_id), asynchronous=False)
        refunded = complete_return(result.order_id)

        assert refunded == 31.50
        order = _order(result.order_id)
        assert order.status == OrderStatus.RETURNED.value
        assert order.payment_status == OrderPaymentStatus.REFUNDED.value
        assert order.return_completed_at is not None
        payment = current_domain.repository_for(Payment).get(result.payment_id)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert card_gateway.calls[-1]["method"] == "refund"

    def test_return_after_partial_refund(self, product, checkout, settle):
        result = _delivered_order(product, checkout, settle)
        refund_payment(result.payment_id, 10.0)

        current_domain.process(RequestReturn(order_id=result.order_id, reason="Damaged"), asynchronous=False)
        current_domain.process(ApproveReturn(order_id=result.order_id), asynchronous=False)

        assert complete_return(result.order_id) == 21.50
        assert _order(result.order_id).refunded_amount == 31.50

    def test_return_does_not_restock(self, product, checkout, settle):
        result = _delivered_order(product, checkout, settle)
        current_domain.process(RequestReturn(order_id=result.order_id, reason="Damaged"), asynchronous=False)
        current_domain.process(ApproveReturn(order_id=result.order_id), asynchronous=False)
        complete_return(result.order_id)

        assert ledger.available("prod-a") == 3

    def test_undelivered_order(self, product, checkout):
        product()
        result = checkout()

        with pytest.raises(ReturnNotAllowed):
            current_domain.process(RequestReturn(order_id=result.order_id, reason="Damaged"), asynchronous=False)

    def test_outside_return_window(self, product, checkout, settle):
        result = _delivered_order(product, checkout, settle)
        order = _order(result.order_id)
        order.delivered_at = datetime.now(UTC) - timedelta(days=30)
        current_domain.repository_for(Order).add(order)

        with pytest.raises(ReturnNotAllowed) as exc:
            current_domain.process(RequestReturn(order_id=result.order_id, reason="Late"), asynchronous=False)

        assert "within 14 days" in str(exc.value)

    def test_complete_before_approval(self, product, checkout, settle):
        result = _delivered_order(product, checkout, settle)
        current_domain.process(RequestReturn(order_id=result.order_id, reason="Damaged"), asynchronous=False)

        with pytest.raises(ReturnNotAllowed):
            complete_return(result.order_id)

    def test_refund_refused_keeps_return_open(self, product, checkout, settle, card_gateway):
        result = _delivered_order(product, checkout, settle)
        current_domain.process(RequestReturn(order_id=result.order_id, reason="Damaged"), asynchronous=False)
        current_domain.process(ApproveReturn(order_id=result.order_id), asynchronous=False)
        card_gateway.configure(should_succeed=False)

        with pytest.raises(RefundFailed) as exc:
            complete_return(result.order_id)

        assert exc.value.code == "refund_failed"
        order = _order(result.order_id)
        assert order.return_completed_at is None
        assert order.payment_status == OrderPaymentStatus.PAID.value


class TestArchiveOrder:
    def test_archived_orders_leave_customer_listing(self, product, checkout):
        product()
        result = checkout()

        current_domain.process(ArchiveOrder(order_id=result.order_id), asynchronous=False)

        assert _order(result.order_id).is_archived is True
        assert current_domain.repository_for(Order).for_customer("cust-001") == []
