"""Payment initiation, refunds, retries and cash-on-delivery confirmation."""

import pytest
from protean import current_domain

from storefront.errors import (
    InvalidRefund,
    InvalidTransition,
    PaymentInitiationFailed,
    RefundFailed,
    StorefrontError,
)
from storefront.gateway import get_gateway
from storefront.order.cancellation import cancel_order
from storefront.order.order import Order, OrderPaymentStatus, OrderStatus
from storefront.payment.cod import confirm_cash_payment
from storefront.payment.initiation import initiate_payment
from storefront.payment.payment import Payment, PaymentStatus
from storefront.payment.refund import refund_payment
from storefront.payment.retry import RetryPayment


def _payment(payment_id) -> Payment:
    return current_domain.repository_for(Payment).get(payment_id)


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _retry(order_id, **kwargs):
    return current_domain.process(RetryPayment(order_id=order_id, **kwargs), asynchronous=False)


class TestInitiatePayment:
    def test_opens_gateway_session(self, product, checkout, card_gateway):
        product()
        result = checkout()

        session = initiate_payment(result.payment_id)

        assert session.reference.startswith("fake_")
        assert session.redirect_url.endswith(session.reference)
        payment = _payment(result.payment_id)
        assert payment.gateway_reference == session.reference
        assert card_gateway.calls[-1]["notify_url"].endswith("/webhooks/payments/card")

    def test_gateway_failure_is_persisted_and_surfaced(self, product, checkout, card_gateway):
        product()
        result = checkout()
        card_gateway.configure(should_succeed=False, failure_reason="Gateway timeout")

        with pytest.raises(PaymentInitiationFailed) as exc:
            initiate_payment(result.payment_id)

        assert "Gateway timeout" in str(exc.value)
        payment = _payment(result.payment_id)
        assert payment.is_pending
        assert payment.failure_reason == "Gateway timeout"
        assert _order(result.order_id).status == OrderStatus.PENDING.value

    def test_initiation_can_be_retried(self, product, checkout, card_gateway):
        product()
        result = checkout()
        card_gateway.configure(should_succeed=False)
        with pytest.raises(PaymentInitiationFailed):
            initiate_payment(result.payment_id)

        card_gateway.configure(should_succeed=True)
        session = initiate_payment(result.payment_id)

        assert session.succeeded
        assert _payment(result.payment_id).failure_reason is None

    def test_settled_payment_cannot_be_initiated(self, product, checkout, settle):
        product()
        result = checkout()
        settle(result.payment_id)

        with pytest.raises(InvalidTransition):
            initiate_payment(result.payment_id)

    def test_hosted_payment_uses_its_own_gateway(self, product, checkout):
        product()
        result = checkout(payment_method="hosted")

        initiate_payment(result.payment_id)

        assert get_gateway("hosted").calls[-1]["order_number"] == result.order_number
        assert get_gateway("card").calls == []


class TestRefundPayment:
    def test_partial_then_full(self, product, checkout, settle, card_gateway):
        product()
        result = checkout()
        settle(result.payment_id)

        assert refund_payment(result.payment_id, 10.0, reason="Damaged") == PaymentStatus.PARTIALLY_REFUNDED.value
        assert _order(result.order_id).payment_status == OrderPaymentStatus.PARTIALLY_REFUNDED.value

        assert refund_payment(result.payment_id, 21.50) == PaymentStatus.REFUNDED.value
        order = _order(result.order_id)
        assert order.payment_status == OrderPaymentStatus.REFUNDED.value
        assert order.refunded_amount == 31.50
        assert [c["amount"] for c in card_gateway.calls if c["method"] == "refund"] == [10.0, 21.50]

    def test_refund_with_item_quantities(self, product, checkout, settle):
        product()
        result = checkout()
        settle(result.payment_id)
        item_id = str(_order(result.order_id).items[0].id)

        refund_payment(result.payment_id, 10.0, items={item_id: 1})

        assert _order(result.order_id).items[0].refunded_quantity == 1

    def test_refund_more_units_than_ordered(self, product, checkout, settle):
        product()
        result = checkout()
        settle(result.payment_id)
        item_id = str(_order(result.order_id).items[0].id)

        with pytest.raises(InvalidRefund) as exc:
            refund_payment(result.payment_id, 10.0, items={item_id: 3})

        assert "can still be refunded" in str(exc.value)

    def test_over_refund(self, product, checkout, settle, card_gateway):
        product()
        result = checkout()
        settle(result.payment_id)

        with pytest.raises(InvalidRefund):
            refund_payment(result.payment_id, 50.0)

        assert not [c for c in card_gateway.calls if c["method"] == "refund"]

    def test_unsettled_payment(self, product, checkout):
        product()
        result = checkout()

        with pytest.raises(InvalidRefund):
            refund_payment(result.payment_id, 5.0)

    def test_gateway_refusal_changes_nothing(self, product, checkout, settle, card_gateway):
        product()
        result = checkout()
        settle(result.payment_id)
        card_gateway.configure(should_succeed=False, failure_reason="Insufficient balance")

        with pytest.raises(RefundFailed) as exc:
            refund_payment(result.payment_id, 10.0)

        assert "Insufficient balance" in str(exc.value)
        payment = _payment(result.payment_id)
        assert payment.refunded_amount == 0.0
        assert payment.status == PaymentStatus.COMPLETED.value
        assert _order(result.order_id).payment_status == OrderPaymentStatus.PAID.value


class TestRetryPayment:
    def test_new_attempt_after_failure(self, product, checkout, deliver):
        product()
        result = checkout()
        session = initiate_payment(result.payment_id)
        deliver("failed", reference=session.reference, reason="Card declined")

        retry_id = _retry(result.order_id, customer_id="cust-001")

        retry = _payment(retry_id)
        assert retry.attempt_number == 2
        assert retry.is_pending
        assert retry.payment_method == "card"
        assert _order(result.order_id).payment_status == OrderPaymentStatus.PENDING.value
        assert _payment(result.payment_id).has_failed

    def test_retry_settles_order(self, product, checkout, deliver, settle):
        product()
        result = checkout()
        session = initiate_payment(result.payment_id)
        deliver("failed", reference=session.reference)

        retry_id = _retry(result.order_id, payment_method="hosted")
        answer = settle(retry_id)

        assert answer.outcome == "applied"
        assert _order(result.order_id).is_paid

    def test_paid_order_cannot_retry(self, product, checkout, settle):
        product()
        result = checkout()
        settle(result.payment_id)

        with pytest.raises(InvalidTransition):
            _retry(result.order_id)

    def test_cash_cannot_be_retried_online(self, product, checkout):
        product()
        result = checkout()

        with pytest.raises(StorefrontError) as exc:
            _retry(result.order_id, payment_method="cod")

        assert "cannot be retried online" in str(exc.value)

    def test_someone_elses_order(self, product, checkout):
        product()
        result = checkout()

        with pytest.raises(StorefrontError):
            _retry(result.order_id, customer_id="cust-002")


class TestCashOnDelivery:
    def test_confirmation_marks_order_paid(self, product, checkout):
        product()
        result = checkout(payment_method="cod")

        status = confirm_cash_payment(result.payment_id, receipt_number="RCPT-9")

        assert status == PaymentStatus.COMPLETED.value
        assert _payment(result.payment_id).transaction_id == "RCPT-9"
        order = _order(result.order_id)
        assert order.is_paid
        assert order.status == OrderStatus.PROCESSING.value

    def test_confirmation_is_idempotent(self, product, checkout):
        product()
        result = checkout(payment_method="cod")
        confirm_cash_payment(result.payment_id)

        assert confirm_cash_payment(result.payment_id) == PaymentStatus.COMPLETED.value

    def test_cancelled_order(self, product, checkout):
        product()
        result = checkout(payment_method="cod")
        cancel_order(result.order_id)

        with pytest.raises(InvalidTransition):
            confirm_cash_payment(result.payment_id)

    def test_card_payment_cannot_be_confirmed_by_hand(self, product, checkout):
        product()
        result = checkout()

        with pytest.raises(StorefrontError) as exc:
            confirm_cash_payment(result.payment_id)

        assert "Only cash-on-delivery" in str(exc.value)
