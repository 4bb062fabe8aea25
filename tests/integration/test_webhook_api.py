"""Integration tests for payment and courier webhook endpoints."""

import json

import pytest

from storefront.config import get_settings
from storefront.gateway.fake_adapter import TEST_SIGNATURE


def _post_payment_webhook(client, body, gateway="card", signature=TEST_SIGNATURE):
    return client.post(
        f"/webhooks/payments/{gateway}",
        content=json.dumps(body),
        headers={"X-Signature": signature},
    )


@pytest.fixture()
def initiated(client, product, api_checkout):
    product()
    placed = api_checkout()
    session = client.post(f"/payments/{placed['payment_id']}/initiate").json()
    return placed, session


def _success(session, amount=31.50):
    return {
        "event": "succeeded",
        "reference": session["reference"],
        "transaction_id": f"txn-{session['reference']}",
        "amount": amount,
        "currency": "USD",
    }


class TestPaymentWebhook:
    def test_redelivery_is_acknowledged(self, client, initiated):
        _, session = initiated
        _post_payment_webhook(client, _success(session))

        response = _post_payment_webhook(client, _success(session))

        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"

    def test_bad_signature(self, client, initiated):
        _, session = initiated

        response = _post_payment_webhook(client, _success(session), signature="forged")

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_signature"
        assert response.json()["retryable"] is False

    def test_unknown_reference_is_retryable(self, client, initiated):
        _, session = initiated
        body = _success(session)
        body["reference"] = "fake_missing"

        response = _post_payment_webhook(client, body)

        assert response.status_code == 404
        assert response.json()["retryable"] is True

    def test_amount_mismatch_leaves_order_unpaid(self, client, initiated):
        placed, session = initiated

        response = _post_payment_webhook(client, _success(session, amount=1.00))

        assert response.status_code == 422
        assert response.json()["error"] == "amount_mismatch"
        assert client.get(f"/orders/{placed['order_id']}").json()["payment_status"] == "pending"

    def test_failure_keeps_order_retryable(self, client, initiated):
        placed, session = initiated
        body = {"event": "failed", "reference": session["reference"], "reason": "Card declined"}

        response = _post_payment_webhook(client, body)

        assert response.status_code == 200
        payment = client.get(f"/payments/{placed['payment_id']}").json()
        assert payment["status"] == "failed"
        assert payment["failure_reason"] == "Card declined"

        retry = client.post(f"/orders/{placed['order_id']}/payments", json={"payment_method": "hosted"})
        assert retry.status_code == 201
        assert len(client.get(f"/orders/{placed['order_id']}/payments").json()) == 2

    def test_unknown_gateway(self, client):
        response = _post_payment_webhook(client, {"event": "succeeded"}, gateway="paypal")

        assert response.status_code == 404


class TestCourierWebhook:
    @pytest.fixture()
    def shipment(self, client, initiated):
        placed, session = initiated
        _post_payment_webhook(client, _success(session))
        response = client.post("/shipments", json={"order_id": placed["order_id"], "courier": "pathao"})
        assert response.status_code == 201
        return client.get(f"/shipments/{response.json()['shipment_id']}").json()

    def test_delivered(self, client, shipment):
        response = client.post(
            "/webhooks/couriers/pathao",
            json={"consignment_id": shipment["tracking_id"], "status": "Delivered"},
        )

        assert response.status_code == 200
        assert response.json() == {"changed": True}
        assert client.get(f"/orders/{shipment['order_id']}").json()["status"] == "delivered"

    def test_token_required_when_configured(self, client, shipment, monkeypatch):
        monkeypatch.setenv("STOREFRONT_COURIER_WEBHOOK_TOKEN", "s3cret")
        get_settings.cache_clear()
        body = {"consignment_id": shipment["tracking_id"], "status": "Delivered"}

        rejected = client.post("/webhooks/couriers/pathao", json=body, headers={"X-Webhook-Token": "wrong"})
        accepted = client.post("/webhooks/couriers/pathao", json=body, headers={"X-Webhook-Token": "s3cret"})

        assert rejected.status_code == 401
        assert accepted.status_code == 200

    def test_unknown_tracking_id(self, client):
        body = {"consignment_id": "PATHAO-NOPE", "status": "Delivered"}

        response = client.post("/webhooks/couriers/pathao", json=body)

        assert response.status_code == 404

    def test_body_is_not_json(self, client):
        response = client.post("/webhooks/couriers/pathao", content=b"not json")

        assert response.status_code == 400
        assert response.json()["error"] == "malformed_payload"
