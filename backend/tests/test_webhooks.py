# Overview: Pytest coverage for the payment provider and carrier webhooks.

import pytest

from giftsity.extensions import db
from giftsity.models import Order, OrderEvent
from giftsity.services import order_service, shipment_service

from conftest import fresh


PAYMENT = "/api/webhooks/payment"
DELIVERY = "/api/webhooks/delivery"
PAYMENT_SECRET = {"X-Webhook-Secret": "dev-payment-webhook-secret"}
CARRIER_SECRET = {"X-Webhook-Secret": "dev-carrier-webhook-secret"}


@pytest.fixture
def pending_order(app, customer, product):
    return order_service.place_order(customer, [{"product_id": product.id, "quantity": 1}])


def _payment_event(order, event_id="evt_1", status="succeeded"):
    return {
        "event_id": event_id,
        "order_number": order.order_number,
        "status": status,
        "payment_reference": f"pay_{order.order_number}",
    }


class TestPaymentWebhook:
    @pytest.mark.parametrize("headers", [{}, {"X-Webhook-Secret": "guess"}, CARRIER_SECRET])
    def test_secret_required(self, client, pending_order, headers):
        resp = client.post(PAYMENT, json=_payment_event(pending_order), headers=headers)
        assert resp.status_code == 401
        assert fresh(Order, pending_order.id).state == "PaymentPending"

    def test_succeeded(self, client, pending_order):
        resp = client.post(PAYMENT, json=_payment_event(pending_order), headers=PAYMENT_SECRET)
        assert resp.status_code == 200
        assert resp.json == {"order_number": pending_order.order_number, "state": "PaymentConfirmed"}

    def test_redelivery_is_harmless(self, client, pending_order):
        first = client.post(PAYMENT, json=_payment_event(pending_order), headers=PAYMENT_SECRET)
        second = client.post(PAYMENT, json=_payment_event(pending_order), headers=PAYMENT_SECRET)

        assert first.status_code == second.status_code == 200
        assert second.json["state"] == "PaymentConfirmed"
        assert db.session.query(OrderEvent).filter_by(order_id=pending_order.id).count() == 1

    def test_second_event_for_same_payment(self, client, pending_order):
        client.post(PAYMENT, json=_payment_event(pending_order, "evt_1"), headers=PAYMENT_SECRET)
        resp = client.post(PAYMENT, json=_payment_event(pending_order, "evt_2"), headers=PAYMENT_SECRET)

        assert resp.status_code == 409
        assert resp.json["error"] == "AlreadyInState"

    def test_failed_cancels(self, client, pending_order):
        resp = client.post(PAYMENT, json=_payment_event(pending_order, status="failed"), headers=PAYMENT_SECRET)
        assert resp.status_code == 200
        assert resp.json["state"] == "Cancelled"

    def test_unknown_order(self, client, app):
        resp = client.post(PAYMENT, json={
            "event_id": "evt_1", "order_number": "GS-NOPE", "status": "succeeded",
        }, headers=PAYMENT_SECRET)
        assert resp.status_code == 404

    @pytest.mark.parametrize("body", [
        {"order_number": "GS-1", "status": "succeeded"},
        {"event_id": "evt_1", "status": "succeeded"},
        {"event_id": "evt_1", "order_number": "GS-1", "status": "pending"},
    ])
    def test_malformed_payload(self, client, app, body):
        resp = client.post(PAYMENT, json=body, headers=PAYMENT_SECRET)
        assert resp.status_code == 400

    def test_no_body(self, client, app):
        resp = client.post(PAYMENT, data="x", content_type="text/plain", headers=PAYMENT_SECRET)
        assert resp.status_code == 400


class TestDeliveryWebhook:
    @pytest.fixture
    def shipped_order(self, client, pending_order, seller):
        client.post(PAYMENT, json=_payment_event(pending_order), headers=PAYMENT_SECRET)
        return shipment_service.dispatch(pending_order.id, "seller", seller.id, tracking_number="AWB123")

    def test_secret_required(self, client, shipped_order):
        resp = client.post(DELIVERY, json={
            "event_id": "trk_1", "tracking_number": "AWB123", "status": "delivered",
        }, headers=PAYMENT_SECRET)
        assert resp.status_code == 401

    def test_delivered(self, client, shipped_order):
        resp = client.post(DELIVERY, json={
            "event_id": "trk_1", "tracking_number": "AWB123", "status": "delivered",
        }, headers=CARRIER_SECRET)

        assert resp.status_code == 200
        assert resp.json["state"] == "Delivered"
        assert fresh(Order, shipped_order.id).delivered_at is not None

    def test_in_transit_is_acknowledged(self, client, shipped_order):
        resp = client.post(DELIVERY, json={
            "event_id": "trk_0", "tracking_number": "AWB123", "status": "in_transit",
        }, headers=CARRIER_SECRET)

        assert resp.status_code == 200
        assert resp.json["ignored"] is True
        assert fresh(Order, shipped_order.id).state == "Shipped"

    def test_redelivered_event(self, client, shipped_order):
        body = {"event_id": "trk_1", "tracking_number": "AWB123", "status": "delivered"}
        client.post(DELIVERY, json=body, headers=CARRIER_SECRET)
        delivered_at = fresh(Order, shipped_order.id).delivered_at

        again = client.post(DELIVERY, json=body, headers=CARRIER_SECRET)
        assert again.status_code == 200
        assert fresh(Order, shipped_order.id).delivered_at == delivered_at

    def test_unknown_tracking_number(self, client, shipped_order):
        resp = client.post(DELIVERY, json={
            "event_id": "trk_1", "tracking_number": "AWB999", "status": "delivered",
        }, headers=CARRIER_SECRET)
        assert resp.status_code == 404

    def test_only_served_by_main(self, seller_client, app):
        resp = seller_client.post(DELIVERY, json={}, headers=CARRIER_SECRET)
        assert resp.status_code == 404
