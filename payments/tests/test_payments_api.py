from decimal import Decimal

import pytest
from django.apps import apps
from orders.models import Order
from orders.tests.factories import OrderFactory
from payments.gateways.registry import GatewayRegistry
from payments.models import Payment, WebhookDelivery

from .factories import CompletedPaymentFactory, PaymentFactory
from .fakes import FakeGateway

pytestmark = pytest.mark.django_db


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(apps.get_app_config("payments"), "registry", GatewayRegistry({fake.name: fake}))
    return fake


def _post(client, url, data=None):
    return client.post(url, data or {}, content_type="application/json")


def test_initiate_then_duplicate(client, gateway):
    order = OrderFactory()

    resp = _post(client, "/api/v1/payments/initiate/", {"order_id": order.id, "gateway": "toss_payments"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["amount"] == "10000.00"
    assert body["session_data"]["orderId"] == body["gateway_reference"]

    again = _post(client, "/api/v1/payments/initiate/", {"order_id": order.id, "gateway": "toss_payments"})
    assert again.status_code == 409
    assert again.json()["error"] == "duplicate_payment"


def test_initiate_validation_errors(client, gateway):
    resp = _post(client, "/api/v1/payments/initiate/", {"order_id": 1, "gateway": "square"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"

    # Known gateway name that this deployment has no credentials for
    resp = _post(client, "/api/v1/payments/initiate/", {"order_id": 1, "gateway": "paypal"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "unsupported_gateway"

    resp = _post(client, "/api/v1/payments/initiate/", {"order_id": 999999, "gateway": "toss_payments"})
    assert resp.status_code == 404


def test_confirm_success_and_decline(client, gateway):
    payment = PaymentFactory()
    resp = _post(client, f"/api/v1/payments/{payment.pk}/confirm/", {"data": {"paymentKey": "tgen_1"}})
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["transaction_id"] == "txn_fake_1"
    assert Order.objects.get(pk=payment.order_id).status == Order.STATUS_CONFIRMED

    gateway.decline()
    other = PaymentFactory()
    resp = _post(client, f"/api/v1/payments/{other.pk}/confirm/", {"data": {"paymentKey": "tgen_2"}})
    assert resp.status_code == 200
    assert resp.json()["status"] == "failed"
    assert resp.json()["error_code"] == "CARD_DECLINED"


def test_cancel_and_state_conflict(client, gateway):
    payment = PaymentFactory()
    resp = _post(client, f"/api/v1/payments/{payment.pk}/cancel/", {"reason": "customer_request", "note": "changed mind"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = _post(client, f"/api/v1/payments/{payment.pk}/cancel/")
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_payment_state"


def test_refund_partial_then_excess(client, gateway):
    payment = CompletedPaymentFactory()

    resp = _post(client, f"/api/v1/payments/{payment.pk}/refund/", {"amount": "3000.00", "reason": "product_issue"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "partially_refunded"
    assert body["refunded_amount"] == "3000.00"
    assert body["refundable_amount"] == "7000.00"
    assert [r["amount"] for r in body["refunds"]] == ["3000.00"]

    resp = _post(client, f"/api/v1/payments/{payment.pk}/refund/", {"amount": "8000.00"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "refund_exceeds_captured_amount"

    resp = _post(client, f"/api/v1/payments/{payment.pk}/refund/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "refunded"
    assert Payment.objects.get(pk=payment.pk).refunded_amount == Decimal("10000.00")


def test_receipt(client, gateway):
    payment = CompletedPaymentFactory()
    resp = client.get(f"/api/v1/payments/{payment.pk}/receipt/")
    assert resp.status_code == 200
    body = resp.json()
    assert body["receipt_number"] == f"RC-{payment.transaction_id}"
    assert body["amount"] == "10000.00"
    assert body["approval_number"] == "A100"

    pending = PaymentFactory()
    assert client.get(f"/api/v1/payments/{pending.pk}/receipt/").status_code == 409


def test_detail_list_and_filters(client, gateway):
    done = CompletedPaymentFactory()
    PaymentFactory(gateway="stripe", currency="USD")

    assert client.get(f"/api/v1/payments/{done.pk}/").json()["id"] == done.pk
    assert client.get("/api/v1/payments/999999/").status_code == 404

    results = client.get("/api/v1/payments/?status=completed").json()["results"]
    assert [p["id"] for p in results] == [done.pk]
    results = client.get(f"/api/v1/payments/?order={done.order_id}").json()["results"]
    assert [p["id"] for p in results] == [done.pk]
    assert client.get("/api/v1/payments/?gateway=stripe").json()["count"] == 1


def test_gateway_list(client, gateway):
    resp = client.get("/api/v1/payments/gateways/")
    assert resp.status_code == 200
    assert resp.json() == [{"name": "toss_payments", "methods": ["CARD"], "currencies": ["KRW", "USD"]}]


def test_webhook_endpoint_reconciles_and_records(client, gateway):
    payment = PaymentFactory()
    payload = {
        "eventType": "PAYMENT_STATUS_CHANGED",
        "data": {"paymentKey": "tgen_hook", "orderId": payment.gateway_reference, "status": "DONE"},
    }

    first = _post(client, "/api/v1/webhooks/toss_payments/", payload)
    second = _post(client, "/api/v1/webhooks/toss_payments/", payload)

    assert first.status_code == 200
    assert first.json() == {"outcome": "processed", "kind": "payment_succeeded", "payment_id": payment.pk}
    assert second.json()["outcome"] == "duplicate"
    assert Payment.objects.get(pk=payment.pk).status == Payment.STATUS_COMPLETED
    assert WebhookDelivery.objects.count() == 2


def test_webhook_for_unknown_gateway(client, gateway):
    resp = _post(client, "/api/v1/webhooks/square/", {"type": "x"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "unsupported_gateway"


# EOF
