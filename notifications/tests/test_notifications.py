from decimal import Decimal
from unittest import mock

import pytest
import requests
from django.core import mail
from inventory.alerts import StockAlert
from notifications.emails import send_payment_confirmation_email
from notifications.services import NotificationError, NotificationService


def _alert(alert_type="low_stock", priority="medium", quantity=2):
    return StockAlert(
        product_id=7,
        product_name="Desk Lamp",
        product_sku="LAMP-1",
        category_name="Lighting",
        current_quantity=quantity,
        low_stock_threshold=3,
        alert_type=alert_type,
        priority=priority,
    )


def test_stock_alert_email_uses_alert_template():
    service = NotificationService(channels=["email"], recipients=["ops@example.com"])
    assert service.send_stock_alert(_alert()) == ["email"]

    assert len(mail.outbox) == 1
    msg = mail.outbox[0]
    assert msg.subject == "Low Stock Alert: Desk Lamp"
    assert "LAMP-1" in msg.body
    assert "Current Quantity: 2" in msg.body
    assert msg.to == ["ops@example.com"]


def test_out_of_stock_alert_posts_to_webhook():
    http = mock.Mock()
    service = NotificationService(channels=["webhook"], webhook_url="https://hooks.example.com/stock", http=http)

    service.send_stock_alert(_alert("out_of_stock", "critical", 0))

    http.post.assert_called_once()
    url = http.post.call_args.args[0]
    body = http.post.call_args.kwargs["json"]
    assert url == "https://hooks.example.com/stock"
    assert body["type"] == "out_of_stock_alert"
    assert body["priority"] == "critical"
    assert body["data"]["current_quantity"] == 0
    http.post.return_value.raise_for_status.assert_called_once()


def test_failing_channel_does_not_stop_the_others():
    http = mock.Mock()
    http.post.side_effect = requests.ConnectionError("refused")
    service = NotificationService(
        channels=["webhook", "email", "log"],
        recipients=["ops@example.com"],
        webhook_url="https://hooks.example.com/stock",
        http=http,
    )

    with pytest.raises(NotificationError) as exc:
        service.send_stock_alert(_alert("critical_stock", "high", 1))

    assert exc.value.failed_channels == ["webhook"]
    assert len(mail.outbox) == 1


def test_unknown_channels_are_skipped():
    service = NotificationService(channels=["pager", "log"])
    assert service.send_stock_alert(_alert()) == ["log"]


def test_email_without_recipients_is_a_no_op():
    service = NotificationService(channels=["email"], recipients=[])
    service.send_stock_alert(_alert())
    assert mail.outbox == []


def test_payment_confirmation_email(settings):
    settings.FRONTEND_URL = "https://shop.example.com/"
    order = mock.Mock(id=12, number="ORD-000012", customer_email="minji@example.com")
    payment = mock.Mock(
        order=order,
        amount=Decimal("10000.00"),
        currency="KRW",
        transaction_id="tgen_123",
        **{"get_gateway_display.return_value": "TossPayments"},
    )

    send_payment_confirmation_email(payment)

    assert len(mail.outbox) == 1
    msg = mail.outbox[0]
    assert msg.subject == "Payment received for order ORD-000012"
    assert "10000.00 KRW" in msg.body
    assert "Paid via: TossPayments" in msg.body
    assert "https://shop.example.com/orders/12" in msg.body


def test_payment_confirmation_email_skips_orders_without_email():
    payment = mock.Mock(order=mock.Mock(customer_email=""))
    send_payment_confirmation_email(payment)
    assert mail.outbox == []


# EOF
