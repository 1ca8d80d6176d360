from decimal import Decimal
from unittest import mock

import pytest
from catalog.tests.factories import ProductFactory
from common.choices import AlertType
from inventory.alerts import alert_for, dispatch, evaluate, notify_stock_levels
from inventory.selectors import report
from inventory.services import adjust, create_stock_item


@pytest.mark.parametrize(
    "quantity,threshold,expected",
    [
        (0, 10, AlertType.OUT_OF_STOCK),
        (-4, 10, AlertType.OUT_OF_STOCK),
        (5, 10, AlertType.CRITICAL_STOCK),
        (1, 3, AlertType.CRITICAL_STOCK),
        (2, 3, AlertType.LOW_STOCK),
        (10, 10, AlertType.LOW_STOCK),
        (11, 10, None),
        (1, 0, None),
    ],
)
def test_evaluate_classifies_stock_levels(quantity, threshold, expected):
    assert evaluate(quantity, threshold) == expected


@pytest.mark.django_db
def test_alert_for_carries_product_details():
    product = ProductFactory(title="Desk Lamp", sku="LAMP-1")
    item = create_stock_item(product=product, quantity=2, low_stock_threshold=3)

    alert = alert_for(item)
    assert alert.product_name == "Desk Lamp"
    assert alert.product_sku == "LAMP-1"
    assert alert.category_name == product.category.name
    assert alert.alert_type == "low_stock"
    assert alert.priority == "medium"


@pytest.mark.django_db
def test_alert_for_ignores_untracked_products():
    item = create_stock_item(product=ProductFactory(category=None), quantity=0, track_quantity=False)
    assert alert_for(item) is None


@pytest.mark.django_db
def test_notify_stock_levels_only_alerts_unhealthy_items():
    low = create_stock_item(product=ProductFactory(), quantity=1)
    healthy = create_stock_item(product=ProductFactory(), quantity=40)

    with mock.patch("inventory.alerts.dispatch") as sent:
        alerts = notify_stock_levels([low.product_id, healthy.product_id, low.product_id])

    assert [a.product_id for a in alerts] == [low.product_id]
    sent.assert_called_once()


@pytest.mark.django_db
def test_dispatch_failure_does_not_propagate():
    item = create_stock_item(product=ProductFactory(), quantity=0)
    alert = alert_for(item)

    with mock.patch("notifications.services.NotificationService.send_stock_alert", side_effect=RuntimeError("smtp")):
        assert dispatch(alert) is False


@pytest.mark.django_db
def test_failed_notification_does_not_undo_the_adjustment(django_capture_on_commit_callbacks):
    item = create_stock_item(product=ProductFactory(), quantity=3, low_stock_threshold=5)

    with mock.patch("notifications.services.NotificationService.send_stock_alert", side_effect=RuntimeError("down")):
        with django_capture_on_commit_callbacks(execute=True):
            adjust(product_id=item.product_id, quantity=1, movement_type="sale")

    item.refresh_from_db()
    assert item.quantity == 2


@pytest.mark.django_db
def test_report_counts_and_valuation():
    create_stock_item(product=ProductFactory(price=Decimal("2.50")), quantity=40)
    create_stock_item(product=ProductFactory(price=Decimal("10.00")), quantity=3)
    create_stock_item(product=ProductFactory(price=Decimal("99.00")), quantity=0)
    create_stock_item(product=ProductFactory(price=Decimal("5.00")), quantity=-2, allow_backorders=True)
    create_stock_item(product=ProductFactory(), quantity=0, track_quantity=False)

    data = report(top_n=2)
    assert data.total_products == 4
    assert data.in_stock == 2
    assert data.out_of_stock == 2
    assert data.low_stock == 1
    assert data.total_value == Decimal("130.00")
    assert data.low_stock_value == Decimal("30.00")
    assert data.average_stock_level == Decimal("10.75")
    assert [row["quantity"] for row in data.lowest_stock] == [-2, 0]
    assert data.lowest_stock[0]["alert"] == "out_of_stock"


# EOF
