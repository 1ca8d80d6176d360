from decimal import Decimal

import pytest
from catalog.tests.factories import ProductFactory
from common.exceptions import InsufficientInventoryError, NotFoundError, ValidationError
from inventory.models import StockItem, StockMovement
from inventory.services import create_stock_item
from orders.models import Order, OrderStatusHistory
from orders.services import cancel_order, create_order, update_order_status


@pytest.mark.django_db
def test_create_order_snapshots_items_and_reserves_stock():
    lamp = create_stock_item(product=ProductFactory(price=Decimal("25.00")), quantity=5)
    desk = create_stock_item(product=ProductFactory(price=Decimal("120.00")), quantity=1)

    order = create_order(
        items=[{"product_id": lamp.product_id, "quantity": 2}, {"product_id": desk.product_id, "quantity": 1}],
        customer_name="Kim Minji",
        customer_email="minji@example.com",
        currency="krw",
    )

    assert order.status == Order.STATUS_PENDING
    assert order.number == f"ORD-{order.id:06d}"
    assert order.total == Decimal("170.00")
    assert order.currency == "KRW"
    assert [i.quantity for i in order.items.all()] == [2, 1]
    assert StockItem.objects.get(pk=lamp.pk).quantity == 3
    assert StockItem.objects.get(pk=desk.pk).quantity == 0
    assert StockMovement.objects.filter(reference=str(order.id), movement_type="sale").count() == 2
    assert list(order.history.values_list("notes", flat=True)) == ["Order placed"]


@pytest.mark.django_db
def test_create_order_rolls_back_when_stock_is_short():
    item = create_stock_item(product=ProductFactory(), quantity=1)

    with pytest.raises(InsufficientInventoryError):
        create_order(items=[{"product_id": item.product_id, "quantity": 2}])

    assert not Order.objects.exists()
    assert StockItem.objects.get(pk=item.pk).quantity == 1


@pytest.mark.django_db
def test_create_order_validates_lines():
    with pytest.raises(ValidationError):
        create_order(items=[])
    with pytest.raises(NotFoundError):
        create_order(items=[{"product_id": 999999, "quantity": 1}])


@pytest.mark.django_db
def test_cancel_order_releases_stock():
    item = create_stock_item(product=ProductFactory(), quantity=4)
    order = create_order(items=[{"product_id": item.product_id, "quantity": 3}])

    cancel_order(order.id, reason="Changed mind")

    order.refresh_from_db()
    assert order.status == Order.STATUS_CANCELLED
    assert StockItem.objects.get(pk=item.pk).quantity == 4
    assert order.history.last().notes == "Order cancelled: Changed mind"

    # Cancelling twice is a no-op
    cancel_order(order.id)
    assert StockMovement.objects.filter(reference=str(order.id), movement_type="return").count() == 1


@pytest.mark.django_db
def test_only_pending_orders_can_be_cancelled():
    item = create_stock_item(product=ProductFactory(), quantity=4)
    order = create_order(items=[{"product_id": item.product_id, "quantity": 1}])
    update_order_status(order, Order.STATUS_CONFIRMED, notes="Paid")

    with pytest.raises(ValidationError):
        cancel_order(order.id)


@pytest.mark.django_db
def test_update_order_status_records_history_once():
    item = create_stock_item(product=ProductFactory(), quantity=4)
    order = create_order(items=[{"product_id": item.product_id, "quantity": 1}])

    update_order_status(order, Order.STATUS_CONFIRMED)
    update_order_status(order, Order.STATUS_CONFIRMED)

    entries = OrderStatusHistory.objects.filter(order=order, status=Order.STATUS_CONFIRMED)
    assert [e.notes for e in entries] == ["Status changed from pending to confirmed"]
    with pytest.raises(ValidationError):
        update_order_status(order, "lost")


@pytest.mark.django_db
def test_orders_api_place_list_and_cancel(client):
    item = create_stock_item(product=ProductFactory(), quantity=10)

    resp = client.post(
        "/api/v1/orders/",
        {"items": [{"product_id": item.product_id, "quantity": 2}], "customer_email": "a@example.com"},
        content_type="application/json",
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["total"] == "20.00"
    order_id = body["id"]

    listed = client.get("/api/v1/orders/?status=pending").json()["results"]
    assert [row["id"] for row in listed] == [order_id]

    detail = client.get(f"/api/v1/orders/{order_id}/").json()
    assert detail["items"][0]["line_total"] == "20.00"

    resp = client.post(f"/api/v1/orders/{order_id}/cancel/", {"reason": "dup"}, content_type="application/json")
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


@pytest.mark.django_db
def test_orders_api_errors(client):
    item = create_stock_item(product=ProductFactory(), quantity=1)

    resp = client.post(
        "/api/v1/orders/",
        {"items": [{"product_id": item.product_id, "quantity": 5}]},
        content_type="application/json",
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "insufficient_inventory"

    resp = client.get("/api/v1/orders/999999/")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


# EOF
