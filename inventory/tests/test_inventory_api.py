import pytest
from catalog.tests.factories import ProductFactory
from inventory.models import StockMovement
from inventory.services import adjust, create_stock_item


@pytest.mark.django_db
def test_stock_items_list_basic(client):
    first = create_stock_item(product=ProductFactory(sku="SKU-TEST-001"), quantity=10)
    create_stock_item(product=ProductFactory(sku="SKU-TEST-002"), quantity=2, low_stock_threshold=5)

    resp = client.get("/api/v1/inventory/stock-items/")
    assert resp.status_code == 200
    data = resp.json()
    assert isinstance(data, dict) and "results" in data
    skus = [row["sku"] for row in data["results"]]
    assert "SKU-TEST-001" in skus and "SKU-TEST-002" in skus
    low = next(row for row in data["results"] if row["sku"] == "SKU-TEST-002")
    assert low["alert"] == "critical_stock"

    resp = client.get(f"/api/v1/inventory/stock-items/?product_id={first.product_id}")
    assert [row["sku"] for row in resp.json()["results"]] == ["SKU-TEST-001"]


@pytest.mark.django_db
def test_adjust_endpoint_applies_signed_movement(client):
    item = create_stock_item(product=ProductFactory(), quantity=10)

    resp = client.post(
        "/api/v1/inventory/adjust/",
        {"product_id": item.product_id, "quantity": 3, "type": "sale", "reason": "POS sale"},
        content_type="application/json",
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["quantity"] == -3
    assert body["movement_type"] == "sale"
    assert body["current_quantity"] == 7


@pytest.mark.django_db
def test_adjust_endpoint_error_shapes(client):
    item = create_stock_item(product=ProductFactory(), quantity=1)

    resp = client.post(
        "/api/v1/inventory/adjust/",
        {"product_id": item.product_id, "quantity": 5, "type": "sale"},
        content_type="application/json",
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "insufficient_inventory"

    resp = client.post(
        "/api/v1/inventory/adjust/",
        {"product_id": 999999, "quantity": 1, "type": "purchase"},
        content_type="application/json",
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"

    resp = client.post(
        "/api/v1/inventory/adjust/",
        {"product_id": item.product_id, "quantity": 0, "type": "purchase"},
        content_type="application/json",
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


@pytest.mark.django_db
def test_bulk_adjust_endpoint_reports_partial_success(client):
    first = create_stock_item(product=ProductFactory(), quantity=5)
    third = create_stock_item(product=ProductFactory(), quantity=5)

    resp = client.post(
        "/api/v1/inventory/bulk-adjust/",
        {
            "adjustments": [
                {"product_id": first.product_id, "quantity": 1, "type": "sale"},
                {"product_id": 999999, "quantity": 1, "type": "sale"},
                {"product_id": third.product_id, "quantity": 4, "type": "restock"},
            ]
        },
        content_type="application/json",
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["processed"], body["failed"], body["total"]) == (2, 1, 3)
    assert len(body["movements"]) == 2
    assert body["failures"][0]["product_id"] == 999999


@pytest.mark.django_db
def test_reserve_and_release_endpoints(client):
    item = create_stock_item(product=ProductFactory(), quantity=4)
    payload = {"order_id": "ORD-1", "items": [{"product_id": item.product_id, "quantity": 3}]}

    resp = client.post("/api/v1/inventory/reserve/", payload, content_type="application/json")
    assert resp.status_code == 201
    assert resp.json()[0]["reference"] == "ORD-1"
    item.refresh_from_db()
    assert item.quantity == 1

    resp = client.post("/api/v1/inventory/release/", payload, content_type="application/json")
    assert resp.status_code == 200
    item.refresh_from_db()
    assert item.quantity == 4


@pytest.mark.django_db
def test_low_and_out_of_stock_lists(client):
    healthy = create_stock_item(product=ProductFactory(), quantity=50)
    low = create_stock_item(product=ProductFactory(), quantity=3)
    empty = create_stock_item(product=ProductFactory(), quantity=0)
    create_stock_item(product=ProductFactory(), quantity=0, track_quantity=False)

    low_ids = {row["product"] for row in client.get("/api/v1/inventory/low-stock/").json()["results"]}
    assert low_ids == {low.product_id}

    out_ids = {row["product"] for row in client.get("/api/v1/inventory/out-of-stock/").json()["results"]}
    assert out_ids == {empty.product_id}
    assert healthy.product_id not in low_ids | out_ids


@pytest.mark.django_db
def test_threshold_endpoint(client):
    item = create_stock_item(product=ProductFactory(), quantity=5)

    resp = client.put(
        f"/api/v1/inventory/threshold/{item.product_id}/",
        {"low_stock_threshold": 3, "reason": "Slow mover"},
        content_type="application/json",
    )
    assert resp.status_code == 200
    assert resp.json()["low_stock_threshold"] == 3
    assert resp.json()["alert"] is None


@pytest.mark.django_db
def test_history_endpoint(client):
    item = create_stock_item(product=ProductFactory(), quantity=10)
    adjust(product_id=item.product_id, quantity=4, movement_type="sale")

    resp = client.get(f"/api/v1/inventory/history/{item.product_id}/?limit=10")
    assert resp.status_code == 200
    body = resp.json()
    assert body["current_quantity"] == 6
    assert body["count"] == 2
    assert [row["running_balance"] for row in body["results"]] == [10, 6]

    assert client.get("/api/v1/inventory/history/999999/").status_code == 404


@pytest.mark.django_db
def test_movements_list_filters(client):
    item = create_stock_item(product=ProductFactory(), quantity=10)
    sale = adjust(product_id=item.product_id, quantity=2, movement_type="sale", reference="POS-7")

    resp_all = client.get("/api/v1/inventory/movements/")
    assert resp_all.status_code == 200
    assert len(resp_all.json()["results"]) == 2

    resp_sale = client.get(f"/api/v1/inventory/movements/?movement_type={StockMovement.TYPE_SALE}")
    assert [row["id"] for row in resp_sale.json()["results"]] == [sale.id]

    resp_ref = client.get("/api/v1/inventory/movements/?reference=POS-7")
    assert [row["id"] for row in resp_ref.json()["results"]] == [sale.id]


@pytest.mark.django_db
def test_report_endpoint(client):
    create_stock_item(product=ProductFactory(), quantity=20)
    create_stock_item(product=ProductFactory(), quantity=2)

    resp = client.get("/api/v1/inventory/report/?top=1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_products"] == 2
    assert body["total_value"] == "220.00"
    assert len(body["lowest_stock"]) == 1
    assert body["lowest_stock"][0]["quantity"] == 2


# EOF
