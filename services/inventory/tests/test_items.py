from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest


def test_create_item_with_derived_fields(client, admin_headers, warehouse):
    response = client.post(
        "/api/v1/inventory/items",
        json={
            "part_number": "PN-1001",
            "description": "Hex bolt M8",
            "barcode": "4006381333931",
            "location_id": warehouse["id"],
            "current_stock": 40,
            "reserved_stock": 5,
            "minimum_stock": 10,
            "maximum_stock": 100,
            "standard_cost": "1.25",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["available_stock"] == 35
    assert data["is_low_stock"] is False
    assert data["stock_status"] == "In Stock"
    assert Decimal(data["total_value"]) == Decimal("50")
    assert data["location"]["code"] == warehouse["code"]
    assert data["created_by"] == "admin"
    assert response.headers["ETag"] == '"1"'


def test_duplicate_part_number_conflicts(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-1")
    response = client.post(
        "/api/v1/inventory/items",
        json={"part_number": "PN-1", "description": "Again", "location_id": warehouse["id"]},
        headers=admin_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Part number 'PN-1' already exists"


def test_duplicate_barcode_conflicts(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-1", barcode="ABC-123")
    response = client.post(
        "/api/v1/inventory/items",
        json={"part_number": "PN-2", "description": "Other", "location_id": warehouse["id"], "barcode": "ABC-123"},
        headers=admin_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Barcode 'ABC-123' is already assigned to item 'PN-1'"


def test_invalid_barcode_is_rejected(client, admin_headers, warehouse):
    response = client.post(
        "/api/v1/inventory/items",
        json={"part_number": "PN-1", "description": "Bad", "location_id": warehouse["id"], "barcode": "   "},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["errors"] == {"barcode": ["Barcode cannot be empty"]}


def test_unknown_location_is_rejected(client, admin_headers):
    response = client.post(
        "/api/v1/inventory/items",
        json={"part_number": "PN-1", "description": "Orphan", "location_id": "missing"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["errors"] == {"location_id": ["Location does not exist"]}


def test_schema_rules(client, admin_headers, warehouse):
    response = client.post(
        "/api/v1/inventory/items",
        json={
            "part_number": "PN 1",
            "description": "Spaces",
            "location_id": warehouse["id"],
            "standard_cost": "1.234",
        },
        headers=admin_headers,
    )
    assert response.status_code == 400
    errors = response.json()["errors"]
    assert "part_number" in errors
    assert "standard_cost" in errors


def test_get_missing_item(client, admin_headers):
    response = client.get("/api/v1/inventory/items/nope", headers=admin_headers)
    assert response.status_code == 404
    body = response.json()
    assert body["errorCode"] == "RESOURCE_NOT_FOUND"
    assert body["detail"] == "InventoryItem with ID 'nope' not found"
    assert response.headers["content-type"].startswith("application/problem+json")


def test_get_by_barcode_ignores_inactive(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"], barcode="96385074")
    assert client.get("/api/v1/inventory/items/barcode/96385074", headers=admin_headers).json()["id"] == item["id"]

    client.delete(f"/api/v1/inventory/items/{item['id']}", headers=admin_headers)
    assert client.get("/api/v1/inventory/items/barcode/96385074", headers=admin_headers).status_code == 404


def test_update_item_with_if_match(client, admin_headers, stocked_item):
    url = f"/api/v1/inventory/items/{stocked_item['id']}"
    response = client.put(url, json={"description": "Renamed"}, headers={**admin_headers, "If-Match": '"1"'})
    assert response.status_code == 200
    assert response.json()["description"] == "Renamed"
    assert response.headers["ETag"] == '"2"'

    stale = client.put(url, json={"description": "Again"}, headers={**admin_headers, "If-Match": '"1"'})
    assert stale.status_code == 412

    wildcard = client.put(url, json={"description": "Again"}, headers={**admin_headers, "If-Match": "*"})
    assert wildcard.status_code == 200


def test_update_rejects_minimum_above_maximum(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"], maximum_stock=50)
    response = client.put(
        f"/api/v1/inventory/items/{item['id']}", json={"minimum_stock": 60}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["errors"] == {"minimum_stock": ["Minimum stock cannot be greater than maximum stock"]}


def test_delete_item_with_pending_transaction(client, admin_headers, stocked_item, warehouse):
    client.post(
        "/api/v1/transactions/issue",
        json={
            "inventory_item_id": stocked_item["id"],
            "location_id": warehouse["id"],
            "quantity": 1,
            "require_approval": True,
        },
        headers=admin_headers,
    )
    response = client.delete(f"/api/v1/inventory/items/{stocked_item['id']}", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot delete item with pending transactions"


def test_deactivating_item_with_pending_transaction(client, admin_headers, stocked_item, warehouse):
    client.post(
        "/api/v1/transactions/issue",
        json={
            "inventory_item_id": stocked_item["id"],
            "location_id": warehouse["id"],
            "quantity": 1,
            "require_approval": True,
        },
        headers=admin_headers,
    )
    url = f"/api/v1/inventory/items/{stocked_item['id']}"
    response = client.put(url, json={"is_active": False}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["ruleName"] == "ItemInUse"
    assert client.get(url, headers=admin_headers).json()["is_active"] is True


def test_update_stock(client, admin_headers, stocked_item):
    url = f"/api/v1/inventory/items/{stocked_item['id']}/stock"
    with patch("inventory_api.webhooks.send_webhook", new_callable=AsyncMock) as send:
        response = client.post(url, json={"quantity_change": -95, "reason": "Scrapped"}, headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["current_stock"] == 5
    assert data["stock_status"] == "Low Stock"
    assert data["last_movement"] is not None
    events = [call.args[0] for call in send.await_args_list]
    assert events == ["item.stock_changed", "item.low_stock"]

    negative = client.post(url, json={"quantity_change": -6, "reason": "Oops"}, headers=admin_headers)
    assert negative.status_code == 400
    assert negative.json()["detail"] == "Stock level cannot be negative"


def test_update_stock_respects_maximum(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"], current_stock=10, maximum_stock=20)
    response = client.post(
        f"/api/v1/inventory/items/{item['id']}/stock",
        json={"quantity_change": 11, "reason": "Found"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Stock level cannot exceed maximum stock (20)"


def test_update_stock_keeps_reserved_stock(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"], current_stock=10, reserved_stock=8)
    url = f"/api/v1/inventory/items/{item['id']}/stock"

    response = client.post(url, json={"quantity_change": -9, "reason": "Scrapped"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Stock level cannot drop below reserved stock (8)"

    allowed = client.post(url, json={"quantity_change": -2, "reason": "Scrapped"}, headers=admin_headers).json()
    assert allowed["current_stock"] == 8
    assert allowed["available_stock"] == 0


def test_record_scan(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"], barcode="ABC-123")
    url = f"/api/v1/inventory/items/{item['id']}/scan"

    response = client.post(url, json={"barcode": "ABC-123", "confidence": 95}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["last_movement"] is not None

    mismatch = client.post(url, json={"barcode": "XYZ-999"}, headers=admin_headers)
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"] == "Scanned barcode does not match item"

    blurry = client.post(url, json={"barcode": "ABC-123", "confidence": 20}, headers=admin_headers)
    assert blurry.status_code == 400
    assert blurry.json()["errors"] == {"barcode": ["Low confidence scan - please try again"]}


def test_low_stock_alerts(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-B", current_stock=4, minimum_stock=10)
    create_item(warehouse["id"], part_number="PN-A", current_stock=0, minimum_stock=5)
    create_item(warehouse["id"], part_number="PN-C", current_stock=50, minimum_stock=5)

    response = client.get("/api/v1/inventory/items/low-stock?threshold=10", headers=admin_headers)
    assert response.status_code == 200
    alerts = response.json()
    assert [alert["part_number"] for alert in alerts] == ["PN-A", "PN-B"]
    assert alerts[0]["urgency"] == "Critical"
    assert alerts[1]["deficit"] == 6
    assert alerts[1]["urgency"] == "High"


def test_valuation(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-1", current_stock=10, standard_cost="2.00")
    create_item(warehouse["id"], part_number="PN-2", current_stock=4, standard_cost="5.00")

    data = client.get("/api/v1/inventory/items/valuation", headers=admin_headers).json()
    assert Decimal(data["total_value"]) == Decimal("40")
    assert data["total_items"] == 2
    assert Decimal(data["average_cost"]) == Decimal("3.50")


def test_list_items_filters_and_sorting(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-B", current_stock=5, minimum_stock=10, category="Bolts")
    create_item(warehouse["id"], part_number="PN-A", current_stock=50, category="Bolts")
    create_item(warehouse["id"], part_number="PN-C", current_stock=20, category="Nuts")

    bolts = client.get(
        "/api/v1/inventory/items?category=Bolts&sort_by=partnumber", headers=admin_headers
    ).json()
    assert [item["part_number"] for item in bolts["items"]] == ["PN-A", "PN-B"]

    low = client.get("/api/v1/inventory/items?low_stock_only=true", headers=admin_headers).json()
    assert [item["part_number"] for item in low["items"]] == ["PN-B"]

    by_stock = client.get(
        "/api/v1/inventory/items?sort_by=currentstock&sort_direction=desc", headers=admin_headers
    ).json()
    assert [item["part_number"] for item in by_stock["items"]] == ["PN-A", "PN-C", "PN-B"]


def test_page_size_is_clamped(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"])
    data = client.get("/api/v1/inventory/items?page=0&page_size=1000", headers=admin_headers).json()
    assert data["page"] == 1
    assert data["page_size"] == 100


def test_bulk_update_is_atomic(client, admin_headers, warehouse, create_item):
    first = create_item(warehouse["id"], part_number="PN-1")
    response = client.put(
        "/api/v1/inventory/items/bulk",
        json=[
            {"id": first["id"], "description": "Updated"},
            {"id": "missing", "description": "Nope"},
        ],
        headers=admin_headers,
    )
    assert response.status_code == 404
    unchanged = client.get(f"/api/v1/inventory/items/{first['id']}", headers=admin_headers).json()
    assert unchanged["description"] == "Part PN-1"

    response = client.put(
        "/api/v1/inventory/items/bulk",
        json=[{"id": first["id"], "description": "Updated"}],
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()[0]["description"] == "Updated"


@pytest.mark.parametrize("update,field", [
    ({"minimum_stock": 50, "maximum_stock": 10}, "minimum_stock"),
    ({"reserved_stock": 11}, "reserved_stock"),
])
def test_bulk_update_checks_stock_limits(client, admin_headers, warehouse, create_item, update, field):
    first = create_item(warehouse["id"], part_number="PN-1")
    second = create_item(warehouse["id"], part_number="PN-2", current_stock=10)
    response = client.put(
        "/api/v1/inventory/items/bulk",
        json=[
            {"id": first["id"], "description": "Updated"},
            {"id": second["id"], **update},
        ],
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert field in response.json()["errors"]

    untouched = client.get(f"/api/v1/inventory/items/{first['id']}", headers=admin_headers).json()
    assert untouched["description"] == "Part PN-1"
    stored = client.get(f"/api/v1/inventory/items/{second['id']}", headers=admin_headers).json()
    assert stored["minimum_stock"] == 0
    assert stored["reserved_stock"] == 0


def test_reorder_point_uses_completed_issues(client, admin_headers, warehouse, create_supplier, create_item):
    supplier = create_supplier(lead_time_days=10)
    item = create_item(warehouse["id"], current_stock=500, supplier_id=supplier["id"])
    client.post(
        "/api/v1/transactions/issue",
        json={"inventory_item_id": item["id"], "location_id": warehouse["id"], "quantity": 90},
        headers=admin_headers,
    )

    data = client.get(f"/api/v1/inventory/items/{item['id']}/reorder-point", headers=admin_headers).json()
    assert data["average_daily_usage"] == 1.0
    assert data["lead_time_days"] == 10
    assert data["reorder_point"] == 12


def test_csv_export(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-1", current_stock=3, standard_cost="1.50")
    response = client.get("/api/v1/inventory/items/export/csv", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("part_number,description,barcode")
    assert lines[1] == "PN-1,Part PN-1,,,WH-01,3,0,0,1.50"


def test_csv_import_upserts(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-1", current_stock=1)
    content = (
        "part_number,description,location_code,current_stock,minimum_stock,maximum_stock,standard_cost,barcode\n"
        "PN-1,Existing,WH-01,25,5,100,2.00,\n"
        "PN-2,New part,WH-01,10,0,0,1.00,\n"
        "PN-3,Bad stock,WH-01,-4,0,0,1.00,\n"
        "PN-4,Unknown location,NOWHERE,1,0,0,1.00,\n"
        ",Missing part,WH-01,1,0,0,1.00,\n"
    )
    response = client.post(
        "/api/v1/inventory/items/import/csv",
        files={"file": ("items.csv", content, "text/csv")},
        headers=admin_headers,
    )
    assert response.status_code == 200
    summary = response.json()
    assert summary["created_count"] == 1
    assert summary["updated_count"] == 1
    assert summary["skipped_count"] == 3
    assert summary["errors"][0] == "Row 4: current_stock cannot be negative"

    existing = client.get("/api/v1/inventory/items?search=PN-1", headers=admin_headers).json()["items"][0]
    assert existing["current_stock"] == 25
    assert existing["description"] == "Existing"


def test_csv_import_assigns_barcodes(client, admin_headers, warehouse, create_item):
    create_item(warehouse["id"], part_number="PN-1", current_stock=1)
    content = (
        "part_number,description,barcode,location_code,current_stock\n"
        "PN-1,Existing,4006381333931,WH-01,5\n"
        "PN-2,New part,ABC-123,WH-01,3\n"
        "PN-3,Taken barcode,4006381333931,WH-01,1\n"
    )
    response = client.post(
        "/api/v1/inventory/items/import/csv",
        files={"file": ("items.csv", content, "text/csv")},
        headers=admin_headers,
    )
    summary = response.json()
    assert summary["created_count"] == 1
    assert summary["updated_count"] == 1
    assert summary["skipped_count"] == 1
    assert summary["errors"] == ["Row 4: Barcode '4006381333931' is already assigned to item 'PN-1'"]

    by_barcode = client.get("/api/v1/inventory/items/barcode/4006381333931", headers=admin_headers).json()
    assert by_barcode["part_number"] == "PN-1"
    new_item = client.get("/api/v1/inventory/items/barcode/ABC-123", headers=admin_headers).json()
    assert new_item["part_number"] == "PN-2"


def test_csv_import_requires_csv_file(client, admin_headers):
    response = client.post(
        "/api/v1/inventory/items/import/csv",
        files={"file": ("items.txt", "x", "text/plain")},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_changed_since(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"])

    response = client.get(
        "/api/v1/inventory/items/changed-since",
        params={"since": "2000-01-01T00:00:00"},
        headers=admin_headers,
    )
    assert [row["id"] for row in response.json()] == [item["id"]]


def test_clerk_cannot_create_items(client, clerk_headers, warehouse):
    response = client.post(
        "/api/v1/inventory/items",
        json={"part_number": "PN-1", "description": "X", "location_id": warehouse["id"]},
        headers=clerk_headers,
    )
    assert response.status_code == 403


def test_requires_authentication(client):
    response = client.get("/api/v1/inventory/items")
    assert response.status_code == 401
    assert response.json()["errorCode"] == "UNAUTHORIZED"
