from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.orm.exc import StaleDataError

from inventory_api import models


@pytest.fixture
def issue(client, admin_headers, warehouse):
    def _issue(item_id, quantity, require_approval=False, headers=None):
        response = client.post(
            "/api/v1/transactions/issue",
            json={
                "inventory_item_id": item_id,
                "location_id": warehouse["id"],
                "quantity": quantity,
                "require_approval": require_approval,
            },
            headers=headers or admin_headers,
        )
        return response
    return _issue


def get_item(client, headers, item_id):
    return client.get(f"/api/v1/inventory/items/{item_id}", headers=headers).json()


def test_receipt_completes_and_updates_cost(client, admin_headers, warehouse, stocked_item):
    response = client.post(
        "/api/v1/transactions/receipt",
        json={
            "inventory_item_id": stocked_item["id"],
            "location_id": warehouse["id"],
            "quantity": 10,
            "unit_cost": "3.00",
            "reference_number": "PO-77",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    transaction = response.json()
    assert transaction["status"] == "Completed"
    assert transaction["quantity_change"] == 10
    assert Decimal(transaction["total_cost"]) == Decimal("30")
    assert transaction["destination_location"]["code"] == "WH-01"
    assert transaction["approved_by"] == "admin"
    assert transaction["processed_by"] == "admin"

    item = get_item(client, admin_headers, stocked_item["id"])
    assert item["current_stock"] == 110
    assert Decimal(item["standard_cost"]) == Decimal("3.00")


def test_transaction_numbers_are_sequential_per_day(client, admin_headers, warehouse, stocked_item):
    payload = {"inventory_item_id": stocked_item["id"], "location_id": warehouse["id"], "quantity": 1}
    first = client.post("/api/v1/transactions/receipt", json=payload, headers=admin_headers).json()
    second = client.post("/api/v1/transactions/receipt", json=payload, headers=admin_headers).json()
    issued = client.post("/api/v1/transactions/issue", json=payload, headers=admin_headers).json()

    today = f"{datetime.utcnow():%Y%m%d}"
    assert first["transaction_number"] == f"REC-{today}-0001"
    assert second["transaction_number"] == f"REC-{today}-0002"
    assert issued["transaction_number"] == f"ISS-{today}-0001"

    found = client.get(f"/api/v1/transactions/number/{second['transaction_number']}", headers=admin_headers)
    assert found.json()["id"] == second["id"]


def test_cannot_receive_at_supplier_location(client, admin_headers, create_location, create_item):
    location = create_location(code="SU-01", location_type="Supplier")
    item = create_item(location["id"])
    response = client.post(
        "/api/v1/transactions/receipt",
        json={"inventory_item_id": item["id"], "location_id": location["id"], "quantity": 5},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot receive inventory at a Supplier location"


def test_issue_requires_available_stock(client, admin_headers, warehouse, create_item, issue):
    item = create_item(warehouse["id"], current_stock=10, reserved_stock=4)
    response = issue(item["id"], 7)
    assert response.status_code == 400
    body = response.json()
    assert body["detail"] == "Insufficient stock for issue. Available: 6, Requested: 7"
    assert body["ruleName"] == "SufficientStock"

    assert issue(item["id"], 6).status_code == 201
    assert get_item(client, admin_headers, item["id"])["current_stock"] == 4


def test_transfer_moves_item_with_stock(client, admin_headers, warehouse, create_location, stocked_item):
    destination = create_location(code="WH-02")
    response = client.post(
        "/api/v1/transactions/transfer",
        json={
            "inventory_item_id": stocked_item["id"],
            "source_location_id": warehouse["id"],
            "destination_location_id": destination["id"],
            "quantity": 100,
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["quantity_change"] == 0

    item = get_item(client, admin_headers, stocked_item["id"])
    assert item["location_id"] == destination["id"]
    assert item["current_stock"] == 100


def test_transfer_to_same_location_is_rejected(client, admin_headers, warehouse, stocked_item):
    response = client.post(
        "/api/v1/transactions/transfer",
        json={
            "inventory_item_id": stocked_item["id"],
            "source_location_id": warehouse["id"],
            "destination_location_id": warehouse["id"],
            "quantity": 1,
        },
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_adjustment(client, admin_headers, stocked_item):
    url = "/api/v1/transactions/adjustment"
    response = client.post(
        url,
        json={"inventory_item_id": stocked_item["id"], "quantity": -30, "adjustment_reason": "Damaged"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["quantity"] == 30
    assert response.json()["quantity_change"] == -30
    assert get_item(client, admin_headers, stocked_item["id"])["current_stock"] == 70

    too_large = client.post(
        url,
        json={"inventory_item_id": stocked_item["id"], "quantity": 141, "adjustment_reason": "Found"},
        headers=admin_headers,
    )
    assert too_large.status_code == 400
    assert too_large.json()["detail"] == "Adjustment quantity is unreasonably large compared to current stock"

    zero = client.post(
        url,
        json={"inventory_item_id": stocked_item["id"], "quantity": 0, "adjustment_reason": "Nothing"},
        headers=admin_headers,
    )
    assert zero.status_code == 400


def test_count_adjustment(client, admin_headers, stocked_item):
    url = "/api/v1/transactions/count-adjustment"
    response = client.post(
        url, json={"inventory_item_id": stocked_item["id"], "counted_quantity": 90}, headers=admin_headers
    )
    assert response.status_code == 201
    transaction = response.json()
    assert transaction["transaction_type"] == "CountAdjustment"
    assert transaction["quantity"] == 10
    assert transaction["quantity_change"] == -10
    assert transaction["adjustment_reason"] == "Cycle count"
    assert get_item(client, admin_headers, stocked_item["id"])["current_stock"] == 90

    unchanged = client.post(
        url, json={"inventory_item_id": stocked_item["id"], "counted_quantity": 90}, headers=admin_headers
    )
    assert unchanged.status_code == 400
    assert unchanged.json()["detail"] == "Counted quantity matches current stock"


def test_adjustments_keep_reserved_stock(client, admin_headers, warehouse, create_item):
    item = create_item(warehouse["id"], current_stock=10, reserved_stock=8)

    adjustment = client.post(
        "/api/v1/transactions/adjustment",
        json={"inventory_item_id": item["id"], "quantity": -5, "adjustment_reason": "Damaged"},
        headers=admin_headers,
    )
    assert adjustment.status_code == 400
    assert adjustment.json()["detail"] == "Stock level cannot drop below reserved stock (8)"
    assert adjustment.json()["ruleName"] == "StockLevel"

    count = client.post(
        "/api/v1/transactions/count-adjustment",
        json={"inventory_item_id": item["id"], "counted_quantity": 7},
        headers=admin_headers,
    )
    assert count.status_code == 400
    assert get_item(client, admin_headers, item["id"])["current_stock"] == 10


def test_approval_workflow(client, admin_headers, manager_headers, stocked_item, issue):
    created = issue(stocked_item["id"], 20, require_approval=True).json()
    assert created["status"] == "Pending"
    assert get_item(client, admin_headers, stocked_item["id"])["current_stock"] == 100

    url = f"/api/v1/transactions/{created['id']}"
    not_approved = client.post(f"{url}/process", headers=manager_headers)
    assert not_approved.status_code == 400
    assert not_approved.json()["detail"] == "Only approved transactions can be processed"

    approved = client.post(f"{url}/approve", headers=manager_headers).json()
    assert approved["status"] == "Approved"
    assert approved["approved_by"] == "manager"

    processed = client.post(f"{url}/process", headers=manager_headers).json()
    assert processed["status"] == "Completed"
    assert processed["processed_by"] == "manager"
    assert get_item(client, admin_headers, stocked_item["id"])["current_stock"] == 80

    history = client.get(f"{url}/history", headers=manager_headers).json()
    assert [event["event_type"] for event in history] == ["created", "approved", "processing", "processed"]
    assert history[-1]["old_status"] == "Processing"
    assert history[-1]["new_status"] == "Completed"


def test_approval_limit(client, admin_headers, clerk_headers, warehouse, create_item, issue):
    item = create_item(warehouse["id"], current_stock=1000, standard_cost="5.00")
    created = issue(item["id"], 500, require_approval=True).json()

    response = client.post(f"/api/v1/transactions/{created['id']}/approve", headers=clerk_headers)
    assert response.status_code == 403
    assert response.json()["detail"].startswith("Transaction value 2500.00 exceeds your approval limit")

    small = issue(item["id"], 100, require_approval=True).json()
    assert client.post(f"/api/v1/transactions/{small['id']}/approve", headers=clerk_headers).status_code == 200


def test_viewer_cannot_approve(client, viewer_headers, stocked_item, issue):
    created = issue(stocked_item["id"], 1, require_approval=True).json()
    response = client.post(f"/api/v1/transactions/{created['id']}/approve", headers=viewer_headers)
    assert response.status_code == 403


def test_failed_processing_and_retry(client, admin_headers, stocked_item, issue):
    created = issue(stocked_item["id"], 80, require_approval=True).json()
    url = f"/api/v1/transactions/{created['id']}"
    client.post(f"{url}/approve", headers=admin_headers)

    # Stock drops below the requested quantity before processing
    client.post(
        f"/api/v1/inventory/items/{stocked_item['id']}/stock",
        json={"quantity_change": -50, "reason": "Scrapped"},
        headers=admin_headers,
    )

    response = client.post(f"{url}/process", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Insufficient stock for issue. Available: 50, Requested: 80"

    failed = client.get(url, headers=admin_headers).json()
    assert failed["status"] == "Failed"
    assert failed["notes"] == "Failed: Insufficient stock for issue. Available: 50, Requested: 80"
    assert get_item(client, admin_headers, stocked_item["id"])["current_stock"] == 50

    assert client.post(f"{url}/cancel", json={"reason": "Too late"}, headers=admin_headers).status_code == 400

    retried = client.post(f"{url}/retry", headers=admin_headers).json()
    assert retried["status"] == "Pending"
    assert retried["approved_by"] is None


def test_unexpected_processing_error_marks_failed(client, admin_headers, stocked_item, issue):
    created = issue(stocked_item["id"], 5, require_approval=True).json()
    url = f"/api/v1/transactions/{created['id']}"
    client.post(f"{url}/approve", headers=admin_headers)

    with patch("inventory_api.transactions.apply_impact", side_effect=StaleDataError("row was updated")):
        response = client.post(f"{url}/process", headers=admin_headers)
    assert response.status_code == 409

    failed = client.get(url, headers=admin_headers).json()
    assert failed["status"] == "Failed"
    assert failed["notes"] == "Failed: StaleDataError: row was updated"
    assert get_item(client, admin_headers, stocked_item["id"])["current_stock"] == 100

    assert client.post(f"{url}/retry", headers=admin_headers).json()["status"] == "Pending"


def test_retry_requires_failed_status(client, admin_headers, stocked_item, issue):
    created = issue(stocked_item["id"], 1, require_approval=True).json()
    response = client.post(f"/api/v1/transactions/{created['id']}/retry", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Only failed transactions can be retried"


def test_cancel_appends_reason(client, admin_headers, stocked_item, warehouse):
    created = client.post(
        "/api/v1/transactions/issue",
        json={
            "inventory_item_id": stocked_item["id"],
            "location_id": warehouse["id"],
            "quantity": 5,
            "notes": "Line 3 request",
            "require_approval": True,
        },
        headers=admin_headers,
    ).json()
    url = f"/api/v1/transactions/{created['id']}/cancel"

    cancelled = client.post(url, json={"reason": "Wrong item"}, headers=admin_headers).json()
    assert cancelled["status"] == "Cancelled"
    assert cancelled["notes"] == "Line 3 request\n\nCancelled: Wrong item"

    again = client.post(url, json={"reason": "Twice"}, headers=admin_headers)
    assert again.status_code == 400
    assert again.json()["detail"] == "Transaction cannot be cancelled"


def test_completed_transactions_are_immutable(client, admin_headers, stocked_item, issue):
    completed = issue(stocked_item["id"], 1).json()
    response = client.put(
        f"/api/v1/transactions/{completed['id']}", json={"notes": "Edited"}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Completed transactions cannot be modified"

    pending = issue(stocked_item["id"], 1, require_approval=True).json()
    response = client.put(
        f"/api/v1/transactions/{pending['id']}", json={"reference_number": "WO-5"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["reference_number"] == "WO-5"


def test_bulk_process_stops_at_first_failure(client, admin_headers, stocked_item, issue):
    first = issue(stocked_item["id"], 60, require_approval=True).json()
    second = issue(stocked_item["id"], 60, require_approval=True).json()
    for transaction in (first, second):
        client.post(f"/api/v1/transactions/{transaction['id']}/approve", headers=admin_headers)

    response = client.post(
        "/api/v1/transactions/bulk-process",
        json={"transaction_ids": [first["id"], second["id"]]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    result = response.json()
    assert result["processed"] == [first["id"]]
    assert result["failed_id"] == second["id"]
    assert result["error"] == "Insufficient stock for issue. Available: 40, Requested: 60"

    assert client.get(f"/api/v1/transactions/{second['id']}", headers=admin_headers).json()["status"] == "Failed"


def test_bulk_process_sends_stock_events(client, admin_headers, stocked_item, issue):
    created = issue(stocked_item["id"], 95, require_approval=True).json()
    client.post(f"/api/v1/transactions/{created['id']}/approve", headers=admin_headers)

    with patch("inventory_api.webhooks.send_webhook", new_callable=AsyncMock) as send:
        response = client.post(
            "/api/v1/transactions/bulk-process",
            json={"transaction_ids": [created["id"]]},
            headers=admin_headers,
        )
    assert response.json()["processed"] == [created["id"]]
    events = [call.args[0] for call in send.await_args_list]
    assert events == ["transaction.status_changed", "item.stock_changed", "item.low_stock"]
    assert send.await_args_list[1].args[1]["current_stock"] == 5


def test_bulk_process_rejects_duplicates(client, admin_headers):
    response = client.post(
        "/api/v1/transactions/bulk-process", json={"transaction_ids": ["a", "a"]}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["errors"] == {"transaction_ids": ["Batch contains duplicate transactions"]}


def test_pending_and_filtered_listing(client, admin_headers, stocked_item, issue):
    completed = issue(stocked_item["id"], 1).json()
    pending = issue(stocked_item["id"], 2, require_approval=True).json()

    assert [row["id"] for row in client.get("/api/v1/transactions/pending", headers=admin_headers).json()] == [
        pending["id"]
    ]

    listing = client.get("/api/v1/transactions?status=Completed", headers=admin_headers).json()
    assert [row["id"] for row in listing["items"]] == [completed["id"]]

    by_quantity = client.get("/api/v1/transactions?min_quantity=2", headers=admin_headers).json()
    assert by_quantity["total_count"] == 1


def test_summary(client, admin_headers, stocked_item, issue):
    issue(stocked_item["id"], 4)
    issue(stocked_item["id"], 2, require_approval=True)

    summary = client.get("/api/v1/transactions/summary", headers=admin_headers).json()
    assert summary["total_transactions"] == 2
    assert summary["completed_transactions"] == 1
    assert summary["pending_transactions"] == 1
    assert summary["processing_transactions"] == 0
    assert Decimal(summary["total_value"]) == Decimal("15")
    assert Decimal(summary["average_value"]) == Decimal("7.50")

    bad_range = client.get(
        "/api/v1/transactions/summary",
        params={"start_date": "2030-01-02T00:00:00", "end_date": "2030-01-01T00:00:00"},
        headers=admin_headers,
    )
    assert bad_range.status_code == 400


def test_summary_counts_processing(client, admin_headers, db, stocked_item, issue):
    created = issue(stocked_item["id"], 2, require_approval=True).json()
    transaction = db.get(models.InventoryTransaction, created["id"])
    transaction.status = models.TransactionStatus.PROCESSING
    db.commit()

    summary = client.get("/api/v1/transactions/summary", headers=admin_headers).json()
    assert summary["processing_transactions"] == 1
    assert summary["pending_transactions"] == 0


def test_accounting_sync(client, admin_headers, stocked_item, issue):
    completed = issue(stocked_item["id"], 1).json()
    pending = issue(stocked_item["id"], 1, require_approval=True).json()

    unsynced = client.get("/api/v1/transactions/unsynced", headers=admin_headers).json()
    assert [row["id"] for row in unsynced] == [completed["id"]]

    result = client.post(
        "/api/v1/transactions/sync",
        json={"transaction_ids": [completed["id"], pending["id"], "missing"], "reference_id": "QB-1"},
        headers=admin_headers,
    ).json()
    assert result == {"updated_count": 1, "skipped_ids": [pending["id"], "missing"]}

    assert client.get("/api/v1/transactions/unsynced", headers=admin_headers).json() == []


def test_viewer_cannot_create_transactions(viewer_headers, stocked_item, issue):
    assert issue(stocked_item["id"], 1, headers=viewer_headers).status_code == 403


def test_missing_transaction(client, admin_headers):
    response = client.get("/api/v1/transactions/missing", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "InventoryTransaction with ID 'missing' not found"
