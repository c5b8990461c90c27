from decimal import Decimal

import pytest

from inventory_api import validators
from inventory_api.models import TransactionStatus, TransactionType


@pytest.mark.parametrize("old_status,new_status,allowed", [
    ("Pending", "Approved", True),
    ("Pending", "Cancelled", True),
    ("Pending", "Completed", False),
    ("Approved", "Completed", True),
    ("Processing", "Failed", True),
    ("Failed", "Pending", True),
    ("Completed", "Cancelled", False),
    ("Cancelled", "Pending", False),
])
def test_status_transitions(old_status, new_status, allowed):
    is_valid, _ = validators.validate_transaction_status_transition(old_status, new_status)
    assert is_valid is allowed


def test_unknown_status_is_rejected():
    is_valid, error = validators.validate_transaction_status_transition("Draft", "Pending")
    assert not is_valid
    assert error == "Unknown status: Draft"


def test_completed_and_processing_are_immutable():
    assert not validators.can_modify_transaction(TransactionStatus.COMPLETED)
    assert not validators.can_modify_transaction(TransactionStatus.PROCESSING)
    assert validators.can_modify_transaction(TransactionStatus.PENDING)


def test_cancellable_statuses():
    assert validators.can_cancel_transaction(TransactionStatus.PENDING)
    assert validators.can_cancel_transaction(TransactionStatus.APPROVED)
    for status in ("Completed", "Cancelled", "Processing", "Failed"):
        assert not validators.can_cancel_transaction(status)


def test_stock_level_rules():
    assert validators.validate_stock_level(0) == (True, "")
    assert validators.validate_stock_level(-1) == (False, "Stock level cannot be negative")
    assert validators.validate_stock_level(51, 50) == (False, "Stock level cannot exceed maximum stock (50)")
    assert validators.validate_stock_level(500, 0) == (True, "")
    assert validators.validate_stock_level(3, reserved_stock=4) == (
        False, "Stock level cannot drop below reserved stock (4)"
    )
    assert validators.validate_stock_level(4, reserved_stock=4) == (True, "")


def test_stock_limit_rules():
    assert validators.validate_stock_limits(10, 4, 2, 20) is None
    assert validators.validate_stock_limits(10, 0, 30, 20) == (
        "minimum_stock", "Minimum stock cannot be greater than maximum stock"
    )
    assert validators.validate_stock_limits(10, 0, 30, 0) is None
    assert validators.validate_stock_limits(3, 4, 0, 0) == (
        "reserved_stock", "Reserved stock cannot exceed current stock"
    )


def test_adjustment_rules():
    assert validators.validate_adjustment(10, -5) == (True, "")
    assert validators.validate_adjustment(10, -11) == (False, "Adjustment would result in negative stock")
    assert validators.validate_adjustment(10, 21) == (
        False, "Adjustment quantity is unreasonably large compared to current stock"
    )
    # Any positive adjustment is fine when nothing is on hand
    assert validators.validate_adjustment(0, 500) == (True, "")


def test_inventory_impact():
    assert validators.calculate_inventory_impact(TransactionType.RECEIPT, 5) == 5
    assert validators.calculate_inventory_impact(TransactionType.ISSUE, 5) == -5
    assert validators.calculate_inventory_impact(TransactionType.TRANSFER, 5) == 0
    assert validators.calculate_inventory_impact(TransactionType.ADJUSTMENT, -3) == -3
    assert validators.calculate_inventory_impact(TransactionType.COUNT_ADJUSTMENT, 0, 40, 35) == -5


def test_approval_limits():
    assert validators.validate_approval_limit(Decimal("1000"), ["InventoryClerk"]) == (True, "")
    is_valid, error = validators.validate_approval_limit(Decimal("1000.01"), ["InventoryClerk"])
    assert not is_valid
    assert error == "Transaction value 1000.01 exceeds your approval limit of 1000.00"
    # The highest role wins
    assert validators.validate_approval_limit(Decimal("5000"), ["InventoryClerk", "InventoryManager"])[0]
    assert validators.validate_approval_limit(Decimal("1"), ["InventoryViewer"]) == (
        False, "Your role cannot approve transactions"
    )


def test_bulk_transaction_ids():
    assert validators.validate_bulk_transaction_ids(["a", "b"]) == (True, "")
    assert not validators.validate_bulk_transaction_ids([])[0]
    assert validators.validate_bulk_transaction_ids(["a", "a"]) == (False, "Batch contains duplicate transactions")
    assert not validators.validate_bulk_transaction_ids([str(i) for i in range(101)])[0]


@pytest.mark.parametrize("parent_type,child_type,allowed", [
    ("Warehouse", "Production", True),
    ("Warehouse", "Warehouse", False),
    ("Production", "Customer", True),
    ("Customer", "Warehouse", True),
    ("Supplier", "Warehouse", False),
    ("Transit", "Customer", False),
])
def test_location_type_compatibility(parent_type, child_type, allowed):
    is_valid, error = validators.validate_location_type_compatibility(parent_type, child_type)
    assert is_valid is allowed
    if not allowed:
        assert error == f"A {parent_type} location cannot contain {child_type} locations"


def test_hierarchy_depth():
    assert validators.validate_hierarchy_depth(4) == (True, "")
    assert validators.validate_hierarchy_depth(5) == (
        False, "Maximum hierarchy depth (5 levels) would be exceeded"
    )


def test_reorder_point():
    # 90 units over 90 days, 10 day lead time: ceil(1 * 10 * 1.2)
    assert validators.calculate_reorder_point(90, 90, 10) == (1.0, 12)
    # Default lead time is 7 days
    assert validators.calculate_reorder_point(90, 90) == (1.0, 9)
    assert validators.calculate_reorder_point(0, 90) == (0.0, 0)


@pytest.mark.parametrize("current,minimum,expected", [
    (0, 10, (10, "Critical")),
    (4, 10, (6, "High")),
    (8, 10, (2, "Medium")),
    (12, 10, (0, "Medium")),
])
def test_low_stock_urgency(current, minimum, expected):
    assert validators.low_stock_urgency(current, minimum) == expected
