"""
Business rule validation for the Inventory service.

Provides the inventory rules that go beyond schema validation: stock levels,
transaction state transitions, approval limits and location hierarchy checks.
"""
import math
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import LocationType, TransactionStatus, TransactionType

MAX_HIERARCHY_DEPTH = 5
MAX_BULK_TRANSACTIONS = 100
REORDER_SAFETY_FACTOR = 1.2
DEFAULT_LEAD_TIME_DAYS = 7

# Valid status transitions for inventory transactions
VALID_TRANSITIONS: Dict[str, List[str]] = {
    TransactionStatus.PENDING: [TransactionStatus.APPROVED, TransactionStatus.CANCELLED],
    TransactionStatus.APPROVED: [
        TransactionStatus.PROCESSING, TransactionStatus.COMPLETED, TransactionStatus.CANCELLED
    ],
    TransactionStatus.PROCESSING: [TransactionStatus.COMPLETED, TransactionStatus.FAILED],
    TransactionStatus.COMPLETED: [],  # Terminal state
    TransactionStatus.CANCELLED: [],  # Terminal state
    TransactionStatus.FAILED: [TransactionStatus.PENDING],  # Can be retried
}

# Which child location types each parent type may contain
ALLOWED_CHILD_TYPES: Dict[str, List[str]] = {
    LocationType.WAREHOUSE: [LocationType.PRODUCTION, LocationType.CUSTOMER],
    LocationType.PRODUCTION: [LocationType.WAREHOUSE, LocationType.CUSTOMER],
    LocationType.CUSTOMER: [LocationType.WAREHOUSE, LocationType.PRODUCTION],
    LocationType.SUPPLIER: [],
    LocationType.TRANSIT: [],
}

RECEIVABLE_LOCATION_TYPES = (LocationType.WAREHOUSE, LocationType.PRODUCTION, LocationType.CUSTOMER)

# Highest transaction value each role may approve
APPROVAL_LIMITS: Dict[str, Decimal] = {
    "InventoryClerk": Decimal("1000"),
    "InventoryManager": Decimal("10000"),
    "InventoryAdmin": Decimal("100000"),
}


def validate_transaction_status_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Validate that a transaction status transition is allowed.

    Args:
        old_status: Current transaction status
        new_status: Requested transaction status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {old_status}"

    if new_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {new_status}"

    if new_status not in VALID_TRANSITIONS[old_status]:
        return False, f"Invalid status transition: {old_status} -> {new_status}"

    return True, ""


def can_modify_transaction(status: str) -> bool:
    """Completed and in-flight transactions are immutable."""
    return status not in (TransactionStatus.COMPLETED, TransactionStatus.PROCESSING)


def can_cancel_transaction(status: str) -> bool:
    return TransactionStatus.CANCELLED in VALID_TRANSITIONS.get(status, [])


def validate_stock_level(
    new_level: int, maximum_stock: Optional[int] = None, reserved_stock: int = 0
) -> Tuple[bool, str]:
    """
    Validate a prospective on-hand quantity.

    Args:
        new_level: Stock level after the change
        maximum_stock: Item maximum (0 or None means unlimited)
        reserved_stock: Units held for open orders; on-hand may not drop below it

    Returns:
        Tuple of (is_valid, error_message)
    """
    if new_level < 0:
        return False, "Stock level cannot be negative"
    if reserved_stock and new_level < reserved_stock:
        return False, f"Stock level cannot drop below reserved stock ({reserved_stock})"
    if maximum_stock and new_level > maximum_stock:
        return False, f"Stock level cannot exceed maximum stock ({maximum_stock})"
    return True, ""


def validate_stock_limits(
    current_stock: int, reserved_stock: int, minimum_stock: int, maximum_stock: Optional[int]
) -> Optional[Tuple[str, str]]:
    """
    Check an item's configured stock figures against each other.

    Returns:
        (field, error_message) for the first violated rule, or None
    """
    if maximum_stock and minimum_stock > maximum_stock:
        return "minimum_stock", "Minimum stock cannot be greater than maximum stock"
    if reserved_stock > current_stock:
        return "reserved_stock", "Reserved stock cannot exceed current stock"
    return None


def validate_adjustment(current_stock: int, adjustment: int) -> Tuple[bool, str]:
    """
    Validate a manual stock adjustment.

    Args:
        current_stock: Units on hand
        adjustment: Signed change requested

    Returns:
        Tuple of (is_valid, error_message)
    """
    if adjustment == 0:
        return False, "Adjustment quantity cannot be zero"

    if adjustment < 0 and abs(adjustment) > current_stock:
        return False, "Adjustment would result in negative stock"

    # Guard against typos such as an extra zero
    if current_stock > 0 and abs(adjustment) > current_stock * 2:
        return False, "Adjustment quantity is unreasonably large compared to current stock"

    return True, ""


def calculate_inventory_impact(
    transaction_type: str,
    quantity: int,
    current_stock: int = 0,
    counted_quantity: Optional[int] = None,
) -> int:
    """
    Signed change a transaction makes to the item's current stock.

    Args:
        transaction_type: One of TransactionType.ALL
        quantity: Transaction quantity (signed for adjustments)
        current_stock: Units on hand before the transaction
        counted_quantity: Physical count (count adjustments only)

    Returns:
        Signed quantity change
    """
    if transaction_type == TransactionType.RECEIPT:
        return quantity
    if transaction_type == TransactionType.ISSUE:
        return -quantity
    if transaction_type == TransactionType.TRANSFER:
        # The item moves together with its stock
        return 0
    if transaction_type == TransactionType.ADJUSTMENT:
        return quantity
    if transaction_type == TransactionType.COUNT_ADJUSTMENT:
        counted = counted_quantity if counted_quantity is not None else quantity
        return counted - current_stock
    raise ValueError(f"Unknown transaction type: {transaction_type}")


def can_receive_at(location_type: str) -> bool:
    return location_type in RECEIVABLE_LOCATION_TYPES


def approval_limit_for(roles: Iterable[str]) -> Decimal:
    """Highest approval limit across the user's roles (0 when none applies)."""
    limits = [APPROVAL_LIMITS[role] for role in roles if role in APPROVAL_LIMITS]
    return max(limits) if limits else Decimal("0")


def validate_approval_limit(total_cost: Decimal, roles: Iterable[str]) -> Tuple[bool, str]:
    """
    Check that the approver's role covers the transaction value.

    Args:
        total_cost: Transaction value
        roles: Approver's inventory roles

    Returns:
        Tuple of (is_valid, error_message)
    """
    limit = approval_limit_for(roles)
    if limit == 0:
        return False, "Your role cannot approve transactions"
    if total_cost > limit:
        return False, f"Transaction value {total_cost:.2f} exceeds your approval limit of {limit:.2f}"
    return True, ""


def validate_bulk_transaction_ids(transaction_ids: Sequence[str]) -> Tuple[bool, str]:
    """
    Validate a batch of transaction ids for bulk processing.

    Args:
        transaction_ids: Ids in processing order

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not transaction_ids:
        return False, "At least one transaction is required"

    if len(transaction_ids) > MAX_BULK_TRANSACTIONS:
        return False, f"Cannot process more than {MAX_BULK_TRANSACTIONS} transactions at once"

    if len(transaction_ids) != len(set(transaction_ids)):
        return False, "Batch contains duplicate transactions"

    return True, ""


def validate_location_type_compatibility(parent_type: str, child_type: str) -> Tuple[bool, str]:
    """
    Validate that a parent location type may contain a child type.

    Args:
        parent_type: Parent's location type
        child_type: Child's location type

    Returns:
        Tuple of (is_valid, error_message)
    """
    allowed = ALLOWED_CHILD_TYPES.get(parent_type)
    if allowed is None:
        return False, f"Unknown location type: {parent_type}"
    if child_type not in allowed:
        return False, f"A {parent_type} location cannot contain {child_type} locations"
    return True, ""


def validate_hierarchy_depth(parent_depth: int) -> Tuple[bool, str]:
    """
    Validate that adding a child below a parent keeps the tree shallow enough.

    Args:
        parent_depth: Number of levels from the root down to (and including) the parent

    Returns:
        Tuple of (is_valid, error_message)
    """
    if parent_depth + 1 > MAX_HIERARCHY_DEPTH:
        return False, f"Maximum hierarchy depth ({MAX_HIERARCHY_DEPTH} levels) would be exceeded"
    return True, ""


def calculate_reorder_point(
    total_issued: int,
    days: int,
    lead_time_days: Optional[int] = None,
) -> Tuple[float, int]:
    """
    Reorder point from recent consumption.

    Args:
        total_issued: Units issued during the sampling window
        days: Length of the sampling window in days
        lead_time_days: Supplier lead time (defaults to 7)

    Returns:
        Tuple of (average_daily_usage, reorder_point)
    """
    lead_time = lead_time_days if lead_time_days is not None else DEFAULT_LEAD_TIME_DAYS
    average_daily_usage = total_issued / days if days > 0 else 0.0
    return average_daily_usage, math.ceil(average_daily_usage * lead_time * REORDER_SAFETY_FACTOR)


def low_stock_urgency(current_stock: int, minimum_stock: int) -> Tuple[int, str]:
    """
    Deficit and urgency for a low stock alert.

    Args:
        current_stock: Units on hand
        minimum_stock: Item minimum

    Returns:
        Tuple of (deficit, urgency) where urgency is "Critical", "High" or "Medium"
    """
    deficit = max(minimum_stock - current_stock, 0)
    if current_stock == 0:
        return deficit, "Critical"
    if minimum_stock > 0 and deficit >= minimum_stock * 0.5:
        return deficit, "High"
    return deficit, "Medium"
