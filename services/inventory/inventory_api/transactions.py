"""
Stock movement workflow for the Inventory service.

Every change to on-hand stock is recorded as an inventory transaction.
Transactions either complete immediately or wait for approval and move
through Pending -> Approved -> Completed, with Cancelled and Failed as exits.
"""
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from . import cache, crud, models, schemas, validators
from .auth import CurrentUser
from .database import unit_of_work
from .exceptions import BusinessRuleError, ForbiddenError, InventoryError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Status = models.TransactionStatus
Type = models.TransactionType

NUMBER_PREFIXES = {
    Type.RECEIPT: "REC",
    Type.ISSUE: "ISS",
    Type.TRANSFER: "TRF",
    Type.ADJUSTMENT: "ADJ",
    Type.COUNT_ADJUSTMENT: "CC",
}
MAX_DAILY_SEQUENCE = 9999


def generate_transaction_number(db: Session, transaction_type: str, now: Optional[datetime] = None) -> str:
    """
    Next number for the type and day, e.g. "REC-20250101-0007".

    Falls back to a random "TXN-XXXXXXXX" number once the daily sequence is exhausted.
    """
    now = now or datetime.utcnow()
    prefix = f"{NUMBER_PREFIXES.get(transaction_type, 'TXN')}-{now:%Y%m%d}-"
    last = crud.get_last_transaction_number(db, prefix)
    sequence = int(last[len(prefix):]) + 1 if last and last[len(prefix):].isdigit() else 1
    if sequence > MAX_DAILY_SEQUENCE:
        return f"TXN-{uuid.uuid4().hex[:8].upper()}"
    return f"{prefix}{sequence:04d}"


def log_transaction_event(
    db: Session,
    transaction: models.InventoryTransaction,
    event_type: str,
    description: str,
    old_status: Optional[str] = None,
    new_status: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """
    Helper function to add an entry to a transaction's audit trail.

    Args:
        db: Database session
        transaction: Transaction the event belongs to
        event_type: Type of event (e.g., "created", "approved", "cancelled")
        description: Human-readable description
        old_status: Status before the event (optional)
        new_status: Status after the event (optional)
        user_id: User who triggered the event (optional)
    """
    db.add(models.TransactionEvent(
        transaction_id=transaction.id,
        event_type=event_type,
        description=description,
        old_status=old_status,
        new_status=new_status,
        user_id=user_id,
    ))


def get_transaction_or_404(db: Session, transaction_id: str) -> models.InventoryTransaction:
    transaction = crud.get_transaction(db, transaction_id)
    if transaction is None:
        raise NotFoundError("InventoryTransaction", transaction_id)
    return transaction


def _get_item_for_update(db: Session, item_id: str) -> models.InventoryItem:
    item = crud.get_item(db, item_id, for_update=True)
    if item is None or not item.is_active:
        raise NotFoundError("InventoryItem", item_id)
    return item


def _get_active_location(db: Session, location_id: str) -> models.Location:
    location = crud.get_location(db, location_id)
    if location is None or not location.is_active:
        raise NotFoundError("Location", location_id)
    return location


def _snapshot(item: models.InventoryItem) -> str:
    return json.dumps({"current_stock": item.current_stock, "location_id": item.location_id})


def _append_note(notes: Optional[str], text: str) -> str:
    return f"{notes}\n\n{text}" if notes else text


def check_impact(db: Session, transaction: models.InventoryTransaction, item: models.InventoryItem) -> None:
    """
    Validate that a transaction's planned stock impact can be applied to the item right now.

    Raises:
        BusinessRuleError: If applying it would break an inventory rule
    """
    change = transaction.quantity_change
    transaction_type = transaction.transaction_type

    if transaction_type == Type.RECEIPT:
        location = _get_active_location(db, transaction.destination_location_id)
        if not validators.can_receive_at(location.location_type):
            raise BusinessRuleError(
                f"Cannot receive inventory at a {location.location_type} location", rule_name="ReceivableLocation"
            )

    elif transaction_type == Type.ISSUE:
        if item.available_stock < transaction.quantity:
            raise BusinessRuleError(
                f"Insufficient stock for issue. Available: {item.available_stock}, "
                f"Requested: {transaction.quantity}",
                rule_name="SufficientStock",
            )

    elif transaction_type == Type.TRANSFER:
        _get_active_location(db, transaction.destination_location_id)
        if item.location_id != transaction.source_location_id:
            raise BusinessRuleError(
                f"Item {item.part_number} is not at the source location", rule_name="TransferSource"
            )
        if item.available_stock < transaction.quantity:
            raise BusinessRuleError(
                f"Insufficient stock for transfer. Available: {item.available_stock}, "
                f"Requested: {transaction.quantity}",
                rule_name="SufficientStock",
            )

    elif transaction_type == Type.ADJUSTMENT:
        is_valid, error = validators.validate_adjustment(item.current_stock, change)
        if not is_valid:
            raise BusinessRuleError(error, rule_name="Adjustment")

    is_valid, error = validators.validate_stock_level(
        item.current_stock + change, reserved_stock=item.reserved_stock
    )
    if not is_valid:
        raise BusinessRuleError(error, rule_name="StockLevel")


def apply_impact(db: Session, transaction: models.InventoryTransaction, item: models.InventoryItem) -> None:
    """Validate and apply a transaction's stock impact to the (locked) item."""
    check_impact(db, transaction, item)

    transaction.before_image = _snapshot(item)
    item.current_stock += transaction.quantity_change
    if transaction.transaction_type == Type.RECEIPT and transaction.unit_cost is not None:
        item.standard_cost = transaction.unit_cost
    if transaction.transaction_type == Type.TRANSFER:
        item.location_id = transaction.destination_location_id
    item.last_movement = datetime.utcnow()
    transaction.after_image = _snapshot(item)


def _complete(db: Session, transaction: models.InventoryTransaction, item: models.InventoryItem, user: CurrentUser) -> None:
    old_status = transaction.status
    apply_impact(db, transaction, item)
    now = datetime.utcnow()
    if transaction.approved_by is None:
        transaction.approved_by = user.display_name
        transaction.approved_at = now
    transaction.processed_by = user.display_name
    transaction.processed_at = now
    transaction.status = Status.COMPLETED
    log_transaction_event(
        db, transaction, "processed",
        f"Stock changed by {transaction.quantity_change:+d} ({item.part_number} now {item.current_stock})",
        old_status, Status.COMPLETED, user.id,
    )


def _create(
    db: Session,
    transaction_type: str,
    item: models.InventoryItem,
    quantity: int,
    quantity_change: int,
    data: schemas.TransactionCreateBase,
    user: CurrentUser,
    **fields,
) -> models.InventoryTransaction:
    """Build, validate and persist a transaction, completing it unless approval is required."""
    transaction = models.InventoryTransaction(
        transaction_number=generate_transaction_number(db, transaction_type),
        transaction_type=transaction_type,
        status=Status.PENDING,
        inventory_item_id=item.id,
        quantity=quantity,
        quantity_change=quantity_change,
        reference_number=data.reference_number,
        reference_type=data.reference_type,
        notes=data.notes,
        initiated_by=user.display_name,
        initiated_at=datetime.utcnow(),
        **fields,
    )
    check_impact(db, transaction, item)
    db.add(transaction)
    db.flush()
    log_transaction_event(
        db, transaction, "created", f"{transaction_type} of {quantity} x {item.part_number} created",
        None, Status.PENDING, user.id,
    )
    if not data.require_approval:
        _complete(db, transaction, item, user)
    db.flush()
    return transaction


def _finish_create(db: Session, transaction: models.InventoryTransaction) -> models.InventoryTransaction:
    db.refresh(transaction)
    cache.invalidate_inventory()
    logger.info(
        f"Transaction {transaction.transaction_number} ({transaction.transaction_type}) "
        f"created with status {transaction.status} by {transaction.initiated_by}"
    )
    return transaction


def create_receipt(db: Session, data: schemas.ReceiptCreate, user: CurrentUser) -> models.InventoryTransaction:
    """
    Receive stock into a location.

    Raises:
        NotFoundError: If the item, location or supplier does not exist
        BusinessRuleError: If the location cannot receive stock
    """
    _get_active_location(db, data.location_id)
    if data.supplier_id and crud.get_supplier(db, data.supplier_id) is None:
        raise NotFoundError("Supplier", data.supplier_id)

    with unit_of_work(db):
        item = _get_item_for_update(db, data.inventory_item_id)
        transaction = _create(
            db, Type.RECEIPT, item, data.quantity, data.quantity, data, user,
            destination_location_id=data.location_id,
            unit_cost=data.unit_cost,
            supplier_id=data.supplier_id,
        )
    return _finish_create(db, transaction)


def create_issue(db: Session, data: schemas.IssueCreate, user: CurrentUser) -> models.InventoryTransaction:
    """
    Issue stock out of a location.

    Raises:
        BusinessRuleError: If available stock does not cover the quantity
    """
    _get_active_location(db, data.location_id)
    with unit_of_work(db):
        item = _get_item_for_update(db, data.inventory_item_id)
        transaction = _create(
            db, Type.ISSUE, item, data.quantity, -data.quantity, data, user,
            source_location_id=data.location_id,
            unit_cost=item.standard_cost,
        )
    return _finish_create(db, transaction)


def create_transfer(db: Session, data: schemas.TransferCreate, user: CurrentUser) -> models.InventoryTransaction:
    """
    Move an item (with its stock) to another location.

    Raises:
        BusinessRuleError: If the item is not at the source or is short of stock
    """
    if data.source_location_id == data.destination_location_id:
        raise BusinessRuleError("Source and destination locations cannot be the same")
    _get_active_location(db, data.source_location_id)
    _get_active_location(db, data.destination_location_id)

    with unit_of_work(db):
        item = _get_item_for_update(db, data.inventory_item_id)
        transaction = _create(
            db, Type.TRANSFER, item, data.quantity,
            validators.calculate_inventory_impact(Type.TRANSFER, data.quantity),
            data, user,
            source_location_id=data.source_location_id,
            destination_location_id=data.destination_location_id,
            unit_cost=item.standard_cost,
        )
    return _finish_create(db, transaction)


def create_adjustment(db: Session, data: schemas.AdjustmentCreate, user: CurrentUser) -> models.InventoryTransaction:
    """
    Record a signed manual correction.

    Raises:
        BusinessRuleError: If the adjustment would go negative or is unreasonably large
    """
    if data.location_id:
        _get_active_location(db, data.location_id)
    with unit_of_work(db):
        item = _get_item_for_update(db, data.inventory_item_id)
        transaction = _create(
            db, Type.ADJUSTMENT, item, abs(data.quantity), data.quantity, data, user,
            source_location_id=data.location_id or item.location_id,
            adjustment_reason=data.adjustment_reason,
            unit_cost=item.standard_cost,
        )
    return _finish_create(db, transaction)


def create_count_adjustment(
    db: Session, data: schemas.CountAdjustmentCreate, user: CurrentUser
) -> models.InventoryTransaction:
    """
    Reconcile stock to a physical count.

    Raises:
        BusinessRuleError: If the count matches current stock
    """
    if data.location_id:
        _get_active_location(db, data.location_id)
    with unit_of_work(db):
        item = _get_item_for_update(db, data.inventory_item_id)
        change = validators.calculate_inventory_impact(
            Type.COUNT_ADJUSTMENT, 0, item.current_stock, data.counted_quantity
        )
        if change == 0:
            raise BusinessRuleError("Counted quantity matches current stock", rule_name="CountAdjustment")
        transaction = _create(
            db, Type.COUNT_ADJUSTMENT, item, abs(change), change, data, user,
            source_location_id=data.location_id or item.location_id,
            adjustment_reason="Cycle count",
            unit_cost=item.standard_cost,
        )
    return _finish_create(db, transaction)


def record_completed_transfer(
    db: Session,
    item: models.InventoryItem,
    source: models.Location,
    destination: models.Location,
    quantity: int,
    reason: Optional[str],
    user: CurrentUser,
) -> models.InventoryTransaction:
    """
    Record a transfer whose stock movement the caller already applied.

    Used by bulk location transfers; runs inside the caller's unit of work.
    """
    now = datetime.utcnow()
    transaction = models.InventoryTransaction(
        transaction_number=generate_transaction_number(db, Type.TRANSFER, now),
        transaction_type=Type.TRANSFER,
        status=Status.COMPLETED,
        inventory_item_id=item.id,
        source_location_id=source.id,
        destination_location_id=destination.id,
        quantity=quantity,
        quantity_change=0,
        unit_cost=item.standard_cost,
        notes=reason,
        initiated_by=user.display_name,
        initiated_at=now,
        approved_by=user.display_name,
        approved_at=now,
        processed_by=user.display_name,
        processed_at=now,
    )
    db.add(transaction)
    db.flush()
    log_transaction_event(
        db, transaction, "processed", f"Moved {item.part_number} from {source.code} to {destination.code}",
        None, Status.COMPLETED, user.id,
    )
    return transaction


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

def update_transaction(
    db: Session, transaction: models.InventoryTransaction, data: schemas.TransactionUpdate, user: CurrentUser
) -> models.InventoryTransaction:
    """
    Edit the descriptive fields of a transaction that is not completed or in flight.

    Raises:
        BusinessRuleError: If the transaction is Completed or Processing
    """
    if not validators.can_modify_transaction(transaction.status):
        raise BusinessRuleError(
            f"{transaction.status} transactions cannot be modified", rule_name="TransactionImmutable"
        )
    with unit_of_work(db):
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(transaction, key, value)
        log_transaction_event(db, transaction, "updated", "Transaction details updated", user_id=user.id)
    db.refresh(transaction)
    return transaction


def approve(db: Session, transaction_id: str, user: CurrentUser) -> models.InventoryTransaction:
    """
    Approve a pending transaction.

    Raises:
        BusinessRuleError: If the transaction is not pending
        ForbiddenError: If the value exceeds the user's approval limit
    """
    transaction = get_transaction_or_404(db, transaction_id)
    if transaction.status != Status.PENDING:
        raise BusinessRuleError("Only pending transactions can be approved", rule_name="TransactionStatus")

    is_valid, error = validators.validate_approval_limit(transaction.total_cost, user.roles)
    if not is_valid:
        logger.warning(f"Approval of {transaction.transaction_number} by {user.display_name} refused: {error}")
        raise ForbiddenError(error)

    with unit_of_work(db):
        transaction.status = Status.APPROVED
        transaction.approved_by = user.display_name
        transaction.approved_at = datetime.utcnow()
        log_transaction_event(
            db, transaction, "approved", f"Approved by {user.display_name}",
            Status.PENDING, Status.APPROVED, user.id,
        )
    db.refresh(transaction)
    logger.info(f"Transaction {transaction.transaction_number} approved by {user.display_name}")
    return transaction


def process(db: Session, transaction_id: str, user: CurrentUser) -> models.InventoryTransaction:
    """
    Apply an approved transaction's stock impact.

    When the impact can no longer be applied (e.g. stock was issued in the
    meantime, or the item row changed under us) the transaction is marked
    Failed and the error is re-raised.

    Raises:
        BusinessRuleError: If the transaction is not approved or the impact is invalid
        NotFoundError: If the item was removed since the transaction was created
    """
    transaction = get_transaction_or_404(db, transaction_id)
    if transaction.status != Status.APPROVED:
        raise BusinessRuleError("Only approved transactions can be processed", rule_name="TransactionStatus")

    with unit_of_work(db):
        transaction.status = Status.PROCESSING
        log_transaction_event(
            db, transaction, "processing", f"Processing started by {user.display_name}",
            Status.APPROVED, Status.PROCESSING, user.id,
        )

    try:
        with unit_of_work(db):
            item = _get_item_for_update(db, transaction.inventory_item_id)
            _complete(db, transaction, item, user)
    except Exception as e:
        reason = e.message if isinstance(e, InventoryError) else f"{type(e).__name__}: {e}"
        _mark_failed(db, transaction_id, reason, user)
        raise

    db.refresh(transaction)
    cache.invalidate_inventory()
    logger.info(f"Transaction {transaction.transaction_number} processed by {user.display_name}")
    return transaction


def _mark_failed(db: Session, transaction_id: str, reason: str, user: CurrentUser) -> None:
    transaction = get_transaction_or_404(db, transaction_id)
    with unit_of_work(db):
        old_status = transaction.status
        transaction.status = Status.FAILED
        transaction.notes = _append_note(transaction.notes, f"Failed: {reason}")
        log_transaction_event(db, transaction, "failed", reason, old_status, Status.FAILED, user.id)
    logger.warning(f"Transaction {transaction.transaction_number} failed: {reason}")


def cancel(db: Session, transaction_id: str, reason: str, user: CurrentUser) -> models.InventoryTransaction:
    """
    Cancel a transaction that has not been applied.

    Raises:
        BusinessRuleError: If the transaction is Completed, Cancelled, Processing or Failed
    """
    transaction = get_transaction_or_404(db, transaction_id)
    if not validators.can_cancel_transaction(transaction.status):
        raise BusinessRuleError("Transaction cannot be cancelled", rule_name="TransactionStatus")

    with unit_of_work(db):
        old_status = transaction.status
        transaction.status = Status.CANCELLED
        transaction.notes = _append_note(transaction.notes, f"Cancelled: {reason}")
        log_transaction_event(
            db, transaction, "cancelled", f"Cancelled by {user.display_name}: {reason}",
            old_status, Status.CANCELLED, user.id,
        )
    db.refresh(transaction)
    logger.info(f"Transaction {transaction.transaction_number} cancelled by {user.display_name}")
    return transaction


def retry(db: Session, transaction_id: str, user: CurrentUser) -> models.InventoryTransaction:
    """
    Put a failed transaction back into the approval queue.

    Raises:
        BusinessRuleError: If the transaction has not failed
    """
    transaction = get_transaction_or_404(db, transaction_id)
    is_valid, error = validators.validate_transaction_status_transition(transaction.status, Status.PENDING)
    if not is_valid:
        raise BusinessRuleError("Only failed transactions can be retried", rule_name="TransactionStatus")

    with unit_of_work(db):
        transaction.status = Status.PENDING
        transaction.approved_by = None
        transaction.approved_at = None
        log_transaction_event(
            db, transaction, "retried", f"Resubmitted by {user.display_name}",
            Status.FAILED, Status.PENDING, user.id,
        )
    db.refresh(transaction)
    return transaction


def bulk_process(db: Session, transaction_ids: List[str], user: CurrentUser) -> schemas.BulkProcessResult:
    """
    Process approved transactions in order, stopping at the first failure.

    Raises:
        ValidationError: If the batch is empty, too large or has duplicates
    """
    is_valid, error = validators.validate_bulk_transaction_ids(transaction_ids)
    if not is_valid:
        raise ValidationError.single("transaction_ids", error)

    processed: List[str] = []
    for transaction_id in transaction_ids:
        try:
            process(db, transaction_id, user)
        except InventoryError as e:
            logger.warning(f"Bulk processing stopped at {transaction_id}: {e.message}")
            return schemas.BulkProcessResult(processed=processed, failed_id=transaction_id, error=e.message)
        processed.append(transaction_id)
    return schemas.BulkProcessResult(processed=processed)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def summary(db: Session, start_date: datetime, end_date: datetime) -> schemas.TransactionSummary:
    """
    Counts per status and total value for transactions initiated in a date range.

    Args:
        db: Database session
        start_date: Range start (inclusive)
        end_date: Range end (inclusive)

    Returns:
        TransactionSummary
    """
    if start_date > end_date:
        raise ValidationError.single("start_date", "Start date must be before end date")

    records = crud.get_transactions_between(db, start_date, end_date)
    counts = {status: 0 for status in Status.ALL}
    for record in records:
        counts[record.status] = counts.get(record.status, 0) + 1
    total_value = sum((record.total_cost for record in records), Decimal("0"))
    average_value = (total_value / len(records)).quantize(Decimal("0.01")) if records else Decimal("0")

    return schemas.TransactionSummary(
        total_transactions=len(records),
        pending_transactions=counts[Status.PENDING],
        approved_transactions=counts[Status.APPROVED],
        processing_transactions=counts[Status.PROCESSING],
        completed_transactions=counts[Status.COMPLETED],
        cancelled_transactions=counts[Status.CANCELLED],
        failed_transactions=counts[Status.FAILED],
        total_value=total_value,
        average_value=average_value,
        start_date=start_date,
        end_date=end_date,
    )


def mark_synced(db: Session, transaction_ids: List[str], reference_id: Optional[str] = None) -> Tuple[int, List[str]]:
    """
    Flag completed transactions as exported to the accounting system.

    Returns:
        Tuple of (updated_count, ids that were not completed or not found)
    """
    skipped: List[str] = []
    updated = 0
    with unit_of_work(db):
        for transaction_id in transaction_ids:
            transaction = crud.get_transaction(db, transaction_id)
            if transaction is None or transaction.status != Status.COMPLETED:
                skipped.append(transaction_id)
                continue
            transaction.is_quickbooks_synced = True
            transaction.quickbooks_ref_id = reference_id
            updated += 1
    return updated, skipped
