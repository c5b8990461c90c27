"""
Inventory transaction endpoints.

Mounted at /api/v1/transactions.
"""
from datetime import datetime, timedelta
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from .. import auth, crud, models, schemas, transactions, webhooks
from ..database import get_db
from ..exceptions import NotFoundError

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])

TRANSACTIONS_CREATE = auth.permission_name("transactions", "create")
TRANSACTIONS_READ = auth.permission_name("transactions", "read")
TRANSACTIONS_UPDATE = auth.permission_name("transactions", "update")

SUMMARY_DEFAULT_DAYS = 30


def _schedule_created(background_tasks: BackgroundTasks, transaction: models.InventoryTransaction) -> None:
    background_tasks.add_task(webhooks.notify_transaction_created, webhooks.transaction_payload(transaction))
    if transaction.status == models.TransactionStatus.COMPLETED:
        background_tasks.add_task(webhooks.notify_stock_changed, webhooks.stock_payload(transaction.item))


def _schedule_status_changed(
    background_tasks: BackgroundTasks, transaction: models.InventoryTransaction, old_status: str
) -> None:
    background_tasks.add_task(
        webhooks.notify_transaction_status_changed, transaction.id, old_status, transaction.status
    )


@router.get("", response_model=schemas.PagedResponse[schemas.InventoryTransaction])
def list_transactions(
    page: int = 1,
    page_size: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    transaction_type: Optional[schemas.TransactionTypeName] = None,
    status: Optional[schemas.TransactionStatusName] = None,
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
    reference_number: Optional[str] = None,
    min_quantity: Optional[int] = None,
    max_quantity: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_direction: schemas.SortDirection = "desc",
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_READ)),
):
    """
    List transactions with filtering, sorting and paging.

    Args:
        location_id: Matches the source or the destination location
        search: Matches transaction number, notes or reference number
        sort_by: number, date, type or quantity (newest first by default)
        db: Database session (injected)
        current_user: Current authenticated user (injected)

    Returns:
        A page of transactions
    """
    query = crud.query_transactions(
        db,
        start_date=start_date,
        end_date=end_date,
        transaction_type=transaction_type,
        status=status,
        item_id=item_id,
        location_id=location_id,
        initiated_by=initiated_by,
        reference_number=reference_number,
        min_quantity=min_quantity,
        max_quantity=max_quantity,
        search=search,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    return crud.paginate(query, page, page_size)


@router.get("/pending", response_model=List[schemas.InventoryTransaction])
def list_pending_transactions(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_READ)),
):
    """Pending transactions, oldest first."""
    return crud.get_pending_transactions(db)


@router.get("/unsynced", response_model=List[schemas.InventoryTransaction])
def list_unsynced_transactions(
    since: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_EXPORT)),
):
    """Completed transactions not yet exported to the accounting system."""
    return crud.get_unsynced_transactions(db, since)


@router.post("/sync", response_model=schemas.SyncResult)
def mark_transactions_synced(
    request: schemas.SyncRequest,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_EXPORT)),
):
    """
    Flag transactions as exported to the accounting system.

    Ids that are unknown or not Completed are returned in skipped_ids.
    """
    updated_count, skipped_ids = transactions.mark_synced(db, request.transaction_ids, request.reference_id)
    return schemas.SyncResult(updated_count=updated_count, skipped_ids=skipped_ids)


@router.get("/summary", response_model=schemas.TransactionSummary)
def get_transaction_summary(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_VIEW)),
):
    """
    Counts per status and value totals for a date range (last 30 days by default).

    Raises:
        ValidationError: 400 if start_date is after end_date
    """
    end_date = end_date or datetime.utcnow()
    start_date = start_date or end_date - timedelta(days=SUMMARY_DEFAULT_DAYS)
    return transactions.summary(db, start_date, end_date)


@router.post("/bulk-process", response_model=schemas.BulkProcessResult)
def bulk_process_transactions(
    request: schemas.BulkProcessRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_UPDATE)),
):
    """
    Process approved transactions in order, stopping at the first failure.

    Raises:
        ValidationError: 400 if the id list is too long or has duplicates
    """
    result = transactions.bulk_process(db, request.transaction_ids, current_user)
    for transaction_id in result.processed:
        transaction = transactions.get_transaction_or_404(db, transaction_id)
        _schedule_status_changed(background_tasks, transaction, models.TransactionStatus.APPROVED)
        background_tasks.add_task(webhooks.notify_stock_changed, webhooks.stock_payload(transaction.item))
    return result


@router.post("/receipt", response_model=schemas.InventoryTransaction, status_code=status.HTTP_201_CREATED)
def create_receipt(
    receipt: schemas.ReceiptCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_CREATE)),
):
    """
    Receive stock into a location.

    Raises:
        NotFoundError: 404 if the item, location or supplier does not exist
        BusinessRuleError: 400 if the location type cannot receive stock
    """
    transaction = transactions.create_receipt(db, receipt, current_user)
    _schedule_created(background_tasks, transaction)
    return transaction


@router.post("/issue", response_model=schemas.InventoryTransaction, status_code=status.HTTP_201_CREATED)
def create_issue(
    issue: schemas.IssueCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_CREATE)),
):
    """
    Issue stock out of a location.

    Raises:
        BusinessRuleError: 400 if available stock does not cover the quantity
    """
    transaction = transactions.create_issue(db, issue, current_user)
    _schedule_created(background_tasks, transaction)
    return transaction


@router.post("/transfer", response_model=schemas.InventoryTransaction, status_code=status.HTTP_201_CREATED)
def create_transfer(
    transfer: schemas.TransferCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_CREATE)),
):
    transaction = transactions.create_transfer(db, transfer, current_user)
    _schedule_created(background_tasks, transaction)
    return transaction


@router.post("/adjustment", response_model=schemas.InventoryTransaction, status_code=status.HTTP_201_CREATED)
def create_adjustment(
    adjustment: schemas.AdjustmentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_CREATE)),
):
    transaction = transactions.create_adjustment(db, adjustment, current_user)
    _schedule_created(background_tasks, transaction)
    return transaction


@router.post("/count-adjustment", response_model=schemas.InventoryTransaction, status_code=status.HTTP_201_CREATED)
def create_count_adjustment(
    count: schemas.CountAdjustmentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_CREATE)),
):
    """
    Reconcile an item's stock to a physical count.

    Raises:
        BusinessRuleError: 400 if the count matches current stock
    """
    transaction = transactions.create_count_adjustment(db, count, current_user)
    _schedule_created(background_tasks, transaction)
    return transaction


@router.get("/number/{transaction_number}", response_model=schemas.InventoryTransaction)
def get_transaction_by_number(
    transaction_number: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_READ)),
):
    transaction = crud.get_transaction_by_number(db, transaction_number)
    if transaction is None:
        raise NotFoundError("InventoryTransaction", transaction_number)
    return transaction


@router.get("/{transaction_id}", response_model=schemas.InventoryTransaction)
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_READ)),
):
    """
    Get a single transaction by ID.

    Raises:
        NotFoundError: 404 if transaction not found
    """
    return transactions.get_transaction_or_404(db, transaction_id)


@router.put("/{transaction_id}", response_model=schemas.InventoryTransaction)
def update_transaction(
    transaction_id: str,
    update: schemas.TransactionUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_UPDATE)),
):
    """
    Edit a transaction's reference and notes.

    Raises:
        BusinessRuleError: 400 if the transaction is Completed or Processing
    """
    transaction = transactions.get_transaction_or_404(db, transaction_id)
    return transactions.update_transaction(db, transaction, update, current_user)


@router.get("/{transaction_id}/history", response_model=List[schemas.TransactionEvent])
def get_transaction_history(
    transaction_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_READ)),
):
    """
    Get the audit trail of a transaction.

    Returns:
        Events in chronological order, starting with "created"
    """
    transactions.get_transaction_or_404(db, transaction_id)
    return crud.get_transaction_events(db, transaction_id)


@router.post("/{transaction_id}/approve", response_model=schemas.InventoryTransaction)
def approve_transaction(
    transaction_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.APPROVE_TRANSACTIONS)),
):
    """
    Approve a pending transaction.

    Raises:
        BusinessRuleError: 400 if the transaction is not pending
        ForbiddenError: 403 if its value exceeds the user's approval limit
    """
    transaction = transactions.approve(db, transaction_id, current_user)
    _schedule_status_changed(background_tasks, transaction, models.TransactionStatus.PENDING)
    return transaction


@router.post("/{transaction_id}/process", response_model=schemas.InventoryTransaction)
def process_transaction(
    transaction_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_UPDATE)),
):
    """
    Apply an approved transaction's stock impact.

    Raises:
        BusinessRuleError: 400 if the transaction is not approved, or the impact
            can no longer be applied (the transaction is then marked Failed)
    """
    transaction = transactions.process(db, transaction_id, current_user)
    _schedule_status_changed(background_tasks, transaction, models.TransactionStatus.APPROVED)
    background_tasks.add_task(webhooks.notify_stock_changed, webhooks.stock_payload(transaction.item))
    return transaction


@router.post("/{transaction_id}/cancel", response_model=schemas.InventoryTransaction)
def cancel_transaction(
    transaction_id: str,
    request: schemas.CancelRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_UPDATE)),
):
    """
    Cancel a transaction that has not been applied.

    Raises:
        BusinessRuleError: 400 if the transaction is Completed, Cancelled, Processing or Failed
    """
    old_status = transactions.get_transaction_or_404(db, transaction_id).status
    transaction = transactions.cancel(db, transaction_id, request.reason, current_user)
    _schedule_status_changed(background_tasks, transaction, old_status)
    return transaction


@router.post("/{transaction_id}/retry", response_model=schemas.InventoryTransaction)
def retry_transaction(
    transaction_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(TRANSACTIONS_UPDATE)),
):
    """
    Move a failed transaction back to Pending.

    Raises:
        BusinessRuleError: 400 if the transaction has not failed
    """
    transaction = transactions.retry(db, transaction_id, current_user)
    _schedule_status_changed(background_tasks, transaction, models.TransactionStatus.FAILED)
    return transaction
