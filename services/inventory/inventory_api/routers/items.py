"""
Inventory item endpoints.

Mounted at /api/v1/inventory/items.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, File, Header, Query, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .. import auth, crud, inventory, schemas, webhooks
from ..concurrency import check_if_match, set_etag
from ..config import LOW_STOCK_THRESHOLD
from ..database import get_db
from ..exceptions import NotFoundError, ValidationError

router = APIRouter(prefix="/api/v1/inventory/items", tags=["items"])

ITEMS_CREATE = auth.permission_name("items", "create")
ITEMS_READ = auth.permission_name("items", "read")
ITEMS_UPDATE = auth.permission_name("items", "update")
ITEMS_DELETE = auth.permission_name("items", "delete")


@router.get("", response_model=schemas.PagedResponse[schemas.InventoryItem])
def list_items(
    page: int = 1,
    page_size: Optional[int] = None,
    is_active: Optional[bool] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    location_id: Optional[str] = None,
    supplier_id: Optional[str] = None,
    min_stock: Optional[int] = None,
    max_stock: Optional[int] = None,
    min_cost: Optional[Decimal] = None,
    max_cost: Optional[Decimal] = None,
    low_stock_only: bool = False,
    include_inactive: bool = False,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_direction: schemas.SortDirection = "asc",
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """
    List inventory items with filtering, sorting and paging.

    Args:
        page: 1-based page number
        page_size: Items per page (clamped to MAX_PAGE_SIZE)
        search: Matches part number, description or barcode
        sort_by: partnumber, description, currentstock, standardcost, lastmovement or created_at
        db: Database session (injected)
        current_user: Current authenticated user (injected)

    Returns:
        A page of inventory items
    """
    query = crud.query_items(
        db,
        is_active=is_active,
        category=category,
        sub_category=sub_category,
        location_id=location_id,
        supplier_id=supplier_id,
        min_stock=min_stock,
        max_stock=max_stock,
        min_cost=min_cost,
        max_cost=max_cost,
        low_stock_only=low_stock_only,
        include_inactive=include_inactive,
        search=search,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    return crud.paginate(query, page, page_size)


@router.post("", response_model=schemas.InventoryItem, status_code=status.HTTP_201_CREATED)
def create_item(
    item: schemas.InventoryItemCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_CREATE)),
):
    """
    Create a new inventory item.

    Raises:
        ConflictError: 409 if the part number or barcode already exists
        ValidationError: 400 if the barcode, location or supplier is invalid
    """
    db_item = inventory.create_item(db, item, current_user)
    set_etag(response, db_item)
    return db_item


@router.get("/low-stock", response_model=List[schemas.LowStockAlert])
def get_low_stock_alerts(
    threshold: int = Query(LOW_STOCK_THRESHOLD, ge=0),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """Active items at or below the threshold, most urgent first."""
    return inventory.low_stock_alerts(db, threshold)


@router.get("/valuation", response_model=schemas.InventoryValuation)
def get_valuation(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_VIEW)),
):
    return inventory.valuation(db)


@router.get("/changed-since", response_model=List[schemas.InventoryItem])
def get_items_changed_since(
    since: datetime,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """Items created or updated after the given timestamp (accounting sync)."""
    return crud.get_items_changed_since(db, since)


@router.get("/barcode/{barcode}", response_model=schemas.InventoryItem)
def get_item_by_barcode(
    barcode: str,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """
    Look up an active item by its barcode.

    Raises:
        NotFoundError: 404 if no active item carries the barcode
    """
    db_item = crud.get_item_by_barcode(db, barcode)
    if db_item is None:
        raise NotFoundError("InventoryItem", barcode)
    set_etag(response, db_item)
    return db_item


@router.get("/export/csv")
def export_items_csv(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_EXPORT)),
):
    """
    Export all active inventory items to CSV.

    Returns:
        CSV file with columns: part_number, description, barcode, category,
        location_code, current_stock, minimum_stock, maximum_stock, standard_cost
    """
    content = inventory.export_csv(db)
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=inventory.csv"},
    )


@router.post("/import/csv", response_model=schemas.ImportSummary)
def import_items_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_CREATE)),
):
    """
    Import inventory items from CSV with upsert logic.

    Rows are matched by part number: existing items are updated, new ones
    created at the row's location_code.

    Args:
        file: CSV file upload
        db: Database session (injected)
        current_user: Current authenticated user (injected)

    Returns:
        Summary with created_count, updated_count, skipped_count and errors

    Raises:
        ValidationError: 400 if the upload is not a UTF-8 CSV file
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise ValidationError.single("file", "File must be a CSV")
    try:
        content = file.file.read().decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError.single("file", "File must be UTF-8 encoded")
    return inventory.import_csv(db, content, current_user)


@router.put("/bulk", response_model=List[schemas.InventoryItem])
def bulk_update_items(
    updates: List[schemas.BulkItemUpdate],
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_UPDATE)),
):
    """Apply up to 100 partial item updates atomically."""
    return inventory.bulk_update(db, updates, current_user)


@router.get("/{item_id}", response_model=schemas.InventoryItem)
def get_item(
    item_id: str,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """
    Get a single inventory item by ID.

    Raises:
        NotFoundError: 404 if item not found
    """
    db_item = inventory.get_item_or_404(db, item_id)
    set_etag(response, db_item)
    return db_item


@router.put("/{item_id}", response_model=schemas.InventoryItem)
def update_item(
    item_id: str,
    item: schemas.InventoryItemUpdate,
    response: Response,
    if_match: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_UPDATE)),
):
    """
    Update an existing inventory item.

    Raises:
        NotFoundError: 404 if item not found
        PreconditionFailedError: 412 if If-Match does not match the current ETag
    """
    db_item = inventory.get_item_or_404(db, item_id)
    check_if_match(if_match, db_item)
    db_item = inventory.update_item(db, db_item, item, current_user)
    set_etag(response, db_item)
    return db_item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(
    item_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_DELETE)),
):
    """
    Soft delete an inventory item.

    Raises:
        NotFoundError: 404 if item not found
        BusinessRuleError: 400 if open transactions reference the item
    """
    db_item = inventory.get_item_or_404(db, item_id)
    inventory.delete_item(db, db_item, current_user)


@router.post("/{item_id}/stock", response_model=schemas.InventoryItem)
def update_item_stock(
    item_id: str,
    stock: schemas.StockUpdate,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_UPDATE)),
):
    """
    Change an item's on-hand stock directly.

    Raises:
        BusinessRuleError: 400 if the result would be negative or above the maximum
    """
    db_item = inventory.update_stock(db, item_id, stock.quantity_change, stock.reason, current_user)
    background_tasks.add_task(webhooks.notify_stock_changed, webhooks.stock_payload(db_item))
    set_etag(response, db_item)
    return db_item


@router.post("/{item_id}/scan", response_model=schemas.InventoryItem)
def scan_item(
    item_id: str,
    scan: schemas.ScanRequest,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """
    Record a barcode scan of the item.

    Raises:
        BusinessRuleError: 400 if the scanned barcode belongs to another item
    """
    return inventory.record_scan(db, item_id, scan, current_user)


@router.get("/{item_id}/reorder-point", response_model=schemas.ReorderPoint)
def get_reorder_point(
    item_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_VIEW)),
):
    return inventory.reorder_point(db, item_id)
