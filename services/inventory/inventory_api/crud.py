"""
Data access for the Inventory service.

Lookup and filtered/paged query functions for every entity. Writes live in
the domain modules (inventory, locations, transactions, suppliers) so that
multi-row changes can share one unit of work.
"""
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Query, Session

from . import models
from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

ITEM_SORT_FIELDS = {
    "partnumber": models.InventoryItem.part_number,
    "description": models.InventoryItem.description,
    "currentstock": models.InventoryItem.current_stock,
    "standardcost": models.InventoryItem.standard_cost,
    "lastmovement": models.InventoryItem.last_movement,
    "created_at": models.InventoryItem.created_at,
}

LOCATION_SORT_FIELDS = {
    "code": models.Location.code,
    "name": models.Location.name,
    "type": models.Location.location_type,
    "created_at": models.Location.created_at,
}

SUPPLIER_SORT_FIELDS = {
    "code": models.Supplier.code,
    "companyname": models.Supplier.company_name,
    "rating": models.Supplier.rating,
    "created_at": models.Supplier.created_at,
}

TRANSACTION_SORT_FIELDS = {
    "number": models.InventoryTransaction.transaction_number,
    "date": models.InventoryTransaction.initiated_at,
    "type": models.InventoryTransaction.transaction_type,
    "quantity": models.InventoryTransaction.quantity,
}


def normalize_paging(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    """Clamp page to >= 1 and page_size to 1..MAX_PAGE_SIZE."""
    page = page if page and page > 0 else 1
    if not page_size or page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


def paginate(query: Query, page: Optional[int], page_size: Optional[int]) -> Dict[str, Any]:
    """
    Run a query for one page and compute the paging metadata.

    Args:
        query: Filtered and ordered SQLAlchemy query
        page: Requested page (1-based)
        page_size: Requested page size

    Returns:
        Dict matching schemas.PagedResponse (items are ORM objects)
    """
    page, page_size = normalize_paging(page, page_size)
    total_count = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    total_pages = math.ceil(total_count / page_size) if total_count else 0
    first_item_index = (page - 1) * page_size + 1 if items else 0
    return {
        "items": items,
        "page": page,
        "page_size": page_size,
        "total_count": total_count,
        "total_pages": total_pages,
        "has_previous": page > 1,
        "has_next": page < total_pages,
        "first_item_index": first_item_index,
        "last_item_index": first_item_index + len(items) - 1 if items else 0,
    }


def apply_sort(query: Query, fields: Dict[str, Any], sort_by: Optional[str], sort_direction: str, default: str) -> Query:
    column = fields.get((sort_by or default).lower(), fields[default])
    return query.order_by(column.desc() if sort_direction == "desc" else column.asc())


def _like(term: str) -> str:
    return f"%{term.strip()}%"


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

def get_location(db: Session, location_id: str) -> Optional[models.Location]:
    """
    Retrieve a single location by ID.

    Args:
        db: Database session
        location_id: ID of the location to retrieve

    Returns:
        Location object or None if not found
    """
    return db.query(models.Location).filter(models.Location.id == location_id).first()


def get_location_by_code(db: Session, code: str) -> Optional[models.Location]:
    return db.query(models.Location).filter(models.Location.code == code).first()


def query_locations(
    db: Session,
    is_active: Optional[bool] = None,
    location_type: Optional[str] = None,
    parent_location_id: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    sort_by: Optional[str] = None,
    sort_direction: str = "asc",
) -> Query:
    """
    Build a filtered, sorted location query.

    Inactive locations are hidden unless include_inactive is set or is_active
    is given explicitly.
    """
    query = db.query(models.Location)
    if is_active is not None:
        query = query.filter(models.Location.is_active == is_active)
    elif not include_inactive:
        query = query.filter(models.Location.is_active.is_(True))
    if location_type:
        query = query.filter(models.Location.location_type == location_type)
    if parent_location_id:
        query = query.filter(models.Location.parent_location_id == parent_location_id)
    if city:
        query = query.filter(models.Location.city == city)
    if state:
        query = query.filter(models.Location.state == state)
    if search:
        pattern = _like(search)
        query = query.filter(or_(
            models.Location.code.ilike(pattern),
            models.Location.name.ilike(pattern),
            models.Location.description.ilike(pattern),
        ))
    return apply_sort(query, LOCATION_SORT_FIELDS, sort_by, sort_direction, "created_at")


def get_child_locations(db: Session, parent_id: str, active_only: bool = True) -> List[models.Location]:
    query = db.query(models.Location).filter(models.Location.parent_location_id == parent_id)
    if active_only:
        query = query.filter(models.Location.is_active.is_(True))
    return query.order_by(models.Location.code).all()


def location_item_stats(db: Session, location_id: str) -> Tuple[int, Decimal]:
    """
    Count and value the active items stored at a location.

    Returns:
        Tuple of (item_count, total_value)
    """
    count, value = db.query(
        func.count(models.InventoryItem.id),
        func.coalesce(func.sum(models.InventoryItem.current_stock * models.InventoryItem.standard_cost), 0),
    ).filter(
        models.InventoryItem.location_id == location_id,
        models.InventoryItem.is_active.is_(True),
    ).one()
    return count, Decimal(str(value))


def item_counts_by_location(db: Session) -> Dict[str, int]:
    rows = db.query(models.InventoryItem.location_id, func.count(models.InventoryItem.id)).filter(
        models.InventoryItem.is_active.is_(True)
    ).group_by(models.InventoryItem.location_id).all()
    return {location_id: count for location_id, count in rows}


def location_has_transactions(db: Session, location_id: str) -> bool:
    return db.query(models.InventoryTransaction.id).filter(or_(
        models.InventoryTransaction.source_location_id == location_id,
        models.InventoryTransaction.destination_location_id == location_id,
    )).first() is not None


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

def get_supplier(db: Session, supplier_id: str) -> Optional[models.Supplier]:
    return db.query(models.Supplier).filter(models.Supplier.id == supplier_id).first()


def get_supplier_by_code(db: Session, code: str) -> Optional[models.Supplier]:
    return db.query(models.Supplier).filter(models.Supplier.code == code).first()


def query_suppliers(
    db: Session,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    sort_by: Optional[str] = None,
    sort_direction: str = "asc",
) -> Query:
    query = db.query(models.Supplier)
    if is_active is not None:
        query = query.filter(models.Supplier.is_active == is_active)
    elif not include_inactive:
        query = query.filter(models.Supplier.is_active.is_(True))
    if search:
        pattern = _like(search)
        query = query.filter(or_(
            models.Supplier.code.ilike(pattern),
            models.Supplier.company_name.ilike(pattern),
            models.Supplier.contact_person.ilike(pattern),
        ))
    return apply_sort(query, SUPPLIER_SORT_FIELDS, sort_by, sort_direction, "created_at")


def supplier_item_stats(db: Session, supplier_id: str) -> Tuple[int, Decimal]:
    count, value = db.query(
        func.count(models.InventoryItem.id),
        func.coalesce(func.sum(models.InventoryItem.current_stock * models.InventoryItem.standard_cost), 0),
    ).filter(
        models.InventoryItem.supplier_id == supplier_id,
        models.InventoryItem.is_active.is_(True),
    ).one()
    return count, Decimal(str(value))


# ---------------------------------------------------------------------------
# Inventory items
# ---------------------------------------------------------------------------

def get_item(db: Session, item_id: str, for_update: bool = False) -> Optional[models.InventoryItem]:
    """
    Retrieve a single inventory item by ID.

    Args:
        db: Database session
        item_id: ID of the inventory item to retrieve
        for_update: Lock the row until the surrounding transaction ends

    Returns:
        InventoryItem object or None if not found
    """
    query = db.query(models.InventoryItem).filter(models.InventoryItem.id == item_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_item_by_part_number(db: Session, part_number: str) -> Optional[models.InventoryItem]:
    return db.query(models.InventoryItem).filter(models.InventoryItem.part_number == part_number).first()


def get_item_by_barcode(db: Session, barcode: str, active_only: bool = True) -> Optional[models.InventoryItem]:
    """
    Retrieve an inventory item by barcode.

    Args:
        db: Database session
        barcode: Barcode to search for
        active_only: Ignore soft-deleted items

    Returns:
        InventoryItem object or None if not found
    """
    query = db.query(models.InventoryItem).filter(models.InventoryItem.barcode == barcode)
    if active_only:
        query = query.filter(models.InventoryItem.is_active.is_(True))
    return query.first()


def query_items(
    db: Session,
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
    search: Optional[str] = None,
    include_inactive: bool = False,
    sort_by: Optional[str] = None,
    sort_direction: str = "asc",
) -> Query:
    """
    Build a filtered, sorted inventory item query.

    Returns:
        SQLAlchemy query (not yet executed)
    """
    query = db.query(models.InventoryItem)
    if is_active is not None:
        query = query.filter(models.InventoryItem.is_active == is_active)
    elif not include_inactive:
        query = query.filter(models.InventoryItem.is_active.is_(True))
    if category:
        query = query.filter(models.InventoryItem.category == category)
    if sub_category:
        query = query.filter(models.InventoryItem.sub_category == sub_category)
    if location_id:
        query = query.filter(models.InventoryItem.location_id == location_id)
    if supplier_id:
        query = query.filter(models.InventoryItem.supplier_id == supplier_id)
    if min_stock is not None:
        query = query.filter(models.InventoryItem.current_stock >= min_stock)
    if max_stock is not None:
        query = query.filter(models.InventoryItem.current_stock <= max_stock)
    if min_cost is not None:
        query = query.filter(models.InventoryItem.standard_cost >= min_cost)
    if max_cost is not None:
        query = query.filter(models.InventoryItem.standard_cost <= max_cost)
    if low_stock_only:
        query = query.filter(models.InventoryItem.current_stock <= models.InventoryItem.minimum_stock)
    if search:
        pattern = _like(search)
        query = query.filter(or_(
            models.InventoryItem.part_number.ilike(pattern),
            models.InventoryItem.description.ilike(pattern),
            models.InventoryItem.barcode.ilike(pattern),
        ))
    return apply_sort(query, ITEM_SORT_FIELDS, sort_by, sort_direction, "created_at")


def get_items_at_or_below(db: Session, threshold: int) -> List[models.InventoryItem]:
    return db.query(models.InventoryItem).filter(
        models.InventoryItem.is_active.is_(True),
        models.InventoryItem.current_stock <= threshold,
    ).order_by(models.InventoryItem.current_stock, models.InventoryItem.part_number).all()


def get_items_changed_since(db: Session, since: datetime) -> List[models.InventoryItem]:
    return db.query(models.InventoryItem).filter(or_(
        models.InventoryItem.updated_at > since,
        and_(models.InventoryItem.updated_at.is_(None), models.InventoryItem.created_at > since),
    )).order_by(models.InventoryItem.part_number).all()


def item_has_open_transactions(db: Session, item_id: str) -> bool:
    return db.query(models.InventoryTransaction.id).filter(
        models.InventoryTransaction.inventory_item_id == item_id,
        models.InventoryTransaction.status.in_(models.TransactionStatus.OPEN),
    ).first() is not None


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

def get_transaction(db: Session, transaction_id: str) -> Optional[models.InventoryTransaction]:
    return db.query(models.InventoryTransaction).filter(models.InventoryTransaction.id == transaction_id).first()


def get_transaction_by_number(db: Session, number: str) -> Optional[models.InventoryTransaction]:
    return db.query(models.InventoryTransaction).filter(
        models.InventoryTransaction.transaction_number == number
    ).first()


def get_last_transaction_number(db: Session, prefix: str) -> Optional[str]:
    """Highest number issued so far with the given "{TYPE}-{yyyyMMdd}-" prefix."""
    row = db.query(models.InventoryTransaction.transaction_number).filter(
        models.InventoryTransaction.transaction_number.like(f"{prefix}%")
    ).order_by(models.InventoryTransaction.transaction_number.desc()).first()
    return row[0] if row else None


def query_transactions(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    transaction_type: Optional[str] = None,
    status: Optional[str] = None,
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
    reference_number: Optional[str] = None,
    min_quantity: Optional[int] = None,
    max_quantity: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_direction: str = "desc",
) -> Query:
    """
    Build a filtered, sorted transaction query.

    location_id matches either the source or the destination.
    """
    model = models.InventoryTransaction
    query = db.query(model)
    if start_date:
        query = query.filter(model.initiated_at >= start_date)
    if end_date:
        query = query.filter(model.initiated_at <= end_date)
    if transaction_type:
        query = query.filter(model.transaction_type == transaction_type)
    if status:
        query = query.filter(model.status == status)
    if item_id:
        query = query.filter(model.inventory_item_id == item_id)
    if location_id:
        query = query.filter(or_(
            model.source_location_id == location_id,
            model.destination_location_id == location_id,
        ))
    if initiated_by:
        query = query.filter(model.initiated_by == initiated_by)
    if reference_number:
        query = query.filter(model.reference_number == reference_number)
    if min_quantity is not None:
        query = query.filter(model.quantity >= min_quantity)
    if max_quantity is not None:
        query = query.filter(model.quantity <= max_quantity)
    if search:
        pattern = _like(search)
        query = query.filter(or_(
            model.transaction_number.ilike(pattern),
            model.notes.ilike(pattern),
            model.reference_number.ilike(pattern),
        ))
    return apply_sort(query, TRANSACTION_SORT_FIELDS, sort_by, sort_direction, "date")


def get_pending_transactions(db: Session) -> List[models.InventoryTransaction]:
    return db.query(models.InventoryTransaction).filter(
        models.InventoryTransaction.status == models.TransactionStatus.PENDING
    ).order_by(models.InventoryTransaction.initiated_at.asc()).all()


def get_unsynced_transactions(db: Session, since: Optional[datetime] = None) -> List[models.InventoryTransaction]:
    query = db.query(models.InventoryTransaction).filter(
        models.InventoryTransaction.status == models.TransactionStatus.COMPLETED,
        models.InventoryTransaction.is_quickbooks_synced.is_(False),
    )
    if since:
        query = query.filter(models.InventoryTransaction.initiated_at >= since)
    return query.order_by(models.InventoryTransaction.initiated_at.asc()).all()


def get_transactions_between(db: Session, start: datetime, end: datetime) -> List[models.InventoryTransaction]:
    return db.query(models.InventoryTransaction).filter(
        models.InventoryTransaction.initiated_at >= start,
        models.InventoryTransaction.initiated_at <= end,
    ).all()


def total_issued_since(db: Session, item_id: str, since: datetime) -> int:
    total = db.query(func.coalesce(func.sum(models.InventoryTransaction.quantity), 0)).filter(
        models.InventoryTransaction.inventory_item_id == item_id,
        models.InventoryTransaction.transaction_type == models.TransactionType.ISSUE,
        models.InventoryTransaction.status == models.TransactionStatus.COMPLETED,
        models.InventoryTransaction.initiated_at >= since,
    ).scalar()
    return int(total or 0)


def get_transaction_events(db: Session, transaction_id: str) -> List[models.TransactionEvent]:
    return db.query(models.TransactionEvent).filter(
        models.TransactionEvent.transaction_id == transaction_id
    ).order_by(models.TransactionEvent.created_at.asc(), models.TransactionEvent.id.asc()).all()
