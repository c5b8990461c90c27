"""
Inventory item management for the Inventory service.

Item lifecycle (create, update, soft delete), direct stock changes, barcode
scans, low stock alerts, valuation, reorder points and CSV import/export.
"""
import csv
import io
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import barcodes, cache, crud, models, schemas, validators
from .auth import CurrentUser
from .database import unit_of_work
from .exceptions import BusinessRuleError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

REORDER_SAMPLE_DAYS = 90
MAX_BULK_UPDATES = 100
CSV_COLUMNS = [
    "part_number", "description", "barcode", "category", "location_code",
    "current_stock", "minimum_stock", "maximum_stock", "standard_cost",
]


def get_item_or_404(db: Session, item_id: str) -> models.InventoryItem:
    item = crud.get_item(db, item_id)
    if item is None:
        raise NotFoundError("InventoryItem", item_id)
    return item


def check_barcode(db: Session, barcode: str, exclude_item_id: Optional[str] = None) -> None:
    """
    Validate a barcode's format and uniqueness.

    Raises:
        ValidationError: If the barcode matches no supported format
        ConflictError: If another item already uses it
    """
    is_valid, _, error = barcodes.validate_barcode(barcode)
    if not is_valid:
        raise ValidationError.single("barcode", error)

    existing = crud.get_item_by_barcode(db, barcode, active_only=False)
    if existing is not None and existing.id != exclude_item_id:
        raise ConflictError(f"Barcode '{barcode}' is already assigned to item '{existing.part_number}'")


def _check_references(db: Session, location_id: Optional[str], supplier_id: Optional[str]) -> None:
    if location_id is not None:
        location = crud.get_location(db, location_id)
        if location is None or not location.is_active:
            raise ValidationError.single("location_id", "Location does not exist")
    if supplier_id is not None and crud.get_supplier(db, supplier_id) is None:
        raise ValidationError.single("supplier_id", "Supplier does not exist")


def _check_update(db: Session, item: models.InventoryItem, update_data: Dict) -> None:
    """
    Validate a partial update against the item's current state.

    Raises:
        ConflictError: If the new barcode belongs to another item
        ValidationError: If references or stock limits are invalid
        BusinessRuleError: If the item is deactivated while still in use
    """
    if update_data.get("barcode") and update_data["barcode"] != item.barcode:
        check_barcode(db, update_data["barcode"], exclude_item_id=item.id)
    _check_references(db, update_data.get("location_id"), update_data.get("supplier_id"))

    violation = validators.validate_stock_limits(
        update_data.get("current_stock", item.current_stock),
        update_data.get("reserved_stock", item.reserved_stock),
        update_data.get("minimum_stock", item.minimum_stock),
        update_data.get("maximum_stock", item.maximum_stock),
    )
    if violation:
        raise ValidationError.single(*violation)

    if update_data.get("is_active") is False and item.is_active:
        _check_not_in_use(db, item)


def _check_not_in_use(db: Session, item: models.InventoryItem) -> None:
    if crud.item_has_open_transactions(db, item.id):
        raise BusinessRuleError("Cannot delete item with pending transactions", rule_name="ItemInUse")


def create_item(db: Session, data: schemas.InventoryItemCreate, user: CurrentUser) -> models.InventoryItem:
    """
    Create an inventory item.

    Raises:
        ConflictError: If the part number or barcode is already taken
        ValidationError: If the location or supplier does not exist
    """
    if crud.get_item_by_part_number(db, data.part_number):
        raise ConflictError(f"Part number '{data.part_number}' already exists")
    if data.barcode:
        check_barcode(db, data.barcode)
    _check_references(db, data.location_id, data.supplier_id)

    with unit_of_work(db):
        item = models.InventoryItem(**data.model_dump(), created_by=user.display_name)
        if item.current_stock:
            item.last_movement = datetime.utcnow()
        db.add(item)

    db.refresh(item)
    cache.invalidate_inventory()
    logger.info(f"Item {item.part_number} created by {user.display_name}")
    return item


def update_item(
    db: Session, item: models.InventoryItem, data: schemas.InventoryItemUpdate, user: CurrentUser
) -> models.InventoryItem:
    """
    Apply a partial update to an item.

    Raises:
        ConflictError: If the new barcode belongs to another item
        ValidationError: If references or stock limits are invalid
        BusinessRuleError: If the item is deactivated while open transactions reference it
    """
    update_data = data.model_dump(exclude_unset=True)
    _check_update(db, item, update_data)

    with unit_of_work(db):
        for key, value in update_data.items():
            setattr(item, key, value)
        item.updated_by = user.display_name
        item.updated_at = datetime.utcnow()

    db.refresh(item)
    cache.invalidate_inventory()
    logger.info(f"Item {item.part_number} updated by {user.display_name}")
    return item


def delete_item(db: Session, item: models.InventoryItem, user: CurrentUser) -> None:
    """
    Soft delete an item.

    Raises:
        BusinessRuleError: If open transactions still reference the item
    """
    _check_not_in_use(db, item)

    with unit_of_work(db):
        item.is_active = False
        item.updated_by = user.display_name
        item.updated_at = datetime.utcnow()
    cache.invalidate_inventory()
    logger.info(f"Item {item.part_number} deactivated by {user.display_name}")


def update_stock(
    db: Session, item_id: str, quantity_change: int, reason: str, user: CurrentUser
) -> models.InventoryItem:
    """
    Change an item's on-hand quantity directly.

    Args:
        db: Database session
        item_id: Item to change
        quantity_change: Signed change
        reason: Why the stock changed (logged)
        user: Acting user

    Raises:
        NotFoundError: If the item does not exist
        BusinessRuleError: If the result is negative, below the reserved stock or above the maximum
    """
    with unit_of_work(db):
        item = crud.get_item(db, item_id, for_update=True)
        if item is None:
            raise NotFoundError("InventoryItem", item_id)
        new_level = item.current_stock + quantity_change
        is_valid, error = validators.validate_stock_level(
            new_level, item.maximum_stock, item.reserved_stock
        )
        if not is_valid:
            logger.warning(f"Stock change on {item.part_number} rejected: {error}")
            raise BusinessRuleError(error, rule_name="StockLevel")
        item.current_stock = new_level
        item.last_movement = datetime.utcnow()
        item.updated_by = user.display_name

    db.refresh(item)
    cache.invalidate_inventory()
    logger.info(f"Stock of {item.part_number} changed by {quantity_change:+d} to {item.current_stock}: {reason}")
    return item


def record_scan(db: Session, item_id: str, scan: schemas.ScanRequest, user: CurrentUser) -> models.InventoryItem:
    """
    Record that an item was scanned.

    Raises:
        ValidationError: If the scan quality is too poor
        BusinessRuleError: If the scanned barcode belongs to a different item
    """
    item = get_item_or_404(db, item_id)
    if scan.barcode is not None:
        is_valid, error = barcodes.validate_scan_quality(scan.barcode, scan.confidence)
        if not is_valid:
            raise ValidationError.single("barcode", error)
        if scan.barcode != item.barcode:
            raise BusinessRuleError("Scanned barcode does not match item", rule_name="BarcodeMatch")

    with unit_of_work(db):
        item.last_movement = datetime.utcnow()
    db.refresh(item)
    logger.info(f"Item {item.part_number} scanned by {user.display_name}")
    return item


def low_stock_alerts(db: Session, threshold: int) -> List[Dict]:
    """
    Active items at or below a stock threshold, most urgent first.

    Args:
        db: Database session
        threshold: Stock level at or below which an item is reported

    Returns:
        List of dicts matching schemas.LowStockAlert
    """
    key = cache.low_stock_key(threshold)
    cached = cache.get_cache(key)
    if cached is not None:
        return cached

    alerts = []
    for item in crud.get_items_at_or_below(db, threshold):
        deficit, urgency = validators.low_stock_urgency(item.current_stock, item.minimum_stock)
        alerts.append({
            "item_id": item.id,
            "part_number": item.part_number,
            "description": item.description,
            "current_stock": item.current_stock,
            "minimum_stock": item.minimum_stock,
            "deficit": deficit,
            "urgency": urgency,
            "location_code": item.location.code if item.location else None,
        })

    cache.set_cache(key, alerts, cache.LOW_STOCK_CACHE_TTL)
    return alerts


def valuation(db: Session) -> schemas.InventoryValuation:
    """Total stock value, item count and average unit cost over active items."""
    total_value, total_items, average_cost = db.query(
        func.coalesce(func.sum(models.InventoryItem.current_stock * models.InventoryItem.standard_cost), 0),
        func.count(models.InventoryItem.id),
        func.coalesce(func.avg(models.InventoryItem.standard_cost), 0),
    ).filter(models.InventoryItem.is_active.is_(True)).one()
    return schemas.InventoryValuation(
        total_value=Decimal(str(total_value)),
        total_items=total_items,
        average_cost=Decimal(str(average_cost)).quantize(Decimal("0.01")),
    )


def reorder_point(db: Session, item_id: str) -> schemas.ReorderPoint:
    """Reorder point from the last 90 days of completed issues and the supplier's lead time."""
    item = get_item_or_404(db, item_id)
    since = datetime.utcnow() - timedelta(days=REORDER_SAMPLE_DAYS)
    issued = crud.total_issued_since(db, item.id, since)
    lead_time = item.supplier.lead_time_days if item.supplier and item.supplier.lead_time_days is not None else None
    average_daily_usage, point = validators.calculate_reorder_point(issued, REORDER_SAMPLE_DAYS, lead_time)
    return schemas.ReorderPoint(
        item_id=item.id,
        part_number=item.part_number,
        average_daily_usage=round(average_daily_usage, 4),
        lead_time_days=lead_time if lead_time is not None else validators.DEFAULT_LEAD_TIME_DAYS,
        reorder_point=point,
    )


def bulk_update(db: Session, updates: List[schemas.BulkItemUpdate], user: CurrentUser) -> List[models.InventoryItem]:
    """
    Apply several partial updates in one unit of work; any failure rolls back all of them.

    Raises:
        ValidationError: If the batch is too large or repeats an item
        NotFoundError: If an item does not exist
        ConflictError: If a barcode belongs to another item
    """
    if len(updates) > MAX_BULK_UPDATES:
        raise ValidationError.single("items", f"Cannot update more than {MAX_BULK_UPDATES} items at once")
    ids = [update.id for update in updates]
    if len(ids) != len(set(ids)):
        raise ValidationError.single("items", "Batch contains duplicate items")

    items = []
    with unit_of_work(db):
        for update in updates:
            item = crud.get_item(db, update.id)
            if item is None:
                raise NotFoundError("InventoryItem", update.id)
            update_data = update.model_dump(exclude_unset=True, exclude={"id"})
            _check_update(db, item, update_data)
            for key, value in update_data.items():
                setattr(item, key, value)
            item.updated_by = user.display_name
            item.updated_at = datetime.utcnow()
            items.append(item)

    cache.invalidate_inventory()
    logger.info(f"Bulk updated {len(items)} items by {user.display_name}")
    return items


def export_csv(db: Session) -> str:
    """Render every active item as CSV (header row included)."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    items = crud.query_items(db, sort_by="partnumber").all()
    for item in items:
        writer.writerow([
            item.part_number,
            item.description,
            item.barcode or "",
            item.category or "",
            item.location.code if item.location else "",
            item.current_stock,
            item.minimum_stock,
            item.maximum_stock,
            f"{Decimal(item.standard_cost or 0):.2f}",
        ])
    return output.getvalue()


def _parse_int(row: Dict[str, str], column: str, default: int = 0) -> int:
    raw = (row.get(column) or "").strip()
    if not raw:
        return default
    value = int(raw)
    if value < 0:
        raise ValueError(f"{column} cannot be negative")
    return value


def import_csv(db: Session, content: str, user: CurrentUser) -> schemas.ImportSummary:
    """
    Upsert items from CSV, matched by part number.

    Rows that fail validation are skipped and reported; valid rows are
    committed together.
    """
    reader = csv.DictReader(io.StringIO(content))

    created_count = 0
    updated_count = 0
    skipped_count = 0
    errors: List[str] = []

    with unit_of_work(db):
        for row_num, row in enumerate(reader, start=2):  # start=2 because row 1 is header
            part_number = (row.get("part_number") or "").strip()
            location_code = (row.get("location_code") or "").strip()
            if not part_number or not schemas.PART_NUMBER_PATTERN.match(part_number):
                errors.append(f"Row {row_num}: Missing or invalid part number")
                skipped_count += 1
                continue

            try:
                current_stock = _parse_int(row, "current_stock")
                minimum_stock = _parse_int(row, "minimum_stock")
                maximum_stock = _parse_int(row, "maximum_stock")
                cost = Decimal((row.get("standard_cost") or "0").strip() or "0")
                if cost < 0:
                    raise ValueError("standard_cost cannot be negative")
            except (ValueError, InvalidOperation) as e:
                errors.append(f"Row {row_num}: {e}")
                skipped_count += 1
                continue

            if maximum_stock and minimum_stock > maximum_stock:
                errors.append(f"Row {row_num}: Minimum stock cannot be greater than maximum stock")
                skipped_count += 1
                continue

            location = crud.get_location_by_code(db, location_code) if location_code else None
            existing = crud.get_item_by_part_number(db, part_number)

            barcode = (row.get("barcode") or "").strip() or None
            if barcode and (existing is None or barcode != existing.barcode):
                try:
                    check_barcode(db, barcode, exclude_item_id=existing.id if existing else None)
                except (ValidationError, ConflictError) as e:
                    errors.append(f"Row {row_num}: {e.message}")
                    skipped_count += 1
                    continue

            if existing and existing.reserved_stock > current_stock:
                errors.append(f"Row {row_num}: Reserved stock cannot exceed current stock")
                skipped_count += 1
                continue

            if existing:
                existing.current_stock = current_stock
                existing.minimum_stock = minimum_stock
                existing.maximum_stock = maximum_stock
                existing.standard_cost = cost
                if barcode:
                    existing.barcode = barcode
                if row.get("description"):
                    existing.description = row["description"].strip()[:200]
                if location is not None:
                    existing.location_id = location.id
                existing.updated_by = user.display_name
                existing.updated_at = datetime.utcnow()
                updated_count += 1
            else:
                if location is None:
                    errors.append(f"Row {row_num}: Unknown location '{location_code}'")
                    skipped_count += 1
                    continue
                db.add(models.InventoryItem(
                    part_number=part_number,
                    description=(row.get("description") or part_number).strip()[:200],
                    barcode=barcode,
                    category=(row.get("category") or "").strip() or None,
                    current_stock=current_stock,
                    minimum_stock=minimum_stock,
                    maximum_stock=maximum_stock,
                    standard_cost=cost,
                    location_id=location.id,
                    created_by=user.display_name,
                ))
                created_count += 1
            db.flush()

    cache.invalidate_inventory()
    logger.info(
        f"CSV import by {user.display_name}: {created_count} created, {updated_count} updated, {skipped_count} skipped"
    )
    return schemas.ImportSummary(
        created_count=created_count,
        updated_count=updated_count,
        skipped_count=skipped_count,
        errors=errors[:10],  # Return first 10 errors to avoid huge responses
    )
