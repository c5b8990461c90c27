"""
Location management for the Inventory service.

Creates and maintains the location tree (warehouses, production floors,
customer sites...) and moves items between locations.
"""
import logging
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from . import cache, crud, models, schemas, transactions, validators
from .auth import CurrentUser
from .database import unit_of_work
from .exceptions import BusinessRuleError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def get_location_or_404(db: Session, location_id: str) -> models.Location:
    location = crud.get_location(db, location_id)
    if location is None:
        raise NotFoundError("Location", location_id)
    return location


def location_response(db: Session, location: models.Location) -> schemas.Location:
    """Serialize a location together with its item count, stock value and utilization."""
    item_count, total_value = crud.location_item_stats(db, location.id)
    return schemas.Location.model_validate(location).model_copy(update={
        "total_items": item_count,
        "total_value": total_value,
        "capacity_utilization": utilization(item_count, location.max_capacity),
    })


def utilization(item_count: int, max_capacity: Optional[int]) -> float:
    if not max_capacity:
        return 0.0
    return round(item_count / max_capacity * 100, 2)


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------

def ancestors(db: Session, location_id: str) -> List[models.Location]:
    """
    Walk from a location up to its root.

    Args:
        db: Database session
        location_id: Starting location

    Returns:
        Ancestors ordered from the immediate parent to the root
    """
    location = get_location_or_404(db, location_id)
    result: List[models.Location] = []
    seen = {location.id}
    current = location.parent
    while current is not None and current.id not in seen:
        result.append(current)
        seen.add(current.id)
        current = current.parent
    return result


def descendants(db: Session, location_id: str) -> List[models.Location]:
    """
    Breadth-first list of every location below the given one.

    Args:
        db: Database session
        location_id: Starting location

    Returns:
        Descendants in breadth-first order (the starting location excluded)
    """
    get_location_or_404(db, location_id)
    result: List[models.Location] = []
    seen = {location_id}
    queue = deque([location_id])
    while queue:
        for child in crud.get_child_locations(db, queue.popleft(), active_only=False):
            if child.id in seen:
                continue
            seen.add(child.id)
            result.append(child)
            queue.append(child.id)
    return result


def _subtree_height(db: Session, location_id: Optional[str]) -> int:
    """Levels in the subtree rooted at the location (1 for a leaf or a new location)."""
    if location_id is None:
        return 1
    height = 0
    level = [location_id]
    while level:
        height += 1
        level = [child.id for parent_id in level for child in crud.get_child_locations(db, parent_id)]
    return height


def validate_hierarchy(
    db: Session,
    location_id: Optional[str],
    parent_id: str,
    child_type: str,
) -> None:
    """
    Check that a location may be placed under a parent.

    Args:
        db: Database session
        location_id: The location being placed (None when creating)
        parent_id: Prospective parent
        child_type: Location type of the location being placed

    Raises:
        BusinessRuleError: If the move would break the hierarchy rules
    """
    if location_id is not None and location_id == parent_id:
        raise BusinessRuleError("A location cannot be its own parent", rule_name="LocationHierarchy")

    parent = crud.get_location(db, parent_id)
    if parent is None or not parent.is_active:
        raise BusinessRuleError("Parent location does not exist", rule_name="LocationHierarchy")

    # The parent's own chain must not contain the location being moved
    chain = [parent]
    seen = {parent.id}
    current = parent.parent
    while current is not None:
        if current.id in seen or current.id == location_id:
            raise BusinessRuleError(
                "Circular reference detected in location hierarchy", rule_name="LocationHierarchy"
            )
        seen.add(current.id)
        chain.append(current)
        current = current.parent

    is_valid, error = validators.validate_hierarchy_depth(len(chain) + _subtree_height(db, location_id) - 1)
    if not is_valid:
        raise BusinessRuleError(error, rule_name="LocationHierarchy")

    is_valid, error = validators.validate_location_type_compatibility(parent.location_type, child_type)
    if not is_valid:
        raise BusinessRuleError(error, rule_name="LocationTypeCompatibility")


def get_hierarchy(db: Session) -> List[Dict]:
    """
    Build the active location tree.

    Returns:
        List of root nodes (dicts matching schemas.LocationNode), children sorted by code
    """
    cached = cache.get_cache(cache.HIERARCHY_KEY)
    if cached is not None:
        return cached

    locations = db.query(models.Location).filter(
        models.Location.is_active.is_(True)
    ).order_by(models.Location.code).all()
    item_counts = crud.item_counts_by_location(db)

    children_of: Dict[Optional[str], List[models.Location]] = {}
    active_ids = {location.id for location in locations}
    for location in locations:
        parent_id = location.parent_location_id if location.parent_location_id in active_ids else None
        children_of.setdefault(parent_id, []).append(location)

    def build(location: models.Location, level: int, parent_path: str) -> Dict:
        label = f"{location.code} ({location.name})"
        path = f"{parent_path} > {label}" if parent_path else label
        children = children_of.get(location.id, [])
        return {
            "id": location.id,
            "code": location.code,
            "name": location.name,
            "location_type": location.location_type,
            "level": level,
            "path": path,
            "child_count": len(children),
            "item_count": item_counts.get(location.id, 0),
            "children": [build(child, level + 1, path) for child in children],
        }

    tree = [build(root, 0, "") for root in children_of.get(None, [])]
    cache.set_cache(cache.HIERARCHY_KEY, tree, cache.HIERARCHY_CACHE_TTL)
    return tree


def get_by_type(db: Session, location_type: str) -> List[models.Location]:
    return db.query(models.Location).filter(
        models.Location.location_type == location_type,
        models.Location.is_active.is_(True),
    ).order_by(models.Location.code).all()


def capacity_utilization(db: Session) -> List[schemas.CapacityUtilization]:
    """Utilization for every active location that declares a capacity."""
    item_counts = crud.item_counts_by_location(db)
    locations = db.query(models.Location).filter(
        models.Location.is_active.is_(True),
        models.Location.max_capacity.isnot(None),
    ).order_by(models.Location.code).all()
    return [
        schemas.CapacityUtilization(
            location_id=location.id,
            code=location.code,
            name=location.name,
            max_capacity=location.max_capacity,
            item_count=item_counts.get(location.id, 0),
            utilization=utilization(item_counts.get(location.id, 0), location.max_capacity),
        )
        for location in locations
    ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_location(db: Session, data: schemas.LocationCreate, user: CurrentUser) -> models.Location:
    """
    Create a location after checking code uniqueness and hierarchy rules.

    Raises:
        ConflictError: If the code is taken
        BusinessRuleError: If the parent placement is invalid
    """
    if crud.get_location_by_code(db, data.code):
        raise ConflictError(f"Location code '{data.code}' already exists")
    if data.parent_location_id:
        validate_hierarchy(db, None, data.parent_location_id, data.location_type)

    with unit_of_work(db):
        location = models.Location(**data.model_dump(), created_by=user.display_name)
        db.add(location)

    db.refresh(location)
    cache.invalidate_inventory()
    logger.info(f"Location {location.code} created by {user.display_name}")
    return location


def update_location(
    db: Session,
    location: models.Location,
    data: schemas.LocationUpdate,
    user: CurrentUser,
) -> models.Location:
    """
    Apply a partial update, re-validating the hierarchy when the parent or type changes.

    Raises:
        BusinessRuleError: If the new placement or type breaks the hierarchy rules
    """
    update_data = data.model_dump(exclude_unset=True)
    new_type = update_data.get("location_type", location.location_type)
    new_parent = update_data.get("parent_location_id", location.parent_location_id)

    if new_parent and (new_parent != location.parent_location_id or new_type != location.location_type):
        validate_hierarchy(db, location.id, new_parent, new_type)

    if new_type != location.location_type:
        for child in crud.get_child_locations(db, location.id):
            is_valid, error = validators.validate_location_type_compatibility(new_type, child.location_type)
            if not is_valid:
                raise BusinessRuleError(error, rule_name="LocationTypeCompatibility")

    if update_data.get("is_active") is False:
        _check_can_deactivate(db, location)

    with unit_of_work(db):
        for key, value in update_data.items():
            setattr(location, key, value)
        location.updated_by = user.display_name
        location.updated_at = datetime.utcnow()

    db.refresh(location)
    cache.invalidate_inventory()
    logger.info(f"Location {location.code} updated by {user.display_name}")
    return location


def _check_can_deactivate(db: Session, location: models.Location) -> None:
    item_count, _ = crud.location_item_stats(db, location.id)
    if item_count > 0:
        raise BusinessRuleError("Cannot delete location that contains inventory items", rule_name="LocationInUse")
    if crud.get_child_locations(db, location.id):
        raise BusinessRuleError("Cannot delete location that has child locations", rule_name="LocationInUse")
    if crud.location_has_transactions(db, location.id):
        raise BusinessRuleError("Cannot delete location with transaction history", rule_name="LocationInUse")


def delete_location(db: Session, location: models.Location, user: CurrentUser) -> None:
    """
    Soft delete a location.

    Raises:
        BusinessRuleError: If the location still holds items, children or history
    """
    _check_can_deactivate(db, location)
    with unit_of_work(db):
        location.is_active = False
        location.updated_by = user.display_name
        location.updated_at = datetime.utcnow()
    cache.invalidate_inventory()
    logger.info(f"Location {location.code} deactivated by {user.display_name}")


def transfer_items(
    db: Session,
    request: schemas.LocationTransferRequest,
    user: CurrentUser,
) -> schemas.LocationTransferResult:
    """
    Move several items from one location to another in a single unit of work.

    Each item moves with its stock and a completed Transfer transaction is
    recorded for it.

    Raises:
        NotFoundError: If a location or item does not exist
        BusinessRuleError: If an item is elsewhere or short of stock
    """
    if request.from_location_id == request.to_location_id:
        raise BusinessRuleError("Source and destination locations cannot be the same")
    source = get_location_or_404(db, request.from_location_id)
    destination = get_location_or_404(db, request.to_location_id)
    if not destination.is_active:
        raise BusinessRuleError(f"Location {destination.code} is not active")

    numbers: List[str] = []
    with unit_of_work(db):
        for line in request.items:
            item = crud.get_item(db, line.item_id, for_update=True)
            if item is None:
                raise NotFoundError("InventoryItem", line.item_id)
            if item.location_id != source.id:
                raise BusinessRuleError(f"Item {item.part_number} is not at the source location")
            if item.available_stock < line.quantity:
                raise BusinessRuleError(
                    f"Insufficient stock for item {item.part_number}. "
                    f"Available: {item.available_stock}, Requested: {line.quantity}"
                )
            item.location_id = destination.id
            item.last_movement = datetime.utcnow()
            item.updated_by = user.display_name
            record = transactions.record_completed_transfer(
                db, item, source, destination, line.quantity, request.reason, user
            )
            numbers.append(record.transaction_number)

    cache.invalidate_inventory()
    logger.info(
        f"Transferred {len(numbers)} items from {source.code} to {destination.code} by {user.display_name}"
    )
    return schemas.LocationTransferResult(
        from_location_id=source.id,
        to_location_id=destination.id,
        transferred_items=len(numbers),
        transaction_numbers=numbers,
    )
