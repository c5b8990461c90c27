"""
Supplier management for the Inventory service.
"""
import logging
from datetime import datetime
from sqlalchemy.orm import Session

from . import crud, models, schemas
from .auth import CurrentUser
from .database import unit_of_work
from .exceptions import BusinessRuleError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def get_supplier_or_404(db: Session, supplier_id: str) -> models.Supplier:
    supplier = crud.get_supplier(db, supplier_id)
    if supplier is None:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


def supplier_response(db: Session, supplier: models.Supplier) -> schemas.Supplier:
    """Serialize a supplier with the count and value of its active items."""
    item_count, total_value = crud.supplier_item_stats(db, supplier.id)
    return schemas.Supplier.model_validate(supplier).model_copy(update={
        "total_items": item_count,
        "total_value": total_value,
    })


def create_supplier(db: Session, data: schemas.SupplierCreate, user: CurrentUser) -> models.Supplier:
    """
    Create a supplier.

    Raises:
        ConflictError: If the supplier code is taken
    """
    if crud.get_supplier_by_code(db, data.code):
        raise ConflictError(f"Supplier code '{data.code}' already exists")

    with unit_of_work(db):
        supplier = models.Supplier(**data.model_dump(), created_by=user.display_name)
        db.add(supplier)

    db.refresh(supplier)
    logger.info(f"Supplier {supplier.code} created by {user.display_name}")
    return supplier


def update_supplier(
    db: Session, supplier: models.Supplier, data: schemas.SupplierUpdate, user: CurrentUser
) -> models.Supplier:
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("is_active") is False:
        _check_can_deactivate(db, supplier)

    with unit_of_work(db):
        for key, value in update_data.items():
            setattr(supplier, key, value)
        supplier.updated_by = user.display_name
        supplier.updated_at = datetime.utcnow()

    db.refresh(supplier)
    logger.info(f"Supplier {supplier.code} updated by {user.display_name}")
    return supplier


def _check_can_deactivate(db: Session, supplier: models.Supplier) -> None:
    item_count, _ = crud.supplier_item_stats(db, supplier.id)
    if item_count > 0:
        raise BusinessRuleError("Cannot delete supplier with active inventory items", rule_name="SupplierInUse")


def delete_supplier(db: Session, supplier: models.Supplier, user: CurrentUser) -> None:
    """
    Soft delete a supplier.

    Raises:
        BusinessRuleError: If active items still reference the supplier
    """
    _check_can_deactivate(db, supplier)
    with unit_of_work(db):
        supplier.is_active = False
        supplier.updated_by = user.display_name
        supplier.updated_at = datetime.utcnow()
    logger.info(f"Supplier {supplier.code} deactivated by {user.display_name}")
