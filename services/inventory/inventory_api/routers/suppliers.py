"""
Supplier endpoints.

Mounted at /api/v1/suppliers.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Response, status
from sqlalchemy.orm import Session

from .. import auth, crud, schemas, suppliers
from ..concurrency import check_if_match, set_etag
from ..database import get_db

router = APIRouter(prefix="/api/v1/suppliers", tags=["suppliers"])

SUPPLIERS_CREATE = auth.permission_name("suppliers", "create")
SUPPLIERS_READ = auth.permission_name("suppliers", "read")
SUPPLIERS_UPDATE = auth.permission_name("suppliers", "update")
SUPPLIERS_DELETE = auth.permission_name("suppliers", "delete")


@router.get("", response_model=schemas.PagedResponse[schemas.Supplier])
def list_suppliers(
    page: int = 1,
    page_size: Optional[int] = None,
    is_active: Optional[bool] = None,
    include_inactive: bool = False,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_direction: schemas.SortDirection = "asc",
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(SUPPLIERS_READ)),
):
    """
    List suppliers with search and paging.

    Args:
        search: Matches code, company name or contact person
        sort_by: code, companyname, rating or created_at
        db: Database session (injected)
        current_user: Current authenticated user (injected)

    Returns:
        A page of suppliers
    """
    query = crud.query_suppliers(
        db,
        is_active=is_active,
        search=search,
        include_inactive=include_inactive,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    result = crud.paginate(query, page, page_size)
    result["items"] = [suppliers.supplier_response(db, supplier) for supplier in result["items"]]
    return result


@router.post("", response_model=schemas.Supplier, status_code=status.HTTP_201_CREATED)
def create_supplier(
    supplier: schemas.SupplierCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(SUPPLIERS_CREATE)),
):
    """
    Create a new supplier.

    Raises:
        ConflictError: 409 if the supplier code already exists
    """
    db_supplier = suppliers.create_supplier(db, supplier, current_user)
    set_etag(response, db_supplier)
    return suppliers.supplier_response(db, db_supplier)


@router.get("/{supplier_id}", response_model=schemas.Supplier)
def get_supplier(
    supplier_id: str,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(SUPPLIERS_READ)),
):
    db_supplier = suppliers.get_supplier_or_404(db, supplier_id)
    set_etag(response, db_supplier)
    return suppliers.supplier_response(db, db_supplier)


@router.put("/{supplier_id}", response_model=schemas.Supplier)
def update_supplier(
    supplier_id: str,
    supplier: schemas.SupplierUpdate,
    response: Response,
    if_match: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(SUPPLIERS_UPDATE)),
):
    """
    Update an existing supplier.

    Raises:
        NotFoundError: 404 if supplier not found
        PreconditionFailedError: 412 if If-Match does not match the current ETag
    """
    db_supplier = suppliers.get_supplier_or_404(db, supplier_id)
    check_if_match(if_match, db_supplier)
    db_supplier = suppliers.update_supplier(db, db_supplier, supplier, current_user)
    set_etag(response, db_supplier)
    return suppliers.supplier_response(db, db_supplier)


@router.delete("/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_supplier(
    supplier_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(SUPPLIERS_DELETE)),
):
    """
    Soft delete a supplier.

    Raises:
        BusinessRuleError: 400 if active items still reference the supplier
    """
    db_supplier = suppliers.get_supplier_or_404(db, supplier_id)
    suppliers.delete_supplier(db, db_supplier, current_user)


@router.get("/{supplier_id}/items", response_model=schemas.PagedResponse[schemas.InventoryItem])
def get_supplier_items(
    supplier_id: str,
    page: int = 1,
    page_size: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.permission_name("items", "read"))),
):
    suppliers.get_supplier_or_404(db, supplier_id)
    query = crud.query_items(db, supplier_id=supplier_id, sort_by="partnumber")
    return crud.paginate(query, page, page_size)
