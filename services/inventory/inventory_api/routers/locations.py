"""
Location endpoints.

Mounted at /api/v1/locations.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, Response, status
from sqlalchemy.orm import Session

from .. import auth, crud, locations, schemas
from ..concurrency import check_if_match, set_etag
from ..database import get_db
from ..exceptions import NotFoundError

router = APIRouter(prefix="/api/v1/locations", tags=["locations"])

LOCATIONS_CREATE = auth.permission_name("locations", "create")
LOCATIONS_READ = auth.permission_name("locations", "read")
LOCATIONS_UPDATE = auth.permission_name("locations", "update")
LOCATIONS_DELETE = auth.permission_name("locations", "delete")
ITEMS_UPDATE = auth.permission_name("items", "update")


@router.get("", response_model=schemas.PagedResponse[schemas.Location])
def list_locations(
    page: int = 1,
    page_size: Optional[int] = None,
    is_active: Optional[bool] = None,
    location_type: Optional[schemas.LocationTypeName] = None,
    parent_location_id: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    include_inactive: bool = False,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_direction: schemas.SortDirection = "asc",
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    """
    List locations with filtering, sorting and paging.

    Args:
        search: Matches code, name or description
        sort_by: code, name, type or created_at
        db: Database session (injected)
        current_user: Current authenticated user (injected)

    Returns:
        A page of locations with their item statistics
    """
    query = crud.query_locations(
        db,
        is_active=is_active,
        location_type=location_type,
        parent_location_id=parent_location_id,
        city=city,
        state=state,
        search=search,
        include_inactive=include_inactive,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    result = crud.paginate(query, page, page_size)
    result["items"] = [locations.location_response(db, location) for location in result["items"]]
    return result


@router.post("", response_model=schemas.Location, status_code=status.HTTP_201_CREATED)
def create_location(
    location: schemas.LocationCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_CREATE)),
):
    """
    Create a new location.

    Raises:
        ConflictError: 409 if the code already exists
        BusinessRuleError: 400 if the parent placement breaks the hierarchy rules
    """
    db_location = locations.create_location(db, location, current_user)
    set_etag(response, db_location)
    return locations.location_response(db, db_location)


@router.get("/hierarchy", response_model=List[schemas.LocationNode])
def get_location_hierarchy(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    """Tree of active locations, roots first and children sorted by code."""
    return locations.get_hierarchy(db)


@router.get("/capacity", response_model=List[schemas.CapacityUtilization])
def get_capacity_utilization(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.REPORTS_VIEW)),
):
    return locations.capacity_utilization(db)


@router.get("/by-type/{location_type}", response_model=List[schemas.LocationSummary])
def get_locations_by_type(
    location_type: schemas.LocationTypeName,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    return locations.get_by_type(db, location_type)


@router.get("/code/{code}", response_model=schemas.Location)
def get_location_by_code(
    code: str,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    """
    Get a location by its code.

    Raises:
        NotFoundError: 404 if no location has the code
    """
    db_location = crud.get_location_by_code(db, code)
    if db_location is None:
        raise NotFoundError("Location", code)
    set_etag(response, db_location)
    return locations.location_response(db, db_location)


@router.post("/transfer", response_model=schemas.LocationTransferResult)
def transfer_items(
    request: schemas.LocationTransferRequest,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_UPDATE)),
):
    """
    Move several items between two locations in one unit of work.

    Raises:
        BusinessRuleError: 400 if an item is not at the source or is short of stock
    """
    return locations.transfer_items(db, request, current_user)


@router.get("/{location_id}", response_model=schemas.Location)
def get_location(
    location_id: str,
    response: Response,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    """
    Get a single location by ID.

    Raises:
        NotFoundError: 404 if location not found
    """
    db_location = locations.get_location_or_404(db, location_id)
    set_etag(response, db_location)
    return locations.location_response(db, db_location)


@router.put("/{location_id}", response_model=schemas.Location)
def update_location(
    location_id: str,
    location: schemas.LocationUpdate,
    response: Response,
    if_match: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_UPDATE)),
):
    """
    Update an existing location.

    Raises:
        NotFoundError: 404 if location not found
        PreconditionFailedError: 412 if If-Match does not match the current ETag
        BusinessRuleError: 400 if the change breaks the hierarchy rules
    """
    db_location = locations.get_location_or_404(db, location_id)
    check_if_match(if_match, db_location)
    db_location = locations.update_location(db, db_location, location, current_user)
    set_etag(response, db_location)
    return locations.location_response(db, db_location)


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(
    location_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_DELETE)),
):
    """
    Soft delete a location.

    Raises:
        BusinessRuleError: 400 if the location holds items, children or transaction history
    """
    db_location = locations.get_location_or_404(db, location_id)
    locations.delete_location(db, db_location, current_user)


@router.get("/{location_id}/children", response_model=List[schemas.LocationSummary])
def get_child_locations(
    location_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    locations.get_location_or_404(db, location_id)
    return crud.get_child_locations(db, location_id)


@router.get("/{location_id}/ancestors", response_model=List[schemas.LocationSummary])
def get_location_ancestors(
    location_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    """Ancestors from the immediate parent up to the root."""
    return locations.ancestors(db, location_id)


@router.get("/{location_id}/descendants", response_model=List[schemas.LocationSummary])
def get_location_descendants(
    location_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(LOCATIONS_READ)),
):
    """Every location below this one, breadth first."""
    return locations.descendants(db, location_id)


@router.get("/{location_id}/items", response_model=schemas.PagedResponse[schemas.InventoryItem])
def get_location_items(
    location_id: str,
    page: int = 1,
    page_size: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_permission(auth.permission_name("items", "read"))),
):
    locations.get_location_or_404(db, location_id)
    query = crud.query_items(db, location_id=location_id, sort_by="partnumber")
    return crud.paginate(query, page, page_size)
