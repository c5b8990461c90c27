"""
Pydantic schemas for request/response validation in the Inventory service.

These schemas define the structure of data for API requests and responses.
"""
import re
from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Literal, Optional, TypeVar
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

PART_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9\-_]+$")
CODE_PATTERN = r"^[A-Za-z0-9\-_]+$"

LocationTypeName = Literal["Warehouse", "Production", "Customer", "Supplier", "Transit"]
TransactionTypeName = Literal["Receipt", "Issue", "Transfer", "Adjustment", "CountAdjustment"]
TransactionStatusName = Literal["Pending", "Approved", "Processing", "Completed", "Cancelled", "Failed"]
SortDirection = Literal["asc", "desc"]

T = TypeVar("T")


def _max_two_decimals(value: Optional[Decimal], label: str) -> Optional[Decimal]:
    if value is not None and value != value.quantize(Decimal("0.01")):
        raise ValueError(f"{label} can have at most 2 decimal places")
    return value


class PagedResponse(BaseModel, Generic[T]):
    """
    A page of results plus the paging metadata clients need to navigate.

    Attributes:
        items: Results on this page
        page: 1-based page number
        page_size: Requested page size
        total_count: Number of matching rows across all pages
    """
    items: List[T]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_previous: bool
    has_next: bool
    first_item_index: int
    last_item_index: int


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

class LocationBase(BaseModel):
    """Base schema with common location attributes."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=200)
    location_type: LocationTypeName = "Warehouse"
    parent_location_id: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=50)
    contact_person: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    max_capacity: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class LocationCreate(LocationBase):
    """Schema for creating a new location."""
    code: str = Field(..., min_length=1, max_length=20, pattern=CODE_PATTERN)
    is_active: bool = True


class LocationUpdate(BaseModel):
    """Schema for updating an existing location. All fields are optional."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=200)
    location_type: Optional[LocationTypeName] = None
    parent_location_id: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=50)
    contact_person: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    max_capacity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=500)


class LocationSummary(BaseModel):
    """Compact location reference embedded in other responses."""
    id: str
    code: str
    name: str
    location_type: str

    class Config:
        from_attributes = True


class Location(LocationBase):
    """
    Schema for location responses.

    Attributes:
        total_items (int): Active items stored here
        total_value (Decimal): Stock value of those items
        capacity_utilization (float): total_items / max_capacity as a percentage
    """
    id: str
    code: str
    email: Optional[str] = None
    is_active: bool
    created_at: datetime
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    version: int
    total_items: int = 0
    total_value: Decimal = Decimal("0")
    capacity_utilization: float = 0.0

    class Config:
        from_attributes = True


class LocationNode(BaseModel):
    """One node of the location tree."""
    id: str
    code: str
    name: str
    location_type: str
    level: int
    path: str
    child_count: int
    item_count: int
    children: List["LocationNode"] = []


LocationNode.model_rebuild()


class CapacityUtilization(BaseModel):
    location_id: str
    code: str
    name: str
    max_capacity: Optional[int] = None
    item_count: int
    utilization: float


class TransferLine(BaseModel):
    item_id: str
    quantity: int = Field(..., gt=0)


class LocationTransferRequest(BaseModel):
    """Move a set of items from one location to another."""
    from_location_id: str
    to_location_id: str
    items: List[TransferLine] = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = Field(None, max_length=500)


class LocationTransferResult(BaseModel):
    from_location_id: str
    to_location_id: str
    transferred_items: int
    transaction_numbers: List[str]


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

class SupplierBase(BaseModel):
    """Base schema with common supplier attributes."""
    company_name: str = Field(..., min_length=1, max_length=100)
    contact_person: Optional[str] = Field(None, max_length=100)
    contact_title: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    phone2: Optional[str] = Field(None, max_length=20)
    email2: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=50)
    tax_id: Optional[str] = Field(None, max_length=50)
    payment_terms: Optional[str] = Field(None, max_length=50)
    currency: str = Field("USD", pattern=r"^[A-Z]{3}$")
    lead_time_days: Optional[int] = Field(None, ge=0, le=365)
    minimum_order_quantity: Optional[int] = Field(None, ge=0)
    rating: Optional[int] = Field(None, ge=1, le=5)
    notes: Optional[str] = Field(None, max_length=500)


class SupplierCreate(SupplierBase):
    """Schema for creating a new supplier."""
    code: str = Field(..., min_length=1, max_length=20, pattern=CODE_PATTERN)
    is_active: bool = True


class SupplierUpdate(BaseModel):
    """Schema for updating an existing supplier. All fields are optional."""
    company_name: Optional[str] = Field(None, min_length=1, max_length=100)
    contact_person: Optional[str] = Field(None, max_length=100)
    contact_title: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    phone2: Optional[str] = Field(None, max_length=20)
    email2: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=50)
    tax_id: Optional[str] = Field(None, max_length=50)
    payment_terms: Optional[str] = Field(None, max_length=50)
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")
    lead_time_days: Optional[int] = Field(None, ge=0, le=365)
    minimum_order_quantity: Optional[int] = Field(None, ge=0)
    rating: Optional[int] = Field(None, ge=1, le=5)
    is_active: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=500)


class Supplier(SupplierBase):
    """Schema for supplier responses, includes derived totals."""
    id: str
    code: str
    email: Optional[str] = None
    email2: Optional[str] = None
    is_active: bool
    rating_description: str
    full_address: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    version: int
    total_items: int = 0
    total_value: Decimal = Decimal("0")

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Inventory items
# ---------------------------------------------------------------------------

class InventoryItemBase(BaseModel):
    """Base schema with common inventory item attributes."""
    description: str = Field(..., min_length=1, max_length=200)
    barcode: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=50)
    sub_category: Optional[str] = Field(None, max_length=50)
    unit_of_measure: str = Field("Each", min_length=1, max_length=20)
    minimum_stock: int = Field(0, ge=0)
    maximum_stock: int = Field(0, ge=0)
    standard_cost: Decimal = Field(Decimal("0"), ge=0)
    selling_price: Decimal = Field(Decimal("0"), ge=0)
    location_id: str
    supplier_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("standard_cost")
    @classmethod
    def check_cost_precision(cls, value):
        return _max_two_decimals(value, "Standard cost")

    @field_validator("selling_price")
    @classmethod
    def check_price_precision(cls, value):
        return _max_two_decimals(value, "Selling price")


class InventoryItemCreate(InventoryItemBase):
    """Schema for creating a new inventory item."""
    part_number: str = Field(..., min_length=1, max_length=50)
    current_stock: int = Field(0, ge=0)
    reserved_stock: int = Field(0, ge=0)
    is_active: bool = True

    @field_validator("part_number")
    @classmethod
    def check_part_number(cls, value: str) -> str:
        if not PART_NUMBER_PATTERN.match(value):
            raise ValueError("Part number can only contain letters, numbers, hyphens, and underscores")
        return value

    @model_validator(mode="after")
    def check_stock_levels(self):
        if self.maximum_stock and self.minimum_stock > self.maximum_stock:
            raise ValueError("Minimum stock cannot be greater than maximum stock")
        if self.reserved_stock > self.current_stock:
            raise ValueError("Reserved stock cannot exceed current stock")
        return self


class InventoryItemUpdate(BaseModel):
    """Schema for updating an existing inventory item. All fields are optional."""
    description: Optional[str] = Field(None, min_length=1, max_length=200)
    barcode: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=50)
    sub_category: Optional[str] = Field(None, max_length=50)
    unit_of_measure: Optional[str] = Field(None, min_length=1, max_length=20)
    reserved_stock: Optional[int] = Field(None, ge=0)
    minimum_stock: Optional[int] = Field(None, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    standard_cost: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    location_id: Optional[str] = None
    supplier_id: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("standard_cost")
    @classmethod
    def check_cost_precision(cls, value):
        return _max_two_decimals(value, "Standard cost")

    @field_validator("selling_price")
    @classmethod
    def check_price_precision(cls, value):
        return _max_two_decimals(value, "Selling price")


class InventoryItemSummary(BaseModel):
    """Compact item reference embedded in transaction responses."""
    id: str
    part_number: str
    description: str
    barcode: Optional[str] = None
    current_stock: int

    class Config:
        from_attributes = True


class InventoryItem(InventoryItemBase):
    """
    Schema for inventory item responses, includes stock figures and derived status.

    Attributes:
        available_stock (int): current_stock - reserved_stock
        is_low_stock (bool): current_stock <= minimum_stock
        stock_status (str): "Out of Stock", "Low Stock", "Overstocked" or "In Stock"
        total_value (Decimal): current_stock * standard_cost
    """
    id: str
    part_number: str
    current_stock: int
    reserved_stock: int
    available_stock: int
    is_low_stock: bool
    stock_status: str
    total_value: Decimal
    is_active: bool
    last_movement: Optional[datetime] = None
    is_quickbooks_synced: bool
    created_at: datetime
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    version: int
    location: Optional[LocationSummary] = None

    class Config:
        from_attributes = True


class StockUpdate(BaseModel):
    """Signed change to an item's on-hand quantity."""
    quantity_change: int
    reason: str = Field(..., min_length=1, max_length=200)


class ScanRequest(BaseModel):
    barcode: Optional[str] = Field(None, max_length=2048)
    confidence: Optional[int] = Field(None, ge=0, le=100)


class BulkItemUpdate(InventoryItemUpdate):
    id: str


class LowStockAlert(BaseModel):
    """An item at or below its threshold, with how urgently it needs restocking."""
    item_id: str
    part_number: str
    description: str
    current_stock: int
    minimum_stock: int
    deficit: int
    urgency: Literal["Critical", "High", "Medium"]
    location_code: Optional[str] = None


class InventoryValuation(BaseModel):
    total_value: Decimal
    total_items: int
    average_cost: Decimal


class ReorderPoint(BaseModel):
    item_id: str
    part_number: str
    average_daily_usage: float
    lead_time_days: int
    reorder_point: int


class SyncRequest(BaseModel):
    transaction_ids: List[str] = Field(..., min_length=1, max_length=100)
    reference_id: Optional[str] = Field(None, max_length=50)


class SyncResult(BaseModel):
    updated_count: int
    skipped_ids: List[str]


class ImportSummary(BaseModel):
    created_count: int
    updated_count: int
    skipped_count: int
    errors: List[str]


# ---------------------------------------------------------------------------
# Barcodes
# ---------------------------------------------------------------------------

class BarcodeValidationRequest(BaseModel):
    barcode: str = Field(..., max_length=4096)
    format: str = "AUTO"
    confidence: Optional[int] = Field(None, ge=0, le=100)


class BarcodeValidationResult(BaseModel):
    is_valid: bool
    format: Optional[str] = None
    error: Optional[str] = None


class BarcodeSuggestion(BaseModel):
    part_number: str
    format: str
    barcode: str


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TransactionCreateBase(BaseModel):
    inventory_item_id: str
    reference_number: Optional[str] = Field(None, max_length=50)
    reference_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)
    require_approval: bool = False


class ReceiptCreate(TransactionCreateBase):
    """Stock arriving at a location."""
    location_id: str
    quantity: int = Field(..., gt=0, le=1_000_000)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    supplier_id: Optional[str] = None

    @field_validator("unit_cost")
    @classmethod
    def check_unit_cost_precision(cls, value):
        return _max_two_decimals(value, "Unit cost")


class IssueCreate(TransactionCreateBase):
    """Stock leaving a location (consumption, shipment)."""
    location_id: str
    quantity: int = Field(..., gt=0, le=100_000)


class TransferCreate(TransactionCreateBase):
    """Move an item between locations."""
    source_location_id: str
    destination_location_id: str
    quantity: int = Field(..., gt=0, le=100_000)

    @model_validator(mode="after")
    def check_locations_differ(self):
        if self.source_location_id == self.destination_location_id:
            raise ValueError("Source and destination locations cannot be the same")
        return self


class AdjustmentCreate(TransactionCreateBase):
    """Signed manual correction of on-hand stock."""
    location_id: Optional[str] = None
    quantity: int
    adjustment_reason: str = Field(..., min_length=1, max_length=100)

    @field_validator("quantity")
    @classmethod
    def check_non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("Adjustment quantity cannot be zero")
        return value


class CountAdjustmentCreate(TransactionCreateBase):
    """Cycle count result; the difference to current stock becomes the adjustment."""
    location_id: Optional[str] = None
    counted_quantity: int = Field(..., ge=0)


class TransactionUpdate(BaseModel):
    """Descriptive fields that may change while a transaction is still open."""
    reference_number: Optional[str] = Field(None, max_length=50)
    reference_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)


class BulkProcessRequest(BaseModel):
    transaction_ids: List[str] = Field(..., min_length=1)


class BulkProcessResult(BaseModel):
    processed: List[str]
    failed_id: Optional[str] = None
    error: Optional[str] = None


class InventoryTransaction(BaseModel):
    """
    Schema for transaction responses.

    Attributes:
        total_cost (Decimal): (unit_cost or 0) * quantity
        quantity_change (int): Signed effect on the item's current stock
    """
    id: str
    transaction_number: str
    transaction_type: str
    status: str
    inventory_item_id: str
    item: Optional[InventoryItemSummary] = None
    source_location: Optional[LocationSummary] = None
    destination_location: Optional[LocationSummary] = None
    quantity: int
    quantity_change: int
    unit_cost: Optional[Decimal] = None
    total_cost: Decimal
    reference_number: Optional[str] = None
    reference_type: Optional[str] = None
    adjustment_reason: Optional[str] = None
    initiated_by: str
    initiated_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    is_quickbooks_synced: bool

    class Config:
        from_attributes = True


class TransactionEvent(BaseModel):
    """Schema for transaction audit trail entries."""
    id: int
    transaction_id: str
    event_type: str
    description: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionSummary(BaseModel):
    total_transactions: int
    pending_transactions: int
    approved_transactions: int
    processing_transactions: int
    completed_transactions: int
    cancelled_transactions: int
    failed_transactions: int
    total_value: Decimal
    average_value: Decimal
    start_date: datetime
    end_date: datetime


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    """JWT issued on login."""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    roles: List[str]
    permissions: List[str]


class UserInfo(BaseModel):
    user_id: str
    username: Optional[str] = None
    roles: List[str]
    permissions: List[str]
