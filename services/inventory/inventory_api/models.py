"""
SQLAlchemy ORM models for the Inventory service.

Defines the database schema for locations, suppliers, inventory items,
stock transactions and the transaction audit trail.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
)
from sqlalchemy.orm import relationship
from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class LocationType:
    """Allowed values for Location.location_type."""
    WAREHOUSE = "Warehouse"
    PRODUCTION = "Production"
    CUSTOMER = "Customer"
    SUPPLIER = "Supplier"
    TRANSIT = "Transit"

    ALL = (WAREHOUSE, PRODUCTION, CUSTOMER, SUPPLIER, TRANSIT)


class TransactionType:
    """Allowed values for InventoryTransaction.transaction_type."""
    RECEIPT = "Receipt"
    ISSUE = "Issue"
    TRANSFER = "Transfer"
    ADJUSTMENT = "Adjustment"
    COUNT_ADJUSTMENT = "CountAdjustment"

    ALL = (RECEIPT, ISSUE, TRANSFER, ADJUSTMENT, COUNT_ADJUSTMENT)


class TransactionStatus:
    """Allowed values for InventoryTransaction.status."""
    PENDING = "Pending"
    APPROVED = "Approved"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    ALL = (PENDING, APPROVED, PROCESSING, COMPLETED, CANCELLED, FAILED)
    OPEN = (PENDING, APPROVED, PROCESSING)


class Location(Base):
    """
    A physical or logical place that holds stock (warehouse, production floor, customer site...).

    Locations form a tree through parent_location_id.

    Attributes:
        id (str): Primary key (UUID)
        code (str): Unique short code, e.g. "WH-01"
        name (str): Display name
        location_type (str): One of LocationType.ALL
        parent_location_id (str): Parent location (optional)
        max_capacity (int): Maximum number of items the location can hold (optional)
        is_active (bool): Soft-delete flag
        version (int): Optimistic concurrency token, exposed as the ETag
    """
    __tablename__ = "locations"
    __table_args__ = (
        CheckConstraint("max_capacity IS NULL OR max_capacity >= 0", name="ck_locations_max_capacity"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(String(200), nullable=True)
    location_type = Column(String(20), nullable=False, default=LocationType.WAREHOUSE)
    parent_location_id = Column(String(36), ForeignKey("locations.id"), nullable=True, index=True)
    address = Column(String(200), nullable=True)
    city = Column(String(50), nullable=True)
    state = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(50), nullable=True)
    contact_person = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)
    max_capacity = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_by = Column(String(100), nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)
    updated_by = Column(String(100), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    parent = relationship("Location", remote_side=[id], back_populates="children")
    children = relationship("Location", back_populates="parent")
    items = relationship("InventoryItem", back_populates="location")

    __mapper_args__ = {"version_id_col": version}


class Supplier(Base):
    """
    A vendor that inventory items are purchased from.

    Attributes:
        id (str): Primary key (UUID)
        code (str): Unique supplier code
        company_name (str): Legal or trading name
        lead_time_days (int): Typical days between order and receipt (0-365)
        rating (int): Quality rating from 1 (poor) to 5 (excellent)
        version (int): Optimistic concurrency token
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        CheckConstraint("lead_time_days IS NULL OR (lead_time_days >= 0 AND lead_time_days <= 365)",
                        name="ck_suppliers_lead_time"),
        CheckConstraint("minimum_order_quantity IS NULL OR minimum_order_quantity >= 0",
                        name="ck_suppliers_moq"),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_suppliers_rating"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(20), unique=True, index=True, nullable=False)
    company_name = Column(String(100), nullable=False, index=True)
    contact_person = Column(String(100), nullable=True)
    contact_title = Column(String(50), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)
    phone2 = Column(String(20), nullable=True)
    email2 = Column(String(100), nullable=True)
    address = Column(String(200), nullable=True)
    city = Column(String(50), nullable=True)
    state = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(50), nullable=True)
    tax_id = Column(String(50), nullable=True)
    payment_terms = Column(String(50), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    lead_time_days = Column(Integer, nullable=True)
    minimum_order_quantity = Column(Integer, nullable=True)
    rating = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_by = Column(String(100), nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)
    updated_by = Column(String(100), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    items = relationship("InventoryItem", back_populates="supplier")

    __mapper_args__ = {"version_id_col": version}

    @property
    def rating_description(self) -> str:
        return {
            1: "Poor",
            2: "Fair",
            3: "Good",
            4: "Very Good",
            5: "Excellent",
        }.get(self.rating, "Not Rated")

    @property
    def full_address(self) -> str:
        parts = [self.address, self.city, self.state, self.postal_code, self.country]
        return ", ".join(part for part in parts if part)


class InventoryItem(Base):
    """
    A stock keeping unit tracked by part number and barcode.

    Attributes:
        id (str): Primary key (UUID)
        part_number (str): Unique part number
        barcode (str): Unique scannable code (optional)
        current_stock (int): Units on hand
        reserved_stock (int): Units committed but not yet issued
        minimum_stock (int): Reorder threshold
        maximum_stock (int): Upper stock level (0 means no limit)
        standard_cost (Decimal): Unit cost used for valuation
        location_id (str): Where the item is stored
        supplier_id (str): Preferred supplier (optional)
        last_movement (datetime): Last stock change or scan
        version (int): Optimistic concurrency token, exposed as the ETag
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_items_current_stock"),
        CheckConstraint("reserved_stock >= 0", name="ck_items_reserved_stock"),
        CheckConstraint("minimum_stock >= 0", name="ck_items_minimum_stock"),
        CheckConstraint("maximum_stock >= 0", name="ck_items_maximum_stock"),
        CheckConstraint("standard_cost >= 0", name="ck_items_standard_cost"),
        CheckConstraint("selling_price >= 0", name="ck_items_selling_price"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    part_number = Column(String(50), unique=True, index=True, nullable=False)
    description = Column(String(200), nullable=False)
    barcode = Column(String(100), unique=True, index=True, nullable=True)
    category = Column(String(50), nullable=True, index=True)
    sub_category = Column(String(50), nullable=True)
    unit_of_measure = Column(String(20), nullable=False, default="Each")
    current_stock = Column(Integer, nullable=False, default=0)
    reserved_stock = Column(Integer, nullable=False, default=0)
    minimum_stock = Column(Integer, nullable=False, default=0)
    maximum_stock = Column(Integer, nullable=False, default=0)
    standard_cost = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    selling_price = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    supplier_id = Column(String(36), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_movement = Column(DateTime, nullable=True)
    is_quickbooks_synced = Column(Boolean, nullable=False, default=False)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_by = Column(String(100), nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)
    updated_by = Column(String(100), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    location = relationship("Location", back_populates="items")
    supplier = relationship("Supplier", back_populates="items")
    transactions = relationship("InventoryTransaction", back_populates="item")

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_stock(self) -> int:
        return (self.current_stock or 0) - (self.reserved_stock or 0)

    @property
    def is_low_stock(self) -> bool:
        return (self.current_stock or 0) <= (self.minimum_stock or 0)

    @property
    def stock_status(self) -> str:
        current = self.current_stock or 0
        if current == 0:
            return "Out of Stock"
        if current <= (self.minimum_stock or 0):
            return "Low Stock"
        if self.maximum_stock and current >= self.maximum_stock:
            return "Overstocked"
        return "In Stock"

    @property
    def total_value(self) -> Decimal:
        return Decimal(self.current_stock or 0) * Decimal(self.standard_cost or 0)


class InventoryTransaction(Base):
    """
    A stock movement (receipt, issue, transfer, adjustment or cycle count).

    Attributes:
        id (str): Primary key (UUID)
        transaction_number (str): Human readable number, e.g. "REC-20250101-0001"
        transaction_type (str): One of TransactionType.ALL
        status (str): One of TransactionStatus.ALL
        inventory_item_id (str): Item being moved
        source_location_id (str): Where stock leaves from (issue, transfer)
        destination_location_id (str): Where stock arrives (receipt, transfer)
        quantity (int): Units moved, always positive
        unit_cost (Decimal): Cost per unit (optional)
        quantity_change (int): Signed impact on current stock
        initiated_by / approved_by / processed_by (str): Workflow actors
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transactions_quantity"),
        CheckConstraint("unit_cost IS NULL OR unit_cost >= 0", name="ck_transactions_unit_cost"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    transaction_number = Column(String(20), unique=True, index=True, nullable=False)
    transaction_type = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING, index=True)
    inventory_item_id = Column(String(36), ForeignKey("inventory_items.id"), nullable=False, index=True)
    source_location_id = Column(String(36), ForeignKey("locations.id"), nullable=True, index=True)
    destination_location_id = Column(String(36), ForeignKey("locations.id"), nullable=True, index=True)
    supplier_id = Column(String(36), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Numeric(18, 4), nullable=True)
    reference_number = Column(String(50), nullable=True, index=True)
    reference_type = Column(String(50), nullable=True)
    adjustment_reason = Column(String(100), nullable=True)
    initiated_by = Column(String(100), nullable=False)
    initiated_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    processed_by = Column(String(100), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    before_image = Column(String(1000), nullable=True)
    after_image = Column(String(1000), nullable=True)
    is_quickbooks_synced = Column(Boolean, nullable=False, default=False)
    quickbooks_ref_id = Column(String(50), nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)
    version = Column(Integer, nullable=False, default=1)

    item = relationship("InventoryItem", back_populates="transactions")
    source_location = relationship("Location", foreign_keys=[source_location_id])
    destination_location = relationship("Location", foreign_keys=[destination_location_id])
    events = relationship(
        "TransactionEvent",
        back_populates="transaction",
        order_by="TransactionEvent.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_cost(self) -> Decimal:
        return Decimal(self.unit_cost or 0) * (self.quantity or 0)


class TransactionEvent(Base):
    """
    Audit trail entry for a transaction's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        transaction_id (str): Foreign key to the transaction
        event_type (str): "created", "approved", "processed", "cancelled", "failed", "retried"
        description (str): Human-readable description of the event
        old_status (str): Status before the event (optional)
        new_status (str): Status after the event
        user_id (str): User who triggered the event
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "transaction_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(String(36), ForeignKey("inventory_transactions.id"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    user_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    transaction = relationship("InventoryTransaction", back_populates="events")
