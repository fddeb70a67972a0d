"""
Inventory Module Models

Department-scoped stock keeping:
- Catalogue items and the per-scope ledger rows that hold their balances
- Extras (add-ons), optionally tracked as countable stock
- Bookable services priced per count or per minute
- Transfers between departments/sections with an approval workflow
- Movement journal for every stock change
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import StrictInt
from sqlalchemy import CheckConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, Relationship, SQLModel


# ============ ENUMS ============

class InventoryCategory(str, Enum):
    """Common inventory categories"""
    food = "food"
    beverages = "beverages"
    amenities = "amenities"
    linen = "linen"
    cleaning = "cleaning"
    equipment = "equipment"
    other = "other"


class ProductType(str, Enum):
    """What an order line or transfer item points at"""
    inventory_item = "inventory_item"
    extra = "extra"
    service = "service"


class MovementType(str, Enum):
    """Types of inventory movements"""
    receipt = "receipt"            # Stock received into a scope
    sale = "sale"                  # Committed on line fulfillment
    transfer_in = "transfer_in"
    transfer_out = "transfer_out"
    adjustment = "adjustment"


class PricingModel(str, Enum):
    per_count = "per_count"
    per_time = "per_time"


class TransferStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ============ CATALOGUE ============

class InventoryItem(SQLModel, table=True):
    """
    Catalogue entry, independent of any department.
    Balances live in DepartmentInventory.
    """
    __tablename__ = "inventory_item"

    id: int | None = Field(default=None, primary_key=True)
    sku: str = Field(unique=True, index=True)
    name: str = Field(index=True)
    description: str | None = None
    category: InventoryCategory = Field(default=InventoryCategory.other, index=True)
    reorder_level: int = Field(default=0)  # Alert when available drops to this
    unit_price: int = Field(default=0)  # Canonical price in cents
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DepartmentInventory(SQLModel, table=True):
    """
    Ledger row: balance of one item in one scope.
    section_id NULL is parent-department stock, distinct from every section.
    """
    __tablename__ = "department_inventory"
    __table_args__ = (
        UniqueConstraint(
            "department_id", "section_id", "inventory_item_id", postgresql_nulls_not_distinct=True
        ),
        CheckConstraint("quantity >= 0", name="ck_department_inventory_quantity"),
        CheckConstraint("reserved >= 0", name="ck_department_inventory_reserved"),
        CheckConstraint("reserved <= quantity", name="ck_department_inventory_reserved_le_quantity"),
    )

    id: int | None = Field(default=None, primary_key=True)
    department_id: int = Field(foreign_key="department.id", index=True)
    section_id: int | None = Field(default=None, foreign_key="department_section.id", index=True)
    inventory_item_id: int = Field(foreign_key="inventory_item.id", index=True)
    quantity: int = Field(default=0)
    reserved: int = Field(default=0)
    unit_price: int = Field(default=0)  # Scope-specific selling price in cents
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Extra(SQLModel, table=True):
    """Add-on product, e.g. an extra towel or a late checkout."""
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    unit: str = Field(default="unit")
    price: int = Field(default=0)  # cents
    # False: catalogue-only flag, never decremented
    track_inventory: bool = Field(default=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DepartmentExtra(SQLModel, table=True):
    """Ledger row for an extra. Untracked extras keep quantity pinned to 1."""
    __tablename__ = "department_extra"
    __table_args__ = (
        UniqueConstraint("department_id", "section_id", "extra_id", postgresql_nulls_not_distinct=True),
        CheckConstraint("quantity >= 0", name="ck_department_extra_quantity"),
        CheckConstraint("reserved >= 0", name="ck_department_extra_reserved"),
        CheckConstraint("reserved <= quantity", name="ck_department_extra_reserved_le_quantity"),
    )

    id: int | None = Field(default=None, primary_key=True)
    department_id: int = Field(foreign_key="department.id", index=True)
    section_id: int | None = Field(default=None, foreign_key="department_section.id", index=True)
    extra_id: int = Field(foreign_key="extra.id", index=True)
    quantity: int = Field(default=0)
    reserved: int = Field(default=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ServiceInventory(SQLModel, table=True):
    """
    Bookable service (massage, laundry, court hire...). Scoped to a section,
    or department-wide when section_id is NULL. Exactly one price field is
    populated, matching pricing_model.
    """
    __tablename__ = "service_inventory"
    __table_args__ = (
        # Names are unique per scope ignoring case, matching the catalogue lookup
        Index(
            "uq_service_inventory_scope_name",
            text("lower(name)"),
            "department_id",
            "section_id",
            unique=True,
            postgresql_nulls_not_distinct=True,
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    service_type: str | None = None
    description: str | None = None
    pricing_model: PricingModel
    price_per_count: int | None = None  # cents
    price_per_minute: int | None = None  # cents
    department_id: int = Field(foreign_key="department.id", index=True)
    section_id: int | None = Field(default=None, foreign_key="department_section.id", index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============ TRANSFERS ============

class DepartmentTransfer(SQLModel, table=True):
    __tablename__ = "department_transfer"

    id: int | None = Field(default=None, primary_key=True)
    from_department_id: int = Field(foreign_key="department.id", index=True)
    from_section_id: int | None = Field(default=None, foreign_key="department_section.id")
    to_department_id: int = Field(foreign_key="department.id", index=True)
    to_section_id: int | None = Field(default=None, foreign_key="department_section.id")
    status: TransferStatus = Field(default=TransferStatus.pending, index=True)
    notes: str | None = None
    rejection_reason: str | None = None
    created_by_id: int | None = Field(default=None, foreign_key="user.id")
    decided_by_id: int | None = Field(default=None, foreign_key="user.id")
    decided_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    items: list["DepartmentTransferItem"] = Relationship(back_populates="transfer")


class DepartmentTransferItem(SQLModel, table=True):
    __tablename__ = "department_transfer_item"

    id: int | None = Field(default=None, primary_key=True)
    transfer_id: int = Field(foreign_key="department_transfer.id", index=True)
    product_type: ProductType
    product_id: int
    quantity: int | None = None  # None for services (all-or-nothing)

    transfer: DepartmentTransfer = Relationship(back_populates="items")


class InventoryMovement(SQLModel, table=True):
    """
    Journal of stock changes. Quantity is signed: positive adds to the
    scope, negative removes from it.
    """
    __tablename__ = "inventory_movement"

    id: int | None = Field(default=None, primary_key=True)
    movement_type: MovementType = Field(index=True)
    product_type: ProductType = Field(default=ProductType.inventory_item)
    product_id: int = Field(index=True)
    department_id: int = Field(foreign_key="department.id", index=True)
    section_id: int | None = Field(default=None, foreign_key="department_section.id")
    quantity: int
    reference: str | None = Field(default=None, index=True)  # "order:12", "transfer:3"
    notes: str | None = None
    created_by_id: int | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)


# ============ REQUEST / RESPONSE MODELS ============

class InventoryItemCreate(SQLModel):
    sku: str
    name: str
    description: str | None = None
    category: InventoryCategory = InventoryCategory.other
    reorder_level: StrictInt = 0
    unit_price: StrictInt = 0


class StockReceive(SQLModel):
    department_code: str
    inventory_item_id: int
    quantity: StrictInt
    unit_price: StrictInt | None = None
    notes: str | None = None


class LedgerBalance(SQLModel):
    department_code: str
    product_id: int
    quantity: int
    reserved: int
    available: int


class LowStockRow(SQLModel):
    inventory_item_id: int
    sku: str
    name: str
    quantity: int
    reserved: int
    available: int
    reorder_level: int


class MovementRead(SQLModel):
    id: int
    movement_type: MovementType
    product_type: ProductType
    product_id: int
    department_id: int
    section_id: int | None
    quantity: int
    reference: str | None
    notes: str | None
    created_at: datetime


class ExtraCreate(SQLModel):
    name: str
    description: str | None = None
    unit: str = "unit"
    price: StrictInt = 0
    track_inventory: bool = True


class ExtraAllocation(SQLModel):
    department_code: str
    extra_id: int
    quantity: StrictInt | None = None  # Ignored for untracked extras


class ServiceCreate(SQLModel):
    name: str
    department_id: int
    section_id: int | None = None
    pricing_model: str
    price_per_count: StrictInt | None = None
    price_per_minute: StrictInt | None = None
    service_type: str | None = None
    description: str | None = None


class ServiceRead(SQLModel):
    id: int
    name: str
    service_type: str | None
    description: str | None
    pricing_model: PricingModel
    price_per_count: int | None
    price_per_minute: int | None
    department_id: int
    section_id: int | None


class ItemTransferRequest(SQLModel):
    from_code: str
    to_code: str
    item_id: int
    quantity: StrictInt
    notes: str | None = None


class ExtraTransferRequest(SQLModel):
    from_code: str
    to_code: str
    extra_id: int
    quantity: StrictInt | None = None  # Ignored for untracked extras
    notes: str | None = None


class ServiceTransferRequest(SQLModel):
    from_code: str
    to_code: str
    service_id: int
    notes: str | None = None


class TransferDecision(SQLModel):
    reason: str | None = None


class TransferItemRead(SQLModel):
    product_type: ProductType
    product_id: int
    quantity: int | None


class TransferRead(SQLModel):
    id: int
    from_department_id: int
    from_section_id: int | None
    to_department_id: int
    to_section_id: int | None
    status: TransferStatus
    notes: str | None
    rejection_reason: str | None
    created_by_id: int | None
    decided_by_id: int | None
    decided_at: datetime | None
    created_at: datetime
    items: list[TransferItemRead] = []
