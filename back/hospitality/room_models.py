from datetime import date, datetime, timezone
from enum import Enum

from pydantic import StrictInt
from sqlmodel import Field, SQLModel


class UnitStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    CLEANING = "CLEANING"
    MAINTENANCE = "MAINTENANCE"
    BLOCKED = "BLOCKED"


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class MaintenanceStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"    # Work done, awaiting verification
    VERIFIED = "VERIFIED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class MaintenancePriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Requests in these states keep a unit in MAINTENANCE
OPEN_MAINTENANCE_STATUSES = (
    MaintenanceStatus.OPEN,
    MaintenanceStatus.ASSIGNED,
    MaintenanceStatus.IN_PROGRESS,
    MaintenanceStatus.ON_HOLD,
    MaintenanceStatus.COMPLETED,
)


class Unit(SQLModel, table=True):
    """A room or other bookable unit."""
    id: int | None = Field(default=None, primary_key=True)
    room_number: str = Field(unique=True, index=True)
    unit_type: str | None = None
    floor: int | None = None
    department_id: int | None = Field(default=None, foreign_key="department.id")
    status: UnitStatus = Field(default=UnitStatus.AVAILABLE, index=True)
    status_updated_at: datetime | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Reservation(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    unit_id: int = Field(foreign_key="unit.id", index=True)
    customer_id: int | None = Field(default=None, foreign_key="customer.id")
    status: ReservationStatus = Field(default=ReservationStatus.PENDING, index=True)
    check_in_date: date
    check_out_date: date
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UnitStatusHistory(SQLModel, table=True):
    """Audit trail of unit status transitions. Never mutated after insert."""
    __tablename__ = "unit_status_history"

    id: int | None = Field(default=None, primary_key=True)
    unit_id: int = Field(foreign_key="unit.id", index=True)
    previous_status: UnitStatus
    new_status: UnitStatus
    reason: str | None = None
    changed_by_id: int | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)


class MaintenanceRequest(SQLModel, table=True):
    __tablename__ = "maintenance_request"

    id: int | None = Field(default=None, primary_key=True)
    unit_id: int = Field(foreign_key="unit.id", index=True)
    category: str  # plumbing, electrical, hvac...
    description: str
    priority: MaintenancePriority = Field(default=MaintenancePriority.NORMAL)
    status: MaintenanceStatus = Field(default=MaintenanceStatus.OPEN, index=True)
    requested_by_id: int | None = Field(default=None, foreign_key="user.id")
    assigned_to_id: int | None = Field(default=None, foreign_key="user.id")
    verified_by_id: int | None = Field(default=None, foreign_key="user.id")
    started_at: datetime | None = None
    completed_at: datetime | None = None
    verified_at: datetime | None = None
    actual_cost_cents: int | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============ REQUEST / RESPONSE MODELS ============

class UnitStatusUpdate(SQLModel):
    status: str
    reason: str | None = None
    notes: str | None = None


class MaintenanceRequestCreate(SQLModel):
    unit_id: int
    category: str
    description: str
    priority: MaintenancePriority = MaintenancePriority.NORMAL


class MaintenanceAction(SQLModel):
    approved: bool | None = None  # verify only
    assigned_to_id: int | None = None  # assign only
    actual_cost_cents: StrictInt | None = None  # complete only
    notes: str | None = None
