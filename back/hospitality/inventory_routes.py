"""
Inventory API Routes

- Inventory items (catalogue)
- Stock receipts and balances per department/section
- Movement journal and low stock report
- Extras and their allocation to scopes
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session, select

from . import models
from .db import get_session, unit_of_work
from .errors import Conflict, ValidationError
from .inventory_models import (
    Extra,
    ExtraAllocation,
    ExtraCreate,
    InventoryCategory,
    InventoryItem,
    InventoryItemCreate,
    InventoryMovement,
    LedgerBalance,
    LowStockRow,
    MovementRead,
    StockReceive,
)
from .inventory_service import ExtrasLedger, InventoryLedger
from .permissions import Permissions
from .scopes import resolve_scope
from .security import PermissionChecker

router = APIRouter()


# ============ INVENTORY ITEMS ============

@router.get("/items", response_model=list[InventoryItem])
def list_inventory_items(
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_READ))],
    session: Session = Depends(get_session),
    category: InventoryCategory | None = None,
    active_only: bool = True,
    search: str | None = None,
):
    """List catalogue items"""
    statement = select(InventoryItem)
    if active_only:
        statement = statement.where(InventoryItem.is_active == True)
    if category:
        statement = statement.where(InventoryItem.category == category)
    if search:
        search_pattern = f"%{search}%"
        statement = statement.where(
            (InventoryItem.name.ilike(search_pattern)) |
            (InventoryItem.sku.ilike(search_pattern))
        )
    return session.exec(statement.order_by(InventoryItem.name)).all()


@router.post("/items", response_model=InventoryItem, status_code=status.HTTP_201_CREATED)
def create_inventory_item(
    item_create: InventoryItemCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_MANAGE))],
    session: Session = Depends(get_session),
):
    """Create a new inventory item"""
    if item_create.unit_price < 0 or item_create.reorder_level < 0:
        raise ValidationError("Prices and reorder levels cannot be negative")

    with unit_of_work(session):
        existing = session.exec(
            select(InventoryItem).where(InventoryItem.sku == item_create.sku)
        ).first()
        if existing:
            raise Conflict(f"Item with SKU '{item_create.sku}' already exists")
        item = InventoryItem.model_validate(item_create)
        session.add(item)
    session.refresh(item)
    return item


# ============ STOCK ============

@router.post("/stock", response_model=LedgerBalance, status_code=status.HTTP_201_CREATED)
def receive_stock(
    receipt: StockReceive,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_MANAGE))],
    session: Session = Depends(get_session),
):
    """Receive stock into a department or section"""
    ledger = InventoryLedger(session, current_user.id)
    with unit_of_work(session):
        scope = resolve_scope(session, receipt.department_code)
        ledger.receive(
            scope,
            receipt.inventory_item_id,
            receipt.quantity,
            unit_price=receipt.unit_price,
            notes=receipt.notes,
        )
    return ledger.get_balance(scope, receipt.inventory_item_id)


@router.get("/balance", response_model=LedgerBalance)
def get_balance(
    department_code: str,
    item_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_READ))],
    session: Session = Depends(get_session),
):
    scope = resolve_scope(session, department_code)
    return InventoryLedger(session).get_balance(scope, item_id)


@router.get("/low-stock", response_model=list[LowStockRow])
def low_stock(
    department_code: str,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_READ))],
    session: Session = Depends(get_session),
):
    scope = resolve_scope(session, department_code)
    return InventoryLedger(session).low_stock(scope)


@router.get("/movements", response_model=list[MovementRead])
def list_movements(
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_READ))],
    session: Session = Depends(get_session),
    item_id: int | None = None,
    department_code: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
):
    statement = select(InventoryMovement)
    if item_id:
        statement = statement.where(InventoryMovement.product_id == item_id)
    if department_code:
        scope = resolve_scope(session, department_code)
        statement = statement.where(InventoryMovement.department_id == scope.department_id)
        if scope.section_id is None:
            statement = statement.where(InventoryMovement.section_id.is_(None))
        else:
            statement = statement.where(InventoryMovement.section_id == scope.section_id)
    statement = statement.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit)
    return session.exec(statement).all()


# ============ EXTRAS ============

@router.post("/extras", response_model=Extra, status_code=status.HTTP_201_CREATED)
def create_extra(
    extra_create: ExtraCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_MANAGE))],
    session: Session = Depends(get_session),
):
    if extra_create.price < 0:
        raise ValidationError("Price cannot be negative")
    with unit_of_work(session):
        extra = Extra.model_validate(extra_create)
        session.add(extra)
    session.refresh(extra)
    return extra


@router.post("/extras/allocations", response_model=LedgerBalance, status_code=status.HTTP_201_CREATED)
def allocate_extra(
    allocation: ExtraAllocation,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_MANAGE))],
    session: Session = Depends(get_session),
):
    """Offer an extra in a scope; tracked extras also get stock"""
    ledger = ExtrasLedger(session, current_user.id)
    with unit_of_work(session):
        scope = resolve_scope(session, allocation.department_code)
        ledger.allocate(scope, allocation.extra_id, allocation.quantity)
    return ledger.get_balance(scope, allocation.extra_id)


@router.get("/extras/balance", response_model=LedgerBalance)
def get_extra_balance(
    department_code: str,
    extra_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.INVENTORY_READ))],
    session: Session = Depends(get_session),
):
    scope = resolve_scope(session, department_code)
    return ExtrasLedger(session).get_balance(scope, extra_id)
