"""
Inventory Service

Department-scoped stock ledgers:
- Balance lookup per (scope, item)
- Reserve / commit / release against a ledger row
- Atomic transfer between two scopes
- Stock receipts and the movement journal
- Low stock report

Every mutation is a conditional UPDATE whose WHERE clause carries the
availability guard, so two concurrent reservations can never both pass a
check that only one can satisfy. Nothing here commits; callers own the
transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlmodel import Session, SQLModel, select

from .errors import InsufficientStock, InvariantViolation, NotFound, ValidationError
from .inventory_models import (
    DepartmentExtra,
    DepartmentInventory,
    Extra,
    InventoryItem,
    InventoryMovement,
    LedgerBalance,
    LowStockRow,
    MovementType,
    ProductType,
)
from .scopes import Scope

logger = logging.getLogger(__name__)


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer")


class ScopedLedger:
    """Ledger over one row table keyed by (department_id, section_id, <item column>)."""

    model: type[SQLModel]
    item_field: str
    product_type: ProductType

    def __init__(self, session: Session, actor_id: int | None = None):
        self.session = session
        self.actor_id = actor_id

    # ---- lookups ----

    def _item_column(self):
        return getattr(self.model, self.item_field)

    def row_statement(self, scope: Scope, item_id: int):
        statement = select(self.model).where(
            self.model.department_id == scope.department_id,
            self._item_column() == item_id,
        )
        if scope.section_id is None:
            return statement.where(self.model.section_id.is_(None))
        return statement.where(self.model.section_id == scope.section_id)

    def _get_row(self, scope: Scope, item_id: int, lock: bool = False):
        statement = self.row_statement(scope, item_id)
        if lock:
            statement = statement.with_for_update()
        return self.session.exec(statement).first()

    def require_row(self, scope: Scope, item_id: int, lock: bool = False):
        row = self._get_row(scope, item_id, lock=lock)
        if row is None:
            raise NotFound(
                f"No {self.product_type.value} {item_id} stock recorded for '{scope.code}'"
            )
        return row

    def item_name(self, item_id: int) -> str:
        raise NotImplementedError

    def get_balance(self, scope: Scope, item_id: int) -> LedgerBalance:
        row = self.require_row(scope, item_id)
        return LedgerBalance(
            department_code=scope.code,
            product_id=item_id,
            quantity=row.quantity,
            reserved=row.reserved,
            available=row.quantity - row.reserved,
        )

    # ---- mutations ----

    def _guarded_update(self, row, guard, **values) -> bool:
        """Apply `values` to `row` only if `guard` holds in the database. Returns success."""
        values["updated_at"] = datetime.now(timezone.utc)
        statement = (
            update(self.model)
            .where(self.model.id == row.id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(statement)
        self.session.refresh(row)
        return result.rowcount == 1

    def _journal(
        self,
        movement_type: MovementType,
        scope: Scope,
        item_id: int,
        quantity: int,
        reference: str | None = None,
        notes: str | None = None,
    ) -> InventoryMovement:
        movement = InventoryMovement(
            movement_type=movement_type,
            product_type=self.product_type,
            product_id=item_id,
            department_id=scope.department_id,
            section_id=scope.section_id,
            quantity=quantity,
            reference=reference,
            notes=notes,
            created_by_id=self.actor_id,
        )
        self.session.add(movement)
        return movement

    def reserve(self, scope: Scope, item_id: int, quantity: int):
        """Hold `quantity` against available stock."""
        _check_quantity(quantity)
        row = self.require_row(scope, item_id, lock=True)
        model = self.model
        applied = self._guarded_update(
            row,
            model.quantity - model.reserved >= quantity,
            reserved=model.reserved + quantity,
        )
        if not applied:
            raise InsufficientStock(
                self.item_name(item_id), quantity, row.quantity - row.reserved
            )
        return row

    def commit(self, scope: Scope, item_id: int, quantity: int, reference: str | None = None):
        """Consume a reservation: decrement both quantity and reserved."""
        _check_quantity(quantity)
        row = self.require_row(scope, item_id, lock=True)
        model = self.model
        applied = self._guarded_update(
            row,
            (model.reserved >= quantity) & (model.quantity >= quantity),
            quantity=model.quantity - quantity,
            reserved=model.reserved - quantity,
        )
        if not applied:
            raise InvariantViolation(
                f"Cannot commit {quantity} of {self.item_name(item_id)} at '{scope.code}'",
                quantity=row.quantity,
                reserved=row.reserved,
                requested=quantity,
            )
        self._journal(MovementType.sale, scope, item_id, -quantity, reference=reference)
        return row

    def release(self, scope: Scope, item_id: int, quantity: int):
        """Drop a reservation without touching quantity."""
        _check_quantity(quantity)
        row = self.require_row(scope, item_id, lock=True)
        model = self.model
        applied = self._guarded_update(
            row,
            model.reserved >= quantity,
            reserved=model.reserved - quantity,
        )
        if not applied:
            raise InvariantViolation(
                f"Cannot release {quantity} of {self.item_name(item_id)} at '{scope.code}'",
                reserved=row.reserved,
                requested=quantity,
            )
        return row

    def _get_or_create_row(self, scope: Scope, item_id: int, **defaults):
        row = self._get_row(scope, item_id, lock=True)
        if row is None:
            row = self.model(
                department_id=scope.department_id,
                section_id=scope.section_id,
                **{self.item_field: item_id},
                **defaults,
            )
            self.session.add(row)
            self.session.flush()
        return row

    def transfer(
        self,
        from_scope: Scope,
        to_scope: Scope,
        item_id: int,
        quantity: int,
        reference: str | None = None,
    ):
        """
        Move `quantity` from one scope to another inside the caller's transaction.
        Only unreserved stock can leave the source. The destination row is
        created at zero when missing.
        """
        _check_quantity(quantity)
        if from_scope == to_scope:
            raise ValidationError("Source and destination must differ")

        source = self.require_row(from_scope, item_id, lock=True)
        model = self.model
        debited = self._guarded_update(
            source,
            model.quantity - model.reserved >= quantity,
            quantity=model.quantity - quantity,
        )
        if not debited:
            raise InsufficientStock(
                self.item_name(item_id), quantity, source.quantity - source.reserved
            )

        destination = self._get_or_create_row(to_scope, item_id, **self._new_row_defaults(source))
        credited = self._guarded_update(
            destination,
            model.quantity >= 0,
            quantity=model.quantity + quantity,
        )
        if not credited:
            raise InvariantViolation(
                f"Credit of {quantity} to '{to_scope.code}' was not applied",
                destination_id=destination.id,
            )

        self._journal(MovementType.transfer_out, from_scope, item_id, -quantity, reference=reference)
        self._journal(MovementType.transfer_in, to_scope, item_id, quantity, reference=reference)
        logger.info(
            f"Transferred {quantity} of {self.product_type.value} {item_id} "
            f"from '{from_scope.code}' to '{to_scope.code}'"
        )
        return source, destination

    def _new_row_defaults(self, source) -> dict:
        return {}


class InventoryLedger(ScopedLedger):
    model = DepartmentInventory
    item_field = "inventory_item_id"
    product_type = ProductType.inventory_item

    def item_name(self, item_id: int) -> str:
        item = self.session.get(InventoryItem, item_id)
        return item.name if item else f"item {item_id}"

    def _new_row_defaults(self, source) -> dict:
        return {"unit_price": source.unit_price}

    def receive(
        self,
        scope: Scope,
        item_id: int,
        quantity: int,
        unit_price: int | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> DepartmentInventory:
        """Add received stock to a scope, creating its ledger row on first receipt."""
        _check_quantity(quantity)
        item = self.session.get(InventoryItem, item_id)
        if not item or not item.is_active:
            raise NotFound(f"Inventory item {item_id} not found")

        price = unit_price if unit_price is not None else item.unit_price
        row = self._get_or_create_row(scope, item_id, unit_price=price)
        model = self.model
        values = {"quantity": model.quantity + quantity}
        if unit_price is not None:
            values["unit_price"] = unit_price
        self._guarded_update(row, model.quantity >= 0, **values)
        self._journal(MovementType.receipt, scope, item_id, quantity, reference=reference, notes=notes)
        return row

    def low_stock(self, scope: Scope) -> list[LowStockRow]:
        """Rows whose available quantity is at or below the item's reorder level."""
        model = self.model
        statement = (
            select(model, InventoryItem)
            .join(InventoryItem, InventoryItem.id == model.inventory_item_id)
            .where(model.department_id == scope.department_id)
            .where(model.quantity - model.reserved <= InventoryItem.reorder_level)
            .order_by(InventoryItem.name)
        )
        if scope.section_id is None:
            statement = statement.where(model.section_id.is_(None))
        else:
            statement = statement.where(model.section_id == scope.section_id)

        return [
            LowStockRow(
                inventory_item_id=item.id,
                sku=item.sku,
                name=item.name,
                quantity=row.quantity,
                reserved=row.reserved,
                available=row.quantity - row.reserved,
                reorder_level=item.reorder_level,
            )
            for row, item in self.session.exec(statement).all()
        ]


class ExtrasLedger(ScopedLedger):
    """
    Ledger for extras. Extras with track_inventory=False are a catalogue flag:
    reserve/commit/release do nothing, balances read 1/0/1, and a transfer
    moves the assignment row instead of a quantity.
    """
    model = DepartmentExtra
    item_field = "extra_id"
    product_type = ProductType.extra

    def _extra(self, extra_id: int) -> Extra:
        extra = self.session.get(Extra, extra_id)
        if not extra:
            raise NotFound(f"Extra {extra_id} not found")
        return extra

    def item_name(self, item_id: int) -> str:
        extra = self.session.get(Extra, item_id)
        return extra.name if extra else f"extra {item_id}"

    def is_tracked(self, extra_id: int) -> bool:
        return self._extra(extra_id).track_inventory

    def get_balance(self, scope: Scope, item_id: int) -> LedgerBalance:
        if self.is_tracked(item_id):
            return super().get_balance(scope, item_id)
        self.require_row(scope, item_id)
        return LedgerBalance(
            department_code=scope.code, product_id=item_id, quantity=1, reserved=0, available=1
        )

    def reserve(self, scope: Scope, item_id: int, quantity: int):
        if not self.is_tracked(item_id):
            return None
        return super().reserve(scope, item_id, quantity)

    def commit(self, scope: Scope, item_id: int, quantity: int, reference: str | None = None):
        if not self.is_tracked(item_id):
            return None
        return super().commit(scope, item_id, quantity, reference=reference)

    def release(self, scope: Scope, item_id: int, quantity: int):
        if not self.is_tracked(item_id):
            return None
        return super().release(scope, item_id, quantity)

    def allocate(self, scope: Scope, extra_id: int, quantity: int | None = None) -> DepartmentExtra:
        """Make an extra available in a scope, adding stock when it is tracked."""
        extra = self._extra(extra_id)
        if not extra.is_active:
            raise NotFound(f"Extra {extra_id} not found")

        if not extra.track_inventory:
            return self._get_or_create_row(scope, extra_id, quantity=1)

        if quantity is None:
            raise ValidationError("Quantity is required for tracked extras")
        _check_quantity(quantity)
        row = self._get_or_create_row(scope, extra_id)
        self._guarded_update(row, self.model.quantity >= 0, quantity=self.model.quantity + quantity)
        self._journal(MovementType.receipt, scope, extra_id, quantity)
        return row

    def transfer(
        self,
        from_scope: Scope,
        to_scope: Scope,
        item_id: int,
        quantity: int | None,
        reference: str | None = None,
    ):
        if self.is_tracked(item_id):
            if quantity is None:
                raise ValidationError("Quantity is required for tracked extras")
            return super().transfer(from_scope, to_scope, item_id, quantity, reference=reference)

        if from_scope == to_scope:
            raise ValidationError("Source and destination must differ")
        source = self.require_row(from_scope, item_id, lock=True)
        destination = self._get_row(to_scope, item_id, lock=True)
        if destination is None:
            source.department_id = to_scope.department_id
            source.section_id = to_scope.section_id
            source.updated_at = datetime.now(timezone.utc)
            self.session.add(source)
            self.session.flush()
            destination = source
        else:
            self.session.delete(source)
            self.session.flush()
        logger.info(f"Moved extra {item_id} assignment from '{from_scope.code}' to '{to_scope.code}'")
        return None, destination
