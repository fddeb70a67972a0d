"""
Transfer Service

Moves inventory, extras and services between scopes. Transfers inside one
department apply immediately; transfers across departments wait in `pending`
until a principal of the destination approves them. Every transfer is kept
as a DepartmentTransfer record, and each approval applies all of its items
in one transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlmodel import Session, select

from . import audit
from .catalog_service import ServiceCatalog
from .db import unit_of_work
from .errors import Conflict, Forbidden, InsufficientStock, NotFound, ValidationError
from .inventory_models import (
    DepartmentTransfer,
    DepartmentTransferItem,
    ProductType,
    ServiceInventory,
    TransferStatus,
)
from .inventory_service import ExtrasLedger, InventoryLedger
from .models import User
from .scopes import Scope, resolve_scope, scope_from_ids

logger = logging.getLogger(__name__)


class TransferCoordinator:
    def __init__(self, session: Session, actor: User | None = None):
        self.session = session
        self.actor = actor
        actor_id = actor.id if actor else None
        self.inventory = InventoryLedger(session, actor_id)
        self.extras = ExtrasLedger(session, actor_id)
        self.services = ServiceCatalog(session)

    @property
    def actor_id(self) -> int | None:
        return self.actor.id if self.actor else None

    # ============ REQUESTS ============

    def transfer_items(
        self, from_code: str, to_code: str, item_id: int, quantity: int, notes: str | None = None
    ) -> DepartmentTransfer:
        return self._request(from_code, to_code, ProductType.inventory_item, item_id, quantity, notes)

    def transfer_extra(
        self, from_code: str, to_code: str, extra_id: int, quantity: int | None = None, notes: str | None = None
    ) -> DepartmentTransfer:
        return self._request(from_code, to_code, ProductType.extra, extra_id, quantity, notes)

    def transfer_service(
        self, from_code: str, to_code: str, service_id: int, notes: str | None = None
    ) -> DepartmentTransfer:
        return self._request(from_code, to_code, ProductType.service, service_id, None, notes)

    def _check_source(
        self, from_scope: Scope, to_scope: Scope, product_type: ProductType, product_id: int, quantity: int | None
    ) -> int | None:
        """Reject requests the source cannot satisfy now. Returns the quantity to store."""
        if product_type == ProductType.service:
            service = self.session.get(ServiceInventory, product_id)
            if not service or service.department_id != from_scope.department_id or service.section_id != from_scope.section_id:
                raise NotFound(f"Service {product_id} is not in '{from_scope.code}'")
            if self.services.find_in_scope(service.name, to_scope.department_id, to_scope.section_id):
                raise Conflict(f"Service '{service.name}' already exists at '{to_scope.code}'")
            return None

        ledger = self.inventory if product_type == ProductType.inventory_item else self.extras
        if product_type == ProductType.extra and not self.extras.is_tracked(product_id):
            ledger.require_row(from_scope, product_id)
            return None

        if quantity is None or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")
        balance = ledger.get_balance(from_scope, product_id)
        if balance.available < quantity:
            raise InsufficientStock(ledger.item_name(product_id), quantity, balance.available)
        return quantity

    def _request(
        self,
        from_code: str,
        to_code: str,
        product_type: ProductType,
        product_id: int,
        quantity: int | None,
        notes: str | None,
    ) -> DepartmentTransfer:
        with unit_of_work(self.session):
            from_scope = resolve_scope(self.session, from_code)
            to_scope = resolve_scope(self.session, to_code)
            if from_scope == to_scope:
                raise ValidationError("Source and destination must differ")

            quantity = self._check_source(from_scope, to_scope, product_type, product_id, quantity)

            transfer = DepartmentTransfer(
                from_department_id=from_scope.department_id,
                from_section_id=from_scope.section_id,
                to_department_id=to_scope.department_id,
                to_section_id=to_scope.section_id,
                notes=notes,
                created_by_id=self.actor_id,
            )
            self.session.add(transfer)
            self.session.flush()
            self.session.add(
                DepartmentTransferItem(
                    transfer_id=transfer.id,
                    product_type=product_type,
                    product_id=product_id,
                    quantity=quantity,
                )
            )
            self.session.flush()

            if from_scope.department_id == to_scope.department_id:
                self._execute(transfer, from_scope, to_scope)
                self._decide(transfer, TransferStatus.approved)
                action = "transfer.apply"
            else:
                action = "transfer.request"

            audit.record(
                self.session,
                action,
                "transfer",
                transfer.id,
                user_id=self.actor_id,
                changes={
                    "from": from_scope.code,
                    "to": to_scope.code,
                    "product_type": product_type.value,
                    "product_id": product_id,
                    "quantity": quantity,
                },
            )

        self.session.refresh(transfer)
        logger.info(
            f"Transfer {transfer.id} {from_code} -> {to_code} "
            f"({product_type.value} {product_id}) is {transfer.status.value}"
        )
        return transfer

    # ============ DECISIONS ============

    def items(self, transfer_id: int) -> list[DepartmentTransferItem]:
        return list(
            self.session.exec(
                select(DepartmentTransferItem)
                .where(DepartmentTransferItem.transfer_id == transfer_id)
                .order_by(DepartmentTransferItem.id)
            ).all()
        )

    def _execute(self, transfer: DepartmentTransfer, from_scope: Scope, to_scope: Scope) -> None:
        reference = f"transfer:{transfer.id}"
        for item in self.items(transfer.id):
            if item.product_type == ProductType.inventory_item:
                self.inventory.transfer(from_scope, to_scope, item.product_id, item.quantity, reference=reference)
            elif item.product_type == ProductType.extra:
                self.extras.transfer(from_scope, to_scope, item.product_id, item.quantity, reference=reference)
            else:
                self.services.transfer(item.product_id, from_scope, to_scope)

    def _decide(self, transfer: DepartmentTransfer, status: TransferStatus, reason: str | None = None) -> None:
        transfer.status = status
        transfer.decided_by_id = self.actor_id
        transfer.decided_at = datetime.now(timezone.utc)
        if reason:
            transfer.rejection_reason = reason
        self.session.add(transfer)
        self.session.flush()

    def _get_pending(self, transfer_id: int, destination_code: str) -> DepartmentTransfer:
        transfer = self.session.exec(
            select(DepartmentTransfer).where(DepartmentTransfer.id == transfer_id).with_for_update()
        ).first()
        if not transfer:
            raise NotFound(f"Transfer {transfer_id} not found")

        self._authorize(transfer, destination_code)
        if transfer.status != TransferStatus.pending:
            raise Conflict(f"Transfer {transfer_id} is already {transfer.status.value}")
        return transfer

    def _authorize(self, transfer: DepartmentTransfer, destination_code: str) -> None:
        """Only a principal of the destination scope may decide on a transfer."""
        destination = resolve_scope(self.session, destination_code)
        if (
            destination.department_id != transfer.to_department_id
            or destination.section_id != transfer.to_section_id
        ):
            raise Forbidden(f"Transfer {transfer.id} is not addressed to '{destination.code}'")

        actor = self.actor
        if actor is None:
            raise Forbidden("A destination principal is required")
        if actor.section_id is not None:
            allowed = actor.section_id == transfer.to_section_id
        else:
            allowed = actor.department_id == transfer.to_department_id
        if not allowed:
            logger.warning(f"User {actor.id} denied decision on transfer {transfer.id}")
            raise Forbidden(f"User {actor.email} does not belong to '{destination.code}'")

    def approve(self, transfer_id: int, destination_code: str) -> DepartmentTransfer:
        with unit_of_work(self.session):
            transfer = self._get_pending(transfer_id, destination_code)
            from_scope = scope_from_ids(self.session, transfer.from_department_id, transfer.from_section_id)
            to_scope = scope_from_ids(self.session, transfer.to_department_id, transfer.to_section_id)
            self._execute(transfer, from_scope, to_scope)
            self._decide(transfer, TransferStatus.approved)
            audit.record(self.session, "transfer.approve", "transfer", transfer.id, user_id=self.actor_id)

        self.session.refresh(transfer)
        logger.info(f"Transfer {transfer_id} approved by user {self.actor_id}")
        return transfer

    def reject(self, transfer_id: int, destination_code: str, reason: str | None = None) -> DepartmentTransfer:
        with unit_of_work(self.session):
            transfer = self._get_pending(transfer_id, destination_code)
            self._decide(transfer, TransferStatus.rejected, reason)
            audit.record(
                self.session,
                "transfer.reject",
                "transfer",
                transfer.id,
                user_id=self.actor_id,
                changes={"reason": reason},
            )

        self.session.refresh(transfer)
        logger.info(f"Transfer {transfer_id} rejected by user {self.actor_id}")
        return transfer

    def list_transfers(
        self, status: TransferStatus | None = None, department_code: str | None = None
    ) -> list[DepartmentTransfer]:
        statement = select(DepartmentTransfer)
        if status:
            statement = statement.where(DepartmentTransfer.status == status)
        if department_code:
            scope = resolve_scope(self.session, department_code)
            statement = statement.where(
                or_(
                    DepartmentTransfer.from_department_id == scope.department_id,
                    DepartmentTransfer.to_department_id == scope.department_id,
                )
            )
            if scope.section_id is not None:
                statement = statement.where(
                    or_(
                        DepartmentTransfer.from_section_id == scope.section_id,
                        DepartmentTransfer.to_section_id == scope.section_id,
                    )
                )
        statement = statement.order_by(DepartmentTransfer.created_at.desc(), DepartmentTransfer.id.desc())
        return list(self.session.exec(statement).all())
