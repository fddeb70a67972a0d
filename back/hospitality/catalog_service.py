"""
Catalog Service

- Sellable: one view over the different product tables an order line can
  point at (inventory items, extras, services), resolved once per line
- ServiceCatalog: bookable services scoped to a section or a whole department
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func
from sqlmodel import Session, select

from .errors import Conflict, NotFound, ValidationError
from .inventory_models import (
    DepartmentExtra,
    Extra,
    InventoryItem,
    PricingModel,
    ProductType,
    ServiceCreate,
    ServiceInventory,
)
from .inventory_service import ExtrasLedger, InventoryLedger
from .models import Department, DepartmentSection
from .scopes import Scope

logger = logging.getLogger(__name__)


# ============ SELLABLES ============

@dataclass(frozen=True)
class Sellable:
    product_type: ProductType
    id: int
    name: str
    unit_price: int  # catalogue price in cents
    reservable: bool  # False: nothing to hold in a ledger (services, untracked extras)


def _inventory_sellable(session: Session, product_id: int, scope: Scope) -> Sellable:
    item = session.get(InventoryItem, product_id)
    if not item or not item.is_active:
        raise NotFound(f"Inventory item {product_id} not found")
    return Sellable(ProductType.inventory_item, item.id, item.name, item.unit_price, True)


def _extra_sellable(session: Session, product_id: int, scope: Scope) -> Sellable:
    extra = session.get(Extra, product_id)
    if not extra or not extra.is_active:
        raise NotFound(f"Extra {product_id} not found")
    if not extra.track_inventory:
        # Untracked extras still have to be offered in the scope
        assigned = session.exec(
            ExtrasLedger(session).row_statement(scope, extra.id)
        ).first()
        if assigned is None:
            raise NotFound(f"Extra '{extra.name}' is not offered at '{scope.code}'")
    return Sellable(ProductType.extra, extra.id, extra.name, extra.price, extra.track_inventory)


def _service_sellable(session: Session, product_id: int, scope: Scope) -> Sellable:
    service = session.get(ServiceInventory, product_id)
    if not service or not service.is_active:
        raise NotFound(f"Service {product_id} not found")
    in_scope = service.department_id == scope.department_id and (
        service.section_id is None or service.section_id == scope.section_id
    )
    if not in_scope:
        raise NotFound(f"Service '{service.name}' is not offered at '{scope.code}'")
    price = service.price_per_count if service.pricing_model == PricingModel.per_count else service.price_per_minute
    return Sellable(ProductType.service, service.id, service.name, price or 0, False)


_SELLABLE_ADAPTERS = {
    ProductType.inventory_item: _inventory_sellable,
    ProductType.extra: _extra_sellable,
    ProductType.service: _service_sellable,
}


def resolve_sellable(session: Session, product_type: ProductType, product_id: int, scope: Scope) -> Sellable:
    return _SELLABLE_ADAPTERS[product_type](session, product_id, scope)


def ledger_for(session: Session, product_type: ProductType, actor_id: int | None = None):
    """Ledger holding stock for a product type, or None when it has no stock."""
    if product_type == ProductType.inventory_item:
        return InventoryLedger(session, actor_id)
    if product_type == ProductType.extra:
        return ExtrasLedger(session, actor_id)
    return None


# ============ SERVICES ============

def price_for(service: ServiceInventory, units: int) -> int:
    """Charge in cents for `units` counts (per_count) or minutes (per_time)."""
    if not isinstance(units, int) or units <= 0:
        raise ValidationError("Units must be a positive integer")
    if service.pricing_model == PricingModel.per_count:
        return service.price_per_count * units
    return service.price_per_minute * units


def _validate_pricing(payload: ServiceCreate) -> PricingModel:
    try:
        model = PricingModel(payload.pricing_model)
    except ValueError:
        raise ValidationError(
            f"Invalid pricing model '{payload.pricing_model}'. "
            f"Must be one of: {', '.join(m.value for m in PricingModel)}"
        )

    if model == PricingModel.per_count:
        price, other = payload.price_per_count, payload.price_per_minute
        field, other_field = "price_per_count", "price_per_minute"
    else:
        price, other = payload.price_per_minute, payload.price_per_count
        field, other_field = "price_per_minute", "price_per_count"

    if price is None or price <= 0:
        raise ValidationError(f"{field} must be a positive amount for {model.value} services")
    if other is not None:
        raise ValidationError(f"{other_field} must be empty for {model.value} services")
    return model


class ServiceCatalog:
    def __init__(self, session: Session):
        self.session = session

    def find_in_scope(self, name: str, department_id: int, section_id: int | None) -> ServiceInventory | None:
        statement = select(ServiceInventory).where(
            func.lower(ServiceInventory.name) == name.lower(),
            ServiceInventory.department_id == department_id,
        )
        if section_id is None:
            statement = statement.where(ServiceInventory.section_id.is_(None))
        else:
            statement = statement.where(ServiceInventory.section_id == section_id)
        return self.session.exec(statement).first()

    def create(self, payload: ServiceCreate) -> ServiceInventory:
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError("Service name is required")
        pricing_model = _validate_pricing(payload)

        department = self.session.get(Department, payload.department_id)
        if not department:
            raise NotFound(f"Department {payload.department_id} not found")
        if payload.section_id is not None:
            section = self.session.get(DepartmentSection, payload.section_id)
            if not section or section.department_id != department.id:
                raise NotFound(f"Section {payload.section_id} not found in '{department.code}'")

        if self.find_in_scope(name, department.id, payload.section_id):
            raise Conflict(f"Service '{name}' already exists in this scope")

        service = ServiceInventory(
            name=name,
            service_type=payload.service_type,
            description=payload.description,
            pricing_model=pricing_model,
            price_per_count=payload.price_per_count,
            price_per_minute=payload.price_per_minute,
            department_id=department.id,
            section_id=payload.section_id,
        )
        self.session.add(service)
        self.session.flush()
        logger.info(f"Created service '{name}' in department {department.code}")
        return service

    def list_for_section(self, section_id: int) -> list[ServiceInventory]:
        """Section services first, then department-wide ones, each alphabetical."""
        section = self.session.get(DepartmentSection, section_id)
        if not section:
            raise NotFound(f"Section {section_id} not found")

        statement = (
            select(ServiceInventory)
            .where(ServiceInventory.department_id == section.department_id)
            .where(ServiceInventory.is_active == True)
            .where(
                (ServiceInventory.section_id == section.id)
                | (ServiceInventory.section_id.is_(None))
            )
            .order_by(ServiceInventory.section_id.is_(None), ServiceInventory.name)
        )
        return list(self.session.exec(statement).all())

    def transfer(self, service_id: int, from_scope: Scope, to_scope: Scope) -> ServiceInventory:
        """Move a service to another scope. No quantity: the whole service moves."""
        service = self.session.get(ServiceInventory, service_id)
        if not service:
            raise NotFound(f"Service {service_id} not found")
        if service.department_id != from_scope.department_id or service.section_id != from_scope.section_id:
            raise NotFound(f"Service {service_id} is not in '{from_scope.code}'")
        if from_scope == to_scope:
            raise ValidationError("Source and destination must differ")
        if self.find_in_scope(service.name, to_scope.department_id, to_scope.section_id):
            raise Conflict(f"Service '{service.name}' already exists at '{to_scope.code}'")

        service.department_id = to_scope.department_id
        service.section_id = to_scope.section_id
        service.updated_at = datetime.now(timezone.utc)
        self.session.add(service)
        self.session.flush()
        logger.info(f"Moved service {service_id} from '{from_scope.code}' to '{to_scope.code}'")
        return service
