from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from . import models
from .catalog_service import ServiceCatalog, price_for
from .db import get_session, unit_of_work
from .errors import NotFound
from .inventory_models import ServiceCreate, ServiceInventory, ServiceRead
from .permissions import Permissions
from .security import PermissionChecker

router = APIRouter()


@router.post("/services", response_model=ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(
    service_create: ServiceCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.SERVICES_MANAGE))],
    session: Session = Depends(get_session),
):
    with unit_of_work(session):
        service = ServiceCatalog(session).create(service_create)
    session.refresh(service)
    return service


@router.get("/services/by-section/{section_id}", response_model=list[ServiceRead])
def list_services_for_section(
    section_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.SERVICES_READ))],
    session: Session = Depends(get_session),
):
    """Section services first, then department-wide ones."""
    return ServiceCatalog(session).list_for_section(section_id)


@router.get("/services/{service_id}/quote")
def quote_service(
    service_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.SERVICES_READ))],
    session: Session = Depends(get_session),
    units: int = Query(ge=1),
):
    """Price for `units` counts or minutes, in cents."""
    service = session.get(ServiceInventory, service_id)
    if not service or not service.is_active:
        raise NotFound(f"Service {service_id} not found")
    return {
        "service_id": service.id,
        "pricing_model": service.pricing_model.value,
        "units": units,
        "amount": price_for(service, units),
    }
