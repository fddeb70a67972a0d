from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from . import models
from .db import get_session
from .permissions import Permissions
from .room_models import (
    MaintenanceAction,
    MaintenanceRequest,
    MaintenanceRequestCreate,
    Unit,
    UnitStatusHistory,
    UnitStatusUpdate,
)
from .room_service import RoomService
from .security import PermissionChecker

router = APIRouter()


# ============ UNITS ============

@router.put("/rooms/{unit_id}/status", response_model=Unit)
def update_unit_status(
    unit_id: int,
    status_update: UnitStatusUpdate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ROOMS_UPDATE))],
    session: Session = Depends(get_session),
):
    """Change a unit's status. OCCUPIED needs a confirmed or checked-in reservation."""
    return RoomService(session, current_user.id).update_unit_status(
        unit_id, status_update.status, status_update.reason, status_update.notes
    )


@router.get("/rooms/{unit_id}/status-history", response_model=list[UnitStatusHistory])
def unit_status_history(
    unit_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ROOMS_READ))],
    session: Session = Depends(get_session),
):
    return RoomService(session).status_history(unit_id)


# ============ MAINTENANCE ============

@router.post("/maintenance/requests", response_model=MaintenanceRequest, status_code=status.HTTP_201_CREATED)
def create_maintenance_request(
    request_create: MaintenanceRequestCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.MAINTENANCE_MANAGE))],
    session: Session = Depends(get_session),
):
    return RoomService(session, current_user.id).create_request(request_create)


@router.post("/maintenance/requests/{request_id}/{action}", response_model=MaintenanceRequest)
def maintenance_action(
    request_id: int,
    action: str,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.MAINTENANCE_MANAGE))],
    session: Session = Depends(get_session),
    payload: MaintenanceAction | None = None,
):
    """assign, start, hold, complete, verify or cancel a request"""
    return RoomService(session, current_user.id).perform_action(request_id, action, payload)
