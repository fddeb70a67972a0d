from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from . import models
from .db import get_session
from .inventory_models import (
    DepartmentTransfer,
    ExtraTransferRequest,
    ItemTransferRequest,
    ServiceTransferRequest,
    TransferDecision,
    TransferItemRead,
    TransferRead,
    TransferStatus,
)
from .permissions import Permissions
from .security import PermissionChecker
from .transfer_service import TransferCoordinator

router = APIRouter()


def transfer_response(coordinator: TransferCoordinator, transfer: DepartmentTransfer) -> TransferRead:
    return TransferRead(
        **transfer.model_dump(exclude={"items"}),
        items=[
            TransferItemRead(product_type=i.product_type, product_id=i.product_id, quantity=i.quantity)
            for i in coordinator.items(transfer.id)
        ],
    )


@router.post("/transfers/items", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
def transfer_items(
    request: ItemTransferRequest,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.TRANSFERS_CREATE))],
    session: Session = Depends(get_session),
):
    coordinator = TransferCoordinator(session, current_user)
    transfer = coordinator.transfer_items(
        request.from_code, request.to_code, request.item_id, request.quantity, request.notes
    )
    return transfer_response(coordinator, transfer)


@router.post("/transfers/extras", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
def transfer_extra(
    request: ExtraTransferRequest,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.TRANSFERS_CREATE))],
    session: Session = Depends(get_session),
):
    coordinator = TransferCoordinator(session, current_user)
    transfer = coordinator.transfer_extra(
        request.from_code, request.to_code, request.extra_id, request.quantity, request.notes
    )
    return transfer_response(coordinator, transfer)


@router.post("/transfers/services", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
def transfer_service(
    request: ServiceTransferRequest,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.TRANSFERS_CREATE))],
    session: Session = Depends(get_session),
):
    coordinator = TransferCoordinator(session, current_user)
    transfer = coordinator.transfer_service(
        request.from_code, request.to_code, request.service_id, request.notes
    )
    return transfer_response(coordinator, transfer)


@router.get("/transfers", response_model=list[TransferRead])
def list_transfers(
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.TRANSFERS_READ))],
    session: Session = Depends(get_session),
    status: TransferStatus | None = None,
    department_code: str | None = None,
):
    coordinator = TransferCoordinator(session, current_user)
    return [
        transfer_response(coordinator, t)
        for t in coordinator.list_transfers(status=status, department_code=department_code)
    ]


@router.post("/departments/{code}/transfers/{transfer_id}/approve", response_model=TransferRead)
def approve_transfer(
    code: str,
    transfer_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.TRANSFERS_APPROVE))],
    session: Session = Depends(get_session),
):
    """Approve a pending transfer addressed to `code` (department or `dept:slug`)."""
    coordinator = TransferCoordinator(session, current_user)
    return transfer_response(coordinator, coordinator.approve(transfer_id, code))


@router.post("/departments/{code}/transfers/{transfer_id}/reject", response_model=TransferRead)
def reject_transfer(
    code: str,
    transfer_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.TRANSFERS_APPROVE))],
    session: Session = Depends(get_session),
    decision: TransferDecision | None = None,
):
    coordinator = TransferCoordinator(session, current_user)
    transfer = coordinator.reject(transfer_id, code, decision.reason if decision else None)
    return transfer_response(coordinator, transfer)
