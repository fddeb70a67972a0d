from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from . import models, security
from .db import get_session
from .permissions import Permissions, PermissionService
from .security import PermissionChecker
from .models import Role, RolePermission, User

router = APIRouter()


def _validate_permissions(permissions: list[str]) -> None:
    known = {p.value for p in Permissions}
    unknown = [p for p in permissions if p not in known]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown permissions: {', '.join(unknown)}")


def _role_response(session: Session, role: Role) -> models.RoleResponse:
    role_perms = session.exec(
        select(RolePermission.permission).where(RolePermission.role_id == role.id)
    ).all()
    return models.RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        is_default=role.is_default,
        permissions=list(role_perms),
    )


@router.get("/roles", response_model=list[models.RoleResponse])
def list_roles(
    current_user: Annotated[User, Depends(security.get_current_user)],
    session: Session = Depends(get_session),
):
    """List all roles."""
    # Allow if user has ROLES_MANAGE or USERS_MANAGE
    perms = PermissionService.get_user_permissions(session, current_user)
    if not (Permissions.ROLES_MANAGE.value in perms or Permissions.USERS_MANAGE.value in perms):
        raise HTTPException(status_code=403, detail="Not authorized")

    roles = session.exec(select(Role).order_by(Role.name)).all()
    return [_role_response(session, role) for role in roles]


@router.post("/roles", response_model=models.RoleResponse)
def create_role(
    role_create: models.RoleCreate,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.ROLES_MANAGE))],
    session: Session = Depends(get_session),
):
    """Create a new custom role."""
    _validate_permissions(role_create.permissions)
    if session.exec(select(Role).where(Role.name == role_create.name)).first():
        raise HTTPException(status_code=409, detail="Role already exists")

    role = Role(name=role_create.name, description=role_create.description, is_default=False)
    session.add(role)
    session.commit()
    session.refresh(role)

    for perm in role_create.permissions:
        session.add(RolePermission(role_id=role.id, permission=perm))
    session.commit()

    return _role_response(session, role)


@router.put("/roles/{role_id}", response_model=models.RoleResponse)
def update_role(
    role_id: int,
    role_update: models.RoleUpdate,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.ROLES_MANAGE))],
    session: Session = Depends(get_session),
):
    """Update a custom role."""
    role = session.get(Role, role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    if role.is_default:
        raise HTTPException(status_code=400, detail="Cannot edit default roles")

    if role_update.name is not None:
        role.name = role_update.name
    if role_update.description is not None:
        role.description = role_update.description
    session.add(role)

    if role_update.permissions is not None:
        _validate_permissions(role_update.permissions)
        existing = session.exec(
            select(RolePermission).where(RolePermission.role_id == role.id)
        ).all()
        for rp in existing:
            session.delete(rp)
        for perm in role_update.permissions:
            session.add(RolePermission(role_id=role.id, permission=perm))

    session.commit()
    session.refresh(role)
    return _role_response(session, role)


@router.delete("/roles/{role_id}")
def delete_role(
    role_id: int,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.ROLES_MANAGE))],
    session: Session = Depends(get_session),
):
    """Delete a custom role."""
    role = session.get(Role, role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    if role.is_default:
        raise HTTPException(status_code=400, detail="Cannot delete default roles")

    session.delete(role)
    session.commit()
    return {"status": "deleted"}


@router.get("/permissions")
def list_permissions(
    current_user: Annotated[User, Depends(security.get_current_user)],
):
    """List all available permissions."""
    return [p.value for p in Permissions]
