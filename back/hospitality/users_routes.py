from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from . import models, security
from .db import get_session
from .models import Department, DepartmentSection, Role, User
from .permissions import Permissions, PermissionService
from .security import PermissionChecker

router = APIRouter()


def user_response(session: Session, user: User) -> models.UserReadWithPermissions:
    role = session.get(Role, user.role_id) if user.role_id else None
    user_dict = user.model_dump(exclude={"hashed_password", "token_version"})
    user_dict["permissions"] = sorted(PermissionService.get_user_permissions(session, user))
    user_dict["role_name"] = role.name if role else None
    return models.UserReadWithPermissions(**user_dict)


def _validate_assignment(
    session: Session, role_id: int | None, department_id: int | None, section_id: int | None
) -> None:
    if role_id is not None and not session.get(Role, role_id):
        raise HTTPException(status_code=400, detail="Invalid role")
    if department_id is not None and not session.get(Department, department_id):
        raise HTTPException(status_code=400, detail="Invalid department")
    if section_id is not None:
        section = session.get(DepartmentSection, section_id)
        if not section or section.department_id != department_id:
            raise HTTPException(status_code=400, detail="Section must belong to the user's department")


@router.get("/users", response_model=list[models.UserReadWithPermissions])
def list_users(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.USERS_READ))],
    session: Session = Depends(get_session),
):
    """List all staff users."""
    users = session.exec(select(User).order_by(User.email)).all()
    return [user_response(session, user) for user in users]


@router.post("/users", response_model=models.UserReadWithPermissions, status_code=status.HTTP_201_CREATED)
def create_user(
    user_create: models.UserCreate,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.USERS_MANAGE))],
    session: Session = Depends(get_session),
):
    """Create a staff user, optionally bound to a department or section."""
    if session.exec(select(User).where(User.email == user_create.email)).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    _validate_assignment(session, user_create.role_id, user_create.department_id, user_create.section_id)

    user = User(
        email=user_create.email,
        hashed_password=security.get_password_hash(user_create.password),
        full_name=user_create.full_name,
        role_id=user_create.role_id,
        department_id=user_create.department_id,
        section_id=user_create.section_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user_response(session, user)


@router.put("/users/{user_id}", response_model=models.UserReadWithPermissions)
def update_user(
    user_id: int,
    user_update: models.UserUpdate,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.USERS_MANAGE))],
    session: Session = Depends(get_session),
):
    """Update a user (including role and department assignment)."""
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    updates = user_update.model_dump(exclude_unset=True)
    department_id = updates.get("department_id", user.department_id)
    section_id = updates.get("section_id", user.section_id)
    _validate_assignment(session, updates.get("role_id"), department_id, section_id)

    if user_update.full_name is not None:
        user.full_name = user_update.full_name
    if user_update.role_id is not None:
        user.role_id = user_update.role_id
    if "department_id" in updates:
        user.department_id = department_id
    if "section_id" in updates:
        user.section_id = section_id
    if user_update.is_active is not None:
        user.is_active = user_update.is_active
    if user_update.password:
        user.hashed_password = security.get_password_hash(user_update.password)
        # Revoke tokens issued with the old password
        user.token_version += 1

    session.add(user)
    session.commit()
    session.refresh(user)
    return user_response(session, user)
