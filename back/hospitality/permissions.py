from enum import Enum
from typing import Set

from sqlmodel import Session, select

from .models import Role, RolePermission, User


class Permissions(str, Enum):
    # Orders
    ORDERS_READ = "orders:read"
    ORDERS_CREATE = "orders:create"
    ORDERS_UPDATE = "orders:update"
    ORDERS_CANCEL = "orders:cancel"
    ORDERS_PAY = "orders:pay"
    ORDERS_REFUND = "orders:refund"
    DISCOUNTS_MANAGE = "discounts:manage"

    # Inventory, extras and services
    INVENTORY_READ = "inventory:read"
    INVENTORY_MANAGE = "inventory:manage"
    SERVICES_READ = "services:read"
    SERVICES_MANAGE = "services:manage"

    # Transfers
    TRANSFERS_READ = "transfers:read"
    TRANSFERS_CREATE = "transfers:create"
    TRANSFERS_APPROVE = "transfers:approve"

    # Rooms & maintenance
    ROOMS_READ = "rooms:read"
    ROOMS_UPDATE = "rooms:update"
    MAINTENANCE_MANAGE = "maintenance:manage"

    # Users & Roles
    USERS_READ = "users:read"
    USERS_MANAGE = "users:manage"
    ROLES_MANAGE = "roles:manage"


class PermissionService:
    @staticmethod
    def get_user_permissions(session: Session, user: User) -> Set[str]:
        """Get all permissions for a user based on their role."""
        if not user.role_id:
            return set()

        role = session.get(Role, user.role_id)
        if not role:
            return set()

        statement = select(RolePermission.permission).where(RolePermission.role_id == user.role_id)
        return set(session.exec(statement).all())

    @staticmethod
    def has_permission(session: Session, user: User, required_permission: str) -> bool:
        """Check if user has specific permission."""
        perms = PermissionService.get_user_permissions(session, user)
        return required_permission in perms
