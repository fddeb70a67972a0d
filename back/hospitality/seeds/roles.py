import logging

from sqlmodel import Session, select

from ..models import Role, RolePermission, User
from ..permissions import Permissions

logger = logging.getLogger(__name__)


DEFAULT_ROLES = {
    "Admin": {
        "description": "Full access to all features",
        "permissions": [p.value for p in Permissions],
    },
    "Manager": {
        "description": "Day-to-day operations across departments",
        "permissions": [
            Permissions.ORDERS_READ,
            Permissions.ORDERS_CREATE,
            Permissions.ORDERS_UPDATE,
            Permissions.ORDERS_CANCEL,
            Permissions.ORDERS_PAY,
            Permissions.ORDERS_REFUND,
            Permissions.DISCOUNTS_MANAGE,
            Permissions.INVENTORY_READ,
            Permissions.INVENTORY_MANAGE,
            Permissions.SERVICES_READ,
            Permissions.SERVICES_MANAGE,
            Permissions.TRANSFERS_READ,
            Permissions.TRANSFERS_CREATE,
            Permissions.TRANSFERS_APPROVE,
            Permissions.ROOMS_READ,
            Permissions.ROOMS_UPDATE,
            Permissions.MAINTENANCE_MANAGE,
            Permissions.USERS_READ,
        ],
    },
    "Front Desk": {
        "description": "Orders, payments and room status",
        "permissions": [
            Permissions.ORDERS_READ,
            Permissions.ORDERS_CREATE,
            Permissions.ORDERS_PAY,
            Permissions.ORDERS_CANCEL,
            Permissions.SERVICES_READ,
            Permissions.ROOMS_READ,
            Permissions.ROOMS_UPDATE,
        ],
    },
    "Department Staff": {
        "description": "Fulfil orders and move stock for their department",
        "permissions": [
            Permissions.ORDERS_READ,
            Permissions.ORDERS_UPDATE,
            Permissions.INVENTORY_READ,
            Permissions.SERVICES_READ,
            Permissions.TRANSFERS_READ,
            Permissions.TRANSFERS_CREATE,
            Permissions.TRANSFERS_APPROVE,
        ],
    },
    "Maintenance": {
        "description": "Work maintenance requests",
        "permissions": [
            Permissions.ROOMS_READ,
            Permissions.MAINTENANCE_MANAGE,
        ],
    },
}


def seed_roles(session: Session) -> dict[str, Role]:
    """Create default roles if they don't exist."""
    created_roles = {}

    for role_name, role_data in DEFAULT_ROLES.items():
        role = session.exec(
            select(Role).where(Role.name == role_name, Role.is_default == True)
        ).first()

        if not role:
            role = Role(
                name=role_name,
                description=role_data["description"],
                is_default=True,
            )
            session.add(role)
            session.commit()
            session.refresh(role)

            for perm in role_data["permissions"]:
                session.add(RolePermission(role_id=role.id, permission=Permissions(perm).value))
            session.commit()
            logger.info(f"Seeded role {role_name}")

        created_roles[role_name] = role

    return created_roles


def assign_admin_role_to_existing_users(session: Session) -> None:
    """Assign Admin role to users who don't have a role."""
    admin_role = session.exec(
        select(Role).where(Role.name == "Admin", Role.is_default == True)
    ).first()
    if not admin_role:
        return

    users = session.exec(select(User).where(User.role_id == None)).all()
    for user in users:
        user.role_id = admin_role.id
        session.add(user)

    session.commit()
