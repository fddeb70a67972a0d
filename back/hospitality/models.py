from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


# ============ ORGANIZATION ============

class Department(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)  # e.g. "restaurant", "bar", "gym"
    name: str
    description: str | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    sections: list["DepartmentSection"] = Relationship(back_populates="department")


class DepartmentSection(SQLModel, table=True):
    """A sub-unit of a department, addressed as `department_code:slug`."""
    __tablename__ = "department_section"
    __table_args__ = (UniqueConstraint("department_id", "slug"),)

    id: int | None = Field(default=None, primary_key=True)
    department_id: int = Field(foreign_key="department.id", index=True)
    slug: str = Field(index=True)  # e.g. "main", "pool-bar"
    name: str
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    department: Department = Relationship(back_populates="sections")


class Customer(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    first_name: str
    last_name: str
    email: str = Field(index=True)
    phone: str | None = None
    is_guest: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============ STAFF ============

class Role(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    description: str | None = None
    is_default: bool = Field(default=False)  # Seeded roles cannot be edited
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    permissions: list["RolePermission"] = Relationship(
        back_populates="role", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )
    users: list["User"] = Relationship(back_populates="role")


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permission"

    id: int | None = Field(default=None, primary_key=True)
    role_id: int = Field(foreign_key="role.id", index=True)
    permission: str  # Permissions enum value, e.g. "orders:create"

    role: Role = Relationship(back_populates="permissions")


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str | None = None
    is_active: bool = Field(default=True)
    token_version: int = Field(default=0)  # Bump to revoke issued tokens

    role_id: int | None = Field(default=None, foreign_key="role.id")
    role: Role | None = Relationship(back_populates="users")

    # Principal identity: the department (and optionally section) the user acts for
    department_id: int | None = Field(default=None, foreign_key="department.id")
    section_id: int | None = Field(default=None, foreign_key="department_section.id")


# ============ AUDIT ============

class AuditLog(SQLModel, table=True):
    """Append-only record of business changes. Never updated after insert."""
    __tablename__ = "audit_log"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    action: str = Field(index=True)  # e.g. "order.cancel"
    resource_type: str = Field(index=True)
    resource_id: int | None = Field(default=None, index=True)
    changes: str | None = None  # JSON string
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============ REQUEST / RESPONSE MODELS ============

class UserCreate(SQLModel):
    email: str
    password: str
    full_name: str | None = None
    role_id: int | None = None
    department_id: int | None = None
    section_id: int | None = None


class UserUpdate(SQLModel):
    full_name: str | None = None
    role_id: int | None = None
    department_id: int | None = None
    section_id: int | None = None
    password: str | None = None
    is_active: bool | None = None


class UserReadWithPermissions(SQLModel):
    id: int
    email: str
    full_name: str | None = None
    is_active: bool
    role_id: int | None = None
    role_name: str | None = None
    department_id: int | None = None
    section_id: int | None = None
    permissions: list[str] = []


class RoleCreate(SQLModel):
    name: str
    description: str | None = None
    permissions: list[str] = []


class RoleUpdate(SQLModel):
    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None


class RoleResponse(SQLModel):
    id: int
    name: str
    description: str | None = None
    is_default: bool
    permissions: list[str] = []
