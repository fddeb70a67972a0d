"""
Scope resolution

A scope is where stock, extras and services are balanced: either a whole
department (parent-level stock) or one section of it. The two are distinct;
parent stock is never used to satisfy a section request or vice versa.
"""

from dataclasses import dataclass

from sqlmodel import Session, select

from .errors import NotFound, ValidationError
from .models import Department, DepartmentSection

SECTION_SEPARATOR = ":"


@dataclass(frozen=True)
class ParentScope:
    department_id: int
    department_code: str

    @property
    def section_id(self) -> None:
        return None

    @property
    def code(self) -> str:
        return self.department_code


@dataclass(frozen=True)
class SectionScope:
    department_id: int
    department_code: str
    section_id: int
    section_slug: str

    @property
    def code(self) -> str:
        return f"{self.department_code}{SECTION_SEPARATOR}{self.section_slug}"


Scope = ParentScope | SectionScope


def parse_code(code: str) -> tuple[str, str | None]:
    """Split `dept` or `dept:slug` into its parts. The slug is everything after the first colon."""
    if not code or not code.strip():
        raise ValidationError("Department code is required")
    code = code.strip()
    if SECTION_SEPARATOR not in code:
        return code, None
    department_code, slug = code.split(SECTION_SEPARATOR, 1)
    if not department_code or not slug:
        raise ValidationError(f"Malformed section code '{code}'")
    return department_code, slug


def resolve_scope(session: Session, code: str) -> Scope:
    """Resolve a department or section code to a scope, or raise NotFound."""
    department_code, slug = parse_code(code)

    department = session.exec(
        select(Department).where(Department.code == department_code)
    ).first()
    if not department or not department.is_active:
        raise NotFound(f"Department '{department_code}' not found")

    if slug is None:
        return ParentScope(department_id=department.id, department_code=department.code)

    section = session.exec(
        select(DepartmentSection).where(
            DepartmentSection.department_id == department.id,
            DepartmentSection.slug == slug,
        )
    ).first()
    if not section or not section.is_active:
        raise NotFound(f"Section '{code}' not found")

    return SectionScope(
        department_id=department.id,
        department_code=department.code,
        section_id=section.id,
        section_slug=section.slug,
    )


def scope_from_ids(session: Session, department_id: int, section_id: int | None) -> Scope:
    """Rebuild a scope from stored ids."""
    department = session.get(Department, department_id)
    if not department:
        raise NotFound(f"Department {department_id} not found")
    if section_id is None:
        return ParentScope(department_id=department.id, department_code=department.code)

    section = session.get(DepartmentSection, section_id)
    if not section or section.department_id != department.id:
        raise NotFound(f"Section {section_id} not found in department '{department.code}'")
    return SectionScope(
        department_id=department.id,
        department_code=department.code,
        section_id=section.id,
        section_slug=section.slug,
    )


def section_scope(session: Session, section_id: int) -> SectionScope:
    section = session.get(DepartmentSection, section_id)
    if not section:
        raise NotFound(f"Section {section_id} not found")
    return scope_from_ids(session, section.department_id, section.id)
