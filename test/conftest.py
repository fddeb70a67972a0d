import os

# Must be set before the application settings are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from hospitality import inventory_models, order_models, room_models  # noqa: F401
from hospitality.db import get_session
from hospitality.inventory_models import (
    Extra,
    InventoryItem,
    PricingModel,
    ServiceInventory,
)
from hospitality.inventory_service import ExtrasLedger, InventoryLedger
from hospitality.main import app
from hospitality.models import Customer, Department, DepartmentSection, Role, RolePermission, User
from hospitality.order_models import DiscountRule, DiscountType
from hospitality.permissions import Permissions
from hospitality.room_models import Reservation, ReservationStatus, Unit
from hospitality.scopes import resolve_scope
from hospitality.security import create_access_token, get_password_hash


class Seeder:
    """Creates committed fixtures rows."""

    def __init__(self, session: Session):
        self.session = session

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def department(self, code: str, name: str | None = None) -> Department:
        return self._save(Department(code=code, name=name or code.title()))

    def section(self, department: Department, slug: str, name: str | None = None) -> DepartmentSection:
        return self._save(
            DepartmentSection(department_id=department.id, slug=slug, name=name or slug.title())
        )

    def item(self, sku: str = "ITEM-1", name: str = "Club Sandwich", unit_price: int = 500, reorder_level: int = 0) -> InventoryItem:
        return self._save(
            InventoryItem(sku=sku, name=name, unit_price=unit_price, reorder_level=reorder_level)
        )

    def stock(self, code: str, item: InventoryItem, quantity: int) -> None:
        InventoryLedger(self.session).receive(resolve_scope(self.session, code), item.id, quantity)
        self.session.commit()

    def extra(self, name: str = "Extra towel", track_inventory: bool = True, price: int = 200) -> Extra:
        return self._save(Extra(name=name, track_inventory=track_inventory, price=price))

    def allocate(self, code: str, extra: Extra, quantity: int | None = None) -> None:
        ExtrasLedger(self.session).allocate(resolve_scope(self.session, code), extra.id, quantity)
        self.session.commit()

    def service(
        self,
        name: str,
        department: Department,
        section: DepartmentSection | None = None,
        price_per_count: int | None = 3000,
    ) -> ServiceInventory:
        return self._save(
            ServiceInventory(
                name=name,
                pricing_model=PricingModel.per_count,
                price_per_count=price_per_count,
                department_id=department.id,
                section_id=section.id if section else None,
            )
        )

    def customer(self) -> Customer:
        return self._save(Customer(first_name="Ada", last_name="Lovelace", email="ada@example.com"))

    def discount(self, code: str, discount_type: DiscountType, value: int, min_order_amount: int = 0) -> DiscountRule:
        return self._save(
            DiscountRule(
                code=code,
                name=code.title(),
                discount_type=discount_type,
                value=value,
                min_order_amount=min_order_amount,
            )
        )

    def role(self, name: str = "Tester", permissions: list[Permissions] | None = None) -> Role:
        role = self._save(Role(name=name))
        for perm in permissions if permissions is not None else list(Permissions):
            self.session.add(RolePermission(role_id=role.id, permission=perm.value))
        self.session.commit()
        return role

    def user(
        self,
        email: str = "staff@example.com",
        department: Department | None = None,
        section: DepartmentSection | None = None,
        role: Role | None = None,
        password: str = "secret",
    ) -> User:
        return self._save(
            User(
                email=email,
                hashed_password=get_password_hash(password),
                role_id=role.id if role else None,
                department_id=department.id if department else None,
                section_id=section.id if section else None,
            )
        )

    def headers(self, user: User) -> dict:
        token = create_access_token({"sub": user.email, "token_version": user.token_version})
        return {"Authorization": f"Bearer {token}"}

    def unit(self, room_number: str = "101") -> Unit:
        return self._save(Unit(room_number=room_number))

    def reservation(self, unit: Unit, status: ReservationStatus) -> Reservation:
        today = date.today()
        return self._save(
            Reservation(
                unit_id=unit.id,
                status=status,
                check_in_date=today,
                check_out_date=today + timedelta(days=2),
            )
        )


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="seed")
def seed_fixture(session):
    return Seeder(session)


def build_hotel(seed: Seeder):
    """Two departments with sections and one stocked item."""

    class Hotel:
        pass

    hotel = Hotel()
    hotel.restaurant = seed.department("restaurant")
    hotel.main = seed.section(hotel.restaurant, "main")
    hotel.terrace = seed.section(hotel.restaurant, "terrace")
    hotel.bar = seed.department("bar")
    hotel.pool = seed.section(hotel.bar, "pool")
    hotel.item = seed.item()
    seed.stock("restaurant:main", hotel.item, 10)
    return hotel


@pytest.fixture(name="hotel")
def hotel_fixture(seed):
    return build_hotel(seed)


@pytest.fixture(name="file_engine")
def file_engine_fixture(tmp_path):
    """A file database shared by sessions on separate threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'hospitality.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="file_hotel")
def file_hotel_fixture(file_engine):
    with Session(file_engine) as session:
        yield build_hotel(Seeder(session))


@pytest.fixture(name="client")
def client_fixture(session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
