import pytest
from sqlmodel import select

from hospitality.errors import Conflict, Forbidden, InsufficientStock, NotFound, ValidationError
from hospitality.inventory_models import InventoryMovement, MovementType, ServiceInventory, TransferStatus
from hospitality.inventory_service import ExtrasLedger, InventoryLedger
from hospitality.order_models import OrderCreate, OrderItemCreate
from hospitality.order_service import OrderEngine
from hospitality.scopes import resolve_scope
from hospitality.transfer_service import TransferCoordinator


def on_hand(session, code, item_id):
    return InventoryLedger(session).get_balance(resolve_scope(session, code), item_id).quantity


def test_same_department_transfer_applies_immediately(session, hotel):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "restaurant:terrace", hotel.item.id, 4)

    assert transfer.status == TransferStatus.approved
    assert transfer.decided_at is not None
    assert on_hand(session, "restaurant:main", hotel.item.id) == 6
    assert on_hand(session, "restaurant:terrace", hotel.item.id) == 4

    movements = session.exec(
        select(InventoryMovement).where(InventoryMovement.reference == f"transfer:{transfer.id}")
    ).all()
    assert sorted((m.movement_type, m.quantity) for m in movements) == [
        (MovementType.transfer_in, 4),
        (MovementType.transfer_out, -4),
    ]


def test_section_to_parent_transfer(session, hotel):
    TransferCoordinator(session).transfer_items("restaurant:main", "restaurant", hotel.item.id, 10)

    assert on_hand(session, "restaurant:main", hotel.item.id) == 0
    assert on_hand(session, "restaurant", hotel.item.id) == 10


def test_cross_department_transfer_waits_for_destination(session, seed, hotel):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 4)

    assert transfer.status == TransferStatus.pending
    assert on_hand(session, "restaurant:main", hotel.item.id) == 10
    with pytest.raises(NotFound):
        on_hand(session, "bar:pool", hotel.item.id)

    bartender = seed.user("bar@example.com", department=hotel.bar, section=hotel.pool)
    transfer = TransferCoordinator(session, bartender).approve(transfer.id, "bar:pool")

    assert transfer.status == TransferStatus.approved
    assert transfer.decided_by_id == bartender.id
    assert on_hand(session, "restaurant:main", hotel.item.id) == 6
    assert on_hand(session, "bar:pool", hotel.item.id) == 4


def test_department_manager_may_approve_for_any_section(session, seed, hotel):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 2)
    manager = seed.user("barboss@example.com", department=hotel.bar)

    transfer = TransferCoordinator(session, manager).approve(transfer.id, "bar:pool")

    assert transfer.status == TransferStatus.approved


@pytest.mark.parametrize(
    "department,section,destination",
    [
        ("restaurant", "main", "bar:pool"),
        ("bar", "pool", "bar"),
        ("restaurant", None, "bar:pool"),
    ],
)
def test_only_destination_principals_decide(session, seed, hotel, department, section, destination):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 2)
    dept = getattr(hotel, department)
    user = seed.user(department=dept, section=getattr(hotel, section) if section else None)

    with pytest.raises(Forbidden):
        TransferCoordinator(session, user).approve(transfer.id, destination)

    assert session.get(type(transfer), transfer.id).status == TransferStatus.pending
    assert on_hand(session, "restaurant:main", hotel.item.id) == 10


def test_section_principal_of_another_section_is_forbidden(session, seed, hotel):
    bar_lounge = seed.section(hotel.bar, "lounge")
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 2)
    user = seed.user(department=hotel.bar, section=bar_lounge)

    with pytest.raises(Forbidden):
        TransferCoordinator(session, user).approve(transfer.id, "bar:pool")


def test_transfer_cannot_be_approved_twice(session, seed, hotel):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 2)
    bartender = seed.user(department=hotel.bar, section=hotel.pool)
    coordinator = TransferCoordinator(session, bartender)
    coordinator.approve(transfer.id, "bar:pool")

    with pytest.raises(Conflict):
        coordinator.approve(transfer.id, "bar:pool")
    with pytest.raises(Conflict):
        coordinator.reject(transfer.id, "bar:pool")

    assert on_hand(session, "bar:pool", hotel.item.id) == 2


def test_reject_moves_nothing(session, seed, hotel):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 2)
    bartender = seed.user(department=hotel.bar, section=hotel.pool)

    transfer = TransferCoordinator(session, bartender).reject(transfer.id, "bar:pool", "No space")

    assert transfer.status == TransferStatus.rejected
    assert transfer.rejection_reason == "No space"
    assert on_hand(session, "restaurant:main", hotel.item.id) == 10


def test_request_checks_available_stock(session, hotel):
    OrderEngine(session).create_order(
        OrderCreate(
            items=[
                OrderItemCreate(
                    product_id=hotel.item.id, quantity=8, department_code="restaurant:main", unit_price=500
                )
            ]
        )
    )
    coordinator = TransferCoordinator(session)

    with pytest.raises(InsufficientStock):
        coordinator.transfer_items("restaurant:main", "bar:pool", hotel.item.id, 3)
    with pytest.raises(ValidationError):
        coordinator.transfer_items("restaurant:main", "bar:pool", hotel.item.id, 0)
    assert coordinator.list_transfers() == []


def test_stock_depleted_before_approval(session, seed, hotel):
    transfer = TransferCoordinator(session).transfer_items("restaurant:main", "bar:pool", hotel.item.id, 6)
    TransferCoordinator(session).transfer_items("restaurant:main", "restaurant:terrace", hotel.item.id, 6)
    bartender = seed.user(department=hotel.bar, section=hotel.pool)

    with pytest.raises(InsufficientStock):
        TransferCoordinator(session, bartender).approve(transfer.id, "bar:pool")

    assert session.get(type(transfer), transfer.id).status == TransferStatus.pending
    assert on_hand(session, "restaurant:main", hotel.item.id) == 4


def test_same_scope_is_rejected(session, hotel):
    with pytest.raises(ValidationError):
        TransferCoordinator(session).transfer_items("restaurant:main", "restaurant:main", hotel.item.id, 1)


def test_service_transfer_moves_the_service(session, seed, hotel):
    massage = seed.service("Massage", hotel.restaurant, hotel.main)

    transfer = TransferCoordinator(session).transfer_service("restaurant:main", "restaurant:terrace", massage.id)

    assert transfer.status == TransferStatus.approved
    session.refresh(massage)
    assert massage.section_id == hotel.terrace.id


def test_service_transfer_conflicts_with_existing_name(session, seed, hotel):
    massage = seed.service("Massage", hotel.restaurant, hotel.main)
    seed.service("massage", hotel.restaurant, hotel.terrace)
    coordinator = TransferCoordinator(session)

    with pytest.raises(Conflict):
        coordinator.transfer_service("restaurant:main", "restaurant:terrace", massage.id)
    with pytest.raises(NotFound):
        coordinator.transfer_service("bar", "restaurant:terrace", massage.id)

    assert session.get(ServiceInventory, massage.id).section_id == hotel.main.id


def test_untracked_extra_transfer_moves_assignment(session, seed, hotel):
    flag = seed.extra("Late checkout", track_inventory=False)
    seed.allocate("restaurant:main", flag)
    transfer = TransferCoordinator(session).transfer_extra("restaurant:main", "bar", flag.id)
    bar_manager = seed.user(department=hotel.bar)

    TransferCoordinator(session, bar_manager).approve(transfer.id, "bar")

    ledger = ExtrasLedger(session)
    assert ledger.get_balance(resolve_scope(session, "bar"), flag.id).available == 1
    with pytest.raises(NotFound):
        ledger.get_balance(resolve_scope(session, "restaurant:main"), flag.id)


def test_list_transfers_filters_by_status_and_department(session, seed, hotel):
    coordinator = TransferCoordinator(session)
    pending = coordinator.transfer_items("restaurant:main", "bar:pool", hotel.item.id, 1)
    applied = coordinator.transfer_items("restaurant:main", "restaurant:terrace", hotel.item.id, 1)

    assert [t.id for t in coordinator.list_transfers(TransferStatus.pending)] == [pending.id]
    assert [t.id for t in coordinator.list_transfers(department_code="bar")] == [pending.id]
    assert {t.id for t in coordinator.list_transfers(department_code="restaurant")} == {pending.id, applied.id}
