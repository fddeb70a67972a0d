import pytest
from sqlmodel import select

from hospitality.errors import Conflict, ValidationError
from hospitality.room_models import (
    MaintenanceAction,
    MaintenanceRequestCreate,
    MaintenanceStatus,
    ReservationStatus,
    UnitStatus,
    UnitStatusHistory,
)
from hospitality.room_service import RoomService


def open_request(session, unit, description="Leaking tap"):
    return RoomService(session).create_request(
        MaintenanceRequestCreate(unit_id=unit.id, category="plumbing", description=description)
    )


def test_occupied_requires_a_reservation(session, seed):
    unit = seed.unit()

    with pytest.raises(Conflict):
        RoomService(session).update_unit_status(unit.id, "OCCUPIED")

    session.refresh(unit)
    assert unit.status == UnitStatus.AVAILABLE
    assert session.exec(select(UnitStatusHistory)).all() == []


def test_pending_reservation_does_not_allow_occupied(session, seed):
    unit = seed.unit()
    seed.reservation(unit, ReservationStatus.PENDING)

    with pytest.raises(Conflict):
        RoomService(session).update_unit_status(unit.id, "OCCUPIED")


@pytest.mark.parametrize("status", [ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN])
def test_occupied_with_reservation_writes_history(session, seed, status):
    unit = seed.unit()
    seed.reservation(unit, status)

    unit = RoomService(session).update_unit_status(unit.id, "OCCUPIED", reason="Check-in")

    assert unit.status == UnitStatus.OCCUPIED
    (entry,) = RoomService(session).status_history(unit.id)
    assert entry.previous_status == UnitStatus.AVAILABLE
    assert entry.new_status == UnitStatus.OCCUPIED
    assert entry.reason == "Check-in"


def test_invalid_unit_status(session, seed):
    unit = seed.unit()
    with pytest.raises(ValidationError):
        RoomService(session).update_unit_status(unit.id, "occupied-ish")


def test_maintenance_lifecycle_releases_the_unit(session, seed):
    unit = seed.unit()
    request = open_request(session, unit)
    session.refresh(unit)
    assert unit.status == UnitStatus.MAINTENANCE

    rooms = RoomService(session)
    rooms.perform_action(request.id, "start")
    request = rooms.perform_action(request.id, "complete", MaintenanceAction(actual_cost_cents=4500))
    assert request.status == MaintenanceStatus.COMPLETED
    assert request.actual_cost_cents == 4500

    request = rooms.perform_action(request.id, "verify", MaintenanceAction(approved=True))

    assert request.status == MaintenanceStatus.CLOSED
    assert request.verified_at is not None
    session.refresh(unit)
    assert unit.status == UnitStatus.AVAILABLE
    assert [h.new_status for h in rooms.status_history(unit.id)] == [
        UnitStatus.MAINTENANCE,
        UnitStatus.AVAILABLE,
    ]


def test_unit_stays_in_maintenance_while_requests_are_open(session, seed):
    unit = seed.unit()
    first = open_request(session, unit)
    open_request(session, unit, "Broken lamp")
    rooms = RoomService(session)

    rooms.perform_action(first.id, "cancel")

    session.refresh(unit)
    assert unit.status == UnitStatus.MAINTENANCE


def test_rejected_verification_reopens_work(session, seed):
    unit = seed.unit()
    request = open_request(session, unit)
    rooms = RoomService(session)
    rooms.perform_action(request.id, "start")
    rooms.perform_action(request.id, "complete")

    request = rooms.perform_action(request.id, "verify", MaintenanceAction(approved=False))

    assert request.status == MaintenanceStatus.IN_PROGRESS
    assert request.completed_at is None
    session.refresh(unit)
    assert unit.status == UnitStatus.MAINTENANCE


def test_illegal_maintenance_actions(session, seed):
    unit = seed.unit()
    request = open_request(session, unit)
    rooms = RoomService(session)

    with pytest.raises(Conflict):
        rooms.perform_action(request.id, "complete")
    with pytest.raises(ValidationError):
        rooms.perform_action(request.id, "demolish")
    with pytest.raises(ValidationError):
        rooms.perform_action(request.id, "assign")
    with pytest.raises(ValidationError):
        RoomService(session).create_request(
            MaintenanceRequestCreate(unit_id=unit.id, category="plumbing", description=" ")
        )


def test_cancelling_last_request_keeps_unit_in_maintenance(session, seed):
    unit = seed.unit()
    request = open_request(session, unit)

    request = RoomService(session).perform_action(request.id, "cancel")

    assert request.status == MaintenanceStatus.CANCELLED
    session.refresh(unit)
    assert unit.status == UnitStatus.MAINTENANCE
    assert [h.new_status for h in RoomService(session).status_history(unit.id)] == [UnitStatus.MAINTENANCE]


def test_verifying_remaining_request_frees_unit_after_a_cancel(session, seed):
    unit = seed.unit()
    cancelled = open_request(session, unit)
    remaining = open_request(session, unit, "Broken lamp")
    rooms = RoomService(session)
    rooms.perform_action(cancelled.id, "cancel")

    rooms.perform_action(remaining.id, "start")
    rooms.perform_action(remaining.id, "complete")
    rooms.perform_action(remaining.id, "verify", MaintenanceAction(approved=True))

    session.refresh(unit)
    assert unit.status == UnitStatus.AVAILABLE
