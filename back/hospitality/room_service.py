"""
Room Service

Unit status machine and the maintenance workflow. Every unit status change
writes a UnitStatusHistory row in the same transaction as the change.
"""

import logging
from datetime import datetime, timezone

from sqlmodel import Session, select

from . import audit
from .db import unit_of_work
from .errors import Conflict, NotFound, ValidationError
from .room_models import (
    OPEN_MAINTENANCE_STATUSES,
    MaintenanceAction,
    MaintenanceRequest,
    MaintenanceRequestCreate,
    MaintenanceStatus,
    Reservation,
    ReservationStatus,
    Unit,
    UnitStatus,
    UnitStatusHistory,
)

logger = logging.getLogger(__name__)

# Reservations that allow a unit to be marked occupied
OCCUPYING_RESERVATIONS = (ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN)

# action -> (allowed current statuses, next status)
MAINTENANCE_ACTIONS: dict[str, tuple[tuple[MaintenanceStatus, ...], MaintenanceStatus]] = {
    "assign": ((MaintenanceStatus.OPEN,), MaintenanceStatus.ASSIGNED),
    "start": (
        (MaintenanceStatus.OPEN, MaintenanceStatus.ASSIGNED, MaintenanceStatus.ON_HOLD),
        MaintenanceStatus.IN_PROGRESS,
    ),
    "hold": ((MaintenanceStatus.IN_PROGRESS,), MaintenanceStatus.ON_HOLD),
    "complete": ((MaintenanceStatus.IN_PROGRESS,), MaintenanceStatus.COMPLETED),
    "verify": ((MaintenanceStatus.COMPLETED,), MaintenanceStatus.CLOSED),
    "cancel": (OPEN_MAINTENANCE_STATUSES, MaintenanceStatus.CANCELLED),
}


class RoomService:
    def __init__(self, session: Session, actor_id: int | None = None):
        self.session = session
        self.actor_id = actor_id

    def get_unit(self, unit_id: int, lock: bool = False) -> Unit:
        statement = select(Unit).where(Unit.id == unit_id)
        if lock:
            statement = statement.with_for_update()
        unit = self.session.exec(statement).first()
        if not unit:
            raise NotFound(f"Unit {unit_id} not found")
        return unit

    def status_history(self, unit_id: int) -> list[UnitStatusHistory]:
        self.get_unit(unit_id)
        return list(
            self.session.exec(
                select(UnitStatusHistory)
                .where(UnitStatusHistory.unit_id == unit_id)
                .order_by(UnitStatusHistory.created_at, UnitStatusHistory.id)
            ).all()
        )

    # ============ UNIT STATUS ============

    def _set_status(self, unit: Unit, status: UnitStatus, reason: str | None) -> None:
        previous = unit.status
        now = datetime.now(timezone.utc)
        unit.status = status
        unit.status_updated_at = now
        self.session.add(unit)
        self.session.add(
            UnitStatusHistory(
                unit_id=unit.id,
                previous_status=previous,
                new_status=status,
                reason=reason,
                changed_by_id=self.actor_id,
                created_at=now,
            )
        )
        self.session.flush()
        logger.info(f"Unit {unit.room_number} {previous.value} -> {status.value}")

    def update_unit_status(
        self, unit_id: int, new_status: str, reason: str | None = None, notes: str | None = None
    ) -> Unit:
        try:
            status = UnitStatus(new_status)
        except ValueError:
            raise ValidationError(
                f"Invalid unit status '{new_status}'. "
                f"Must be one of: {', '.join(s.value for s in UnitStatus)}"
            )

        with unit_of_work(self.session):
            unit = self.get_unit(unit_id, lock=True)

            if status == UnitStatus.OCCUPIED:
                reservation = self.session.exec(
                    select(Reservation).where(
                        Reservation.unit_id == unit.id,
                        Reservation.status.in_(OCCUPYING_RESERVATIONS),
                    )
                ).first()
                if not reservation:
                    raise Conflict(
                        f"Unit {unit.room_number} has no confirmed or checked-in reservation"
                    )

            previous = unit.status
            if notes is not None:
                unit.notes = notes
            self._set_status(unit, status, reason)
            audit.record(
                self.session,
                "unit.status",
                "unit",
                unit.id,
                user_id=self.actor_id,
                changes={"from": previous.value, "to": status.value, "reason": reason},
            )

        self.session.refresh(unit)
        return unit

    # ============ MAINTENANCE ============

    def create_request(self, payload: MaintenanceRequestCreate) -> MaintenanceRequest:
        if not payload.description or not payload.description.strip():
            raise ValidationError("Description is required")

        with unit_of_work(self.session):
            unit = self.get_unit(payload.unit_id, lock=True)
            request = MaintenanceRequest(
                unit_id=unit.id,
                category=payload.category,
                description=payload.description.strip(),
                priority=payload.priority,
                requested_by_id=self.actor_id,
            )
            self.session.add(request)
            self.session.flush()

            if unit.status != UnitStatus.MAINTENANCE:
                self._set_status(unit, UnitStatus.MAINTENANCE, f"Maintenance request #{request.id}")

        self.session.refresh(request)
        logger.info(f"Maintenance request {request.id} opened for unit {payload.unit_id}")
        return request

    def _has_open_requests(self, unit_id: int) -> bool:
        return (
            self.session.exec(
                select(MaintenanceRequest).where(
                    MaintenanceRequest.unit_id == unit_id,
                    MaintenanceRequest.status.in_(OPEN_MAINTENANCE_STATUSES),
                )
            ).first()
            is not None
        )

    def _release_unit_if_clear(self, unit_id: int, reason: str) -> None:
        unit = self.get_unit(unit_id, lock=True)
        if unit.status == UnitStatus.MAINTENANCE and not self._has_open_requests(unit_id):
            self._set_status(unit, UnitStatus.AVAILABLE, reason)

    def perform_action(self, request_id: int, action: str, payload: MaintenanceAction | None = None) -> MaintenanceRequest:
        payload = payload or MaintenanceAction()
        if action not in MAINTENANCE_ACTIONS:
            raise ValidationError(
                f"Invalid action '{action}'. Must be one of: {', '.join(MAINTENANCE_ACTIONS)}"
            )
        allowed, next_status = MAINTENANCE_ACTIONS[action]

        with unit_of_work(self.session):
            request = self.session.exec(
                select(MaintenanceRequest).where(MaintenanceRequest.id == request_id).with_for_update()
            ).first()
            if not request:
                raise NotFound(f"Maintenance request {request_id} not found")
            if request.status not in allowed:
                raise Conflict(f"Cannot {action} a request that is {request.status.value}")

            now = datetime.now(timezone.utc)
            previous = request.status

            if action == "assign":
                if payload.assigned_to_id is None:
                    raise ValidationError("assigned_to_id is required")
                request.assigned_to_id = payload.assigned_to_id
            elif action == "start":
                request.started_at = request.started_at or now
            elif action == "complete":
                request.completed_at = now
                if payload.actual_cost_cents is not None:
                    request.actual_cost_cents = payload.actual_cost_cents
            elif action == "verify":
                if payload.approved is None:
                    raise ValidationError("approved is required to verify a request")
                if payload.approved:
                    request.verified_at = now
                    request.verified_by_id = self.actor_id
                else:
                    next_status = MaintenanceStatus.IN_PROGRESS
                    request.completed_at = None

            if payload.notes:
                request.notes = payload.notes
            request.status = next_status
            request.updated_at = now
            self.session.add(request)
            self.session.flush()

            # Only an approved verification frees the unit; cancelling leaves it in MAINTENANCE
            if request.status == MaintenanceStatus.CLOSED:
                self._release_unit_if_clear(request.unit_id, f"Maintenance request #{request.id} verified")

            audit.record(
                self.session,
                f"maintenance.{action}",
                "maintenance_request",
                request.id,
                user_id=self.actor_id,
                changes={"from": previous.value, "to": request.status.value},
            )

        self.session.refresh(request)
        return request
