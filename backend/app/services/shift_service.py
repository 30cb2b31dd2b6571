"""
Shift Management Service

WHY: A shift is the period an employee is accountable for the cash
collected at their station. Ending a shift compares the cash they hand in
with the cash the nozzle readings say they should hold.

DESIGN PRINCIPLES:
- One active shift per employee at a time (partial unique index)
- Shifts are immutable once ended or cancelled
- Every transition is a conditional UPDATE on status = active, so two
  racing end/cancel calls produce one success and one ConflictError
- Cancelled shifts never compute cash and never feed a handover chain
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from flask import current_app

from ..extensions import db
from ..models import CashHandover, Shift, User
from ..models.handovers import HANDOVER_PENDING, HANDOVER_SHIFT_COLLECTION
from ..models.shifts import SHIFT_ACTIVE, SHIFT_CANCELLED, SHIFT_ENDED, SHIFT_TYPES
from ..roles import Role, has_min_role
from ..validation import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.time_utils import utcnow
from . import station_service
from .concurrency import commit_or_conflict, compare_and_set, fetch_locked
from .custody_log_service import append_custody_event
from .reading_service import get_reading_cash_aggregate
from .session_service import Identity

logger = logging.getLogger(__name__)


def get_shift(shift_id: int) -> Shift:
    shift = db.session.query(Shift).filter_by(id=shift_id).first()
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")
    return shift


def _find_active_shift(employee_id: int) -> Shift | None:
    return db.session.query(Shift).filter_by(employee_id=employee_id, status=SHIFT_ACTIVE).first()


# =============================================================================
# LIFECYCLE
# =============================================================================

def start_shift(
    actor: Identity,
    *,
    employee_id: int | None = None,
    station_id: int | None = None,
    shift_date: date | None = None,
    start_time: datetime | None = None,
    shift_type: str | None = None,
    opening_cash_cents: int | None = None,
    notes: str | None = None,
) -> Shift:
    """
    Start a shift for the actor, or (manager+) for another employee.

    Raises:
        NotFoundError: employee does not exist
        ValidationError: no station given and employee has none
        PermissionDeniedError: starting for someone else without manager role,
            or no access to the station
        ConflictError: employee already has an active shift
    """
    target_employee_id = employee_id or actor.user_id
    employee = db.session.query(User).filter_by(id=target_employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee {target_employee_id} not found")

    if target_employee_id != actor.user_id and not has_min_role(actor.role, Role.MANAGER):
        raise PermissionDeniedError("Only managers can start shifts for other employees")

    target_station_id = station_id or employee.station_id
    if not target_station_id:
        raise ValidationError("station_id is required")

    station_service.require_station_access(actor, target_station_id)

    if shift_type is not None and shift_type not in SHIFT_TYPES:
        raise ValidationError(f"shift_type must be one of: {', '.join(SHIFT_TYPES)}")

    existing = _find_active_shift(target_employee_id)
    if existing:
        raise ConflictError(
            "Employee already has an active shift. End current shift first.",
            shift_id=existing.id,
        )

    now = utcnow()
    start = start_time or now
    shift = Shift(
        station_id=target_station_id,
        employee_id=target_employee_id,
        shift_date=shift_date or start.date(),
        start_time=start,
        shift_type=shift_type or "custom",
        status=SHIFT_ACTIVE,
        opening_cash_cents=opening_cash_cents,
        notes=notes,
    )
    db.session.add(shift)
    db.session.flush()

    append_custody_event(
        station_id=target_station_id,
        event_type="shift.started",
        entity_type="shift",
        entity_id=shift.id,
        actor_user_id=actor.user_id,
        amount_cents=opening_cash_cents,
        occurred_at=start,
    )

    # Unique partial index closes the race between the check above and this insert
    commit_or_conflict("Employee already has an active shift")

    logger.info("Shift %s started for employee %s at station %s", shift.id, target_employee_id, target_station_id)
    return shift


def _can_end_shift(actor: Identity, shift: Shift) -> bool:
    if actor.user_id == shift.employee_id:
        return True
    if actor.role == Role.SUPER_ADMIN:
        return True
    station = station_service.get_station(shift.station_id)
    if actor.role == Role.OWNER:
        return station.owner_user_id == actor.user_id
    if actor.role == Role.MANAGER:
        return station.manager_user_id == actor.user_id or actor.station_id == shift.station_id
    return False


def end_shift(
    shift_id: int,
    actor: Identity,
    *,
    actual_cash_cents: int,
    actual_online_cents: int | None = None,
    end_time: datetime | None = None,
    notes: str | None = None,
) -> Shift:
    """
    End an active shift and reconcile the reported cash against readings.

    expected_cash = cash component of the reading aggregate for
    [start_time, end_time] at the shift's station
    cash_difference = actual_cash - expected_cash

    Raises:
        NotFoundError, InvalidStateError (not active), PermissionDeniedError,
        ValidationError (end before start), ConflictError (lost race)
        AggregateUnavailableError: reading provider failed; shift stays active
    """
    shift = fetch_locked(db.session.query(Shift).filter_by(id=shift_id), "shift")
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")

    if shift.status != SHIFT_ACTIVE:
        raise InvalidStateError(f"Shift is not active (status: {shift.status})", status=shift.status)

    if not _can_end_shift(actor, shift):
        raise PermissionDeniedError("Only the shift's employee, their manager, or the owner can end this shift")

    ended_at = end_time or utcnow()
    if ended_at < shift.start_time:
        raise ValidationError("end_time cannot be before the shift start_time")

    aggregate = get_reading_cash_aggregate(shift.station_id, shift.start_time, ended_at)

    expected_cash = aggregate.cash_cents
    cash_difference = actual_cash_cents - expected_cash

    compare_and_set(
        Shift,
        shift.id,
        expected_status=SHIFT_ACTIVE,
        values={
            Shift.status: SHIFT_ENDED,
            Shift.end_time: ended_at,
            Shift.actual_cash_cents: actual_cash_cents,
            Shift.actual_online_cents: actual_online_cents,
            Shift.expected_cash_cents: expected_cash,
            Shift.cash_difference_cents: cash_difference,
            Shift.expected_online_cents: aggregate.online_cents,
            Shift.expected_credit_cents: aggregate.credit_cents,
            Shift.readings_count: aggregate.readings_count,
            Shift.total_litres: aggregate.litres,
            Shift.total_sales_cents: aggregate.total_sales_cents,
            Shift.end_notes: notes,
            Shift.ended_by_user_id: actor.user_id,
        },
        what="shift",
    )

    append_custody_event(
        station_id=shift.station_id,
        event_type="shift.ended",
        entity_type="shift",
        entity_id=shift.id,
        actor_user_id=actor.user_id,
        amount_cents=actual_cash_cents,
        occurred_at=ended_at,
        note=f"Expected {expected_cash}, difference {cash_difference}",
    )

    if current_app.config.get("AUTO_SHIFT_COLLECTION") and actual_cash_cents > 0:
        _open_shift_collection(shift, actual_cash_cents, actor)

    commit_or_conflict("A collection handover already exists for this shift")
    db.session.refresh(shift)

    logger.info(
        "Shift %s ended: expected=%s actual=%s difference=%s",
        shift.id, expected_cash, actual_cash_cents, cash_difference,
    )
    return shift


def _open_shift_collection(shift: Shift, amount_cents: int, actor: Identity) -> CashHandover:
    """Root shift_collection handover addressed to the station manager (same transaction)."""
    station = station_service.get_station(shift.station_id)
    handover = CashHandover(
        station_id=shift.station_id,
        handover_type=HANDOVER_SHIFT_COLLECTION,
        handover_date=shift.shift_date,
        from_user_id=shift.employee_id,
        to_user_id=station.manager_user_id,
        shift_id=shift.id,
        expected_amount_cents=amount_cents,
        status=HANDOVER_PENDING,
        created_by_user_id=actor.user_id,
    )
    db.session.add(handover)
    db.session.flush()

    append_custody_event(
        station_id=shift.station_id,
        event_type="handover.created",
        entity_type="cash_handover",
        entity_id=handover.id,
        actor_user_id=actor.user_id,
        amount_cents=amount_cents,
        note="Opened automatically at shift end",
    )
    return handover


def cancel_shift(shift_id: int, actor: Identity, *, reason: str | None = None) -> Shift:
    """
    Cancel an active shift (manager+). No cash is computed.

    Raises:
        NotFoundError, PermissionDeniedError, InvalidStateError (not active),
        ConflictError (lost race)
    """
    station_service.require_min_role(actor, Role.MANAGER, "Only managers can cancel shifts")

    shift = fetch_locked(db.session.query(Shift).filter_by(id=shift_id), "shift")
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")

    station_service.require_station_access(actor, shift.station_id)

    if shift.status != SHIFT_ACTIVE:
        raise InvalidStateError(
            f"Only active shifts can be cancelled (status: {shift.status})",
            status=shift.status,
        )

    now = utcnow()
    compare_and_set(
        Shift,
        shift.id,
        expected_status=SHIFT_ACTIVE,
        values={
            Shift.status: SHIFT_CANCELLED,
            Shift.end_time: now,
            Shift.end_notes: reason or "Shift cancelled",
            Shift.ended_by_user_id: actor.user_id,
        },
        what="shift",
    )

    append_custody_event(
        station_id=shift.station_id,
        event_type="shift.cancelled",
        entity_type="shift",
        entity_id=shift.id,
        actor_user_id=actor.user_id,
        occurred_at=now,
        note=reason,
    )

    db.session.commit()
    db.session.refresh(shift)

    logger.info("Shift %s cancelled by user %s", shift.id, actor.user_id)
    return shift


# =============================================================================
# QUERIES
# =============================================================================

def get_active_shift(actor: Identity, employee_id: int | None = None) -> Shift | None:
    target_id = employee_id or actor.user_id
    if target_id != actor.user_id and not has_min_role(actor.role, Role.MANAGER):
        raise PermissionDeniedError("Only managers can view other employees' shifts")

    shift = _find_active_shift(target_id)
    if shift and target_id != actor.user_id:
        station_service.require_station_access(actor, shift.station_id)
    return shift


def list_station_shifts(
    station_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    employee_id: int | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Shift], int]:
    """Returns (shifts, total) newest first."""
    query = db.session.query(Shift).filter(Shift.station_id == station_id)
    if start_date:
        query = query.filter(Shift.shift_date >= start_date)
    if end_date:
        query = query.filter(Shift.shift_date <= end_date)
    if employee_id:
        query = query.filter(Shift.employee_id == employee_id)

    total = query.count()
    shifts = (
        query.order_by(Shift.shift_date.desc(), Shift.start_time.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return shifts, total


def get_shift_summary(
    station_id: int,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
) -> list[dict]:
    """Per-employee totals over ended shifts in an inclusive date range."""
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")

    query = (
        db.session.query(
            Shift.employee_id,
            db.func.count(Shift.id),
            db.func.coalesce(db.func.sum(Shift.total_litres), 0),
            db.func.coalesce(db.func.sum(Shift.total_sales_cents), 0),
            db.func.coalesce(db.func.sum(Shift.actual_cash_cents), 0),
            db.func.coalesce(db.func.sum(Shift.cash_difference_cents), 0),
        )
        .filter(
            Shift.station_id == station_id,
            Shift.status == SHIFT_ENDED,
            Shift.shift_date >= start_date,
            Shift.shift_date <= end_date,
        )
    )
    if employee_id:
        query = query.filter(Shift.employee_id == employee_id)

    rows = query.group_by(Shift.employee_id).order_by(Shift.employee_id).all()
    return [
        {
            "employee_id": emp_id,
            "shift_count": int(count),
            "total_litres": str(litres),
            "total_sales_cents": int(sales),
            "total_cash_cents": int(cash),
            "total_difference_cents": int(diff),
        }
        for emp_id, count, litres, sales, cash, diff in rows
    ]


def get_discrepancies(station_id: int, threshold_cents: int = 10000, limit: int = 50) -> list[Shift]:
    """Ended shifts whose |cash_difference| exceeds the threshold, newest first."""
    return (
        db.session.query(Shift)
        .filter(
            Shift.station_id == station_id,
            Shift.status == SHIFT_ENDED,
            db.or_(
                Shift.cash_difference_cents > threshold_cents,
                Shift.cash_difference_cents < -threshold_cents,
            ),
        )
        .order_by(Shift.shift_date.desc(), Shift.id.desc())
        .limit(limit)
        .all()
    )
