# Overview: Flask API routes for shift lifecycle; parses input and returns JSON responses.

# backend/app/routes/shifts.py
"""
Shift API Routes

DESIGN:
- Shift lifecycle: start -> end | cancel (immutable once left active)
- End computes expected cash from nozzle readings and the cash difference
- Station-scoped reads: summary and discrepancy reports

SECURITY:
- Any authenticated user may start/end their own shift
- Managers may start/end shifts for employees at their station
- Cancel and discrepancy reports require manager+
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_min_role
from ..models.shifts import SHIFT_TYPES
from ..roles import Role
from ..services import shift_service, station_service
from ..validation import (
    CustodyError,
    clean_text,
    parse_cents,
    parse_choice,
    parse_date_field,
    parse_datetime_field,
    parse_int_id,
)
from ._responses import (
    custody_error_response,
    internal_error_response,
    json_body,
    paginated,
    pagination,
    query_date,
)


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api")


@shifts_bp.post("/shifts/start")
@require_auth
def start_shift_route():
    """
    Start a shift.

    Request body (all optional):
    {
        "employee_id": 7,            // defaults to caller; others need manager+
        "station_id": 1,             // defaults to the employee's station
        "shift_date": "2026-10-17",
        "start_time": "2026-10-17T06:00:00Z",
        "shift_type": "morning",
        "opening_cash_cents": 50000,
        "notes": "..."
    }

    Returns 409 CONFLICT if the employee already has an active shift.
    """
    try:
        data = json_body()
        shift = shift_service.start_shift(
            g.identity,
            employee_id=parse_int_id(data.get("employee_id"), "employee_id"),
            station_id=parse_int_id(data.get("station_id"), "station_id"),
            shift_date=parse_date_field(data.get("shift_date"), "shift_date"),
            start_time=parse_datetime_field(data.get("start_time"), "start_time"),
            shift_type=parse_choice(data.get("shift_type"), "shift_type", SHIFT_TYPES, default="custom"),
            opening_cash_cents=parse_cents(data.get("opening_cash_cents"), "opening_cash_cents", required=False),
            notes=clean_text(data.get("notes"), "notes", max_length=2000),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to start shift")


@shifts_bp.get("/shifts/active")
@require_auth
def get_active_shift_route():
    """Active shift for the caller, or ?employee_id= (manager+). Returns {"shift": null} if none."""
    try:
        employee_id = parse_int_id(request.args.get("employee_id"), "employee_id")
        shift = shift_service.get_active_shift(g.identity, employee_id)
        return jsonify({"shift": shift.to_dict() if shift else None}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load active shift")


@shifts_bp.get("/shifts/<int:shift_id>")
@require_auth
def get_shift_route(shift_id: int):
    try:
        shift = shift_service.get_shift(shift_id)
        if shift.employee_id != g.identity.user_id:
            station_service.require_station_access(g.identity, shift.station_id)
        return jsonify({"shift": shift.to_dict()}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load shift")


@shifts_bp.post("/shifts/<int:shift_id>/end")
@require_auth
def end_shift_route(shift_id: int):
    """
    End an active shift.

    Request body:
    {
        "actual_cash_cents": 500000,    // required
        "actual_online_cents": 120000,  // optional
        "end_time": "2026-10-17T14:00:00Z",
        "notes": "..."
    }

    Computes expected cash from readings and cash_difference = actual - expected.
    Returns 409 INVALID_STATE if the shift is no longer active.
    """
    try:
        data = json_body()
        shift = shift_service.end_shift(
            shift_id,
            g.identity,
            actual_cash_cents=parse_cents(data.get("actual_cash_cents"), "actual_cash_cents"),
            actual_online_cents=parse_cents(data.get("actual_online_cents"), "actual_online_cents", required=False),
            end_time=parse_datetime_field(data.get("end_time"), "end_time"),
            notes=clean_text(data.get("notes"), "notes", max_length=2000),
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to end shift")


@shifts_bp.post("/shifts/<int:shift_id>/cancel")
@require_auth
@require_min_role(Role.MANAGER)
def cancel_shift_route(shift_id: int):
    """
    Cancel an active shift. Requires manager+.

    Request body: {"reason": "Opened by mistake"}
    """
    try:
        data = json_body()
        shift = shift_service.cancel_shift(
            shift_id,
            g.identity,
            reason=clean_text(data.get("reason"), "reason", max_length=2000),
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to cancel shift")


# =============================================================================
# STATION REPORTS
# =============================================================================

@shifts_bp.get("/stations/<int:station_id>/shifts")
@require_auth
def list_station_shifts_route(station_id: int):
    """Query: start_date, end_date, employee_id, page, limit."""
    try:
        station_service.require_station_access(g.identity, station_id)
        page, limit = pagination()
        shifts, total = shift_service.list_station_shifts(
            station_id,
            start_date=query_date("start_date"),
            end_date=query_date("end_date"),
            employee_id=parse_int_id(request.args.get("employee_id"), "employee_id"),
            page=page,
            limit=limit,
        )
        return jsonify(paginated(shifts, total, page, limit, "shifts")), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to list station shifts")


@shifts_bp.get("/stations/<int:station_id>/shifts/summary")
@require_auth
def shift_summary_route(station_id: int):
    """Per-employee totals of ended shifts. Query: start_date, end_date (required), employee_id."""
    try:
        station_service.require_station_access(g.identity, station_id)
        start_date = query_date("start_date", required=True)
        end_date = query_date("end_date", required=True)
        employees = shift_service.get_shift_summary(
            station_id,
            start_date,
            end_date,
            employee_id=parse_int_id(request.args.get("employee_id"), "employee_id"),
        )
        return jsonify({
            "period": {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            "employees": employees,
        }), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to build shift summary")


@shifts_bp.get("/stations/<int:station_id>/shifts/discrepancies")
@require_auth
@require_min_role(Role.MANAGER)
def shift_discrepancies_route(station_id: int):
    """Ended shifts with |cash_difference| above ?threshold_cents= (default 10000)."""
    try:
        station_service.require_station_access(g.identity, station_id)
        threshold = parse_cents(request.args.get("threshold_cents", "10000"), "threshold_cents")
        shifts = shift_service.get_discrepancies(station_id, threshold)
        return jsonify({"shifts": [s.to_dict() for s in shifts], "threshold_cents": threshold}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load shift discrepancies")
