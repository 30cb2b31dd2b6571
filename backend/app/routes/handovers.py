# Overview: Flask API routes for the cash handover chain and reconciliation views.

# backend/app/routes/handovers.py
"""
Cash Handover API Routes

DESIGN:
- Custody chain: shift -> manager -> owner -> bank
- Each link is created pending and confirmed by its recipient
- Out-of-tolerance confirmations become disputes; owners resolve them
- Station views: history, cash-flow summary, unconfirmed alerts, deposits

SECURITY:
- Creating links requires manager+ (bank deposits owner+)
- Confirmation: designated recipient, or owner/super admin of the station
- Dispute resolution and deposit records require owner+
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_min_role
from ..models.handovers import HANDOVER_TYPES
from ..roles import Role
from ..services import custody_log_service, handover_service, reconciliation_service, station_service
from ..time_utils import utcnow
from ..validation import (
    CustodyError,
    ValidationError,
    clean_text,
    parse_cents,
    parse_choice,
    parse_date_field,
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


handovers_bp = Blueprint("handovers", __name__, url_prefix="/api")


def _can_view(handover) -> bool:
    identity = g.identity
    if identity.user_id in (handover.from_user_id, handover.to_user_id):
        return True
    return station_service.can_access_station(identity, handover.station_id)


@handovers_bp.get("/handovers/pending")
@require_auth
def pending_handovers_route():
    """Pending handovers the caller must act on. Optional ?station_id=."""
    try:
        station_id = parse_int_id(request.args.get("station_id"), "station_id")
        handovers = handover_service.get_pending_handovers(g.identity, station_id)
        return jsonify({
            "handovers": [h.to_dict() for h in handovers],
            "count": len(handovers),
        }), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load pending handovers")


@handovers_bp.post("/handovers")
@require_auth
@require_min_role(Role.MANAGER)
def create_handover_route():
    """
    Create a pending handover.

    Request body:
    {
        "station_id": 1,
        "handover_type": "employee_to_manager",
        "shift_id": 12,                  // root links
        "previous_handover_id": null,    // every other link
        "from_user_id": 7,               // optional
        "expected_amount_cents": 500000, // optional; must match the carried amount
        "handover_date": "2026-10-17",
        "notes": "..."
    }
    """
    try:
        data = json_body()
        handover = handover_service.create_handover(
            g.identity,
            parse_int_id(data.get("station_id"), "station_id", required=True),
            parse_choice(data.get("handover_type"), "handover_type", HANDOVER_TYPES),
            shift_id=parse_int_id(data.get("shift_id"), "shift_id"),
            previous_handover_id=parse_int_id(data.get("previous_handover_id"), "previous_handover_id"),
            from_user_id=parse_int_id(data.get("from_user_id"), "from_user_id"),
            expected_amount_cents=parse_cents(data.get("expected_amount_cents"), "expected_amount_cents", required=False),
            notes=clean_text(data.get("notes"), "notes", max_length=2000),
            handover_date=parse_date_field(data.get("handover_date"), "handover_date"),
        )
        return jsonify({
            "handover": handover.to_dict(),
            "message": "Handover created, pending confirmation",
        }), 201

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to create handover")


@handovers_bp.get("/handovers/<int:handover_id>")
@require_auth
def get_handover_route(handover_id: int):
    try:
        handover = handover_service.get_handover(handover_id)
        if not _can_view(handover):
            return jsonify({"error": "Not authorized", "code": "PERMISSION_DENIED"}), 403
        events = custody_log_service.list_entity_events("cash_handover", handover.id)
        return jsonify({
            "handover": handover.to_dict(),
            "events": [e.to_dict() for e in events],
        }), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load handover")


@handovers_bp.get("/handovers/<int:handover_id>/chain")
@require_auth
def handover_chain_route(handover_id: int):
    """Every link from the root to this handover, root first."""
    try:
        handover = handover_service.get_handover(handover_id)
        if not _can_view(handover):
            return jsonify({"error": "Not authorized", "code": "PERMISSION_DENIED"}), 403
        chain = handover_service.get_handover_chain(handover_id)
        return jsonify({
            "chain": [h.to_dict() for h in chain],
            "root_shift_id": chain[0].shift_id if chain else None,
        }), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load handover chain")


@handovers_bp.post("/handovers/<int:handover_id>/confirm")
@require_auth
def confirm_handover_route(handover_id: int):
    """
    Confirm receipt.

    Request body: {"actual_amount_cents": 480000, "notes": "..."}

    Response status is "confirmed" within tolerance, "disputed" otherwise.
    Returns 409 CONFLICT if another confirmation won the race.
    """
    try:
        data = json_body()
        handover = handover_service.confirm_handover(
            handover_id,
            g.identity,
            actual_amount_cents=parse_cents(data.get("actual_amount_cents"), "actual_amount_cents"),
            notes=clean_text(data.get("notes"), "notes", max_length=2000),
        )
        if handover.status == "disputed":
            message = f"Handover recorded with discrepancy of {handover.difference_cents} cents"
        else:
            message = "Handover confirmed successfully"
        return jsonify({"handover": handover.to_dict(), "message": message}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to confirm handover")


@handovers_bp.post("/handovers/<int:handover_id>/resolve")
@require_auth
@require_min_role(Role.OWNER)
def resolve_dispute_route(handover_id: int):
    """
    Resolve a disputed handover. Requires owner+.

    Request body: {"resolution_notes": "till short, accepted", "adjusted_amount_cents": 480000}
    """
    try:
        data = json_body()
        handover = handover_service.resolve_dispute(
            handover_id,
            g.identity,
            resolution_notes=clean_text(data.get("resolution_notes"), "resolution_notes", max_length=500, required=True),
            adjusted_amount_cents=parse_cents(data.get("adjusted_amount_cents"), "adjusted_amount_cents", required=False),
        )
        return jsonify({"handover": handover.to_dict(), "message": "Dispute resolved"}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to resolve dispute")


@handovers_bp.post("/handovers/bank-deposit")
@require_auth
@require_min_role(Role.OWNER)
def record_bank_deposit_route():
    """
    Record a bank deposit (created and confirmed in one step). Requires owner+.

    Request body:
    {
        "station_id": 1,
        "amount_cents": 480000,
        "previous_handover_id": 31,   // optional chain link
        "bank_name": "...", "deposit_reference": "...", "deposit_receipt_url": "...",
        "handover_date": "2026-10-17", "notes": "..."
    }
    """
    try:
        data = json_body()
        handover = handover_service.record_bank_deposit(
            g.identity,
            parse_int_id(data.get("station_id"), "station_id", required=True),
            parse_cents(data.get("amount_cents"), "amount_cents"),
            bank_name=clean_text(data.get("bank_name"), "bank_name", max_length=100),
            deposit_reference=clean_text(data.get("deposit_reference"), "deposit_reference", max_length=50),
            deposit_receipt_url=clean_text(data.get("deposit_receipt_url"), "deposit_receipt_url"),
            previous_handover_id=parse_int_id(data.get("previous_handover_id"), "previous_handover_id"),
            notes=clean_text(data.get("notes"), "notes", max_length=2000),
            handover_date=parse_date_field(data.get("handover_date"), "handover_date"),
        )
        return jsonify({
            "handover": handover.to_dict(),
            "message": f"Bank deposit of {handover.actual_amount_cents} cents recorded",
        }), 201

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to record bank deposit")


# =============================================================================
# STATION VIEWS
# =============================================================================

@handovers_bp.get("/stations/<int:station_id>/handovers")
@require_auth
def list_station_handovers_route(station_id: int):
    """Query: start_date, end_date, handover_type, status, page, limit."""
    try:
        station_service.require_station_access(g.identity, station_id)
        page, limit = pagination()
        handovers, total = handover_service.list_station_handovers(
            station_id,
            start_date=query_date("start_date"),
            end_date=query_date("end_date"),
            handover_type=request.args.get("handover_type") or None,
            status=request.args.get("status") or None,
            page=page,
            limit=limit,
        )
        return jsonify(paginated(handovers, total, page, limit, "handovers")), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to list station handovers")


@handovers_bp.get("/stations/<int:station_id>/handovers/summary")
@require_auth
def cash_flow_summary_route(station_id: int):
    """Derived cash-flow summary. Query: start_date, end_date (required)."""
    try:
        station_service.require_station_access(g.identity, station_id)
        summary = reconciliation_service.get_cash_flow_summary(
            station_id,
            query_date("start_date", required=True),
            query_date("end_date", required=True),
        )
        summary["tolerance"] = reconciliation_service.get_tolerance_policy(station_id).to_dict()
        return jsonify({"summary": summary}), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to build cash flow summary")


@handovers_bp.get("/stations/<int:station_id>/handovers/unconfirmed")
@require_auth
def unconfirmed_handovers_route(station_id: int):
    """Pending handovers in a date range (defaults to today)."""
    try:
        station_service.require_station_access(g.identity, station_id)
        today = utcnow().date()
        start_date = query_date("start_date") or today
        end_date = query_date("end_date") or today
        if end_date < start_date:
            raise ValidationError("end_date must be on or after start_date")

        handovers = handover_service.get_unconfirmed(station_id, start_date, end_date)
        return jsonify({
            "handovers": [h.to_dict() for h in handovers],
            "count": len(handovers),
            "alert": f"{len(handovers)} handover(s) pending confirmation" if handovers else None,
        }), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load unconfirmed handovers")


@handovers_bp.get("/stations/<int:station_id>/handovers/bank-deposits")
@require_auth
@require_min_role(Role.OWNER)
def bank_deposits_route(station_id: int):
    """Bank deposits in a date range. Requires owner+. Query: start_date, end_date (required)."""
    try:
        station_service.require_station_access(g.identity, station_id)
        deposits, total = handover_service.get_bank_deposits(
            station_id,
            query_date("start_date", required=True),
            query_date("end_date", required=True),
        )
        return jsonify({
            "deposits": [d.to_dict() for d in deposits],
            "summary": {"count": len(deposits), "total_deposited_cents": total},
        }), 200

    except CustodyError as e:
        return custody_error_response(e)
    except Exception:
        return internal_error_response("Failed to load bank deposits")
