# backend/app/routes/system.py
"""
System health endpoint.

Reports database reachability and the custody backlog so operators can
tell an idle station from a broken one.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import CashHandover, Shift
from ..models.handovers import HANDOVER_DISPUTED, HANDOVER_PENDING
from ..models.shifts import SHIFT_ACTIVE
from app.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        active_shifts = db.session.query(Shift).filter_by(status=SHIFT_ACTIVE).count()
        pending_handovers = db.session.query(CashHandover).filter_by(status=HANDOVER_PENDING).count()
        disputed_handovers = db.session.query(CashHandover).filter_by(status=HANDOVER_DISPUTED).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_shifts": active_shifts,
                "pending_handovers": pending_handovers,
                "disputed_handovers": disputed_handovers,
            }
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Liveness plus database check.

    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status
