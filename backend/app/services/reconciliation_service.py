# Overview: Variance and tolerance evaluation, plus the derived cash-flow summary for a station.

"""
Reconciliation Engine

WHY: Every time cash changes hands the counted amount is compared with the
amount the previous holder was accountable for. Small differences are
accepted; larger ones are parked as disputes for an owner to settle.

DESIGN:
- variance(expected, actual) = actual - expected (cents)
- The tolerance policy is configuration, never a per-call argument from a
  client: app config supplies defaults, StationConfig rows override them
- Pure functions here; the handover service calls them inside confirmation,
  resolution and bank deposit
- The cash-flow summary is recomputed from handovers and shifts on every
  call and is never stored
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import db
from ..models import CashHandover, Shift
from ..models.handovers import (
    HANDOVER_DEPOSIT_TO_BANK,
    HANDOVER_DISPUTED,
    HANDOVER_PENDING,
    HANDOVER_TYPES,
    SETTLED_STATUSES,
)
from ..models.shifts import SHIFT_ENDED
from ..validation import ValidationError
from . import station_service
from .concurrency import run_with_retry


TOLERANCE_ABSOLUTE = "ABSOLUTE"
TOLERANCE_PERCENT = "PERCENT"
TOLERANCE_BOTH = "BOTH"
TOLERANCE_MODES = [TOLERANCE_ABSOLUTE, TOLERANCE_PERCENT, TOLERANCE_BOTH]

# StationConfig keys
CONFIG_TOLERANCE_MODE = "handover_tolerance_mode"
CONFIG_TOLERANCE_CENTS = "handover_tolerance_cents"
CONFIG_TOLERANCE_PERCENT = "handover_tolerance_percent"


@dataclass(frozen=True)
class TolerancePolicy:
    """
    mode:
    - ABSOLUTE: |variance| <= absolute_cents
    - PERCENT:  |variance| <= percent% of expected
    - BOTH:     both caps must hold
    """
    mode: str = TOLERANCE_ABSOLUTE
    absolute_cents: int = 10000
    percent: Decimal = Decimal("2")

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "absolute_cents": self.absolute_cents,
            "percent": str(self.percent),
        }


@dataclass(frozen=True)
class ReconciliationResult:
    expected_cents: int
    actual_cents: int
    variance_cents: int
    within_tolerance: bool
    policy: TolerancePolicy


def variance(expected_cents: int, actual_cents: int) -> int:
    return actual_cents - expected_cents


def _within_absolute(variance_cents: int, policy: TolerancePolicy) -> bool:
    return abs(variance_cents) <= policy.absolute_cents


def _within_percent(variance_cents: int, expected_cents: int, policy: TolerancePolicy) -> bool:
    if expected_cents == 0:
        return variance_cents == 0
    # |v| / |e| * 100 <= p, kept in exact arithmetic
    return Decimal(abs(variance_cents)) * 100 <= policy.percent * abs(expected_cents)


def within_tolerance(variance_cents: int, expected_cents: int, policy: TolerancePolicy) -> bool:
    if policy.mode == TOLERANCE_ABSOLUTE:
        return _within_absolute(variance_cents, policy)
    if policy.mode == TOLERANCE_PERCENT:
        return _within_percent(variance_cents, expected_cents, policy)
    return _within_absolute(variance_cents, policy) and _within_percent(variance_cents, expected_cents, policy)


def reconcile(expected_cents: int, actual_cents: int, policy: TolerancePolicy) -> ReconciliationResult:
    v = variance(expected_cents, actual_cents)
    return ReconciliationResult(
        expected_cents=expected_cents,
        actual_cents=actual_cents,
        variance_cents=v,
        within_tolerance=within_tolerance(v, expected_cents, policy),
        policy=policy,
    )


def build_policy(mode, absolute_cents, percent) -> TolerancePolicy:
    """Validate raw configuration values into a TolerancePolicy."""
    normalized_mode = str(mode).strip().upper() if mode is not None else TOLERANCE_ABSOLUTE
    if normalized_mode not in TOLERANCE_MODES:
        raise ValidationError(f"Tolerance mode must be one of: {', '.join(TOLERANCE_MODES)}")

    try:
        cents = int(absolute_cents)
    except (TypeError, ValueError):
        raise ValidationError("Tolerance amount must be an integer number of cents")
    if cents < 0:
        raise ValidationError("Tolerance amount cannot be negative")

    try:
        pct = Decimal(str(percent))
    except InvalidOperation:
        raise ValidationError("Tolerance percent must be a number")
    if not pct.is_finite() or pct < 0:
        raise ValidationError("Tolerance percent must be a non-negative number")

    return TolerancePolicy(mode=normalized_mode, absolute_cents=cents, percent=pct)


def default_policy() -> TolerancePolicy:
    config = current_app.config
    return build_policy(
        config.get("HANDOVER_TOLERANCE_MODE", TOLERANCE_ABSOLUTE),
        config.get("HANDOVER_TOLERANCE_CENTS", 10000),
        config.get("HANDOVER_TOLERANCE_PERCENT", "2"),
    )


def get_tolerance_policy(station_id: int) -> TolerancePolicy:
    """App-config defaults, overridden key by key by the station's configuration."""
    base = default_policy()

    def _override(key: str, fallback):
        row = station_service.get_station_config(station_id, key)
        if row is None or row.value is None or row.value == "":
            return fallback
        return row.value

    return build_policy(
        _override(CONFIG_TOLERANCE_MODE, base.mode),
        _override(CONFIG_TOLERANCE_CENTS, base.absolute_cents),
        _override(CONFIG_TOLERANCE_PERCENT, base.percent),
    )


def set_station_tolerance(
    station_id: int,
    *,
    mode: str | None = None,
    absolute_cents: int | None = None,
    percent: str | None = None,
) -> TolerancePolicy:
    current = get_tolerance_policy(station_id)
    policy = build_policy(
        mode if mode is not None else current.mode,
        absolute_cents if absolute_cents is not None else current.absolute_cents,
        percent if percent is not None else current.percent,
    )
    station_service.set_station_config(station_id, CONFIG_TOLERANCE_MODE, policy.mode)
    station_service.set_station_config(station_id, CONFIG_TOLERANCE_CENTS, str(policy.absolute_cents))
    station_service.set_station_config(station_id, CONFIG_TOLERANCE_PERCENT, str(policy.percent))
    return policy


# =============================================================================
# CASH-FLOW SUMMARY
# =============================================================================

def _collected_through(station_id: int, before: date, *, inclusive: bool) -> int:
    date_filter = Shift.shift_date <= before if inclusive else Shift.shift_date < before
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Shift.actual_cash_cents), 0))
        .filter(Shift.station_id == station_id, Shift.status == SHIFT_ENDED, date_filter)
        .scalar()
    )
    return int(total or 0)


def _deposited_through(station_id: int, before: date, *, inclusive: bool) -> int:
    date_filter = CashHandover.handover_date <= before if inclusive else CashHandover.handover_date < before
    deposits = (
        db.session.query(CashHandover)
        .filter(
            CashHandover.station_id == station_id,
            CashHandover.handover_type == HANDOVER_DEPOSIT_TO_BANK,
            CashHandover.status.in_(SETTLED_STATUSES),
            date_filter,
        )
        .all()
    )
    return sum(d.authoritative_amount_cents or 0 for d in deposits)


def get_cash_flow_summary(station_id: int, start_date: date, end_date: date) -> dict:
    """
    Derived cash-flow view for a station over an inclusive date range.

    Balance = cash collected from ended shifts minus cash deposited at the
    bank, i.e. cash still somewhere in the custody chain.
    """
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")

    def _op():
        handovers = (
            db.session.query(CashHandover)
            .filter(
                CashHandover.station_id == station_id,
                CashHandover.handover_date >= start_date,
                CashHandover.handover_date <= end_date,
            )
            .all()
        )

        by_type = {
            t: {"count": 0, "expected_cents": 0, "amount_cents": 0, "variance_cents": 0}
            for t in HANDOVER_TYPES
        }
        pending_count = 0
        disputed_count = 0
        disputed_variance = 0
        for h in handovers:
            if h.status == HANDOVER_PENDING:
                pending_count += 1
                continue
            if h.status == HANDOVER_DISPUTED:
                disputed_count += 1
                disputed_variance += h.difference_cents or 0
                continue
            amount = h.authoritative_amount_cents or 0
            bucket = by_type[h.handover_type]
            bucket["count"] += 1
            bucket["expected_cents"] += h.expected_amount_cents
            bucket["amount_cents"] += amount
            bucket["variance_cents"] += variance(h.expected_amount_cents, amount)

        shift_rows = (
            db.session.query(
                db.func.count(Shift.id),
                db.func.coalesce(db.func.sum(Shift.expected_cash_cents), 0),
                db.func.coalesce(db.func.sum(Shift.actual_cash_cents), 0),
                db.func.coalesce(db.func.sum(Shift.cash_difference_cents), 0),
            )
            .filter(
                Shift.station_id == station_id,
                Shift.status == SHIFT_ENDED,
                Shift.shift_date >= start_date,
                Shift.shift_date <= end_date,
            )
            .one()
        )
        shift_count, shift_expected, shift_collected, shift_difference = shift_rows

        opening_balance = (
            _collected_through(station_id, start_date, inclusive=False)
            - _deposited_through(station_id, start_date, inclusive=False)
        )
        deposited = by_type[HANDOVER_DEPOSIT_TO_BANK]["amount_cents"]
        closing_balance = opening_balance + int(shift_collected) - deposited

        return {
            "station_id": station_id,
            "period": {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            "by_type": by_type,
            "pending_count": pending_count,
            "disputed_count": disputed_count,
            "disputed_variance_cents": disputed_variance,
            "settled_variance_cents": sum(b["variance_cents"] for b in by_type.values()),
            "shifts": {
                "count": int(shift_count),
                "expected_cash_cents": int(shift_expected),
                "collected_cash_cents": int(shift_collected),
                "cash_difference_cents": int(shift_difference),
            },
            "deposited_cents": deposited,
            "opening_balance_cents": opening_balance,
            "closing_balance_cents": closing_balance,
        }

    return run_with_retry(_op)
