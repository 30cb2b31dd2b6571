from __future__ import annotations

from datetime import datetime, timedelta

from ..extensions import db
from app.time_utils import to_iso_date, to_utc_z


SHIFT_ACTIVE = "active"
SHIFT_ENDED = "ended"
SHIFT_CANCELLED = "cancelled"
SHIFT_STATUSES = [SHIFT_ACTIVE, SHIFT_ENDED, SHIFT_CANCELLED]

SHIFT_TYPES = ["morning", "evening", "night", "full_day", "custom"]


class Shift(db.Model):
    """
    One employee work period at one station.

    LIFECYCLE:
    - active: cash is being collected
    - ended: cash reported, expected cash computed from readings
    - cancelled: closed by a manager without any cash computation

    IMMUTABLE: ended and cancelled shifts are never reopened. The
    expected/difference figures are written once, by the end transition.

    At most one active shift per employee is enforced by a partial unique
    index so a racing second insert fails at the database.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_station_date", "station_id", "shift_date"),
        db.Index("ix_shifts_employee_date", "employee_id", "shift_date"),
        db.Index(
            "uq_shifts_one_active_per_employee",
            "employee_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    shift_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)  # Null until ended/cancelled

    shift_type = db.Column(db.String(16), nullable=False, default="custom")
    status = db.Column(db.String(16), nullable=False, default=SHIFT_ACTIVE, index=True)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)    # From readings, at end
    actual_cash_cents = db.Column(db.Integer, nullable=True)      # Reported, at end
    actual_online_cents = db.Column(db.Integer, nullable=True)    # Reported, at end
    cash_difference_cents = db.Column(db.Integer, nullable=True)  # actual - expected

    # Readings summary captured at end
    expected_online_cents = db.Column(db.Integer, nullable=True)
    expected_credit_cents = db.Column(db.Integer, nullable=True)
    readings_count = db.Column(db.Integer, nullable=False, default=0)
    total_litres = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    end_notes = db.Column(db.Text, nullable=True)
    ended_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    station = db.relationship("Station", backref=db.backref("shifts", lazy=True))
    employee = db.relationship("User", foreign_keys=[employee_id], backref=db.backref("shifts", lazy=True))
    ended_by = db.relationship("User", foreign_keys=[ended_by_user_id])

    @property
    def is_active(self) -> bool:
        return self.status == SHIFT_ACTIVE

    def duration_hours(self) -> float | None:
        """Shift length in hours; overnight shifts wrap past midnight."""
        if not self.end_time or not self.start_time:
            return None
        diff = self.end_time - self.start_time
        if diff < timedelta(0):
            diff += timedelta(days=1)
        return round(diff.total_seconds() / 3600, 2)

    def __repr__(self) -> str:
        return f"<Shift id={self.id} employee={self.employee_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "employee_id": self.employee_id,
            "shift_date": to_iso_date(self.shift_date),
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "shift_type": self.shift_type,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "actual_online_cents": self.actual_online_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "expected_online_cents": self.expected_online_cents,
            "expected_credit_cents": self.expected_credit_cents,
            "readings_count": self.readings_count,
            "total_litres": str(self.total_litres) if self.total_litres is not None else None,
            "total_sales_cents": self.total_sales_cents,
            "duration_hours": self.duration_hours(),
            "notes": self.notes,
            "end_notes": self.end_notes,
            "ended_by_user_id": self.ended_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
