from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class CustodyEvent(db.Model):
    """
    Append-only audit trail of shift and handover transitions.

    Rows are written in the same transaction as the transition they record
    and are never updated or deleted. occurred_at is business time;
    created_at is system time.
    """
    __tablename__ = "custody_events"
    __table_args__ = (
        db.Index("ix_custody_events_station_occurred", "station_id", "occurred_at"),
        db.Index("ix_custody_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. "handover.disputed"
    entity_type = db.Column(db.String(32), nullable=False)             # "shift" | "cash_handover"
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
