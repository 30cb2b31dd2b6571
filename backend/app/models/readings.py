from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class NozzleReading(db.Model):
    """
    Meter reading entered at a nozzle, with the sale split by payment method.

    Only the fields the reading aggregate needs are modelled here; pump and
    nozzle management live outside this service.
    """
    __tablename__ = "nozzle_readings"
    __table_args__ = (
        db.Index("ix_nozzle_readings_station_recorded", "station_id", "recorded_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    entered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    litres_sold = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    online_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Baseline readings carry no sale
    is_initial_reading = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "entered_by_user_id": self.entered_by_user_id,
            "recorded_at": to_utc_z(self.recorded_at),
            "litres_sold": str(self.litres_sold) if self.litres_sold is not None else None,
            "total_amount_cents": self.total_amount_cents,
            "cash_amount_cents": self.cash_amount_cents,
            "online_amount_cents": self.online_amount_cents,
            "credit_amount_cents": self.credit_amount_cents,
            "is_initial_reading": self.is_initial_reading,
        }
