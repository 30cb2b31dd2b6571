from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Station(db.Model):
    """
    Fuel station: the custody boundary.

    Every shift and handover belongs to exactly one station. The owner and
    manager pointers drive who receives cash at each link of a chain.
    """
    __tablename__ = "stations"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stations_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    # Plain ids: users also reference stations, so no FK cycle here
    owner_user_id = db.Column(db.Integer, nullable=True, index=True)
    manager_user_id = db.Column(db.Integer, nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Station id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "owner_user_id": self.owner_user_id,
            "manager_user_id": self.manager_user_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StationConfig(db.Model):
    """
    Per-station key/value settings (e.g. handover tolerance overrides).

    Values are stored as strings and parsed by the service that owns the key.
    """
    __tablename__ = "station_configs"
    __table_args__ = (
        db.UniqueConstraint("station_id", "key", name="uq_station_configs_station_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    key = db.Column(db.String(64), nullable=False)
    value = db.Column(db.String(255), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    station = db.relationship("Station", backref=db.backref("configs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "station_id": self.station_id,
            "key": self.key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
