# Overview: Station directory lookups and station-scoped access checks.

from __future__ import annotations

from ..extensions import db
from ..models import Station, StationConfig, User
from ..roles import Role, has_min_role
from ..validation import NotFoundError, PermissionDeniedError, ValidationError
from .concurrency import fetch_locked
from .session_service import Identity, identity_for


def create_station(
    name: str,
    code: str | None = None,
    owner_user_id: int | None = None,
    manager_user_id: int | None = None,
) -> Station:
    if not name:
        raise ValidationError("Station name is required")

    station = Station(
        name=name,
        code=code,
        owner_user_id=owner_user_id,
        manager_user_id=manager_user_id,
        is_active=True,
    )
    db.session.add(station)
    db.session.commit()
    return station


def get_station(station_id: int) -> Station:
    station = db.session.query(Station).filter_by(id=station_id).first()
    if not station:
        raise NotFoundError(f"Station {station_id} not found")
    return station


def get_station_owner(station_id: int) -> int | None:
    return get_station(station_id).owner_user_id


def get_station_manager(station_id: int) -> int | None:
    return get_station(station_id).manager_user_id


def get_owned_station_ids(user_id: int) -> list[int]:
    rows = db.session.query(Station.id).filter_by(owner_user_id=user_id).all()
    return [row[0] for row in rows]


def can_access_station(identity: Identity, station_id: int) -> bool:
    """
    Station scope:
    - super_admin: every station
    - owner: stations they own
    - manager: the station they are assigned to (or manage)
    - employee: the station they work at
    """
    if identity.role == Role.SUPER_ADMIN:
        return True

    station = db.session.query(Station).filter_by(id=station_id).first()
    if not station:
        return False

    if identity.role == Role.OWNER:
        return station.owner_user_id == identity.user_id
    if identity.role == Role.MANAGER:
        return identity.station_id == station_id or station.manager_user_id == identity.user_id
    return identity.station_id == station_id


def require_station_access(identity: Identity, station_id: int) -> Station:
    station = get_station(station_id)
    if not can_access_station(identity, station_id):
        raise PermissionDeniedError("Not authorized to access this station", station_id=station_id)
    return station


def get_station_member(station_id: int, user_id: int) -> User:
    """
    Load a user who can hold cash at this station.

    Raises:
        NotFoundError: unknown or inactive user
        ValidationError: user has no access to the station
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")
    if not can_access_station(identity_for(user), station_id):
        raise ValidationError(f"User {user_id} does not work at station {station_id}", user_id=user_id)
    return user


def require_min_role(identity: Identity, required: Role, message: str) -> None:
    if not has_min_role(identity.role, required):
        raise PermissionDeniedError(message, required_role=required.value)


def set_station_config(station_id: int, key: str, value: str | None) -> StationConfig:
    if not key:
        raise ValidationError("Config key is required")

    get_station(station_id)

    config = fetch_locked(
        db.session.query(StationConfig).filter_by(station_id=station_id, key=key), "station config",
    )
    if config:
        config.value = value
    else:
        config = StationConfig(station_id=station_id, key=key, value=value)
        db.session.add(config)

    db.session.commit()
    return config


def get_station_config(station_id: int, key: str) -> StationConfig | None:
    return db.session.query(StationConfig).filter_by(station_id=station_id, key=key).first()


def get_managed_station_ids(identity: Identity) -> list[int]:
    """Stations a manager works at or is the designated manager of."""
    ids = {row[0] for row in db.session.query(Station.id).filter_by(manager_user_id=identity.user_id).all()}
    if identity.station_id:
        ids.add(identity.station_id)
    return sorted(ids)
