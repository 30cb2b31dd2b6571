# backend/app/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/custody.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///custody.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Handover variance tolerance (station overrides live in station_configs)
    # Modes: ABSOLUTE, PERCENT, BOTH
    HANDOVER_TOLERANCE_MODE = os.environ.get("HANDOVER_TOLERANCE_MODE", "ABSOLUTE")
    HANDOVER_TOLERANCE_CENTS = int(os.environ.get("HANDOVER_TOLERANCE_CENTS", "10000"))
    HANDOVER_TOLERANCE_PERCENT = os.environ.get("HANDOVER_TOLERANCE_PERCENT", "2")

    # Open the shift_collection handover automatically when a shift ends
    AUTO_SHIFT_COLLECTION = _env_bool("AUTO_SHIFT_COLLECTION", False)

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
