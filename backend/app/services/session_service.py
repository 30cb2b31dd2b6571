# Overview: Bearer-token identity resolution; stand-in for the external identity directory.

"""
Session Token Management

Resolves a bearer token to the caller's identity: user id, role and
station. Password login is handled outside this service; tokens are issued
by the CLI or by an upstream identity provider.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute expiry (SESSION_TTL_HOURS) and explicit revocation
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..roles import Role
from app.time_utils import utcnow


DEFAULT_SESSION_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class Identity:
    """Who is calling: the only facts the custody core needs about a user."""
    user_id: int
    role: Role
    station_id: int | None


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    identity: Identity


def identity_for(user: User) -> Identity:
    return Identity(user_id=user.id, role=user.role_enum, station_id=user.station_id)


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _session_ttl() -> timedelta:
    hours = current_app.config.get("SESSION_TTL_HOURS")
    return timedelta(hours=hours) if hours else DEFAULT_SESSION_TTL


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Issue a token for an active user.

    Returns (session_record, plaintext_token).
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _session_ttl(),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a plaintext token to a SessionContext.

    Returns None if the token is unknown, revoked, expired, or its user is
    deactivated.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None

    now = utcnow()
    if session.expires_at and session.expires_at <= now:
        return None

    user = db.session.query(User).filter_by(id=session.user_id).first()
    if not user or not user.is_active:
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, identity=identity_for(user))


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
