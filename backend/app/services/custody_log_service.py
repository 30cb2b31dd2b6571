# Overview: Append-only custody event log written alongside every shift and handover transition.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import CustodyEvent
from app.time_utils import utcnow
"""
Custody Event Log Invariants

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the transition they record
  (flush only; the calling service commits).
- occurred_at is business time; created_at is system time (DB default).
"""


def append_custody_event(
    *,
    station_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    amount_cents: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
) -> CustodyEvent:
    ev = CustodyEvent(
        station_id=station_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        amount_cents=amount_cents,
        occurred_at=occurred_at or utcnow(),
        note=note,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_entity_events(entity_type: str, entity_id: int) -> list[CustodyEvent]:
    return (
        db.session.query(CustodyEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(CustodyEvent.occurred_at.asc(), CustodyEvent.id.asc())
        .all()
    )
