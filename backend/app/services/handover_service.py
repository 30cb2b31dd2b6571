"""
Cash Handover Chain Service

WHY: Cash changes hands several times between the pump and the bank.
Each hand-off is a CashHandover the recipient has to count and confirm, so
any shortfall is pinned to the link where it appeared.

FLOW:
1. Shift ends -> root handover (shift_collection or employee_to_manager)
   referencing the shift; expected = shift's reported cash
2. Manager -> owner (manager_to_owner); expected = predecessor's amount
3. Owner -> bank (deposit_to_bank)

CHAIN RULES:
- A successor may only be created from a confirmed or resolved predecessor
- A link has at most one successor and a shift at most one root
  (unique indexes; duplicates raise ConflictError)
- pending -> confirmed | disputed happens exactly once, as one conditional
  UPDATE; disputed -> resolved only by an owner, also conditional
- Resolution is terminal; the resolved amount is what a successor inherits
"""

from __future__ import annotations

import logging
from datetime import date

from ..extensions import db
from ..models import CashHandover
from ..models.handovers import (
    HANDOVER_CONFIRMED,
    HANDOVER_DEPOSIT_TO_BANK,
    HANDOVER_DISPUTED,
    HANDOVER_EMPLOYEE_TO_MANAGER,
    HANDOVER_MANAGER_TO_OWNER,
    HANDOVER_PENDING,
    HANDOVER_RESOLVED,
    HANDOVER_SHIFT_COLLECTION,
    HANDOVER_STATUSES,
    HANDOVER_TYPES,
    ROOT_HANDOVER_TYPES,
)
from ..models.shifts import SHIFT_CANCELLED, SHIFT_ENDED
from ..roles import Role, has_min_role
from ..validation import (
    BusinessRuleError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.time_utils import utcnow
from . import reconciliation_service, shift_service, station_service
from .concurrency import commit_or_conflict, compare_and_set, fetch_locked
from .custody_log_service import append_custody_event
from .session_service import Identity

logger = logging.getLogger(__name__)


# Which link types may directly precede each type
ALLOWED_PREDECESSORS = {
    HANDOVER_SHIFT_COLLECTION: set(),
    HANDOVER_EMPLOYEE_TO_MANAGER: {HANDOVER_SHIFT_COLLECTION},
    HANDOVER_MANAGER_TO_OWNER: {HANDOVER_SHIFT_COLLECTION, HANDOVER_EMPLOYEE_TO_MANAGER},
    HANDOVER_DEPOSIT_TO_BANK: {HANDOVER_MANAGER_TO_OWNER},
}

# Pending items a role sees at its stations without being the named recipient
MANAGER_QUEUE_TYPES = [HANDOVER_SHIFT_COLLECTION, HANDOVER_EMPLOYEE_TO_MANAGER]
OWNER_QUEUE_TYPES = [HANDOVER_MANAGER_TO_OWNER, HANDOVER_DEPOSIT_TO_BANK]


def get_handover(handover_id: int) -> CashHandover:
    handover = db.session.query(CashHandover).filter_by(id=handover_id).first()
    if not handover:
        raise NotFoundError(f"Handover {handover_id} not found")
    return handover


def _validate_type(handover_type: str) -> None:
    if handover_type not in HANDOVER_TYPES:
        raise ValidationError(f"handover_type must be one of: {', '.join(HANDOVER_TYPES)}")


def _require_creation_role(actor: Identity, handover_type: str) -> None:
    if handover_type == HANDOVER_DEPOSIT_TO_BANK:
        station_service.require_min_role(actor, Role.OWNER, "Only owners can record bank deposits")
    else:
        station_service.require_min_role(actor, Role.MANAGER, "Only managers can create handovers")


def _settled_predecessor(previous_handover_id: int, station_id: int, handover_type: str) -> CashHandover:
    """
    Load and check the predecessor of a new link.

    Raises:
        NotFoundError: unknown predecessor
        BusinessRuleError: other station, or a link type that cannot precede this one
        ConflictError: predecessor still pending/disputed, or already forwarded
    """
    predecessor = fetch_locked(
        db.session.query(CashHandover).filter_by(id=previous_handover_id), "previous handover",
    )
    if not predecessor:
        raise NotFoundError(f"Previous handover {previous_handover_id} not found")

    if predecessor.station_id != station_id:
        raise BusinessRuleError("Previous handover belongs to a different station")

    if predecessor.handover_type not in ALLOWED_PREDECESSORS[handover_type]:
        raise BusinessRuleError(
            f"A {handover_type} handover cannot follow a {predecessor.handover_type} handover"
        )

    if not predecessor.is_settled:
        raise ConflictError(
            f"Previous handover is {predecessor.status}; it must be confirmed or resolved first",
            previous_handover_id=predecessor.id,
            status=predecessor.status,
        )

    successor = db.session.query(CashHandover.id).filter_by(previous_handover_id=predecessor.id).first()
    if successor:
        raise ConflictError(
            "Previous handover has already been handed on",
            previous_handover_id=predecessor.id,
            successor_id=successor[0],
        )

    return predecessor


def _check_expected_override(derived_cents: int, supplied_cents: int | None) -> None:
    if supplied_cents is not None and supplied_cents != derived_cents:
        raise BusinessRuleError(
            "expected_amount_cents must equal the amount carried from the previous stage",
            derived_amount_cents=derived_cents,
            supplied_amount_cents=supplied_cents,
        )


def _resolve_sender(
    actor: Identity, station_id: int, derived_id: int | None, supplied_id: int | None,
) -> int | None:
    """
    The sender is whoever held the cash at the previous stage. Only an owner
    may record a different person as the one handing it over.
    """
    if supplied_id is None or supplied_id == derived_id:
        return derived_id
    if not has_min_role(actor.role, Role.OWNER):
        raise PermissionDeniedError(
            "Only owners can record a sender other than the current cash holder",
            holder_user_id=derived_id,
        )
    station_service.get_station_member(station_id, supplied_id)
    return supplied_id


def _default_recipient(actor: Identity, station_id: int, handover_type: str) -> int | None:
    if handover_type == HANDOVER_DEPOSIT_TO_BANK:
        return None
    if handover_type == HANDOVER_MANAGER_TO_OWNER:
        return station_service.get_station_owner(station_id)
    if actor.role == Role.MANAGER:
        return actor.user_id
    return station_service.get_station_manager(station_id) or actor.user_id


# =============================================================================
# CREATION
# =============================================================================

def create_handover(
    actor: Identity,
    station_id: int,
    handover_type: str,
    *,
    shift_id: int | None = None,
    previous_handover_id: int | None = None,
    from_user_id: int | None = None,
    expected_amount_cents: int | None = None,
    notes: str | None = None,
    handover_date: date | None = None,
) -> CashHandover:
    """
    Open a pending link in a custody chain.

    Root links reference an ended shift and expect its reported cash; every
    other link references a settled predecessor and expects its
    authoritative amount.

    Raises:
        ValidationError, NotFoundError, PermissionDeniedError,
        InvalidStateError (shift not ended), BusinessRuleError (chain order,
        station mismatch, expected amount override), ConflictError (unsettled
        predecessor, duplicate root or successor)
    """
    _validate_type(handover_type)
    _require_creation_role(actor, handover_type)
    station_service.require_station_access(actor, station_id)

    if shift_id and previous_handover_id:
        raise ValidationError("Provide either shift_id or previous_handover_id, not both")

    if handover_type == HANDOVER_SHIFT_COLLECTION and not shift_id:
        raise ValidationError("shift_id is required for shift_collection handovers")

    if shift_id:
        if handover_type not in ROOT_HANDOVER_TYPES:
            raise BusinessRuleError(f"A {handover_type} handover cannot start a chain from a shift")

        shift = shift_service.get_shift(shift_id)
        if shift.station_id != station_id:
            raise BusinessRuleError("Shift belongs to a different station")
        if shift.status == SHIFT_CANCELLED:
            raise BusinessRuleError("Cancelled shifts cannot feed a handover chain")
        if shift.status != SHIFT_ENDED:
            raise InvalidStateError(f"Shift must be ended first (status: {shift.status})", status=shift.status)

        existing = db.session.query(CashHandover.id).filter_by(shift_id=shift.id).first()
        if existing:
            raise ConflictError(
                "A handover already opens the chain for this shift",
                shift_id=shift.id,
                handover_id=existing[0],
            )

        derived_cents = shift.actual_cash_cents or 0
        sender_id = shift.employee_id
        link_date = handover_date or shift.shift_date
        duplicate_message = "A handover already opens the chain for this shift"
    else:
        if not previous_handover_id:
            raise ValidationError("previous_handover_id is required unless the handover starts from a shift")

        predecessor = _settled_predecessor(previous_handover_id, station_id, handover_type)
        derived_cents = predecessor.authoritative_amount_cents or 0
        if handover_type == HANDOVER_DEPOSIT_TO_BANK:
            sender_id = actor.user_id
        else:
            sender_id = predecessor.to_user_id
        if handover_type == HANDOVER_MANAGER_TO_OWNER and actor.role == Role.MANAGER \
                and predecessor.to_user_id != actor.user_id:
            raise PermissionDeniedError("Managers can only hand over cash they hold")
        link_date = handover_date or utcnow().date()
        duplicate_message = "Previous handover has already been handed on"

    _check_expected_override(derived_cents, expected_amount_cents)
    sender_id = _resolve_sender(actor, station_id, sender_id, from_user_id)

    handover = CashHandover(
        station_id=station_id,
        handover_type=handover_type,
        handover_date=link_date,
        from_user_id=sender_id,
        to_user_id=_default_recipient(actor, station_id, handover_type),
        shift_id=shift_id,
        previous_handover_id=previous_handover_id,
        expected_amount_cents=derived_cents,
        status=HANDOVER_PENDING,
        notes=notes,
        created_by_user_id=actor.user_id,
    )
    db.session.add(handover)
    db.session.flush()

    append_custody_event(
        station_id=station_id,
        event_type="handover.created",
        entity_type="cash_handover",
        entity_id=handover.id,
        actor_user_id=actor.user_id,
        amount_cents=derived_cents,
        note=notes,
    )

    commit_or_conflict(duplicate_message)

    logger.info(
        "Handover %s (%s) created at station %s, expected=%s",
        handover.id, handover_type, station_id, derived_cents,
    )
    return handover


# =============================================================================
# CONFIRMATION AND DISPUTES
# =============================================================================

def _can_confirm(actor: Identity, handover: CashHandover) -> bool:
    if handover.to_user_id is not None and handover.to_user_id == actor.user_id:
        return True
    return has_min_role(actor.role, Role.OWNER) and station_service.can_access_station(actor, handover.station_id)


def confirm_handover(
    handover_id: int,
    actor: Identity,
    *,
    actual_amount_cents: int,
    notes: str | None = None,
) -> CashHandover:
    """
    Recipient counts the cash.

    Within tolerance -> confirmed; otherwise -> disputed. Either way the
    counted amount and confirmer are written once, in the same conditional
    UPDATE that leaves `pending`.

    Raises:
        NotFoundError, InvalidStateError (not pending), PermissionDeniedError,
        ConflictError (another confirmation won the race)
    """
    handover = fetch_locked(db.session.query(CashHandover).filter_by(id=handover_id), "handover")
    if not handover:
        raise NotFoundError(f"Handover {handover_id} not found")

    if handover.status != HANDOVER_PENDING:
        raise InvalidStateError(f"Handover is not pending (status: {handover.status})", status=handover.status)

    if not _can_confirm(actor, handover):
        raise PermissionDeniedError("Only the designated recipient can confirm this handover")

    policy = reconciliation_service.get_tolerance_policy(handover.station_id)
    result = reconciliation_service.reconcile(handover.expected_amount_cents, actual_amount_cents, policy)

    new_status = HANDOVER_CONFIRMED if result.within_tolerance else HANDOVER_DISPUTED
    dispute_notes = None
    if new_status == HANDOVER_DISPUTED:
        dispute_notes = (
            f"Discrepancy of {result.variance_cents} cents exceeds tolerance "
            f"({policy.mode}: {policy.absolute_cents} cents / {policy.percent}%)"
        )

    now = utcnow()
    compare_and_set(
        CashHandover,
        handover.id,
        expected_status=HANDOVER_PENDING,
        values={
            CashHandover.status: new_status,
            CashHandover.actual_amount_cents: actual_amount_cents,
            CashHandover.difference_cents: result.variance_cents,
            CashHandover.confirmed_at: now,
            CashHandover.confirmed_by_user_id: actor.user_id,
            CashHandover.notes: notes if notes is not None else handover.notes,
            CashHandover.dispute_notes: dispute_notes,
        },
        what="handover",
    )

    append_custody_event(
        station_id=handover.station_id,
        event_type=f"handover.{new_status}",
        entity_type="cash_handover",
        entity_id=handover.id,
        actor_user_id=actor.user_id,
        amount_cents=actual_amount_cents,
        occurred_at=now,
        note=dispute_notes or notes,
    )

    db.session.commit()
    db.session.refresh(handover)

    if new_status == HANDOVER_DISPUTED:
        logger.warning(
            "Handover %s disputed: expected=%s actual=%s variance=%s",
            handover.id, result.expected_cents, result.actual_cents, result.variance_cents,
        )
    else:
        logger.info("Handover %s confirmed: variance=%s", handover.id, result.variance_cents)
    return handover


def resolve_dispute(
    handover_id: int,
    actor: Identity,
    *,
    resolution_notes: str,
    adjusted_amount_cents: int | None = None,
) -> CashHandover:
    """
    Owner settles a disputed handover. Terminal.

    The adjusted amount (or, if omitted, the counted amount) becomes what
    any successor inherits.

    Raises:
        ValidationError (no notes), PermissionDeniedError, NotFoundError,
        InvalidStateError (not disputed), ConflictError (lost race)
    """
    station_service.require_min_role(actor, Role.OWNER, "Only owners can resolve disputes")

    if not resolution_notes or not resolution_notes.strip():
        raise ValidationError("resolution_notes is required")

    handover = fetch_locked(db.session.query(CashHandover).filter_by(id=handover_id), "handover")
    if not handover:
        raise NotFoundError(f"Handover {handover_id} not found")

    station_service.require_station_access(actor, handover.station_id)

    if handover.status != HANDOVER_DISPUTED:
        raise InvalidStateError(
            f"Only disputed handovers can be resolved (status: {handover.status})",
            status=handover.status,
        )

    resolved_amount = adjusted_amount_cents if adjusted_amount_cents is not None else handover.actual_amount_cents
    policy = reconciliation_service.get_tolerance_policy(handover.station_id)
    result = reconciliation_service.reconcile(handover.expected_amount_cents, resolved_amount, policy)

    now = utcnow()
    compare_and_set(
        CashHandover,
        handover.id,
        expected_status=HANDOVER_DISPUTED,
        values={
            CashHandover.status: HANDOVER_RESOLVED,
            CashHandover.resolved_amount_cents: resolved_amount,
            CashHandover.resolved_at: now,
            CashHandover.resolved_by_user_id: actor.user_id,
            CashHandover.resolution_notes: resolution_notes.strip(),
        },
        what="handover",
    )

    append_custody_event(
        station_id=handover.station_id,
        event_type="handover.resolved",
        entity_type="cash_handover",
        entity_id=handover.id,
        actor_user_id=actor.user_id,
        amount_cents=resolved_amount,
        occurred_at=now,
        note=f"{resolution_notes.strip()} (variance {result.variance_cents})",
    )

    db.session.commit()
    db.session.refresh(handover)

    logger.info(
        "Handover %s resolved by %s: amount=%s variance=%s",
        handover.id, actor.user_id, resolved_amount, result.variance_cents,
    )
    return handover


def record_bank_deposit(
    actor: Identity,
    station_id: int,
    amount_cents: int,
    *,
    bank_name: str | None = None,
    deposit_reference: str | None = None,
    deposit_receipt_url: str | None = None,
    previous_handover_id: int | None = None,
    notes: str | None = None,
    handover_date: date | None = None,
) -> CashHandover:
    """
    Owner deposits cash at the bank: created and confirmed in one step.

    When linked to a predecessor, the deposit is reconciled against the
    predecessor's authoritative amount and may be recorded as disputed.
    """
    station_service.require_min_role(actor, Role.OWNER, "Only owners can record bank deposits")
    station_service.require_station_access(actor, station_id)

    policy = reconciliation_service.get_tolerance_policy(station_id)
    if previous_handover_id:
        predecessor = _settled_predecessor(previous_handover_id, station_id, HANDOVER_DEPOSIT_TO_BANK)
        expected = predecessor.authoritative_amount_cents or 0
    else:
        expected = amount_cents
    result = reconciliation_service.reconcile(expected, amount_cents, policy)

    status = HANDOVER_CONFIRMED if result.within_tolerance else HANDOVER_DISPUTED
    now = utcnow()
    handover = CashHandover(
        station_id=station_id,
        handover_type=HANDOVER_DEPOSIT_TO_BANK,
        handover_date=handover_date or now.date(),
        from_user_id=actor.user_id,
        to_user_id=None,
        previous_handover_id=previous_handover_id,
        expected_amount_cents=expected,
        actual_amount_cents=amount_cents,
        difference_cents=result.variance_cents,
        status=status,
        confirmed_at=now,
        confirmed_by_user_id=actor.user_id,
        bank_name=bank_name,
        deposit_reference=deposit_reference,
        deposit_receipt_url=deposit_receipt_url,
        notes=notes,
        dispute_notes=(
            f"Deposit differs from custody amount by {result.variance_cents} cents"
            if status == HANDOVER_DISPUTED else None
        ),
        created_by_user_id=actor.user_id,
    )
    db.session.add(handover)
    db.session.flush()

    append_custody_event(
        station_id=station_id,
        event_type="handover.deposit_recorded" if status == HANDOVER_CONFIRMED else "handover.disputed",
        entity_type="cash_handover",
        entity_id=handover.id,
        actor_user_id=actor.user_id,
        amount_cents=amount_cents,
        occurred_at=now,
        note=deposit_reference,
    )

    commit_or_conflict("Previous handover has already been handed on")

    logger.info("Bank deposit %s recorded at station %s: amount=%s status=%s", handover.id, station_id, amount_cents, status)
    return handover


# =============================================================================
# QUERIES
# =============================================================================

def get_pending_handovers(actor: Identity, station_id: int | None = None) -> list[CashHandover]:
    """
    Pending handovers the actor is expected to act on:
    - addressed to the actor directly
    - manager: collection links pending at their stations
    - owner: manager_to_owner / deposit_to_bank pending at stations they own
    - super_admin: everything pending
    """
    query = db.session.query(CashHandover).filter(CashHandover.status == HANDOVER_PENDING)

    if actor.role != Role.SUPER_ADMIN:
        scopes = [CashHandover.to_user_id == actor.user_id]
        if actor.role == Role.MANAGER:
            managed = station_service.get_managed_station_ids(actor)
            if managed:
                scopes.append(db.and_(
                    CashHandover.station_id.in_(managed),
                    CashHandover.handover_type.in_(MANAGER_QUEUE_TYPES),
                ))
        elif actor.role == Role.OWNER:
            owned = station_service.get_owned_station_ids(actor.user_id)
            if owned:
                scopes.append(db.and_(
                    CashHandover.station_id.in_(owned),
                    CashHandover.handover_type.in_(OWNER_QUEUE_TYPES),
                ))
        query = query.filter(db.or_(*scopes))

    if station_id:
        query = query.filter(CashHandover.station_id == station_id)

    return query.order_by(
        CashHandover.handover_date.desc(),
        CashHandover.created_at.desc(),
        CashHandover.id.desc(),
    ).all()


def get_handover_chain(handover_id: int) -> list[CashHandover]:
    """Walk back-references from a handover to its root; returned root first."""
    chain: list[CashHandover] = []
    seen: set[int] = set()
    current = get_handover(handover_id)
    while current is not None:
        if current.id in seen:
            raise BusinessRuleError("Handover chain contains a cycle", handover_id=current.id)
        seen.add(current.id)
        chain.append(current)
        if current.previous_handover_id is None:
            break
        current = db.session.query(CashHandover).filter_by(id=current.previous_handover_id).first()
    chain.reverse()
    return chain


def list_station_handovers(
    station_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    handover_type: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[CashHandover], int]:
    if handover_type:
        _validate_type(handover_type)
    if status and status not in HANDOVER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(HANDOVER_STATUSES)}")

    query = db.session.query(CashHandover).filter(CashHandover.station_id == station_id)
    if start_date:
        query = query.filter(CashHandover.handover_date >= start_date)
    if end_date:
        query = query.filter(CashHandover.handover_date <= end_date)
    if handover_type:
        query = query.filter(CashHandover.handover_type == handover_type)
    if status:
        query = query.filter(CashHandover.status == status)

    total = query.count()
    handovers = (
        query.order_by(CashHandover.handover_date.desc(), CashHandover.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return handovers, total


def get_unconfirmed(station_id: int, start_date: date, end_date: date) -> list[CashHandover]:
    return (
        db.session.query(CashHandover)
        .filter(
            CashHandover.station_id == station_id,
            CashHandover.status == HANDOVER_PENDING,
            CashHandover.handover_date >= start_date,
            CashHandover.handover_date <= end_date,
        )
        .order_by(CashHandover.handover_date.asc(), CashHandover.id.asc())
        .all()
    )


def get_bank_deposits(station_id: int, start_date: date, end_date: date) -> tuple[list[CashHandover], int]:
    """Returns (deposits newest first, total deposited cents across settled deposits)."""
    deposits = (
        db.session.query(CashHandover)
        .filter(
            CashHandover.station_id == station_id,
            CashHandover.handover_type == HANDOVER_DEPOSIT_TO_BANK,
            CashHandover.handover_date >= start_date,
            CashHandover.handover_date <= end_date,
        )
        .order_by(CashHandover.handover_date.desc(), CashHandover.id.desc())
        .all()
    )
    total = sum(d.authoritative_amount_cents or 0 for d in deposits if d.is_settled)
    return deposits, total
