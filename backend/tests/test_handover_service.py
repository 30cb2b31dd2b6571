"""
Cash handover chain tests.

Verifies:
- Roots reference an ended shift; successors reference a settled predecessor
- Expected amounts are derived from the previous stage, never supplied
- pending -> confirmed | disputed, disputed -> resolved, nothing else
- Chain walking, pending queues and bank deposits
"""

import pytest

from app.models import CashHandover, CustodyEvent, User
from app.services import handover_service, reconciliation_service, shift_service
from app.services.session_service import identity_for
from app.time_utils import utcnow
from app.validation import (
    BusinessRuleError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


# =============================================================================
# END-TO-END
# =============================================================================


def test_full_custody_chain_with_dispute(db_session, station, employee_id, manager_id, owner_id, ended_shift):
    """Shift 5000.00 -> manager 5000.00 -> owner counts 4800.00 -> resolved -> bank expects 4800.00."""
    reconciliation_service.set_station_tolerance(station.id, absolute_cents=5000)

    shift = ended_shift(500000)
    assert shift.actual_cash_cents == 500000

    root = handover_service.create_handover(manager_id, station.id, "employee_to_manager", shift_id=shift.id)
    assert root.expected_amount_cents == 500000
    assert root.from_user_id == employee_id.user_id
    assert root.to_user_id == manager_id.user_id

    root = handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=500000)
    assert root.status == "confirmed"
    assert root.difference_cents == 0

    to_owner = handover_service.create_handover(
        manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
    )
    assert to_owner.expected_amount_cents == 500000
    assert to_owner.from_user_id == manager_id.user_id
    assert to_owner.to_user_id == owner_id.user_id

    to_owner = handover_service.confirm_handover(to_owner.id, owner_id, actual_amount_cents=480000)
    assert to_owner.status == "disputed"
    assert to_owner.difference_cents == -20000
    assert to_owner.dispute_notes

    to_owner = handover_service.resolve_dispute(
        to_owner.id, owner_id, resolution_notes="Counted twice, shortfall accepted", adjusted_amount_cents=480000,
    )
    assert to_owner.status == "resolved"
    assert to_owner.actual_amount_cents == 480000
    assert to_owner.authoritative_amount_cents == 480000

    deposit = handover_service.create_handover(
        owner_id, station.id, "deposit_to_bank", previous_handover_id=to_owner.id,
    )
    assert deposit.expected_amount_cents == 480000
    assert deposit.to_user_id is None

    chain = handover_service.get_handover_chain(deposit.id)
    assert [h.id for h in chain] == [root.id, to_owner.id, deposit.id]
    assert chain[0].shift_id == shift.id


# =============================================================================
# CREATION
# =============================================================================


class TestCreateRoot:

    def test_root_requires_ended_shift(self, db_session, station, employee_id, manager_id):
        shift = shift_service.start_shift(employee_id)
        with pytest.raises(InvalidStateError):
            handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

    def test_cancelled_shift_cannot_feed_chain(self, db_session, station, employee_id, manager_id):
        shift = shift_service.start_shift(employee_id)
        shift_service.cancel_shift(shift.id, manager_id)
        with pytest.raises(BusinessRuleError):
            handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

    def test_second_root_for_same_shift_conflicts(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

        with pytest.raises(ConflictError):
            handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)
        assert db_session.query(CashHandover).count() == 1

    def test_shift_collection_requires_shift(self, db_session, station, manager_id):
        with pytest.raises(ValidationError):
            handover_service.create_handover(manager_id, station.id, "shift_collection")

    def test_shift_and_predecessor_are_exclusive(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        with pytest.raises(ValidationError):
            handover_service.create_handover(
                manager_id, station.id, "employee_to_manager", shift_id=shift.id, previous_handover_id=1,
            )

    def test_manager_to_owner_cannot_start_from_shift(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        with pytest.raises(BusinessRuleError):
            handover_service.create_handover(manager_id, station.id, "manager_to_owner", shift_id=shift.id)

    def test_shift_from_other_station(self, db_session, station, other_station, admin_id, ended_shift):
        shift = ended_shift(100000)
        with pytest.raises(BusinessRuleError):
            handover_service.create_handover(admin_id, other_station.id, "shift_collection", shift_id=shift.id)

    def test_expected_override_must_match(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        with pytest.raises(BusinessRuleError):
            handover_service.create_handover(
                manager_id, station.id, "shift_collection", shift_id=shift.id, expected_amount_cents=90000,
            )
        ok = handover_service.create_handover(
            manager_id, station.id, "shift_collection", shift_id=shift.id, expected_amount_cents=100000,
        )
        assert ok.expected_amount_cents == 100000

    def test_employee_cannot_create(self, db_session, station, employee_id, ended_shift):
        shift = ended_shift(100000)
        with pytest.raises(PermissionDeniedError):
            handover_service.create_handover(employee_id, station.id, "shift_collection", shift_id=shift.id)

    def test_unknown_type(self, db_session, station, manager_id):
        with pytest.raises(ValidationError):
            handover_service.create_handover(manager_id, station.id, "pocket")

    def test_creation_is_logged(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)
        events = db_session.query(CustodyEvent).filter_by(entity_type="cash_handover", entity_id=root.id).all()
        assert [e.event_type for e in events] == ["handover.created"]
        assert events[0].amount_cents == 100000


class TestCreateSuccessor:

    def test_pending_predecessor_conflicts(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "employee_to_manager", shift_id=shift.id)

        with pytest.raises(ConflictError):
            handover_service.create_handover(
                manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
            )

    def test_disputed_predecessor_conflicts(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "employee_to_manager", shift_id=shift.id)
        handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=50000)

        with pytest.raises(ConflictError):
            handover_service.create_handover(
                manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
            )

    def test_predecessor_forwarded_once(self, db_session, station, manager_id, confirmed_root):
        root = confirmed_root()
        handover_service.create_handover(manager_id, station.id, "manager_to_owner", previous_handover_id=root.id)

        with pytest.raises(ConflictError):
            handover_service.create_handover(
                manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
            )

    def test_chain_order_is_enforced(self, db_session, station, owner_id, confirmed_root):
        root = confirmed_root()
        with pytest.raises(BusinessRuleError):
            handover_service.create_handover(
                owner_id, station.id, "deposit_to_bank", previous_handover_id=root.id,
            )

    def test_predecessor_at_other_station(self, db_session, station, other_station, admin_id, confirmed_root):
        root = confirmed_root()
        with pytest.raises(BusinessRuleError):
            handover_service.create_handover(
                admin_id, other_station.id, "manager_to_owner", previous_handover_id=root.id,
            )

    def test_unknown_predecessor(self, db_session, station, manager_id):
        with pytest.raises(NotFoundError):
            handover_service.create_handover(
                manager_id, station.id, "manager_to_owner", previous_handover_id=31337,
            )

    def test_manager_hands_over_only_own_cash(self, db_session, station, manager_id, owner, confirmed_root):
        root = confirmed_root()
        with pytest.raises(PermissionDeniedError):
            handover_service.create_handover(
                manager_id, station.id, "manager_to_owner", previous_handover_id=root.id, from_user_id=owner.id,
            )

    def test_manager_cannot_forward_another_managers_cash(self, db_session, station, confirmed_root):
        root = confirmed_root()
        relief = User(username="sunil", name="Sunil", role="manager", station_id=station.id, is_active=True)
        db_session.add(relief)
        db_session.commit()
        relief_id = identity_for(relief)

        with pytest.raises(PermissionDeniedError):
            handover_service.create_handover(
                relief_id, station.id, "manager_to_owner", previous_handover_id=root.id, from_user_id=relief.id,
            )
        with pytest.raises(PermissionDeniedError):
            handover_service.create_handover(
                relief_id, station.id, "manager_to_owner", previous_handover_id=root.id,
            )
        assert db_session.query(CashHandover).filter_by(previous_handover_id=root.id).count() == 0

    def test_sender_is_the_cash_holder(self, db_session, station, manager, manager_id, confirmed_root):
        root = confirmed_root()
        link = handover_service.create_handover(
            manager_id, station.id, "manager_to_owner", previous_handover_id=root.id, from_user_id=manager.id,
        )
        assert link.from_user_id == manager.id == root.to_user_id

    def test_owner_records_other_sender_from_station(self, db_session, station, owner_id, employee, confirmed_root):
        root = confirmed_root()
        link = handover_service.create_handover(
            owner_id, station.id, "manager_to_owner", previous_handover_id=root.id, from_user_id=employee.id,
        )
        assert link.from_user_id == employee.id

    def test_unknown_sender_rejected(self, db_session, station, owner_id, confirmed_root):
        root = confirmed_root()
        with pytest.raises(NotFoundError):
            handover_service.create_handover(
                owner_id, station.id, "manager_to_owner", previous_handover_id=root.id, from_user_id=987654,
            )
        assert db_session.query(CashHandover).filter_by(from_user_id=987654).count() == 0

    def test_sender_from_other_station_rejected(self, db_session, station, owner_id, outsider, confirmed_root):
        root = confirmed_root()
        with pytest.raises(ValidationError):
            handover_service.create_handover(
                owner_id, station.id, "manager_to_owner", previous_handover_id=root.id, from_user_id=outsider.id,
            )

    def test_manager_cannot_name_root_sender(self, db_session, station, manager_id, owner, ended_shift):
        shift = ended_shift(100000)
        with pytest.raises(PermissionDeniedError):
            handover_service.create_handover(
                manager_id, station.id, "shift_collection", shift_id=shift.id, from_user_id=owner.id,
            )

    def test_manager_cannot_create_deposit(self, db_session, station, manager_id):
        with pytest.raises(PermissionDeniedError):
            handover_service.create_handover(manager_id, station.id, "deposit_to_bank", previous_handover_id=1)


# =============================================================================
# CONFIRMATION AND DISPUTES
# =============================================================================


class TestConfirm:

    def test_within_tolerance_confirms(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

        # Default tolerance is 10000 cents
        confirmed = handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=90000)
        assert confirmed.status == "confirmed"
        assert confirmed.difference_cents == -10000
        assert confirmed.confirmed_by_user_id == manager_id.user_id
        assert confirmed.confirmed_at is not None

    def test_confirm_twice_is_invalid_state(self, db_session, station, manager_id, confirmed_root):
        root = confirmed_root()
        with pytest.raises(InvalidStateError):
            handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=1)
        assert handover_service.get_handover(root.id).actual_amount_cents == 500000

    def test_only_recipient_or_owner_confirms(self, db_session, station, manager_id, employee_id, owner_id,
                                              other_owner, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

        with pytest.raises(PermissionDeniedError):
            handover_service.confirm_handover(root.id, employee_id, actual_amount_cents=100000)
        with pytest.raises(PermissionDeniedError):
            handover_service.confirm_handover(root.id, identity_for(other_owner), actual_amount_cents=100000)

        assert handover_service.confirm_handover(root.id, owner_id, actual_amount_cents=100000).status == "confirmed"

    def test_percent_mode_station(self, db_session, station, manager_id, ended_shift):
        reconciliation_service.set_station_tolerance(station.id, mode="PERCENT", percent="1")
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

        disputed = handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=98000)
        assert disputed.status == "disputed"

    def test_events_record_dispute(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)
        handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=1000)

        types = [
            e.event_type for e in
            db_session.query(CustodyEvent).filter_by(entity_id=root.id, entity_type="cash_handover")
            .order_by(CustodyEvent.id).all()
        ]
        assert types == ["handover.created", "handover.disputed"]


class TestResolve:

    def _disputed(self, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "employee_to_manager", shift_id=shift.id)
        return handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=50000)

    def test_resolve_without_adjustment_keeps_count(self, db_session, station, manager_id, owner_id, ended_shift):
        disputed = self._disputed(station, manager_id, ended_shift)
        resolved = handover_service.resolve_dispute(disputed.id, owner_id, resolution_notes="Accepted")

        assert resolved.status == "resolved"
        assert resolved.resolved_amount_cents == 50000
        assert resolved.resolved_by_user_id == owner_id.user_id

    def test_successor_inherits_resolved_amount(self, db_session, station, manager_id, owner_id, ended_shift):
        disputed = self._disputed(station, manager_id, ended_shift)
        handover_service.resolve_dispute(
            disputed.id, owner_id, resolution_notes="Found in safe", adjusted_amount_cents=100000,
        )

        to_owner = handover_service.create_handover(
            manager_id, station.id, "manager_to_owner", previous_handover_id=disputed.id,
        )
        assert to_owner.expected_amount_cents == 100000

    def test_manager_cannot_resolve(self, db_session, station, manager_id, ended_shift):
        disputed = self._disputed(station, manager_id, ended_shift)
        with pytest.raises(PermissionDeniedError):
            handover_service.resolve_dispute(disputed.id, manager_id, resolution_notes="mine")

    def test_notes_required(self, db_session, station, manager_id, owner_id, ended_shift):
        disputed = self._disputed(station, manager_id, ended_shift)
        with pytest.raises(ValidationError):
            handover_service.resolve_dispute(disputed.id, owner_id, resolution_notes="   ")

    def test_only_disputed_can_be_resolved(self, db_session, station, owner_id, confirmed_root):
        root = confirmed_root()
        with pytest.raises(InvalidStateError):
            handover_service.resolve_dispute(root.id, owner_id, resolution_notes="n/a")

    def test_resolution_is_terminal(self, db_session, station, manager_id, owner_id, ended_shift):
        disputed = self._disputed(station, manager_id, ended_shift)
        handover_service.resolve_dispute(disputed.id, owner_id, resolution_notes="Accepted")

        with pytest.raises(InvalidStateError):
            handover_service.resolve_dispute(disputed.id, owner_id, resolution_notes="Again")
        with pytest.raises(InvalidStateError):
            handover_service.confirm_handover(disputed.id, owner_id, actual_amount_cents=1)


# =============================================================================
# BANK DEPOSITS
# =============================================================================


class TestBankDeposit:

    def test_standalone_deposit_is_confirmed(self, db_session, station, owner_id):
        deposit = handover_service.record_bank_deposit(
            owner_id, station.id, 250000, bank_name="State Bank", deposit_reference="SB-991",
        )
        assert deposit.status == "confirmed"
        assert deposit.handover_type == "deposit_to_bank"
        assert deposit.expected_amount_cents == 250000
        assert deposit.difference_cents == 0

    def test_linked_deposit_reconciles_against_predecessor(self, db_session, station, manager_id, owner_id,
                                                           confirmed_root):
        root = confirmed_root(500000)
        to_owner = handover_service.create_handover(
            manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
        )
        handover_service.confirm_handover(to_owner.id, owner_id, actual_amount_cents=500000)

        deposit = handover_service.record_bank_deposit(
            owner_id, station.id, 400000, previous_handover_id=to_owner.id,
        )
        assert deposit.status == "disputed"
        assert deposit.difference_cents == -100000

    def test_manager_cannot_deposit(self, db_session, station, manager_id):
        with pytest.raises(PermissionDeniedError):
            handover_service.record_bank_deposit(manager_id, station.id, 1000)

    def test_deposit_totals(self, db_session, station, owner_id):
        handover_service.record_bank_deposit(owner_id, station.id, 1000)
        handover_service.record_bank_deposit(owner_id, station.id, 2500)

        today = utcnow().date()
        deposits, total = handover_service.get_bank_deposits(station.id, today, today)
        assert len(deposits) == 2
        assert total == 3500


# =============================================================================
# QUERIES
# =============================================================================


class TestQueries:

    def test_pending_queue_per_role(self, db_session, station, employee_id, manager_id, owner_id, admin_id,
                                    confirmed_root, ended_shift):
        root = confirmed_root()
        to_owner = handover_service.create_handover(
            manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
        )
        second_shift = ended_shift(70000)
        collection = handover_service.create_handover(
            manager_id, station.id, "shift_collection", shift_id=second_shift.id,
        )

        assert [h.id for h in handover_service.get_pending_handovers(manager_id)] == [collection.id]
        assert [h.id for h in handover_service.get_pending_handovers(owner_id)] == [to_owner.id]
        assert {h.id for h in handover_service.get_pending_handovers(admin_id)} == {to_owner.id, collection.id}
        assert handover_service.get_pending_handovers(employee_id) == []

    def test_unconfirmed_and_listing(self, db_session, station, manager_id, ended_shift):
        shift = ended_shift(100000)
        root = handover_service.create_handover(manager_id, station.id, "shift_collection", shift_id=shift.id)

        day = root.handover_date
        assert [h.id for h in handover_service.get_unconfirmed(station.id, day, day)] == [root.id]

        handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=100000)
        assert handover_service.get_unconfirmed(station.id, day, day) == []

        items, total = handover_service.list_station_handovers(station.id, status="confirmed")
        assert total == 1
        assert items[0].id == root.id

    def test_listing_rejects_unknown_status(self, db_session, station):
        with pytest.raises(ValidationError):
            handover_service.list_station_handovers(station.id, status="lost")

    def test_chain_of_root_is_itself(self, db_session, station, confirmed_root):
        root = confirmed_root()
        assert [h.id for h in handover_service.get_handover_chain(root.id)] == [root.id]
