from __future__ import annotations

from ..extensions import db
from app.time_utils import to_iso_date, to_utc_z


HANDOVER_SHIFT_COLLECTION = "shift_collection"
HANDOVER_EMPLOYEE_TO_MANAGER = "employee_to_manager"
HANDOVER_MANAGER_TO_OWNER = "manager_to_owner"
HANDOVER_DEPOSIT_TO_BANK = "deposit_to_bank"
HANDOVER_TYPES = [
    HANDOVER_SHIFT_COLLECTION,
    HANDOVER_EMPLOYEE_TO_MANAGER,
    HANDOVER_MANAGER_TO_OWNER,
    HANDOVER_DEPOSIT_TO_BANK,
]

# Types that may open a chain by referencing a shift
ROOT_HANDOVER_TYPES = {HANDOVER_SHIFT_COLLECTION, HANDOVER_EMPLOYEE_TO_MANAGER}

HANDOVER_PENDING = "pending"
HANDOVER_CONFIRMED = "confirmed"
HANDOVER_DISPUTED = "disputed"
HANDOVER_RESOLVED = "resolved"
HANDOVER_STATUSES = [HANDOVER_PENDING, HANDOVER_CONFIRMED, HANDOVER_DISPUTED, HANDOVER_RESOLVED]

# A handover in one of these states can be the predecessor of the next link
SETTLED_STATUSES = {HANDOVER_CONFIRMED, HANDOVER_RESOLVED}


class CashHandover(db.Model):
    """
    One edge in a cash custody chain.

    WORKFLOW:
    shift -> shift_collection / employee_to_manager -> manager_to_owner -> deposit_to_bank

    LIFECYCLE:
    - pending: waiting for the recipient to count the cash
    - confirmed: counted within tolerance
    - disputed: counted outside tolerance; blocked as a predecessor
    - resolved: an owner settled the dispute (terminal)

    CHAIN: the root references `shift_id`; every other link stores the id of
    its predecessor in `previous_handover_id` and is looked up through the
    handover table, never through an owning relationship. Both columns are
    unique so a shift opens at most one chain and a link has at most one
    successor.
    """
    __tablename__ = "cash_handovers"
    __table_args__ = (
        db.Index("ix_cash_handovers_station_date", "station_id", "handover_date"),
        db.Index("ix_cash_handovers_station_status", "station_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)

    handover_type = db.Column(db.String(32), nullable=False, index=True)
    handover_date = db.Column(db.Date, nullable=False, index=True)

    from_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # Null for bank

    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, unique=True)
    previous_handover_id = db.Column(db.Integer, db.ForeignKey("cash_handovers.id"), nullable=True, unique=True)

    # Amounts (all in cents)
    expected_amount_cents = db.Column(db.Integer, nullable=False)
    actual_amount_cents = db.Column(db.Integer, nullable=True)  # Set once, at confirmation
    difference_cents = db.Column(db.Integer, nullable=True)     # actual - expected
    resolved_amount_cents = db.Column(db.Integer, nullable=True)  # Set once, at resolution

    status = db.Column(db.String(16), nullable=False, default=HANDOVER_PENDING, index=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Bank deposit details (deposit_to_bank only)
    bank_name = db.Column(db.String(100), nullable=True)
    deposit_reference = db.Column(db.String(50), nullable=True)
    deposit_receipt_url = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    dispute_notes = db.Column(db.Text, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    station = db.relationship("Station", backref=db.backref("handovers", lazy=True))
    shift = db.relationship("Shift", backref=db.backref("handovers", lazy=True))

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    @property
    def authoritative_amount_cents(self) -> int | None:
        """Amount a successor inherits: the resolved amount once resolved, else the counted amount."""
        if self.status == HANDOVER_RESOLVED and self.resolved_amount_cents is not None:
            return self.resolved_amount_cents
        return self.actual_amount_cents

    def __repr__(self) -> str:
        return f"<CashHandover id={self.id} type={self.handover_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "handover_type": self.handover_type,
            "handover_date": to_iso_date(self.handover_date),
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "shift_id": self.shift_id,
            "previous_handover_id": self.previous_handover_id,
            "expected_amount_cents": self.expected_amount_cents,
            "actual_amount_cents": self.actual_amount_cents,
            "difference_cents": self.difference_cents,
            "resolved_amount_cents": self.resolved_amount_cents,
            "authoritative_amount_cents": self.authoritative_amount_cents,
            "status": self.status,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "resolved_at": to_utc_z(self.resolved_at),
            "resolved_by_user_id": self.resolved_by_user_id,
            "bank_name": self.bank_name,
            "deposit_reference": self.deposit_reference,
            "deposit_receipt_url": self.deposit_receipt_url,
            "notes": self.notes,
            "dispute_notes": self.dispute_notes,
            "resolution_notes": self.resolution_notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
