from __future__ import annotations

import math
from datetime import datetime

from ..extensions import db
from checkout_tracker.time_utils import to_utc_z, utcnow


TX_TYPE_CHECKOUT = "checkout"
TX_TYPES = ("checkout", "return", "reserve", "cancel", "maintenance", "adjustment")

TX_STATUS_PENDING = "pending"
TX_STATUS_ACTIVE = "active"
TX_STATUS_OVERDUE = "overdue"
TX_STATUS_RETURNED = "returned"
TX_STATUS_CANCELLED = "cancelled"
TX_STATUS_APPROVED = "approved"
TX_STATUS_REJECTED = "rejected"
TX_STATUSES = (
    TX_STATUS_PENDING,
    TX_STATUS_ACTIVE,
    TX_STATUS_OVERDUE,
    TX_STATUS_RETURNED,
    TX_STATUS_CANCELLED,
    TX_STATUS_APPROVED,
    TX_STATUS_REJECTED,
)
OPEN_STATUSES = (TX_STATUS_PENDING, TX_STATUS_ACTIVE, TX_STATUS_OVERDUE)
OUT_STATUSES = (TX_STATUS_ACTIVE, TX_STATUS_OVERDUE)
TERMINAL_STATUSES = (TX_STATUS_RETURNED, TX_STATUS_CANCELLED, TX_STATUS_REJECTED)

# Stock held by a transaction:
# REQUESTED - deducted from available at checkout, waiting on an approver
# CONFIRMED - deducted from available, item is out (or approved to go out)
# RELEASED  - given back to available (returned or rejected)
RESERVATION_REQUESTED = "requested"
RESERVATION_CONFIRMED = "confirmed"
RESERVATION_RELEASED = "released"
HOLDING_RESERVATION_STATES = (RESERVATION_REQUESTED, RESERVATION_CONFIRMED)

CHECKOUT_CONDITIONS = ("excellent", "good", "fair", "poor")
RETURN_CONDITIONS = ("excellent", "good", "fair", "poor", "damaged", "lost")

EXTENSION_STATUS_PENDING = "pending"
EXTENSION_STATUSES = ("pending", "approved", "rejected")

PENALTY_TYPES = ("late_fee", "damage_fee", "replacement_cost")


class ItemTransaction(db.Model):
    """
    One checkout/return/approval event for a single item line.

    quantity is immutable after creation. Once status is returned,
    cancelled or rejected the row is terminal and no engine mutates it.
    """
    __tablename__ = "item_transactions"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_item_transactions_quantity"),
        db.Index("ix_item_tx_item_status", "item_id", "status"),
        db.Index("ix_item_tx_user_status", "user_id", "status"),
        db.Index("ix_item_tx_type_status", "type", "status"),
        db.Index("ix_item_tx_status_due", "status", "expected_return_date"),
        db.Index("ix_item_tx_org_checkout", "org_id", "checkout_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, default=TX_TYPE_CHECKOUT)
    status = db.Column(db.String(16), nullable=False, default=TX_STATUS_PENDING, index=True)
    reservation_state = db.Column(db.String(16), nullable=False, default=RESERVATION_REQUESTED, index=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)

    checkout_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expected_return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_return_date = db.Column(db.DateTime(timezone=True), nullable=True)

    purpose = db.Column(db.String(500), nullable=False)
    project = db.Column(db.String(100), nullable=True)
    location = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.String(1000), nullable=True)

    checkout_condition = db.Column(db.String(16), nullable=False, default="good")
    return_condition = db.Column(db.String(16), nullable=True)

    approval_required = db.Column(db.Boolean, nullable=False, default=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    item = db.relationship("Item", backref=db.backref("transactions", lazy="dynamic"))
    user = db.relationship("User", foreign_keys=[user_id])
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])

    extensions = db.relationship(
        "TransactionExtension",
        back_populates="transaction",
        order_by="TransactionExtension.id",
        cascade="all, delete-orphan",
    )
    penalties = db.relationship(
        "TransactionPenalty",
        back_populates="transaction",
        order_by="TransactionPenalty.id",
        cascade="all, delete-orphan",
    )
    reminders = db.relationship(
        "TransactionReminder",
        back_populates="transaction",
        order_by="TransactionReminder.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<ItemTransaction id={self.id} item_id={self.item_id} qty={self.quantity} "
            f"status={self.status} reservation={self.reservation_state}>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_overdue(self, now: datetime | None = None) -> bool:
        """
        Canonical overdue predicate: a checkout that is out (active or
        overdue) and past its expected return date. The stored 'overdue'
        status alone is never trusted.
        """
        if self.type != TX_TYPE_CHECKOUT or self.status not in OUT_STATUSES:
            return False
        if self.expected_return_date is None:
            return False
        return (now or utcnow()) > self.expected_return_date

    def days_overdue(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        if not self.is_overdue(now):
            return 0
        seconds = abs((now - self.expected_return_date).total_seconds())
        return math.ceil(seconds / 86400)

    @property
    def total_penalties_cents(self) -> int:
        return sum(p.amount_cents for p in self.penalties)

    def to_dict(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        return {
            "id": self.id,
            "org_id": self.org_id,
            "type": self.type,
            "status": self.status,
            "reservation_state": self.reservation_state,
            "item_id": self.item_id,
            "item": self.item.summary() if self.item else None,
            "user_id": self.user_id,
            "user": self.user.summary() if self.user else None,
            "created_by_user_id": self.created_by_user_id,
            "quantity": self.quantity,
            "checkout_date": to_utc_z(self.checkout_date),
            "expected_return_date": to_utc_z(self.expected_return_date),
            "actual_return_date": to_utc_z(self.actual_return_date),
            "purpose": self.purpose,
            "project": self.project,
            "location": self.location,
            "notes": self.notes,
            "condition": {
                "checkout": self.checkout_condition,
                "return": self.return_condition,
            },
            "approval": {
                "required": self.approval_required,
                "approved_by_user_id": self.approved_by_user_id,
                "approved_at": to_utc_z(self.approved_at),
                "notes": self.approval_notes,
            },
            "extensions": [e.to_dict() for e in self.extensions],
            "penalties": [p.to_dict() for p in self.penalties],
            "reminders": [r.to_dict() for r in self.reminders],
            "is_overdue": self.is_overdue(now),
            "days_overdue": self.days_overdue(now),
            "total_penalties_cents": self.total_penalties_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TransactionExtension(db.Model):
    """
    Extension request for a transaction's return date.

    Requests stay 'pending': there is no decision workflow for them yet,
    and expected_return_date is never moved by a request on its own.
    """
    __tablename__ = "transaction_extensions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("item_transactions.id"), nullable=False, index=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    new_return_date = db.Column(db.DateTime(timezone=True), nullable=False)
    reason = db.Column(db.String(500), nullable=False)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=EXTENSION_STATUS_PENDING)

    transaction = db.relationship("ItemTransaction", back_populates="extensions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requested_at": to_utc_z(self.requested_at),
            "requested_by_user_id": self.requested_by_user_id,
            "new_return_date": to_utc_z(self.new_return_date),
            "reason": self.reason,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "status": self.status,
        }


class TransactionPenalty(db.Model):
    """Fee attached to a transaction (late, damage, replacement)."""
    __tablename__ = "transaction_penalties"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_transaction_penalties_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("item_transactions.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500), nullable=False)

    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    applied_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    transaction = db.relationship("ItemTransaction", back_populates="penalties")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "applied_at": to_utc_z(self.applied_at),
            "applied_by_user_id": self.applied_by_user_id,
            "paid": self.paid,
            "paid_at": to_utc_z(self.paid_at),
        }


class TransactionReminder(db.Model):
    """Record of a reminder (return_reminder or overdue_alert) sent for a transaction."""
    __tablename__ = "transaction_reminders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("item_transactions.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False, default="return_reminder", index=True)
    channel = db.Column(db.String(16), nullable=False)  # email, sms, push
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    message = db.Column(db.String(1000), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="sent")  # sent, delivered, failed

    transaction = db.relationship("ItemTransaction", back_populates="reminders")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "channel": self.channel,
            "sent_at": to_utc_z(self.sent_at),
            "message": self.message,
            "status": self.status,
        }
