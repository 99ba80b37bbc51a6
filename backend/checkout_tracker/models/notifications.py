from __future__ import annotations

from ..extensions import db
from checkout_tracker.time_utils import to_utc_z, utcnow


NOTIFICATION_TYPES = (
    "checkout_confirmation",
    "return_confirmation",
    "return_reminder",
    "overdue_alert",
    "approval_request",
    "approval_decision",
    "extension_request",
    "item_available",
    "maintenance_due",
    "system_alert",
    "bulk_operation",
    "penalty_applied",
)
NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")

CHANNEL_EMAIL = "email"
CHANNEL_IN_APP = "in_app"
CHANNEL_TYPES = (CHANNEL_EMAIL, "sms", "push", CHANNEL_IN_APP)

CHANNEL_STATUS_PENDING = "pending"
CHANNEL_STATUS_SENT = "sent"
CHANNEL_STATUS_DELIVERED = "delivered"
CHANNEL_STATUS_FAILED = "failed"
CHANNEL_STATUS_READ = "read"

EVENT_STATUS_PENDING = "pending"
EVENT_STATUS_DISPATCHED = "dispatched"
EVENT_STATUS_FAILED = "failed"


class NotificationEvent(db.Model):
    """
    Outbox row written by the engines in the same DB transaction as the
    state change it describes. The dispatcher turns each row into a
    Notification; engines never talk to a transport directly.
    """
    __tablename__ = "notification_events"
    __table_args__ = (
        db.Index("ix_notification_events_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.String(1000), nullable=False)

    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sender_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    related_transaction_id = db.Column(db.Integer, db.ForeignKey("item_transactions.id"), nullable=True)
    related_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)

    channels = db.Column(db.JSON, nullable=False, default=list)
    priority = db.Column(db.String(16), nullable=False, default="medium")

    template_name = db.Column(db.String(64), nullable=True)
    template_data = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=EVENT_STATUS_PENDING, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "recipient_user_id": self.recipient_user_id,
            "sender_user_id": self.sender_user_id,
            "related_transaction_id": self.related_transaction_id,
            "related_item_id": self.related_item_id,
            "channels": list(self.channels or []),
            "priority": self.priority,
            "template_name": self.template_name,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "dispatched_at": to_utc_z(self.dispatched_at),
            "created_at": to_utc_z(self.created_at),
        }


class Notification(db.Model):
    """User-facing notification; one row per recipient."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_read_created", "recipient_user_id", "is_read", "created_at"),
        db.Index("ix_notifications_type_scheduled", "type", "scheduled_for"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("notification_events.id"), nullable=True, index=True)

    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.String(1000), nullable=False)

    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sender_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    related_transaction_id = db.Column(db.Integer, db.ForeignKey("item_transactions.id"), nullable=True)
    related_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)

    priority = db.Column(db.String(16), nullable=False, default="medium")
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_for = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    recipient = db.relationship("User", foreign_keys=[recipient_user_id])
    sender = db.relationship("User", foreign_keys=[sender_user_id])
    related_item = db.relationship("Item", foreign_keys=[related_item_id])
    channels = db.relationship(
        "NotificationChannel",
        back_populates="notification",
        order_by="NotificationChannel.id",
        cascade="all, delete-orphan",
    )

    def mark_read(self, now=None) -> None:
        if self.is_read:
            return
        now = now or utcnow()
        self.is_read = True
        self.read_at = now
        for channel in self.channels:
            if channel.type == CHANNEL_IN_APP:
                channel.status = CHANNEL_STATUS_READ
                channel.read_at = now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "recipient_user_id": self.recipient_user_id,
            "sender": self.sender.summary() if self.sender else None,
            "related_transaction_id": self.related_transaction_id,
            "related_item": self.related_item.summary() if self.related_item else None,
            "channels": [c.to_dict() for c in self.channels],
            "priority": self.priority,
            "is_read": self.is_read,
            "read_at": to_utc_z(self.read_at),
            "scheduled_for": to_utc_z(self.scheduled_for),
            "expires_at": to_utc_z(self.expires_at),
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
        }


class NotificationChannel(db.Model):
    """Per-channel delivery status for a notification."""
    __tablename__ = "notification_channels"
    __table_args__ = (
        db.Index("ix_notification_channels_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    notification_id = db.Column(db.Integer, db.ForeignKey("notifications.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CHANNEL_STATUS_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error = db.Column(db.Text, nullable=True)

    notification = db.relationship("Notification", back_populates="channels")

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "status": self.status,
            "attempts": self.attempts,
            "sent_at": to_utc_z(self.sent_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "read_at": to_utc_z(self.read_at),
            "error": self.error,
        }
