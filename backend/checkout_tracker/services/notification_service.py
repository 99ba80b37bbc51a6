# Overview: Notification dispatcher (outbox -> notifications -> channels) and the user inbox.

"""
Notification Dispatcher

dispatch_pending_events() drains the NotificationEvent outbox:

1. Claim the event (pending -> dispatched) with a conditional UPDATE so two
   dispatchers never deliver the same event twice.
2. Create the Notification and one NotificationChannel per channel, commit.
3. in_app channels count as delivered once stored; email channels are rendered
   and handed to the configured transport. UpstreamError marks the channel
   'failed' with the error text; the business change that produced the
   event is already committed and is never touched.

retry_failed_email_channels() re-sends failed email channels until
EMAIL_MAX_ATTEMPTS is reached.

A notification with scheduled_for in the future keeps every channel pending
and stays out of the inbox; deliver_scheduled() sends it once it is due.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import exists, func, update

from ..errors import ForbiddenError, NotFoundError, UpstreamError, ValidationError
from ..extensions import db
from ..models import Notification, NotificationChannel, NotificationEvent, User
from ..models.notifications import (
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_STATUS_DELIVERED,
    CHANNEL_STATUS_FAILED,
    CHANNEL_STATUS_PENDING,
    CHANNEL_STATUS_SENT,
    CHANNEL_TYPES,
    EVENT_STATUS_DISPATCHED,
    EVENT_STATUS_FAILED,
    EVENT_STATUS_PENDING,
    NOTIFICATION_PRIORITIES,
    NOTIFICATION_TYPES,
)
from ..permissions import Actor
from ..validation import coerce_bool, coerce_datetime, coerce_int, require_choice, require_text
from . import email_service
from checkout_tracker.time_utils import utcnow


SORT_FIELDS = {
    "created_at": Notification.created_at,
    "priority": Notification.priority,
    "scheduled_for": Notification.scheduled_for,
}


# -- Dispatch --

def _expires_at(now: datetime) -> datetime:
    return now + timedelta(days=current_app.config.get("NOTIFICATION_TTL_DAYS", 30))


def _claim_event(event_id: int) -> bool:
    result = db.session.execute(
        update(NotificationEvent)
        .where(NotificationEvent.id == event_id, NotificationEvent.status == EVENT_STATUS_PENDING)
        .values(
            status=EVENT_STATUS_DISPATCHED,
            attempts=NotificationEvent.attempts + 1,
            dispatched_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _build_notification(
    *,
    org_id: int,
    type: str,
    title: str,
    message: str,
    recipient_user_id: int,
    sender_user_id: int | None,
    related_transaction_id: int | None,
    related_item_id: int | None,
    channels,
    priority: str,
    template_name: str | None,
    template_data: dict | None,
    event_id: int | None = None,
    scheduled_for: datetime | None = None,
    metadata: dict | None = None,
) -> Notification:
    now = utcnow()
    notification = Notification(
        org_id=org_id,
        event_id=event_id,
        type=type,
        title=title,
        message=message,
        recipient_user_id=recipient_user_id,
        sender_user_id=sender_user_id,
        related_transaction_id=related_transaction_id,
        related_item_id=related_item_id,
        priority=priority,
        is_read=False,
        scheduled_for=scheduled_for or now,
        expires_at=_expires_at(now),
        created_at=now,
        metadata_json={
            **(metadata or {}),
            "template_name": template_name,
            "template_data": template_data or {},
        },
    )
    held = scheduled_for is not None and scheduled_for > now
    for channel_type in dict.fromkeys(channels):
        channel = NotificationChannel(type=channel_type, status=CHANNEL_STATUS_PENDING)
        if channel_type == CHANNEL_IN_APP and not held:
            channel.status = CHANNEL_STATUS_DELIVERED
            channel.sent_at = now
            channel.delivered_at = now
        notification.channels.append(channel)
    db.session.add(notification)
    return notification


def _deliver_email(notification: Notification, channel: NotificationChannel) -> bool:
    """Send one email channel. Records the outcome on the channel; never raises."""
    meta = notification.metadata_json or {}
    recipient = notification.recipient
    template_data = {
        "user_name": recipient.name if recipient else "",
        **(meta.get("template_data") or {}),
    }

    channel.attempts = (channel.attempts or 0) + 1
    try:
        email_service.send_email(
            to=recipient.email if recipient else None,
            title=notification.title,
            message=notification.message,
            template_name=meta.get("template_name"),
            template_data=template_data,
        )
    except UpstreamError as e:
        channel.status = CHANNEL_STATUS_FAILED
        channel.error = str(e)
        current_app.logger.warning(
            "Email delivery failed for notification %s (attempt %s): %s",
            notification.id, channel.attempts, e,
        )
        return False

    channel.status = CHANNEL_STATUS_SENT
    channel.sent_at = utcnow()
    channel.error = None
    return True


def _deliver_pending_channels(notification: Notification, now: datetime | None = None) -> dict:
    counts = {"sent": 0, "failed": 0}
    now = now or utcnow()
    if notification.scheduled_for > now:
        return counts
    for channel in notification.channels:
        if channel.status != CHANNEL_STATUS_PENDING:
            continue
        if channel.type == CHANNEL_IN_APP:
            channel.status = CHANNEL_STATUS_DELIVERED
            channel.sent_at = now
            channel.delivered_at = now
        elif channel.type == CHANNEL_EMAIL:
            counts["sent" if _deliver_email(notification, channel) else "failed"] += 1
        else:
            # sms/push have no transport configured
            channel.status = CHANNEL_STATUS_FAILED
            channel.error = f"No transport configured for channel {channel.type}"
            counts["failed"] += 1
    db.session.commit()
    return counts


def dispatch_pending_events(limit: int = 100) -> dict:
    """
    Turn pending outbox events into notifications and deliver them.

    Returns counts: {"events", "notifications", "emails_sent", "emails_failed", "skipped"}.
    """
    summary = {"events": 0, "notifications": 0, "emails_sent": 0, "emails_failed": 0, "skipped": 0}

    event_ids = [
        event_id
        for (event_id,) in db.session.query(NotificationEvent.id)
        .filter(NotificationEvent.status == EVENT_STATUS_PENDING)
        .order_by(NotificationEvent.id.asc())
        .limit(limit)
        .all()
    ]

    for event_id in event_ids:
        if not _claim_event(event_id):
            db.session.rollback()
            summary["skipped"] += 1
            continue

        event = db.session.get(NotificationEvent, event_id)
        db.session.refresh(event)
        summary["events"] += 1

        recipient = db.session.query(User).filter_by(id=event.recipient_user_id, org_id=event.org_id).first()
        if recipient is None:
            event.status = EVENT_STATUS_FAILED
            event.last_error = "Recipient not found"
            db.session.commit()
            current_app.logger.error("Notification event %s has no recipient in org %s", event.id, event.org_id)
            continue

        notification = _build_notification(
            org_id=event.org_id,
            type=event.type,
            title=event.title,
            message=event.message,
            recipient_user_id=event.recipient_user_id,
            sender_user_id=event.sender_user_id,
            related_transaction_id=event.related_transaction_id,
            related_item_id=event.related_item_id,
            channels=event.channels or [CHANNEL_IN_APP],
            priority=event.priority,
            template_name=event.template_name,
            template_data=event.template_data,
            event_id=event.id,
        )
        db.session.commit()
        summary["notifications"] += 1

        counts = _deliver_pending_channels(notification)
        summary["emails_sent"] += counts["sent"]
        summary["emails_failed"] += counts["failed"]

    return summary


def retry_failed_email_channels(max_attempts: int | None = None, limit: int = 100) -> dict:
    """Re-send failed email channels that still have attempts left."""
    if max_attempts is None:
        max_attempts = current_app.config.get("EMAIL_MAX_ATTEMPTS", 3)

    channels = (
        db.session.query(NotificationChannel)
        .filter(
            NotificationChannel.type == CHANNEL_EMAIL,
            NotificationChannel.status == CHANNEL_STATUS_FAILED,
            NotificationChannel.attempts < max_attempts,
        )
        .order_by(NotificationChannel.id.asc())
        .limit(limit)
        .all()
    )

    summary = {"retried": 0, "sent": 0, "failed": 0}
    for channel in channels:
        summary["retried"] += 1
        if _deliver_email(channel.notification, channel):
            summary["sent"] += 1
        else:
            summary["failed"] += 1
        db.session.commit()

    return summary


def deliver_scheduled(now: datetime | None = None, limit: int = 100) -> dict:
    """Deliver notifications whose scheduled_for has arrived and still have pending channels."""
    now = now or utcnow()
    due = (
        db.session.query(Notification)
        .filter(
            Notification.scheduled_for <= now,
            Notification.expires_at > now,
            Notification.channels.any(NotificationChannel.status == CHANNEL_STATUS_PENDING),
        )
        .order_by(Notification.scheduled_for.asc(), Notification.id.asc())
        .limit(limit)
        .all()
    )

    summary = {"notifications": 0, "emails_sent": 0, "emails_failed": 0}
    for notification in due:
        counts = _deliver_pending_channels(notification, now)
        summary["notifications"] += 1
        summary["emails_sent"] += counts["sent"]
        summary["emails_failed"] += counts["failed"]
    return summary


def purge_expired(now: datetime | None = None) -> dict:
    """
    Delete expired notifications, then outbox events that are finished and
    older than NOTIFICATION_TTL_DAYS. Events still referenced by a
    notification are kept.
    """
    now = now or utcnow()
    expired = db.session.query(Notification).filter(Notification.expires_at <= now).all()
    for notification in expired:
        db.session.delete(notification)
    db.session.flush()

    cutoff = now - timedelta(days=current_app.config.get("NOTIFICATION_TTL_DAYS", 30))
    finished = (
        db.session.query(NotificationEvent)
        .filter(
            NotificationEvent.status.in_((EVENT_STATUS_DISPATCHED, EVENT_STATUS_FAILED)),
            NotificationEvent.created_at <= cutoff,
            ~exists().where(Notification.event_id == NotificationEvent.id),
        )
        .all()
    )
    for event in finished:
        db.session.delete(event)
    events_deleted = len(finished)
    db.session.commit()

    if expired or events_deleted:
        current_app.logger.info(
            "Purged %s expired notification(s) and %s outbox event(s)", len(expired), events_deleted,
        )
    return {"notifications": len(expired), "events": events_deleted}


# -- Inbox --

def _inbox_query(actor: Actor, now: datetime | None = None):
    now = now or utcnow()
    return db.session.query(Notification).filter(
        Notification.org_id == actor.org_id,
        Notification.recipient_user_id == actor.user_id,
        Notification.scheduled_for <= now,
        Notification.expires_at > now,
    )


def list_notifications(
    actor: Actor,
    *,
    type: str | None = None,
    is_read=None,
    priority: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Notification], int, int]:
    """Returns (rows, total matching, unread count)."""
    query = _inbox_query(actor)

    if type is not None:
        query = query.filter(Notification.type == require_choice(type, "type", NOTIFICATION_TYPES))
    if is_read is not None:
        query = query.filter(Notification.is_read.is_(coerce_bool(is_read, "is_read")))
    if priority is not None:
        query = query.filter(
            Notification.priority == require_choice(priority, "priority", NOTIFICATION_PRIORITIES)
        )

    sort_by = require_choice(sort_by, "sort_by", tuple(SORT_FIELDS))
    sort_order = require_choice(sort_order, "sort_order", ("asc", "desc"))
    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Notification.id.desc())

    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total, unread_count(actor)


def unread_count(actor: Actor) -> int:
    return _inbox_query(actor).filter(Notification.is_read.is_(False)).count()


def _get_own(actor: Actor, notification_id: int) -> Notification:
    notification = _inbox_query(actor).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


def mark_read(actor: Actor, notification_id: int) -> Notification:
    notification = _get_own(actor, notification_id)
    notification.mark_read()
    db.session.commit()
    return notification


def mark_all_read(actor: Actor) -> int:
    now = utcnow()
    unread = _inbox_query(actor, now).filter(Notification.is_read.is_(False)).all()
    for notification in unread:
        notification.mark_read(now)
    db.session.commit()
    return len(unread)


def delete_notification(actor: Actor, notification_id: int) -> None:
    notification = _get_own(actor, notification_id)
    db.session.delete(notification)
    db.session.commit()


def clear_all(actor: Actor) -> int:
    rows = db.session.query(Notification).filter(
        Notification.org_id == actor.org_id,
        Notification.recipient_user_id == actor.user_id,
    ).all()
    for notification in rows:
        db.session.delete(notification)
    db.session.commit()
    return len(rows)


def create_notification(actor: Actor, payload: dict) -> Notification:
    """Manual notification from a manager or admin to a user in the same org."""
    if not actor.is_elevated:
        raise ForbiddenError("Only managers and admins can send notifications")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    type = require_choice(payload.get("type"), "type", NOTIFICATION_TYPES)
    title = require_text(payload.get("title"), "title", max_length=200)
    message = require_text(payload.get("message"), "message", max_length=1000)
    recipient_id = coerce_int(payload.get("recipient_id"), "recipient_id")
    priority = require_choice(payload.get("priority"), "priority", NOTIFICATION_PRIORITIES, default="medium")

    channels = payload.get("channels") or [CHANNEL_IN_APP]
    if not isinstance(channels, list) or not all(c in CHANNEL_TYPES for c in channels):
        raise ValidationError(
            "Channels must be a list of: " + ", ".join(CHANNEL_TYPES),
            errors=[{"field": "channels", "message": "invalid channel list"}],
        )

    scheduled_for = payload.get("scheduled_for")
    if scheduled_for is not None:
        scheduled_for = coerce_datetime(scheduled_for, "scheduled_for")

    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", errors=[{"field": "metadata", "message": "must be an object"}])

    recipient = db.session.query(User).filter_by(id=recipient_id, org_id=actor.org_id).first()
    if not recipient:
        raise NotFoundError("Recipient not found")

    notification = _build_notification(
        org_id=actor.org_id,
        type=type,
        title=title,
        message=message,
        recipient_user_id=recipient.id,
        sender_user_id=actor.user_id,
        related_transaction_id=None,
        related_item_id=None,
        channels=channels,
        priority=priority,
        template_name=None,
        template_data=None,
        scheduled_for=scheduled_for,
        metadata=metadata,
    )
    db.session.commit()
    _deliver_pending_channels(notification)
    return notification


def notification_stats(actor: Actor) -> dict:
    if not actor.capabilities.can_view_analytics and not actor.is_elevated:
        raise ForbiddenError("Permission denied", required_permission="VIEW_ANALYTICS")

    base = db.session.query(Notification).filter(Notification.org_id == actor.org_id)
    total = base.count()
    unread = base.filter(Notification.is_read.is_(False)).count()

    by_type = (
        db.session.query(Notification.type, func.count(Notification.id))
        .filter(Notification.org_id == actor.org_id)
        .group_by(Notification.type)
        .all()
    )
    by_priority = (
        db.session.query(Notification.priority, func.count(Notification.id))
        .filter(Notification.org_id == actor.org_id)
        .group_by(Notification.priority)
        .all()
    )
    by_channel = (
        db.session.query(NotificationChannel.type, NotificationChannel.status, func.count(NotificationChannel.id))
        .join(Notification, Notification.id == NotificationChannel.notification_id)
        .filter(Notification.org_id == actor.org_id)
        .group_by(NotificationChannel.type, NotificationChannel.status)
        .all()
    )
    recent = base.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(10).all()
    pending_events = (
        db.session.query(NotificationEvent)
        .filter_by(org_id=actor.org_id, status=EVENT_STATUS_PENDING)
        .count()
    )

    return {
        "total_notifications": total,
        "unread_notifications": unread,
        "read_notifications": total - unread,
        "notifications_by_type": [{"type": t, "count": c} for t, c in by_type],
        "notifications_by_priority": [{"priority": p, "count": c} for p, c in by_priority],
        "channels_by_status": [{"channel": t, "status": s, "count": c} for t, s, c in by_channel],
        "pending_events": pending_events,
        "recent_notifications": [n.to_dict() for n in recent],
    }
