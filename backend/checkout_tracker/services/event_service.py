# Overview: Notification outbox writer used by the transaction engines.

"""
Engines describe what happened; they never deliver anything.

emit() adds a NotificationEvent to the current session so it commits or
rolls back together with the state change. notification_service drains the
outbox afterwards.
"""

from __future__ import annotations

from flask import g, has_app_context

from ..extensions import db
from ..models import NotificationEvent
from ..models.notifications import CHANNEL_EMAIL, CHANNEL_IN_APP


DEFAULT_CHANNELS = (CHANNEL_EMAIL, CHANNEL_IN_APP)


def emit(
    *,
    org_id: int,
    type: str,
    title: str,
    message: str,
    recipient_user_id: int,
    sender_user_id: int | None = None,
    related_transaction_id: int | None = None,
    related_item_id: int | None = None,
    channels=DEFAULT_CHANNELS,
    priority: str = "medium",
    template_name: str | None = None,
    template_data: dict | None = None,
) -> NotificationEvent:
    event = NotificationEvent(
        org_id=org_id,
        type=type,
        title=title[:200],
        message=message[:1000],
        recipient_user_id=recipient_user_id,
        sender_user_id=sender_user_id,
        related_transaction_id=related_transaction_id,
        related_item_id=related_item_id,
        channels=list(channels),
        priority=priority,
        template_name=template_name,
        template_data=template_data or {},
    )
    db.session.add(event)

    if has_app_context():
        g.notification_events_emitted = True

    return event


def pending_events_emitted() -> bool:
    """True when this app context wrote to the outbox."""
    return has_app_context() and bool(g.get("notification_events_emitted"))
