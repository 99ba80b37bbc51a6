# Overview: Overdue sweep and borrower reminders, run from the CLI or a scheduler.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import ItemTransaction, TransactionReminder
from ..models.notifications import CHANNEL_EMAIL
from ..models.transactions import TX_STATUS_ACTIVE, TX_STATUS_OVERDUE, TX_TYPE_CHECKOUT
from . import event_service
from .concurrency import atomic
from .transaction_service import overdue_query
from checkout_tracker.time_utils import to_utc_z, utcnow


REMINDER_RETURN = "return_reminder"
REMINDER_OVERDUE = "overdue_alert"


def flag_overdue_transactions(now: datetime | None = None, org_id: int | None = None) -> int:
    """
    Persist status 'overdue' on past-due active checkouts.

    Only a convenience for listings: every read still applies the overdue
    predicate itself.
    """
    now = now or utcnow()

    def _op() -> int:
        rows = overdue_query(org_id, now).filter_by(status=TX_STATUS_ACTIVE).all()
        for tx in rows:
            tx.status = TX_STATUS_OVERDUE
        return len(rows)

    count = atomic(_op)
    current_app.logger.info("Flagged %s transaction(s) as overdue", count)
    return count


def _reminded_within(tx: ItemTransaction, kind: str, since: datetime) -> bool:
    return any(r.kind == kind and r.sent_at >= since for r in tx.reminders)


def send_overdue_reminders(
    now: datetime | None = None,
    org_id: int | None = None,
    within: timedelta = timedelta(days=1),
) -> int:
    """
    Emit an overdue_alert for every overdue checkout and log a reminder on
    the transaction. Returns the number of reminders queued.

    A transaction already alerted inside the last `within` is skipped, so a
    scheduler may run this more often than the alert interval.
    """
    now = now or utcnow()

    def _op() -> int:
        count = 0
        for tx in overdue_query(org_id, now).all():
            if _reminded_within(tx, REMINDER_OVERDUE, now - within):
                continue
            days = tx.days_overdue(now)
            item_name = tx.item.name if tx.item else f"item #{tx.item_id}"
            message = (
                f"{tx.quantity} x {item_name} was due back on "
                f"{to_utc_z(tx.expected_return_date)} and is {days} day(s) overdue"
            )
            event_service.emit(
                org_id=tx.org_id,
                type="overdue_alert",
                title="Overdue Items",
                message=message,
                recipient_user_id=tx.user_id,
                related_transaction_id=tx.id,
                related_item_id=tx.item_id,
                priority="urgent",
                template_name="overdue_alert",
                template_data={
                    "item_name": item_name,
                    "quantity": tx.quantity,
                    "expected_return_date": to_utc_z(tx.expected_return_date),
                    "days_overdue": days,
                },
            )
            db.session.add(TransactionReminder(
                transaction_id=tx.id,
                kind=REMINDER_OVERDUE,
                channel=CHANNEL_EMAIL,
                sent_at=now,
                message=message,
                status="sent",
            ))
            count += 1
        return count

    count = atomic(_op)
    current_app.logger.info("Queued %s overdue reminder(s)", count)
    return count


def send_return_reminders(
    now: datetime | None = None,
    org_id: int | None = None,
    within: timedelta = timedelta(days=1),
) -> int:
    """
    Remind borrowers whose active checkout is due within `within`.

    A transaction gets at most one such reminder per window.
    """
    now = now or utcnow()

    def _op() -> int:
        query = db.session.query(ItemTransaction).filter(
            ItemTransaction.type == TX_TYPE_CHECKOUT,
            ItemTransaction.status == TX_STATUS_ACTIVE,
            ItemTransaction.expected_return_date >= now,
            ItemTransaction.expected_return_date <= now + within,
        )
        if org_id is not None:
            query = query.filter(ItemTransaction.org_id == org_id)

        count = 0
        for tx in query.all():
            if _reminded_within(tx, REMINDER_RETURN, now - within):
                continue
            item_name = tx.item.name if tx.item else f"item #{tx.item_id}"
            message = f"{tx.quantity} x {item_name} is due back on {to_utc_z(tx.expected_return_date)}"
            event_service.emit(
                org_id=tx.org_id,
                type="return_reminder",
                title="Return Reminder",
                message=message,
                recipient_user_id=tx.user_id,
                related_transaction_id=tx.id,
                related_item_id=tx.item_id,
                template_name="return_reminder",
                template_data={
                    "item_name": item_name,
                    "quantity": tx.quantity,
                    "expected_return_date": to_utc_z(tx.expected_return_date),
                },
            )
            db.session.add(TransactionReminder(
                transaction_id=tx.id,
                kind=REMINDER_RETURN,
                channel=CHANNEL_EMAIL,
                sent_at=now,
                message=message,
                status="sent",
            ))
            count += 1
        return count

    count = atomic(_op)
    current_app.logger.info("Queued %s return reminder(s)", count)
    return count
