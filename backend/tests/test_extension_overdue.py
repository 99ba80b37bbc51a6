"""
Extension requests, the overdue sweep and borrower reminders.
"""

from datetime import timedelta

import pytest

from checkout_tracker.errors import ForbiddenError, InvalidStateError, ValidationError
from checkout_tracker.models import NotificationEvent, TransactionExtension, TransactionReminder
from checkout_tracker.services import (
    checkout_service,
    extension_service,
    overdue_service,
    return_service,
    transaction_service,
)
from checkout_tracker.time_utils import utcnow

from conftest import actor_for, due_in


def _checkout_one(user, item, days=3, quantity=1):
    result = checkout_service.checkout(
        actor_for(user),
        [{"item_id": item.id, "quantity": quantity}],
        due_in(days).isoformat(),
        "Fieldwork",
    )
    return result.transactions[0]


def _make_past_due(session, tx, days_late=2):
    # Partial days round up, so stay an hour short of the boundary
    tx.expected_return_date = utcnow() - timedelta(days=days_late) + timedelta(hours=1)
    session.commit()
    return tx


# =============================================================================
# EXTENSIONS
# =============================================================================

class TestExtensionRequests:

    def test_request_is_recorded_pending(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        original_due = tx.expected_return_date

        extension = extension_service.request_extension(
            actor_for(user_a), tx.id, due_in(6).isoformat(), "Project slipped"
        )

        assert extension.status == "pending"
        assert extension.transaction_id == tx.id
        assert extension.requested_by_user_id == user_a.id
        assert extension.reason == "Project slipped"

        db_session.refresh(tx)
        assert tx.expected_return_date == original_due
        assert len(tx.extensions) == 1

    def test_request_notifies_item_managers(self, db_session, admin_a, manager_a, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        extension_service.request_extension(actor_for(user_a), tx.id, due_in(6).isoformat(), "Need longer")

        events = db_session.query(NotificationEvent).filter_by(type="extension_request").all()
        assert sorted(e.recipient_user_id for e in events) == sorted([admin_a.id, manager_a.id])
        assert all(e.related_transaction_id == tx.id for e in events)

    def test_new_date_must_be_later(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a, days=3)

        with pytest.raises(ValidationError):
            extension_service.request_extension(actor_for(user_a), tx.id, due_in(2).isoformat(), "Earlier")
        assert db_session.query(TransactionExtension).count() == 0

    @pytest.mark.parametrize("new_date,reason", [
        (None, "Need longer"),
        ("next tuesday", "Need longer"),
        ("2030-01-01T00:00:00Z", ""),
    ])
    def test_input_validated(self, db_session, user_a, item_a, new_date, reason):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(ValidationError):
            extension_service.request_extension(actor_for(user_a), tx.id, new_date, reason)

    def test_only_borrower_or_elevated(self, db_session, manager_a, user_a, other_user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(ForbiddenError):
            extension_service.request_extension(actor_for(other_user_a), tx.id, due_in(6).isoformat(), "Mine now")

        extension = extension_service.request_extension(
            actor_for(manager_a), tx.id, due_in(6).isoformat(), "On behalf of borrower"
        )
        assert extension.requested_by_user_id == manager_a.id

    def test_returned_transaction_cannot_be_extended(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        return_service.return_item(actor_for(user_a), tx.id, "good")

        with pytest.raises(InvalidStateError):
            extension_service.request_extension(actor_for(user_a), tx.id, due_in(6).isoformat(), "Too late")

    def test_overdue_transaction_can_be_extended(self, db_session, user_a, item_a):
        tx = _make_past_due(db_session, _checkout_one(user_a, item_a))

        extension = extension_service.request_extension(
            actor_for(user_a), tx.id, due_in(2).isoformat(), "Still using it"
        )
        assert extension.status == "pending"


# =============================================================================
# OVERDUE
# =============================================================================

class TestOverdueDetection:

    def test_overdue_is_derived_from_due_date(self, db_session, user_a, item_a):
        tx = _make_past_due(db_session, _checkout_one(user_a, item_a))

        # Stored status is still active; the predicate alone decides
        assert tx.status == "active"
        assert tx.is_overdue() is True
        assert tx.days_overdue() == 2

        overdue = transaction_service.list_overdue_transactions(tx.org_id)
        assert [t.id for t in overdue] == [tx.id]

    def test_future_due_date_is_not_overdue(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        assert tx.is_overdue() is False
        assert tx.days_overdue() == 0
        assert transaction_service.list_overdue_transactions(tx.org_id) == []

    def test_returned_transaction_is_never_overdue(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        return_service.return_item(actor_for(user_a), tx.id, "good")
        _make_past_due(db_session, tx)

        assert tx.is_overdue() is False
        assert transaction_service.list_overdue_transactions(tx.org_id) == []

    def test_flag_overdue_persists_status(self, db_session, user_a, item_a):
        late = _make_past_due(db_session, _checkout_one(user_a, item_a))
        on_time = _checkout_one(user_a, item_a)

        assert overdue_service.flag_overdue_transactions() == 1

        db_session.refresh(late)
        db_session.refresh(on_time)
        assert late.status == "overdue"
        assert on_time.status == "active"

        # Already flagged rows are not counted again
        assert overdue_service.flag_overdue_transactions() == 0

    def test_flag_overdue_scoped_to_org(self, db_session, org_b, user_a, item_a):
        _make_past_due(db_session, _checkout_one(user_a, item_a))

        assert overdue_service.flag_overdue_transactions(org_id=org_b.id) == 0


# =============================================================================
# REMINDERS
# =============================================================================

class TestReminders:

    def test_overdue_reminders_logged_and_emitted(self, db_session, user_a, item_a):
        tx = _make_past_due(db_session, _checkout_one(user_a, item_a, quantity=2), days_late=3)

        assert overdue_service.send_overdue_reminders() == 1

        reminder = db_session.query(TransactionReminder).one()
        assert reminder.transaction_id == tx.id
        assert reminder.channel == "email"
        assert reminder.status == "sent"
        assert "3 day(s) overdue" in reminder.message

        event = db_session.query(NotificationEvent).filter_by(type="overdue_alert").one()
        assert event.recipient_user_id == user_a.id
        assert event.priority == "urgent"
        assert event.template_data["days_overdue"] == 3

    def test_no_overdue_no_reminders(self, db_session, user_a, item_a):
        _checkout_one(user_a, item_a)

        assert overdue_service.send_overdue_reminders() == 0
        assert db_session.query(TransactionReminder).count() == 0

    def test_return_reminder_for_items_due_soon(self, db_session, user_a, item_a):
        due_soon = _checkout_one(user_a, item_a, days=0.5)
        _checkout_one(user_a, item_a, days=3)

        assert overdue_service.send_return_reminders() == 1

        event = db_session.query(NotificationEvent).filter_by(type="return_reminder").one()
        assert event.related_transaction_id == due_soon.id

    def test_return_reminder_sent_once_per_window(self, db_session, user_a, item_a):
        _checkout_one(user_a, item_a, days=0.5)

        assert overdue_service.send_return_reminders() == 1
        assert overdue_service.send_return_reminders() == 0
        assert db_session.query(TransactionReminder).count() == 1

    def test_wider_window_catches_more(self, db_session, user_a, item_a):
        _checkout_one(user_a, item_a, days=0.5)
        _checkout_one(user_a, item_a, days=3)

        assert overdue_service.send_return_reminders(within=timedelta(days=4)) == 2

    def test_overdue_alert_sent_once_per_window(self, db_session, user_a, item_a):
        _make_past_due(db_session, _checkout_one(user_a, item_a), days_late=2)

        assert overdue_service.send_overdue_reminders() == 1
        assert overdue_service.send_overdue_reminders() == 0

        assert db_session.query(TransactionReminder).filter_by(kind="overdue_alert").count() == 1
        assert db_session.query(NotificationEvent).filter_by(type="overdue_alert").count() == 1

    def test_overdue_alert_repeats_after_window(self, db_session, user_a, item_a):
        _make_past_due(db_session, _checkout_one(user_a, item_a), days_late=2)

        assert overdue_service.send_overdue_reminders() == 1
        later = utcnow() + timedelta(days=1, hours=1)
        assert overdue_service.send_overdue_reminders(now=later) == 1
        assert overdue_service.send_overdue_reminders(now=later) == 0

    def test_return_reminder_does_not_block_overdue_alert(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a, days=0.5)
        assert overdue_service.send_return_reminders() == 1

        _make_past_due(db_session, tx, days_late=1)

        assert overdue_service.send_overdue_reminders() == 1
        kinds = sorted(r.kind for r in db_session.query(TransactionReminder).all())
        assert kinds == ["overdue_alert", "return_reminder"]
