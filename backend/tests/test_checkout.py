"""
Checkout engine tests.

Covers stock reservation, the approval gate at checkout time, per-line
validation and the all-or-nothing behaviour of multi-line requests.
"""

import pytest

from checkout_tracker.errors import ForbiddenError, NotFoundError, ValidationError
from checkout_tracker.models import ItemTransaction, NotificationEvent
from checkout_tracker.services import checkout_service, permission_service

from conftest import actor_for, due_in, make_item


def _stock(session, item):
    session.refresh(item)
    return item.total_quantity, item.available_quantity, item.reserved_quantity


def _checkout(user, *lines, days=3, **kwargs):
    return checkout_service.checkout(
        actor_for(user),
        [{"item_id": item.id, "quantity": qty} for item, qty in lines],
        due_in(days).isoformat(),
        kwargs.pop("purpose", "Site visit"),
        **kwargs,
    )


# =============================================================================
# HAPPY PATH
# =============================================================================

class TestCheckoutReservesStock:
    """A successful checkout moves stock from available to reserved."""

    def test_checkout_without_approval_is_active(self, db_session, user_a, item_a):
        result = _checkout(user_a, (item_a, 3))

        assert result.requires_approval is False
        assert result.message == "Items checked out successfully"
        assert len(result.transactions) == 1

        tx = result.transactions[0]
        assert tx.status == "active"
        assert tx.reservation_state == "confirmed"
        assert tx.quantity == 3
        assert tx.user_id == user_a.id
        assert tx.checkout_condition == "good"

        assert _stock(db_session, item_a) == (10, 7, 3)

    def test_checkout_of_gated_item_is_pending(self, db_session, user_a, gated_item_a):
        result = _checkout(user_a, (gated_item_a, 4))

        assert result.requires_approval is True
        assert result.message == "Checkout request submitted for approval"

        tx = result.transactions[0]
        assert tx.status == "pending"
        assert tx.reservation_state == "requested"
        assert tx.approval_required is True

        # Stock is held while the request waits for a decision
        assert _stock(db_session, gated_item_a) == (10, 6, 4)

    def test_mixed_request_reports_approval(self, db_session, user_a, item_a, gated_item_a):
        result = _checkout(user_a, (item_a, 1), (gated_item_a, 1))

        statuses = sorted(tx.status for tx in result.transactions)
        assert statuses == ["active", "pending"]
        assert result.requires_approval is True

    def test_optional_fields_are_stored(self, db_session, user_a, item_a):
        result = _checkout(
            user_a, (item_a, 1),
            project="Bridge retrofit", location="Dock 4", notes="Bring spare battery", condition="fair",
        )

        tx = result.transactions[0]
        assert tx.project == "Bridge retrofit"
        assert tx.location == "Dock 4"
        assert tx.notes == "Bring spare battery"
        assert tx.checkout_condition == "fair"

    def test_whole_stock_can_be_taken(self, db_session, user_a, item_a):
        _checkout(user_a, (item_a, 10))
        assert _stock(db_session, item_a) == (10, 0, 10)


# =============================================================================
# VALIDATION
# =============================================================================

class TestCheckoutValidation:
    """Rejected requests leave stock and transactions untouched."""

    def test_insufficient_quantity(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError) as exc:
            _checkout(user_a, (item_a, 11))

        assert "Insufficient quantity" in exc.value.message
        assert exc.value.details["available_quantity"] == 10
        assert exc.value.details["requested_quantity"] == 11
        assert _stock(db_session, item_a) == (10, 10, 0)
        assert db_session.query(ItemTransaction).count() == 0

    def test_lines_for_same_item_are_summed(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError) as exc:
            _checkout(user_a, (item_a, 6), (item_a, 5))

        assert exc.value.details["requested_quantity"] == 11
        assert _stock(db_session, item_a) == (10, 10, 0)

    def test_multi_line_request_is_all_or_nothing(self, db_session, org_a, manager_a, user_a, item_a):
        scarce = make_item(db_session, org_a, manager_a, name="Laser Level", total_quantity=1, available_quantity=1)

        with pytest.raises(ValidationError):
            _checkout(user_a, (item_a, 2), (scarce, 2))

        assert _stock(db_session, item_a) == (10, 10, 0)
        assert _stock(db_session, scarce) == (1, 1, 0)
        assert db_session.query(ItemTransaction).count() == 0

    def test_return_date_in_past(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError) as exc:
            _checkout(user_a, (item_a, 1), days=-1)
        assert "future" in exc.value.message

    def test_return_date_beyond_max_checkout_days(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError) as exc:
            _checkout(user_a, (item_a, 1), days=8)

        assert exc.value.details["max_checkout_days"] == 7
        assert _stock(db_session, item_a) == (10, 10, 0)

    def test_missing_return_date(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError) as exc:
            checkout_service.checkout(actor_for(user_a), [{"item_id": item_a.id, "quantity": 1}], None, "Site visit")
        assert exc.value.errors[0]["field"] == "expected_return_date"

    def test_purpose_required(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError):
            _checkout(user_a, (item_a, 1), purpose="   ")

    def test_item_not_checkoutable(self, db_session, org_a, manager_a, user_a):
        locked = make_item(db_session, org_a, manager_a, name="Calibration Rig", is_checkoutable=False)

        with pytest.raises(ValidationError) as exc:
            _checkout(user_a, (locked, 1))
        assert "not available for checkout" in exc.value.message

    def test_item_in_maintenance(self, db_session, org_a, manager_a, user_a):
        broken = make_item(db_session, org_a, manager_a, name="Generator", status="maintenance")

        with pytest.raises(ValidationError):
            _checkout(user_a, (broken, 1))

    @pytest.mark.parametrize("lines", [
        [],
        "not-a-list",
        [{"item_id": 1, "quantity": 0}],
        [{"item_id": 1, "quantity": -2}],
        [{"item_id": 1, "quantity": 1.5}],
        [{"item_id": "abc", "quantity": 1}],
        ["not-an-object"],
    ])
    def test_malformed_lines(self, db_session, user_a, lines):
        with pytest.raises(ValidationError):
            checkout_service.checkout(actor_for(user_a), lines, due_in().isoformat(), "Site visit")

    def test_unknown_condition(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError):
            _checkout(user_a, (item_a, 1), condition="pristine")


# =============================================================================
# ACCESS
# =============================================================================

class TestCheckoutAccess:

    def test_unknown_item_is_not_found(self, db_session, user_a):
        with pytest.raises(NotFoundError):
            checkout_service.checkout(
                actor_for(user_a), [{"item_id": 9999, "quantity": 1}], due_in().isoformat(), "Site visit"
            )

    def test_item_of_other_org_is_not_found(self, db_session, org_b, admin_b, user_a):
        foreign = make_item(db_session, org_b, admin_b, name="Beta Drill")

        with pytest.raises(NotFoundError):
            _checkout(user_a, (foreign, 1))
        assert _stock(db_session, foreign) == (10, 10, 0)

    def test_checkout_capability_required(self, db_session, admin_a, user_a, item_a):
        permission_service.set_user_capabilities(
            actor=actor_for(admin_a), user_id=user_a.id, flags={"can_checkout": False}, reason="Suspended"
        )

        with pytest.raises(ForbiddenError):
            _checkout(user_a, (item_a, 1))
        assert _stock(db_session, item_a) == (10, 10, 0)


# =============================================================================
# OUTBOX EVENTS
# =============================================================================

class TestCheckoutEvents:

    def test_confirmation_event_for_borrower(self, db_session, user_a, item_a):
        result = _checkout(user_a, (item_a, 2))

        events = db_session.query(NotificationEvent).all()
        assert len(events) == 1
        event = events[0]
        assert event.type == "checkout_confirmation"
        assert event.recipient_user_id == user_a.id
        assert event.related_transaction_id == result.transactions[0].id
        assert event.status == "pending"
        assert event.template_data["quantity"] == 2

    def test_approval_request_goes_to_item_managers(self, db_session, admin_a, manager_a, user_a, gated_item_a):
        _checkout(user_a, (gated_item_a, 1))

        requests = db_session.query(NotificationEvent).filter_by(type="approval_request").all()
        recipients = sorted(e.recipient_user_id for e in requests)
        assert recipients == sorted([admin_a.id, manager_a.id])
        assert all(e.priority == "high" for e in requests)

    def test_failed_checkout_emits_nothing(self, db_session, user_a, item_a):
        with pytest.raises(ValidationError):
            _checkout(user_a, (item_a, 50))
        assert db_session.query(NotificationEvent).count() == 0
