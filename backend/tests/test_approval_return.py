"""
Approval, return and penalty tests.

Stock is taken once at checkout. Approval confirms the hold, rejection and
return give it back. The reservation audit must stay clean through every
path.
"""

import pytest

from checkout_tracker.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from checkout_tracker.models import Item, NotificationEvent, TransactionPenalty
from checkout_tracker.services import (
    approval_service,
    checkout_service,
    inventory_service,
    return_service,
)

from conftest import actor_for, due_in


def _stock(session, item):
    session.refresh(item)
    return item.total_quantity, item.available_quantity, item.reserved_quantity


def _checkout_one(user, item, quantity=3):
    result = checkout_service.checkout(
        actor_for(user),
        [{"item_id": item.id, "quantity": quantity}],
        due_in().isoformat(),
        "Inspection",
    )
    return result.transactions[0]


# =============================================================================
# APPROVAL
# =============================================================================

class TestApprovalDecision:

    def test_approve_confirms_without_moving_stock(self, db_session, manager_a, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)
        assert _stock(db_session, gated_item_a) == (10, 7, 3)

        decided = approval_service.decide_approval(actor_for(manager_a), tx.id, True, "Go ahead")

        assert decided.status == "active"
        assert decided.reservation_state == "confirmed"
        assert decided.approved_by_user_id == manager_a.id
        assert decided.approved_at is not None
        assert decided.approval_notes == "Go ahead"
        assert _stock(db_session, gated_item_a) == (10, 7, 3)
        assert inventory_service.audit_reservations(gated_item_a.org_id) == []

    def test_reject_releases_stock(self, db_session, manager_a, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)

        decided = approval_service.decide_approval(actor_for(manager_a), tx.id, False, "Not this week")

        assert decided.status == "rejected"
        assert decided.reservation_state == "released"
        assert _stock(db_session, gated_item_a) == (10, 10, 0)
        assert inventory_service.audit_reservations(gated_item_a.org_id) == []

    def test_decision_notifies_borrower(self, db_session, manager_a, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)
        approval_service.decide_approval(actor_for(manager_a), tx.id, "false")

        event = db_session.query(NotificationEvent).filter_by(type="approval_decision").one()
        assert event.recipient_user_id == user_a.id
        assert event.sender_user_id == manager_a.id
        assert event.title == "Checkout Rejected"
        assert event.template_data["status"] == "rejected"

    def test_decision_requires_elevated_role(self, db_session, user_a, other_user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)

        with pytest.raises(ForbiddenError):
            approval_service.decide_approval(actor_for(other_user_a), tx.id, True)
        with pytest.raises(ForbiddenError):
            approval_service.decide_approval(actor_for(user_a), tx.id, True)

    def test_cannot_decide_twice(self, db_session, manager_a, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)
        approval_service.decide_approval(actor_for(manager_a), tx.id, True)

        with pytest.raises(InvalidStateError):
            approval_service.decide_approval(actor_for(manager_a), tx.id, False)
        assert _stock(db_session, gated_item_a) == (10, 7, 3)

    def test_active_transaction_is_not_pending(self, db_session, manager_a, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(InvalidStateError):
            approval_service.decide_approval(actor_for(manager_a), tx.id, True)

    def test_approved_flag_must_be_boolean(self, db_session, manager_a, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)

        with pytest.raises(ValidationError):
            approval_service.decide_approval(actor_for(manager_a), tx.id, "maybe")

    def test_other_org_cannot_decide(self, db_session, admin_b, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)

        with pytest.raises(NotFoundError):
            approval_service.decide_approval(actor_for(admin_b), tx.id, True)


# =============================================================================
# RETURN
# =============================================================================

class TestReturn:

    def test_return_restores_stock(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a, quantity=4)
        assert _stock(db_session, item_a) == (10, 6, 4)

        returned = return_service.return_item(actor_for(user_a), tx.id, "good", "All fine")

        assert returned.status == "returned"
        assert returned.reservation_state == "released"
        assert returned.return_condition == "good"
        assert returned.actual_return_date is not None
        assert returned.notes == "All fine"
        assert _stock(db_session, item_a) == (10, 10, 0)

    def test_second_return_is_rejected(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        return_service.return_item(actor_for(user_a), tx.id, "good")

        with pytest.raises(InvalidStateError):
            return_service.return_item(actor_for(user_a), tx.id, "good")
        assert _stock(db_session, item_a) == (10, 10, 0)

    def test_pending_transaction_cannot_be_returned(self, db_session, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)

        with pytest.raises(InvalidStateError):
            return_service.return_item(actor_for(user_a), tx.id, "good")

    def test_approved_transaction_can_be_returned(self, db_session, manager_a, user_a, gated_item_a):
        tx = _checkout_one(user_a, gated_item_a)
        approval_service.decide_approval(actor_for(manager_a), tx.id, True)

        return_service.return_item(actor_for(user_a), tx.id, "excellent")
        assert _stock(db_session, gated_item_a) == (10, 10, 0)

    def test_other_user_cannot_return(self, db_session, user_a, other_user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(ForbiddenError):
            return_service.return_item(actor_for(other_user_a), tx.id, "good")
        assert _stock(db_session, item_a) == (10, 7, 3)

    def test_manager_can_return_for_borrower(self, db_session, manager_a, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        returned = return_service.return_item(actor_for(manager_a), tx.id, "fair")
        assert returned.status == "returned"

        event = db_session.query(NotificationEvent).filter_by(type="return_confirmation").one()
        assert event.recipient_user_id == user_a.id
        assert event.sender_user_id == manager_a.id

    def test_return_condition_validated(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(ValidationError):
            return_service.return_item(actor_for(user_a), tx.id, "shiny")

    def test_overdue_transaction_can_be_returned(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        tx.status = "overdue"
        db_session.commit()

        returned = return_service.return_item(actor_for(user_a), tx.id, "poor")
        assert returned.status == "returned"
        assert _stock(db_session, item_a) == (10, 10, 0)

    def test_missing_item_row_does_not_block_return(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)
        db_session.query(Item).filter_by(id=item_a.id).delete()
        db_session.commit()

        returned = return_service.return_item(actor_for(user_a), tx.id, "lost")
        assert returned.status == "returned"
        assert returned.return_condition == "lost"


# =============================================================================
# PENALTIES
# =============================================================================

class TestPenalties:

    def test_manager_applies_and_settles_penalty(self, db_session, manager_a, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        penalty = return_service.apply_penalty(actor_for(manager_a), tx.id, "late_fee", 1500, "Two days late")
        assert penalty.paid is False
        assert penalty.amount_cents == 1500

        db_session.refresh(tx)
        assert tx.total_penalties_cents == 1500

        event = db_session.query(NotificationEvent).filter_by(type="penalty_applied").one()
        assert event.recipient_user_id == user_a.id
        assert event.template_data["amount"] == "15.00"

        paid = return_service.mark_penalty_paid(actor_for(manager_a), tx.id, penalty.id)
        assert paid.paid is True
        assert paid.paid_at is not None

        with pytest.raises(InvalidStateError):
            return_service.mark_penalty_paid(actor_for(manager_a), tx.id, penalty.id)

    def test_user_cannot_apply_penalty(self, db_session, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(ForbiddenError):
            return_service.apply_penalty(actor_for(user_a), tx.id, "late_fee", 100, "Late")
        assert db_session.query(TransactionPenalty).count() == 0

    @pytest.mark.parametrize("type,amount", [
        ("parking_ticket", 100),
        ("late_fee", -1),
        ("late_fee", "ten"),
    ])
    def test_penalty_input_validated(self, db_session, manager_a, user_a, item_a, type, amount):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(ValidationError):
            return_service.apply_penalty(actor_for(manager_a), tx.id, type, amount, "Late")

    def test_unknown_penalty_not_found(self, db_session, manager_a, user_a, item_a):
        tx = _checkout_one(user_a, item_a)

        with pytest.raises(NotFoundError):
            return_service.mark_penalty_paid(actor_for(manager_a), tx.id, 424242)
