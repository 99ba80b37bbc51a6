# Overview: Return engine plus penalties recorded against a transaction.

from __future__ import annotations

from flask import current_app

from ..errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Item, ItemTransaction, TransactionPenalty
from ..models.transactions import (
    OUT_STATUSES,
    PENALTY_TYPES,
    RESERVATION_RELEASED,
    RETURN_CONDITIONS,
    TX_STATUS_RETURNED,
)
from ..permissions import Actor
from ..validation import coerce_int, require_choice, require_text
from . import event_service, inventory_service
from .concurrency import atomic
from .transaction_service import get_transaction
from checkout_tracker.time_utils import to_utc_z, utcnow


def return_item(actor: Actor, transaction_id: int, condition, notes=None) -> ItemTransaction:
    """
    Return a checked-out transaction and give its stock back.

    The transaction must be active or overdue. Only its borrower or an
    elevated actor may return it. A missing item row is logged and does not
    block the return.
    """
    condition = require_choice(condition, "condition", RETURN_CONDITIONS)
    notes = require_text(notes, "notes", max_length=1000, required=False)

    def _op() -> ItemTransaction:
        tx = get_transaction(actor.org_id, transaction_id)

        if not actor.can_act_for(tx.user_id):
            raise ForbiddenError("You can only return your own items")

        if tx.status not in OUT_STATUSES:
            raise InvalidStateError(
                "Transaction is not in a returnable state",
                status=tx.status,
            )

        now = utcnow()
        tx.status = TX_STATUS_RETURNED
        tx.actual_return_date = now
        tx.return_condition = condition
        tx.reservation_state = RESERVATION_RELEASED
        if notes:
            tx.notes = notes

        # Row version bump on the transaction first: a concurrent return of
        # the same transaction fails here with StaleDataError and is retried
        # into the InvalidStateError above.
        db.session.flush()

        released = _release(tx)
        item = db.session.get(Item, tx.item_id) if released else None
        item_name = item.name if item else f"item #{tx.item_id}"

        event_service.emit(
            org_id=tx.org_id,
            type="return_confirmation",
            title="Return Confirmation",
            message=f"You have successfully returned {tx.quantity} x {item_name}",
            recipient_user_id=tx.user_id,
            sender_user_id=actor.user_id if actor.user_id != tx.user_id else None,
            related_transaction_id=tx.id,
            related_item_id=tx.item_id if item else None,
            template_name="return_confirmation",
            template_data={
                "item_name": item_name,
                "quantity": tx.quantity,
                "return_date": to_utc_z(now),
                "condition": condition,
            },
        )
        return tx

    tx = atomic(_op)
    current_app.logger.info(
        "Transaction %s returned by user %s (condition=%s)", tx.id, actor.user_id, condition
    )
    return tx


def _release(tx: ItemTransaction) -> bool:
    if inventory_service.release_stock(tx.item_id, tx.org_id, tx.quantity):
        return True
    current_app.logger.error(
        "Data integrity: item %s referenced by transaction %s is missing; "
        "return recorded without releasing stock",
        tx.item_id, tx.id,
    )
    return False


def apply_penalty(actor: Actor, transaction_id: int, type, amount_cents, description) -> TransactionPenalty:
    """Attach a fee to a transaction. Item managers only."""
    if not actor.capabilities.can_manage_items:
        raise ForbiddenError("Permission denied", required_permission="MANAGE_ITEMS")

    type = require_choice(type, "type", PENALTY_TYPES)
    amount_cents = coerce_int(amount_cents, "amount_cents")
    if amount_cents < 0:
        raise ValidationError(
            "amount_cents must be >= 0",
            errors=[{"field": "amount_cents", "message": "must be >= 0"}],
        )
    description = require_text(description, "description", max_length=500)

    def _op() -> TransactionPenalty:
        tx = get_transaction(actor.org_id, transaction_id)
        penalty = TransactionPenalty(
            transaction_id=tx.id,
            type=type,
            amount_cents=amount_cents,
            description=description,
            applied_at=utcnow(),
            applied_by_user_id=actor.user_id,
            paid=False,
        )
        db.session.add(penalty)
        db.session.flush()

        item_name = tx.item.name if tx.item else f"item #{tx.item_id}"
        event_service.emit(
            org_id=tx.org_id,
            type="penalty_applied",
            title="Penalty Applied",
            message=f"A {type.replace('_', ' ')} of {amount_cents / 100:.2f} was applied for {item_name}",
            recipient_user_id=tx.user_id,
            sender_user_id=actor.user_id,
            related_transaction_id=tx.id,
            related_item_id=tx.item_id,
            priority="high",
            template_name="penalty_applied",
            template_data={
                "item_name": item_name,
                "penalty_type": type,
                "amount": f"{amount_cents / 100:.2f}",
                "description": description,
            },
        )
        return penalty

    return atomic(_op)


def mark_penalty_paid(actor: Actor, transaction_id: int, penalty_id: int) -> TransactionPenalty:
    if not actor.capabilities.can_manage_items:
        raise ForbiddenError("Permission denied", required_permission="MANAGE_ITEMS")

    def _op() -> TransactionPenalty:
        tx = get_transaction(actor.org_id, transaction_id)
        penalty = db.session.query(TransactionPenalty).filter_by(
            id=penalty_id, transaction_id=tx.id
        ).first()
        if not penalty:
            raise NotFoundError("Penalty not found")
        if penalty.paid:
            raise InvalidStateError("Penalty is already paid")
        penalty.paid = True
        penalty.paid_at = utcnow()
        return penalty

    return atomic(_op)
