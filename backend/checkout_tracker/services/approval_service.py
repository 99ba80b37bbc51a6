# Overview: Approval engine for checkouts of approval-gated items.

"""
Reservation accounting for approval-gated checkouts:

    checkout   available -= q, reserved += q   reservation 'requested'
    approve    no quantity change              reservation 'confirmed'
    reject     available += q, reserved -= q   reservation 'released'

Stock is taken exactly once, at checkout. Approval only confirms the hold;
rejection gives it back in full, mirroring a return.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ForbiddenError, InvalidStateError
from ..extensions import db
from ..models import ItemTransaction
from ..models.transactions import (
    RESERVATION_CONFIRMED,
    RESERVATION_RELEASED,
    TX_STATUS_ACTIVE,
    TX_STATUS_PENDING,
    TX_STATUS_REJECTED,
)
from ..permissions import Actor
from ..validation import coerce_bool, require_text
from . import event_service, inventory_service
from .concurrency import atomic
from .transaction_service import get_transaction
from checkout_tracker.time_utils import utcnow


def decide_approval(actor: Actor, transaction_id: int, approved, notes=None) -> ItemTransaction:
    """
    Approve or reject a pending checkout.

    Raises:
        ForbiddenError: actor is not an elevated user
        InvalidStateError: transaction is not pending
    """
    if not actor.is_elevated:
        raise ForbiddenError("Only managers and admins can decide approvals")

    approved = coerce_bool(approved, "approved")
    notes = require_text(notes, "notes", max_length=500, required=False)

    def _op() -> ItemTransaction:
        tx = get_transaction(actor.org_id, transaction_id)

        if tx.status != TX_STATUS_PENDING:
            raise InvalidStateError("Transaction is not pending approval", status=tx.status)

        tx.approved_by_user_id = actor.user_id
        tx.approved_at = utcnow()
        tx.approval_notes = notes

        if approved:
            tx.status = TX_STATUS_ACTIVE
            tx.reservation_state = RESERVATION_CONFIRMED
            db.session.flush()
        else:
            tx.status = TX_STATUS_REJECTED
            tx.reservation_state = RESERVATION_RELEASED
            db.session.flush()
            if not inventory_service.release_stock(tx.item_id, tx.org_id, tx.quantity):
                current_app.logger.error(
                    "Data integrity: item %s referenced by transaction %s is missing; "
                    "rejection recorded without releasing stock",
                    tx.item_id, tx.id,
                )

        item_name = tx.item.name if tx.item else f"item #{tx.item_id}"
        decision = "approved" if approved else "rejected"
        event_service.emit(
            org_id=tx.org_id,
            type="approval_decision",
            title="Checkout Approved" if approved else "Checkout Rejected",
            message=f"Your checkout request for {item_name} has been {decision}",
            recipient_user_id=tx.user_id,
            sender_user_id=actor.user_id,
            related_transaction_id=tx.id,
            related_item_id=tx.item_id,
            template_name="approval_decision",
            template_data={
                "item_name": item_name,
                "quantity": tx.quantity,
                "status": decision,
                "approver_name": actor.name,
                "notes": notes,
            },
        )
        return tx

    tx = atomic(_op)
    current_app.logger.info(
        "Transaction %s %s by user %s", tx.id, tx.status, actor.user_id
    )
    return tx
