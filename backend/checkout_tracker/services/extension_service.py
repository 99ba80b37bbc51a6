# Overview: Extension requests against an outstanding checkout.

"""
An extension request is appended to the transaction with status 'pending'
and item managers are told about it. expected_return_date is not moved:
deciding extension requests is not supported, so they stay pending.
"""

from __future__ import annotations

from ..errors import ForbiddenError, InvalidStateError, ValidationError
from ..extensions import db
from ..models import TransactionExtension
from ..models.transactions import EXTENSION_STATUS_PENDING, OUT_STATUSES
from ..permissions import Actor
from ..validation import coerce_datetime, require_text
from . import event_service, permission_service
from .concurrency import atomic
from .transaction_service import get_transaction
from checkout_tracker.time_utils import to_utc_z, utcnow


def request_extension(actor: Actor, transaction_id: int, new_return_date, reason) -> TransactionExtension:
    if new_return_date is None:
        raise ValidationError(
            "Valid new return date is required",
            errors=[{"field": "new_return_date", "message": "Valid new return date is required"}],
        )
    new_return_date = coerce_datetime(new_return_date, "new_return_date")
    reason = require_text(reason, "reason", max_length=500)

    def _op() -> TransactionExtension:
        tx = get_transaction(actor.org_id, transaction_id)

        if not actor.can_act_for(tx.user_id):
            raise ForbiddenError("You can only extend your own transactions")

        if tx.status not in OUT_STATUSES:
            raise InvalidStateError("Transaction is not in an extendable state", status=tx.status)

        if tx.expected_return_date and new_return_date <= tx.expected_return_date:
            raise ValidationError(
                "New return date must be after the current expected return date",
                errors=[{"field": "new_return_date", "message": "must be after the current expected return date"}],
            )

        extension = TransactionExtension(
            transaction_id=tx.id,
            requested_at=utcnow(),
            requested_by_user_id=actor.user_id,
            new_return_date=new_return_date,
            reason=reason,
            status=EXTENSION_STATUS_PENDING,
        )
        db.session.add(extension)
        db.session.flush()

        item_name = tx.item.name if tx.item else f"item #{tx.item_id}"
        for manager in permission_service.list_item_managers(tx.org_id):
            event_service.emit(
                org_id=tx.org_id,
                type="extension_request",
                title="Extension Request",
                message=f"{actor.name} has requested an extension for {item_name}",
                recipient_user_id=manager.id,
                sender_user_id=actor.user_id,
                related_transaction_id=tx.id,
                related_item_id=tx.item_id,
                template_name="extension_request",
                template_data={
                    "requester_name": actor.name,
                    "item_name": item_name,
                    "current_return_date": to_utc_z(tx.expected_return_date),
                    "new_return_date": to_utc_z(new_return_date),
                    "reason": reason,
                },
            )
        return extension

    return atomic(_op)
