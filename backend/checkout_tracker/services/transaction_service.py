# Overview: Read-side queries over item transactions (lookup, listing, overdue, approvals queue).

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import selectinload

from ..errors import ForbiddenError, NotFoundError
from ..extensions import db
from ..models import ItemTransaction
from ..models.transactions import (
    OUT_STATUSES,
    TX_STATUS_PENDING,
    TX_STATUSES,
    TX_TYPE_CHECKOUT,
    TX_TYPES,
)
from ..permissions import Actor
from ..validation import coerce_int, require_choice
from checkout_tracker.time_utils import utcnow


SORT_FIELDS = {
    "checkout_date": ItemTransaction.checkout_date,
    "expected_return_date": ItemTransaction.expected_return_date,
    "created_at": ItemTransaction.created_at,
}


def _base_query(org_id: int):
    return (
        db.session.query(ItemTransaction)
        .filter(ItemTransaction.org_id == org_id)
        .options(
            selectinload(ItemTransaction.item),
            selectinload(ItemTransaction.user),
            selectinload(ItemTransaction.extensions),
            selectinload(ItemTransaction.penalties),
            selectinload(ItemTransaction.reminders),
        )
    )


def get_transaction(org_id: int, transaction_id: int) -> ItemTransaction:
    """Load a transaction inside the tenant. Other orgs' ids are not found."""
    tx = db.session.query(ItemTransaction).filter_by(id=transaction_id, org_id=org_id).first()
    if not tx:
        raise NotFoundError("Transaction not found")
    return tx


def get_transaction_for_actor(actor: Actor, transaction_id: int) -> ItemTransaction:
    tx = get_transaction(actor.org_id, transaction_id)
    if not actor.can_act_for(tx.user_id):
        raise ForbiddenError("You can only view your own transactions")
    return tx


def list_transactions(
    actor: Actor,
    *,
    type: str | None = None,
    status: str | None = None,
    user_id=None,
    item_id=None,
    sort_by: str = "checkout_date",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ItemTransaction], int]:
    """
    Filtered, sorted, paginated transactions.

    Non-elevated actors only ever see their own rows, whatever user_id says.
    """
    query = _base_query(actor.org_id)

    if type is not None:
        query = query.filter(ItemTransaction.type == require_choice(type, "type", TX_TYPES))
    if status is not None:
        query = query.filter(ItemTransaction.status == require_choice(status, "status", TX_STATUSES))
    if item_id is not None:
        query = query.filter(ItemTransaction.item_id == coerce_int(item_id, "item_id"))

    if not actor.is_elevated:
        query = query.filter(ItemTransaction.user_id == actor.user_id)
    elif user_id is not None:
        query = query.filter(ItemTransaction.user_id == coerce_int(user_id, "user_id"))

    sort_by = require_choice(sort_by, "sort_by", tuple(SORT_FIELDS))
    sort_order = require_choice(sort_order, "sort_order", ("asc", "desc"))
    column = SORT_FIELDS[sort_by]
    query = query.order_by(
        column.asc() if sort_order == "asc" else column.desc(),
        ItemTransaction.id.desc(),
    )

    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def overdue_query(org_id: int | None, now: datetime | None = None):
    """
    Canonical overdue set: checkouts that are out and past due. Stored
    status 'overdue' is neither required nor sufficient.
    """
    now = now or utcnow()
    query = db.session.query(ItemTransaction).filter(
        ItemTransaction.type == TX_TYPE_CHECKOUT,
        ItemTransaction.status.in_(OUT_STATUSES),
        ItemTransaction.expected_return_date.isnot(None),
        ItemTransaction.expected_return_date < now,
    )
    if org_id is not None:
        query = query.filter(ItemTransaction.org_id == org_id)
    return query


def list_overdue_transactions(org_id: int, now: datetime | None = None) -> list[ItemTransaction]:
    return (
        overdue_query(org_id, now)
        .options(selectinload(ItemTransaction.item), selectinload(ItemTransaction.user))
        .order_by(ItemTransaction.expected_return_date.asc(), ItemTransaction.id.asc())
        .all()
    )


def list_pending_approvals(org_id: int) -> list[ItemTransaction]:
    return (
        _base_query(org_id)
        .filter(ItemTransaction.status == TX_STATUS_PENDING)
        .order_by(ItemTransaction.created_at.asc(), ItemTransaction.id.asc())
        .all()
    )
