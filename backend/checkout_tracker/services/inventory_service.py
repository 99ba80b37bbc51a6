# Overview: Atomic quantity moves between available and reserved stock.

"""
Inventory Quantity Service

Every move is a single conditional UPDATE:

    UPDATE items
       SET available_quantity = available_quantity - :q,
           reserved_quantity  = reserved_quantity  + :q,
           version_id         = version_id + 1
     WHERE id = :id AND available_quantity >= :q

so the availability check happens at the moment of the write, not at an
earlier read. rowcount == 0 means another request won the race; the caller
raises and rolls back the whole unit of work.

Moves never change available + reserved, so the partition
available + reserved <= total is preserved by construction.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Item, ItemTransaction
from ..models.transactions import HOLDING_RESERVATION_STATES


def _expire_cached_item(item_id: int) -> None:
    # Bulk UPDATE bypasses the identity map; drop stale attributes so the
    # next access (and the next version_id check) reloads the row.
    key = db.session.identity_key(Item, item_id)
    cached = db.session.identity_map.get(key)
    if cached is not None:
        db.session.expire(cached)


def reserve_stock(item_id: int, org_id: int, quantity: int) -> bool:
    """Move quantity from available to reserved. False if not enough available."""
    result = db.session.execute(
        update(Item)
        .where(
            Item.id == item_id,
            Item.org_id == org_id,
            Item.available_quantity >= quantity,
        )
        .values(
            available_quantity=Item.available_quantity - quantity,
            reserved_quantity=Item.reserved_quantity + quantity,
            version_id=Item.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached_item(item_id)
    return result.rowcount == 1


def release_stock(item_id: int, org_id: int, quantity: int) -> bool:
    """
    Move quantity from reserved back to available.

    Returns False when the item row is missing. If the item holds less
    reserved stock than asked, what it holds is released and the anomaly
    is logged.
    """
    result = db.session.execute(
        update(Item)
        .where(
            Item.id == item_id,
            Item.org_id == org_id,
            Item.reserved_quantity >= quantity,
        )
        .values(
            available_quantity=Item.available_quantity + quantity,
            reserved_quantity=Item.reserved_quantity - quantity,
            version_id=Item.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached_item(item_id)
    if result.rowcount == 1:
        return True

    item = db.session.query(Item).filter_by(id=item_id, org_id=org_id).first()
    if item is None:
        return False

    current_app.logger.error(
        "Reservation underflow on item %s: releasing %s but only %s reserved",
        item_id, quantity, item.reserved_quantity,
    )
    db.session.execute(
        update(Item)
        .where(Item.id == item_id, Item.org_id == org_id)
        .values(
            available_quantity=Item.available_quantity + Item.reserved_quantity,
            reserved_quantity=0,
            version_id=Item.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached_item(item_id)
    return True


def held_quantities(org_id: int, item_ids=None) -> dict[int, int]:
    """Sum of quantity per item over transactions still holding stock."""
    query = (
        db.session.query(ItemTransaction.item_id, func.coalesce(func.sum(ItemTransaction.quantity), 0))
        .filter(
            ItemTransaction.org_id == org_id,
            ItemTransaction.reservation_state.in_(HOLDING_RESERVATION_STATES),
        )
        .group_by(ItemTransaction.item_id)
    )
    if item_ids is not None:
        query = query.filter(ItemTransaction.item_id.in_(list(item_ids)))
    return {item_id: int(total) for item_id, total in query.all()}


def audit_reservations(org_id: int) -> list[dict]:
    """
    Items whose reserved_quantity disagrees with their holding transactions,
    or whose partition is broken. Empty list means the org is consistent.
    """
    held = held_quantities(org_id)
    problems = []

    for item in db.session.query(Item).filter_by(org_id=org_id).order_by(Item.id).all():
        expected = held.get(item.id, 0)
        issues = []
        if item.reserved_quantity != expected:
            issues.append("reserved_mismatch")
        if item.available_quantity < 0 or item.reserved_quantity < 0:
            issues.append("negative_quantity")
        if item.available_quantity + item.reserved_quantity > item.total_quantity:
            issues.append("partition_exceeds_total")

        if issues:
            problems.append({
                "item_id": item.id,
                "name": item.name,
                "total_quantity": item.total_quantity,
                "available_quantity": item.available_quantity,
                "reserved_quantity": item.reserved_quantity,
                "held_by_transactions": expected,
                "issues": issues,
            })

    return problems
