# Overview: Checkout engine; validates a multi-line request and reserves stock atomically.

"""
Checkout Engine

A checkout request is all-or-nothing across its lines:

1. Every line is validated against a fresh read (item exists in the org,
   is active and checkoutable, has enough available stock for the sum of
   its lines in this request, return date within max_checkout_days).
2. One ItemTransaction row is inserted per line:
   - requires_approval -> status 'pending', reservation 'requested'
   - otherwise         -> status 'active',  reservation 'confirmed'
3. Stock is reserved per item with a conditional UPDATE (see
   inventory_service.reserve_stock). If any reservation loses a race the
   whole unit of work is rolled back, which also undoes the rows from
   step 2 and any reservations already made for earlier lines.
4. Outbox events are written in the same transaction.

Steps 1-4 run in a single DB transaction wrapped in run_with_retry, so a
"database is locked" or version conflict replays the request from step 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Item, ItemTransaction
from ..models.items import ITEM_STATUS_ACTIVE
from ..models.transactions import (
    CHECKOUT_CONDITIONS,
    RESERVATION_CONFIRMED,
    RESERVATION_REQUESTED,
    TX_STATUS_ACTIVE,
    TX_STATUS_PENDING,
    TX_TYPE_CHECKOUT,
)
from ..permissions import Actor
from ..validation import coerce_datetime, coerce_int, require_choice, require_text
from . import event_service, inventory_service, permission_service
from .concurrency import atomic
from checkout_tracker.time_utils import to_utc_z, utcnow


@dataclass(frozen=True)
class CheckoutLine:
    item_id: int
    quantity: int


@dataclass
class CheckoutResult:
    transactions: list[ItemTransaction]
    requires_approval: bool

    @property
    def message(self) -> str:
        if self.requires_approval:
            return "Checkout request submitted for approval"
        return "Items checked out successfully"


def parse_lines(raw_lines) -> list[CheckoutLine]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError(
            "At least one item is required",
            errors=[{"field": "items", "message": "At least one item is required"}],
        )

    lines = []
    for index, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(
                "Invalid item line",
                errors=[{"field": f"items[{index}]", "message": "must be an object"}],
            )
        item_id = coerce_int(raw.get("item_id"), f"items[{index}].item_id")
        quantity = coerce_int(raw.get("quantity"), f"items[{index}].quantity")
        if quantity < 1:
            raise ValidationError(
                "Quantity must be at least 1",
                errors=[{"field": f"items[{index}].quantity", "message": "Quantity must be at least 1"}],
            )
        lines.append(CheckoutLine(item_id=item_id, quantity=quantity))
    return lines


def _requested_per_item(lines: list[CheckoutLine]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.item_id] = totals.get(line.item_id, 0) + line.quantity
    return totals


def _validate_items(
    actor: Actor,
    lines: list[CheckoutLine],
    expected_return_date: datetime,
    now: datetime,
) -> dict[int, Item]:
    requested = _requested_per_item(lines)
    items = {
        item.id: item
        for item in db.session.query(Item)
        .filter(Item.org_id == actor.org_id, Item.id.in_(list(requested)))
        .all()
    }

    for line in lines:
        item = items.get(line.item_id)
        if item is None:
            raise NotFoundError(f"Item {line.item_id} not found", item_id=line.item_id)

        if not item.is_checkoutable or item.status != ITEM_STATUS_ACTIVE:
            raise ValidationError(f"Item {item.name} is not available for checkout", item_id=item.id)

        wanted = requested[item.id]
        if item.available_quantity < wanted:
            raise ValidationError(
                f"Insufficient quantity for {item.name}. "
                f"Available: {item.available_quantity}, Requested: {wanted}",
                item_id=item.id,
                available_quantity=item.available_quantity,
                requested_quantity=wanted,
            )

        latest_return = now + timedelta(days=item.max_checkout_days)
        if expected_return_date > latest_return:
            raise ValidationError(
                f"{item.name} can be checked out for at most {item.max_checkout_days} days",
                item_id=item.id,
                max_checkout_days=item.max_checkout_days,
            )

    return items


def checkout(
    actor: Actor,
    lines,
    expected_return_date,
    purpose,
    project=None,
    location=None,
    notes=None,
    condition=None,
) -> CheckoutResult:
    """
    Check out one or more items for the actor.

    Raises:
        ForbiddenError: actor lacks the checkout capability
        NotFoundError: an item does not exist in the actor's org
        ValidationError: bad input, item not checkoutable, insufficient stock
            (also when a concurrent checkout takes the stock first)
    """
    if not actor.capabilities.can_checkout:
        raise ForbiddenError("Permission denied", required_permission="CHECKOUT_ITEMS")

    parsed_lines = parse_lines(lines)
    if expected_return_date is None:
        raise ValidationError(
            "Valid return date is required",
            errors=[{"field": "expected_return_date", "message": "Valid return date is required"}],
        )
    due = coerce_datetime(expected_return_date, "expected_return_date")
    purpose = require_text(purpose, "purpose", max_length=500)
    project = require_text(project, "project", max_length=100, required=False)
    location = require_text(location, "location", max_length=200, required=False)
    notes = require_text(notes, "notes", max_length=1000, required=False)
    condition = require_choice(condition, "condition", CHECKOUT_CONDITIONS, default="good")

    def _op() -> CheckoutResult:
        now = utcnow()
        if due <= now:
            raise ValidationError(
                "Expected return date must be in the future",
                errors=[{"field": "expected_return_date", "message": "must be in the future"}],
            )

        items = _validate_items(actor, parsed_lines, due, now)

        transactions = []
        for line in parsed_lines:
            item = items[line.item_id]
            needs_approval = bool(item.requires_approval)
            tx = ItemTransaction(
                org_id=actor.org_id,
                type=TX_TYPE_CHECKOUT,
                status=TX_STATUS_PENDING if needs_approval else TX_STATUS_ACTIVE,
                reservation_state=RESERVATION_REQUESTED if needs_approval else RESERVATION_CONFIRMED,
                item_id=item.id,
                user_id=actor.user_id,
                created_by_user_id=actor.user_id,
                quantity=line.quantity,
                checkout_date=now,
                expected_return_date=due,
                purpose=purpose,
                project=project,
                location=location,
                notes=notes,
                checkout_condition=condition,
                approval_required=needs_approval,
            )
            db.session.add(tx)
            transactions.append(tx)

        db.session.flush()

        for item_id, quantity in _requested_per_item(parsed_lines).items():
            if not inventory_service.reserve_stock(item_id, actor.org_id, quantity):
                # Lost the race since validation; the rollback in atomic()
                # undoes every row and reservation written above.
                current_item = db.session.get(Item, item_id)
                available = current_item.available_quantity if current_item else 0
                raise ValidationError(
                    f"Insufficient quantity for {items[item_id].name}. "
                    f"Available: {available}, Requested: {quantity}",
                    item_id=item_id,
                    available_quantity=available,
                    requested_quantity=quantity,
                )

        _emit_checkout_events(actor, transactions, items)

        return CheckoutResult(
            transactions=transactions,
            requires_approval=any(tx.approval_required for tx in transactions),
        )

    result = atomic(_op)
    current_app.logger.info(
        "Checkout by user %s: %s line(s), approval required=%s",
        actor.user_id, len(result.transactions), result.requires_approval,
    )
    return result


def _emit_checkout_events(actor: Actor, transactions: list[ItemTransaction], items: dict[int, Item]) -> None:
    for tx in transactions:
        item = items[tx.item_id]
        event_service.emit(
            org_id=actor.org_id,
            type="checkout_confirmation",
            title="Checkout Confirmation",
            message=f"You have successfully checked out {tx.quantity} x {item.name}",
            recipient_user_id=tx.user_id,
            related_transaction_id=tx.id,
            related_item_id=item.id,
            template_name="checkout_confirmation",
            template_data={
                "item_name": item.name,
                "quantity": tx.quantity,
                "expected_return_date": to_utc_z(tx.expected_return_date),
                "purpose": tx.purpose,
                "pending_approval": tx.approval_required,
            },
        )

    pending = [tx for tx in transactions if tx.approval_required]
    if not pending:
        return

    item_names = ", ".join(sorted({items[tx.item_id].name for tx in pending}))
    for manager in permission_service.list_item_managers(actor.org_id):
        event_service.emit(
            org_id=actor.org_id,
            type="approval_request",
            title="Approval Required",
            message=f"{actor.name} has requested checkout of items that require approval",
            recipient_user_id=manager.id,
            sender_user_id=actor.user_id,
            related_transaction_id=pending[0].id if len(pending) == 1 else None,
            related_item_id=pending[0].item_id if len(pending) == 1 else None,
            priority="high",
            template_name="approval_request",
            template_data={
                "requester_name": actor.name,
                "item_names": item_names,
                "transaction_ids": [tx.id for tx in pending],
            },
        )
