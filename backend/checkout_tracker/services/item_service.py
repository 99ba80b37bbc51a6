# Overview: Item catalog operations (CRUD, search, categories, label payload, bulk import).

from __future__ import annotations

import json

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, NotFoundError, TrackerError, ValidationError
from ..extensions import db
from ..models import Item, ItemTransaction
from ..models.items import ITEM_STATUSES
from ..models.transactions import OPEN_STATUSES
from ..permissions import Actor
from ..validation import (
    ModelValidationPolicy,
    coerce_bool,
    enforce_rules_item,
    require_choice,
    require_text,
    validate_payload,
)
from .concurrency import atomic


_ITEM_FIELDS = {
    "name", "description", "category", "subcategory",
    "sku", "barcode", "qr_code",
    "total_quantity", "available_quantity",
    "unit", "cost_cents", "value_cents",
    "location_building", "location_floor", "location_room", "location_shelf", "location_position",
    "tags", "status", "is_checkoutable", "max_checkout_days", "requires_approval",
}

# reserved_quantity is owned by the transaction engines and never client-writable.
ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_ITEM_FIELDS,
    required_on_create={"name", "category", "total_quantity"},
)
ITEM_UPDATE_POLICY = ModelValidationPolicy(writable_fields=_ITEM_FIELDS)

LOCATION_KEYS = ("building", "floor", "room", "shelf", "position")

SORT_FIELDS = {
    "name": Item.name,
    "category": Item.category,
    "created_at": Item.created_at,
    "available_quantity": Item.available_quantity,
}

IDENTIFIER_FIELDS = ("sku", "barcode", "qr_code")


def _require_manager(actor: Actor) -> None:
    if not actor.capabilities.can_manage_items:
        raise ForbiddenError("Permission denied", required_permission="MANAGE_ITEMS")


def _flatten_location(payload) -> dict:
    """Accept {"location": {"building": ...}} as well as flat location_* keys."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    location = payload.pop("location", None)
    if location is None:
        return payload
    if not isinstance(location, dict):
        raise ValidationError("location must be an object", errors=[{"field": "location", "message": "must be an object"}])
    for key, value in location.items():
        if key not in LOCATION_KEYS:
            raise ValidationError(f"Unknown location field: {key}", errors=[{"field": f"location.{key}", "message": "unknown field"}])
        payload[f"location_{key}"] = value
    return payload


def _ensure_identifiers_free(org_id: int, patch: dict, exclude_id: int | None = None) -> None:
    for field in IDENTIFIER_FIELDS:
        value = patch.get(field)
        if not value:
            continue
        query = db.session.query(Item.id).filter(Item.org_id == org_id, getattr(Item, field) == value)
        if exclude_id is not None:
            query = query.filter(Item.id != exclude_id)
        if query.first():
            raise ConflictError(f"An item with this {field} already exists", field=field)


def get_item(org_id: int, item_id: int) -> Item:
    item = db.session.query(Item).filter_by(id=item_id, org_id=org_id).first()
    if not item:
        raise NotFoundError("Item not found")
    return item


def _build_item(actor: Actor, payload) -> Item:
    patch = validate_payload(
        model=Item,
        payload=_flatten_location(payload),
        policy=ITEM_CREATE_POLICY,
        partial=False,
    )
    enforce_rules_item(patch)
    _ensure_identifiers_free(actor.org_id, patch)

    total = patch["total_quantity"]
    available = patch.get("available_quantity")
    patch["available_quantity"] = total if available is None else min(available, total)

    item = Item(
        org_id=actor.org_id,
        reserved_quantity=0,
        created_by_user_id=actor.user_id,
        last_modified_by_user_id=actor.user_id,
        **patch,
    )
    db.session.add(item)
    db.session.flush()

    if not item.qr_code:
        item.qr_code = f"ITEM_{item.id}"
    return item


def create_item(actor: Actor, payload) -> Item:
    _require_manager(actor)
    try:
        item = atomic(lambda: _build_item(actor, payload))
    except IntegrityError:
        raise ConflictError("An item with this identifier already exists")
    current_app.logger.info("Item %s created by user %s", item.id, actor.user_id)
    return item


def update_item(actor: Actor, item_id: int, payload) -> Item:
    """
    Partial update. Quantities:
    - total_quantity may not drop below reserved_quantity
    - available_quantity is clamped to total_quantity - reserved_quantity
    """
    _require_manager(actor)
    patch = validate_payload(
        model=Item,
        payload=_flatten_location(payload),
        policy=ITEM_UPDATE_POLICY,
        partial=True,
    )
    enforce_rules_item(patch)

    def _op() -> Item:
        item = get_item(actor.org_id, item_id)
        _ensure_identifiers_free(actor.org_id, patch, exclude_id=item.id)

        new_total = patch.get("total_quantity", item.total_quantity)
        if new_total < item.reserved_quantity:
            raise ValidationError(
                f"Total quantity cannot be less than reserved quantity ({item.reserved_quantity})",
                errors=[{"field": "total_quantity", "message": "cannot be less than reserved quantity"}],
            )

        for key, value in patch.items():
            setattr(item, key, value)
        if not item.qr_code:
            item.qr_code = f"ITEM_{item.id}"
        item.last_modified_by_user_id = actor.user_id
        item.clamp_quantities()
        return item

    try:
        return atomic(_op)
    except IntegrityError:
        raise ConflictError("An item with this identifier already exists")


def delete_item(actor: Actor, item_id: int) -> None:
    """Refused while any pending/active/overdue transaction references the item."""
    _require_manager(actor)

    def _op() -> None:
        item = get_item(actor.org_id, item_id)
        open_count = (
            db.session.query(ItemTransaction)
            .filter(ItemTransaction.item_id == item.id, ItemTransaction.status.in_(OPEN_STATUSES))
            .count()
        )
        if open_count:
            raise ValidationError("Cannot delete item with active transactions", open_transactions=open_count)
        history = db.session.query(ItemTransaction).filter(ItemTransaction.item_id == item.id).count()
        if history:
            raise ValidationError(
                "Cannot delete item with transaction history; retire it instead",
                transactions=history,
            )
        db.session.delete(item)

    atomic(_op)
    current_app.logger.info("Item %s deleted by user %s", item_id, actor.user_id)


def list_items(
    org_id: int,
    *,
    search: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    status: str | None = None,
    is_checkoutable=None,
    sort_by: str = "name",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Item], int]:
    query = db.session.query(Item).filter(Item.org_id == org_id)

    search = require_text(search, "search", max_length=200, required=False)
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(
            Item.name.ilike(like),
            Item.description.ilike(like),
            Item.sku.ilike(like),
            Item.barcode.ilike(like),
        ))

    category = require_text(category, "category", max_length=50, required=False)
    if category:
        query = query.filter(Item.category == category)
    subcategory = require_text(subcategory, "subcategory", max_length=50, required=False)
    if subcategory:
        query = query.filter(Item.subcategory == subcategory)
    if status is not None:
        query = query.filter(Item.status == require_choice(status, "status", ITEM_STATUSES))
    if is_checkoutable is not None:
        query = query.filter(Item.is_checkoutable.is_(coerce_bool(is_checkoutable, "is_checkoutable")))

    sort_by = require_choice(sort_by, "sort_by", tuple(SORT_FIELDS))
    sort_order = require_choice(sort_order, "sort_order", ("asc", "desc"))
    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Item.id.asc())

    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def list_categories(org_id: int) -> dict:
    categories = [
        c for (c,) in db.session.query(Item.category).filter(Item.org_id == org_id).distinct().all() if c
    ]
    subcategories = [
        s for (s,) in db.session.query(Item.subcategory).filter(
            Item.org_id == org_id, Item.subcategory.isnot(None)
        ).distinct().all() if s
    ]
    return {"categories": sorted(categories), "subcategories": sorted(subcategories)}


def label_payload(org_id: int, item_id: int) -> dict:
    """Data encoded into an item's QR label. Rendering the image is up to the client."""
    item = get_item(org_id, item_id)
    data = {"id": item.id, "name": item.name, "sku": item.sku, "type": "item"}
    return {
        "qr_code": item.qr_code,
        "data": data,
        "payload": json.dumps(data, separators=(",", ":")),
    }


def bulk_import(actor: Actor, rows) -> dict:
    """
    Create many items, each row in its own unit of work: a bad row lands in
    `failed` with its error and does not stop the rest.
    """
    _require_manager(actor)
    if not isinstance(rows, list) or not rows:
        raise ValidationError("Items array is required", errors=[{"field": "items", "message": "must be a non-empty list"}])

    results = {"successful": [], "failed": []}

    for index, row in enumerate(rows):
        try:
            item = atomic(lambda: _build_item(actor, row))
            results["successful"].append(item)
        except TrackerError as e:
            results["failed"].append({"index": index, "data": row, "error": e.message})
        except IntegrityError as e:
            results["failed"].append({"index": index, "data": row, "error": str(e.orig)})

    current_app.logger.info(
        "Bulk import by user %s: %s successful, %s failed",
        actor.user_id, len(results["successful"]), len(results["failed"]),
    )
    return results
