# Overview: Flask API routes for the item catalog; parses input and returns JSON responses.

"""
Item catalog API routes

Reads are open to every authenticated user in the organization. Writes
require the MANAGE_ITEMS capability. reserved_quantity is never accepted
from clients; it moves only through checkout, approval and return.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_capability
from ..errors import TrackerError
from ..services import item_service
from ..validation import pagination_dict, parse_pagination


items_bp = Blueprint("items", __name__, url_prefix="/api/items")


# =============================================================================
# QUERIES
# =============================================================================

@items_bp.get("")
@require_auth
def list_items_route():
    """
    List items in the caller's organization.

    Query params:
    - search: matches name, description, sku, barcode
    - category, subcategory, status, is_checkoutable
    - sort_by: name|category|created_at|available_quantity
    - sort_order: asc|desc
    - page, limit (1..100)
    """
    try:
        page, limit = parse_pagination(request.args)
        rows, total = item_service.list_items(
            g.org_id,
            search=request.args.get("search"),
            category=request.args.get("category"),
            subcategory=request.args.get("subcategory"),
            status=request.args.get("status"),
            is_checkoutable=request.args.get("is_checkoutable"),
            sort_by=request.args.get("sort_by", "name"),
            sort_order=request.args.get("sort_order", "asc"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "items": [item.to_dict() for item in rows],
            "pagination": pagination_dict(page, limit, total),
        }), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list items")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/categories")
@require_auth
def list_categories_route():
    return jsonify(item_service.list_categories(g.org_id)), 200


@items_bp.get("/<int:item_id>")
@require_auth
def get_item_route(item_id: int):
    try:
        item = item_service.get_item(g.org_id, item_id)
        return jsonify({"item": item.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code


@items_bp.get("/<int:item_id>/label")
@require_auth
def item_label_route(item_id: int):
    """QR label data for an item. Image rendering is left to the client."""
    try:
        return jsonify(item_service.label_payload(g.org_id, item_id)), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# MUTATIONS
# =============================================================================

@items_bp.post("")
@require_auth
@require_capability("can_manage_items")
def create_item_route():
    """
    Create an item.

    Request body (name, category, total_quantity required):
    {
        "name": "Cordless drill",
        "category": "Tools",
        "total_quantity": 4,
        "sku": "drl-001",
        "location": {"building": "A", "room": "101"},
        "requires_approval": false,
        "max_checkout_days": 7
    }

    Returns:
        201: item created
        400: validation failure
        409: SKU, barcode or QR code already used in this organization
    """
    try:
        item = item_service.create_item(g.actor, request.get_json(silent=True))
        return jsonify({"message": "Item created successfully", "item": item.to_dict()}), 201
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.put("/<int:item_id>")
@require_auth
@require_capability("can_manage_items")
def update_item_route(item_id: int):
    try:
        item = item_service.update_item(g.actor, item_id, request.get_json(silent=True))
        return jsonify({"message": "Item updated successfully", "item": item.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/<int:item_id>")
@require_auth
@require_capability("can_manage_items")
def delete_item_route(item_id: int):
    """
    Delete an item.

    Refused with 400 while the item has open transactions or any
    transaction history; retire it with status=retired instead.
    """
    try:
        item_service.delete_item(g.actor, item_id)
        return jsonify({"message": "Item deleted successfully"}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/bulk-import")
@require_auth
@require_capability("can_manage_items")
def bulk_import_route():
    """
    Import many items at once.

    Request body: {"items": [{...}, {...}]}

    Each row is created independently; the response lists which rows were
    created and which failed with their error.
    """
    try:
        data = request.get_json(silent=True) or {}
        results = item_service.bulk_import(g.actor, data.get("items"))
        return jsonify({
            "message": (
                f"Bulk import completed: {len(results['successful'])} successful, "
                f"{len(results['failed'])} failed"
            ),
            "successful": [item.to_dict() for item in results["successful"]],
            "failed": results["failed"],
        }), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Bulk import failed")
        return jsonify({"error": "Internal server error"}), 500
