# Overview: Flask API routes for item transactions; parses input and returns JSON responses.

"""
Transaction API routes

Checkout, return, approval, extension and penalty operations. Every
mutating route hands g.actor to an engine in services/; the engines own
validation, authorization on the record, and quantity accounting.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_capability, require_elevated
from ..errors import TrackerError
from ..services import (
    approval_service,
    checkout_service,
    extension_service,
    return_service,
    transaction_service,
)
from ..validation import pagination_dict, parse_pagination
from checkout_tracker.time_utils import utcnow


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    List transactions.

    Query params: type, status, user_id, item_id, sort_by
    (checkout_date|expected_return_date|created_at), sort_order, page, limit.
    Regular users only see their own transactions.
    """
    try:
        page, limit = parse_pagination(request.args)
        rows, total = transaction_service.list_transactions(
            g.actor,
            type=request.args.get("type"),
            status=request.args.get("status"),
            user_id=request.args.get("user_id"),
            item_id=request.args.get("item_id"),
            sort_by=request.args.get("sort_by", "checkout_date"),
            sort_order=request.args.get("sort_order", "desc"),
            page=page,
            limit=limit,
        )
        now = utcnow()
        return jsonify({
            "transactions": [tx.to_dict(now) for tx in rows],
            "pagination": pagination_dict(page, limit, total),
        }), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        tx = transaction_service.get_transaction_for_actor(g.actor, transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/checkout")
@require_auth
@require_capability("can_checkout")
def checkout_route():
    """
    Check out one or more items.

    Request body:
    {
        "items": [{"item_id": 1, "quantity": 2}, ...],
        "expected_return_date": "2026-11-01T17:00:00Z",
        "purpose": "Site survey",
        "project": "optional",
        "location": "optional",
        "notes": "optional",
        "condition": "good"  (optional)
    }

    Returns:
        201: transactions created; requires_approval tells whether any line is pending
        400: validation failure or insufficient quantity
        404: item not found
    """
    try:
        data = request.get_json(silent=True) or {}
        result = checkout_service.checkout(
            g.actor,
            lines=data.get("items"),
            expected_return_date=data.get("expected_return_date"),
            purpose=data.get("purpose"),
            project=data.get("project"),
            location=data.get("location"),
            notes=data.get("notes"),
            condition=data.get("condition"),
        )
        return jsonify({
            "message": result.message,
            "transactions": [tx.to_dict() for tx in result.transactions],
            "requires_approval": result.requires_approval,
        }), 201
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/return")
@require_auth
def return_route(transaction_id: int):
    """
    Return a checked-out transaction.

    Request body: {"condition": "good", "notes": "optional"}
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = return_service.return_item(
            g.actor,
            transaction_id,
            condition=data.get("condition"),
            notes=data.get("notes"),
        )
        return jsonify({"message": "Items returned successfully", "transaction": tx.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Return failed")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/approve")
@require_auth
@require_elevated
def approve_route(transaction_id: int):
    """
    Approve or reject a pending checkout.

    Request body: {"approved": true, "notes": "optional"}
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = approval_service.decide_approval(
            g.actor,
            transaction_id,
            approved=data.get("approved"),
            notes=data.get("notes"),
        )
        decision = "approved" if tx.status == "active" else "rejected"
        return jsonify({"message": f"Transaction {decision} successfully", "transaction": tx.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Approval failed")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/extend")
@require_auth
def extend_route(transaction_id: int):
    """
    Request a later return date. The request stays pending.

    Request body: {"new_return_date": "...", "reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        extension = extension_service.request_extension(
            g.actor,
            transaction_id,
            new_return_date=data.get("new_return_date"),
            reason=data.get("reason"),
        )
        tx = transaction_service.get_transaction(g.org_id, transaction_id)
        return jsonify({
            "message": "Extension request submitted successfully",
            "extension": extension.to_dict(),
            "transaction": tx.to_dict(),
        }), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Extension request failed")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/overdue")
@require_auth
@require_elevated
def overdue_route():
    try:
        now = utcnow()
        rows = transaction_service.list_overdue_transactions(g.org_id, now)
        return jsonify({
            "transactions": [tx.to_dict(now) for tx in rows],
            "count": len(rows),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list overdue transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/pending-approval")
@require_auth
@require_elevated
def pending_approval_route():
    try:
        rows = transaction_service.list_pending_approvals(g.org_id)
        return jsonify({
            "transactions": [tx.to_dict() for tx in rows],
            "count": len(rows),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list pending approvals")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/penalties")
@require_auth
@require_capability("can_manage_items")
def apply_penalty_route(transaction_id: int):
    """
    Request body: {"type": "late_fee", "amount_cents": 500, "description": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        penalty = return_service.apply_penalty(
            g.actor,
            transaction_id,
            type=data.get("type"),
            amount_cents=data.get("amount_cents"),
            description=data.get("description"),
        )
        return jsonify({"penalty": penalty.to_dict()}), 201
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply penalty")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/penalties/<int:penalty_id>/pay")
@require_auth
@require_capability("can_manage_items")
def pay_penalty_route(transaction_id: int, penalty_id: int):
    try:
        penalty = return_service.mark_penalty_paid(g.actor, transaction_id, penalty_id)
        return jsonify({"penalty": penalty.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark penalty paid")
        return jsonify({"error": "Internal server error"}), 500
