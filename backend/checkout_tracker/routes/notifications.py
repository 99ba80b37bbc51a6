# Overview: Flask API routes for the notification inbox; parses input and returns JSON responses.

"""
Notification inbox routes

Every route works on the caller's own notifications except POST (manual
send, elevated users only) and /stats (organization-wide).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_elevated
from ..errors import TrackerError
from ..services import notification_service
from ..validation import pagination_dict, parse_pagination


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """
    List the caller's notifications.

    Query params: type, is_read, priority, sort_by (created_at|priority|scheduled_for),
    sort_order, page, limit.
    """
    try:
        page, limit = parse_pagination(request.args)
        rows, total, unread = notification_service.list_notifications(
            g.actor,
            type=request.args.get("type"),
            is_read=request.args.get("is_read"),
            priority=request.args.get("priority"),
            sort_by=request.args.get("sort_by", "created_at"),
            sort_order=request.args.get("sort_order", "desc"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "notifications": [n.to_dict() for n in rows],
            "pagination": pagination_dict(page, limit, total),
            "unread_count": unread,
        }), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.get("/unread-count")
@require_auth
def unread_count_route():
    return jsonify({"unread_count": notification_service.unread_count(g.actor)}), 200


@notifications_bp.get("/stats")
@require_auth
def notification_stats_route():
    try:
        return jsonify(notification_service.notification_stats(g.actor)), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code


@notifications_bp.post("")
@require_auth
@require_elevated
def create_notification_route():
    """
    Send a notification to a user in the same organization.

    Request body:
    {
        "type": "system_alert",
        "title": "Inventory count",
        "message": "Please confirm your items by Friday",
        "recipient_id": 12,
        "priority": "medium",
        "channels": ["in_app", "email"],
        "scheduled_for": "optional ISO-8601",
        "metadata": {}
    }
    """
    try:
        notification = notification_service.create_notification(g.actor, request.get_json(silent=True))
        return jsonify({
            "message": "Notification created successfully",
            "notification": notification.to_dict(),
        }), 201
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create notification")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.put("/read-all")
@require_auth
def mark_all_read_route():
    count = notification_service.mark_all_read(g.actor)
    return jsonify({"message": "All notifications marked as read", "updated": count}), 200


@notifications_bp.put("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(g.actor, notification_id)
        return jsonify({"message": "Notification marked as read", "notification": notification.to_dict()}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code


@notifications_bp.delete("/clear-all")
@require_auth
def clear_all_route():
    count = notification_service.clear_all(g.actor)
    return jsonify({"message": "All notifications cleared", "deleted": count}), 200


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(g.actor, notification_id)
        return jsonify({"message": "Notification deleted successfully"}), 200
    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
