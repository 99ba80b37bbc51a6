# Overview: Flask API routes for user administration; parses input and returns JSON responses.

"""
User administration routes

Listing and head counts are open to elevated users; creating users,
changing roles or capability flags and deactivating accounts require
MANAGE_USERS. Everyone may edit their own profile.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_capability, require_elevated
from ..errors import TrackerError
from ..extensions import db
from ..models import User, UserPermissionOverride
from ..permissions import ROLE_USER
from ..services import auth_service, permission_service


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _get_user_in_current_org(user_id: int) -> User | None:
    return db.session.query(User).filter_by(id=user_id, org_id=g.org_id).first()


def _user_with_access(user: User) -> dict:
    user_dict = user.to_dict()
    user_dict["roles"] = permission_service.get_user_role_names(user.id)
    user_dict["capabilities"] = permission_service.get_user_capabilities(user.id).to_dict()
    return user_dict


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@users_bp.get("")
@require_auth
@require_elevated
def list_users_route():
    """
    List users in the caller's organization.

    Query params:
    - include_inactive: bool (default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    query = db.session.query(User).filter(User.org_id == g.org_id)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))

    users = query.order_by(User.username).all()
    result = [_user_with_access(user) for user in users]
    return jsonify({"users": result, "count": len(result)}), 200


@users_bp.get("/<int:user_id>")
@require_auth
@require_elevated
def get_user_route(user_id: int):
    user = _get_user_in_current_org(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    user_dict = _user_with_access(user)
    overrides = db.session.query(UserPermissionOverride).filter_by(user_id=user.id, is_active=True).all()
    user_dict["permission_overrides"] = [o.to_dict() for o in overrides]
    return jsonify({"user": user_dict}), 200


@users_bp.post("")
@require_auth
@require_capability("can_manage_users")
def create_user_route():
    """
    Create a user in the caller's organization.

    Request body:
    - username, email, password: str (required)
    - name, department, phone: str (optional)
    - role: admin|manager|user (default user)
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        email = data.get("email")
        password = data.get("password")

        if not all([username, email, password]):
            return jsonify({"error": "username, email, and password required"}), 400

        user = auth_service.create_user(
            username,
            email,
            password,
            g.org_id,
            name=data.get("name"),
            role_name=data.get("role") or ROLE_USER,
            department=data.get("department"),
            phone=data.get("phone"),
        )

        permission_service.log_security_event(
            user_id=g.current_user.id,
            event_type="USER_CREATED",
            success=True,
            resource="/api/users",
            action="CREATE",
            reason=f"Created user: {username}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            org_id=g.org_id,
        )

        return jsonify({"user": _user_with_access(user), "message": "User created successfully"}), 201

    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>/permissions")
@require_auth
@require_capability("can_manage_users")
def update_user_permissions_route(user_id: int):
    """
    Set capability flags for a user.

    Request body:
    {
        "permissions": {"can_checkout": true, "can_manage_items": false},
        "reason": "optional"
    }

    Flags left out are not changed. Users cannot change their own flags.
    """
    try:
        data = request.get_json(silent=True) or {}
        flags = data.get("permissions")
        if not isinstance(flags, dict) or not flags:
            return jsonify({"error": "permissions object required"}), 400

        capabilities = permission_service.set_user_capabilities(
            actor=g.actor,
            user_id=user_id,
            flags=flags,
            reason=data.get("reason"),
        )
        return jsonify({
            "message": "User permissions updated successfully",
            "user_id": user_id,
            "capabilities": capabilities.to_dict(),
        }), 200

    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user permissions")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_capability("can_manage_users")
def deactivate_user_route(user_id: int):
    """Deactivate a user and revoke all of their sessions."""
    if user_id == g.current_user.id:
        return jsonify({"error": "Cannot deactivate your own account"}), 400

    try:
        user = auth_service.deactivate_user(user_id, g.org_id)

        permission_service.log_security_event(
            user_id=g.current_user.id,
            event_type="USER_DEACTIVATED",
            success=True,
            resource=f"/api/users/{user_id}/deactivate",
            action="DEACTIVATE",
            reason=f"Deactivated user: {user.username}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            org_id=g.org_id,
        )
        return jsonify({"message": f"User {user.username} deactivated"}), 200

    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    """
    Update a user's profile.

    Request body (all optional):
    {
        "name": "Jane Doe",
        "department": "Field Ops",
        "phone": "+1 555 0100",
        "role": "manager",
        "permissions": {"can_checkout": false},
        "reason": "optional, recorded with permission changes"
    }

    name, department and phone: the user themselves, or a manager/admin.
    role and permissions: MANAGE_USERS, and never on your own account.
    """
    try:
        user, changed = auth_service.update_user(g.actor, user_id, request.get_json(silent=True))

        permission_service.log_security_event(
            user_id=g.current_user.id,
            event_type="USER_UPDATED",
            success=True,
            resource=f"/api/users/{user_id}",
            action="UPDATE",
            reason=f"Updated {', '.join(changed) or 'nothing'} for user: {user.username}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            org_id=g.org_id,
        )
        return jsonify({"user": _user_with_access(user), "message": "User updated successfully"}), 200

    except TrackerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DIRECTORY
# =============================================================================

@users_bp.get("/departments/list")
@require_auth
def list_departments_route():
    departments = auth_service.list_departments(g.org_id)
    return jsonify({"departments": departments, "count": len(departments)}), 200


@users_bp.get("/stats/overview")
@require_auth
@require_elevated
def user_stats_route():
    """Total, active and inactive users, plus active users by role and by department."""
    return jsonify({"stats": auth_service.user_stats(g.org_id)}), 200
