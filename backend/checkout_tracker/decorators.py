# Overview: Request and capability decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .permissions import CAPABILITY_PERMISSIONS
from .services import session_service, permission_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'actor')


def _log_denial(action: str, reason: str) -> None:
    permission_service.log_security_event(
        user_id=g.current_user.id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=request.path,
        action=action,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        org_id=g.org_id,
    )


def require_auth(f):
    """
    Require authentication and establish tenant context.

    Sets on Flask g:
    - g.current_user: the authenticated User
    - g.org_id: tenant of the session
    - g.actor: Actor with the user's resolved Capabilities
    - g.session_context: the full SessionContext

    Returns 401 for a missing/invalid/expired token or a deactivated
    user or organization.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.session_context = context
        g.actor = permission_service.resolve_actor(context.user)

        return f(*args, **kwargs)

    return decorated_function


def require_capability(flag: str):
    """
    Require a capability flag (can_checkout, can_manage_items, ...).

    Denials are written to security_events.
    """
    permission_code = CAPABILITY_PERMISSIONS[flag]

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not getattr(g.actor.capabilities, flag):
                _log_denial(permission_code, f"Missing permission: {permission_code}")
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_elevated(f):
    """Require an admin or manager role."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401

        if not g.actor.is_elevated:
            _log_denial("ELEVATED_ROLE", "Requires admin or manager role")
            return jsonify({
                "error": "Permission denied",
                "message": "Requires admin or manager role",
            }), 403

        return f(*args, **kwargs)

    return decorated_function
