"""
System health endpoint.

Checks the database, session store, role/permission seed data and the
notification outbox. Each check reports its own status and latency.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import (
    Item,
    ItemTransaction,
    NotificationChannel,
    NotificationEvent,
    Organization,
    Permission,
    Role,
    SessionToken,
    User,
)
from ..models.notifications import CHANNEL_STATUS_FAILED, EVENT_STATUS_FAILED, EVENT_STATUS_PENDING
from ..permissions import DEFAULT_ROLES
from checkout_tracker.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "organizations": db.session.query(Organization).count(),
            "users": db.session.query(User).count(),
            "items": db.session.query(Item).count(),
            "transactions": db.session.query(ItemTransaction).count(),
        }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= now,
        ).count()
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(False),
        ).count()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            },
        }
    except Exception:
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Session service error"}


def check_auth_service_health() -> dict:
    """Every organization should carry the default roles; permissions must be seeded."""
    start_time = time.time()
    try:
        permission_count = db.session.query(Permission).count()
        expected = {name for name, _ in DEFAULT_ROLES}

        orgs_missing_roles = []
        for org in db.session.query(Organization).filter(Organization.is_active.is_(True)).all():
            present = {r.name for r in db.session.query(Role).filter_by(org_id=org.id).all()}
            if not expected <= present:
                orgs_missing_roles.append(org.code or org.id)

        details = {
            "permissions_initialized": permission_count > 0,
            "permission_count": permission_count,
        }
        if orgs_missing_roles or permission_count == 0:
            return {
                "status": "degraded",
                "latency_ms": _elapsed_ms(start_time),
                "warning": "Roles or permissions not initialized; run `flask system init`",
                "details": {**details, "orgs_missing_roles": orgs_missing_roles},
            }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}
    except Exception:
        current_app.logger.exception("Auth service health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Auth service error"}


def check_notification_health() -> dict:
    """Outbox backlog and failed deliveries. Failures degrade, they never make the API unhealthy."""
    start_time = time.time()
    try:
        pending_events = db.session.query(NotificationEvent).filter_by(status=EVENT_STATUS_PENDING).count()
        failed_events = db.session.query(NotificationEvent).filter_by(status=EVENT_STATUS_FAILED).count()
        failed_channels = db.session.query(NotificationChannel).filter_by(status=CHANNEL_STATUS_FAILED).count()
        details = {
            "email_backend": current_app.config.get("EMAIL_BACKEND"),
            "pending_events": pending_events,
            "failed_events": failed_events,
            "failed_channels": failed_channels,
        }
        status = "degraded" if failed_events or failed_channels else "healthy"
        return {"status": status, "latency_ms": _elapsed_ms(start_time), "details": details}
    except Exception:
        current_app.logger.exception("Notification health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Notification service error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "auth_service": check_auth_service_health(),
        "notifications": check_notification_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }, http_status
