# Overview: Service-layer operations for permissions, capabilities and the security audit log.

"""
Permission Checking and Security Event Logging with Multi-Tenant Support

Effective permissions = union of the user's role permissions, then per-user
overrides (GRANT adds, DENY removes). The result is folded into an Actor
with a Capabilities set once per request; nothing downstream re-derives
permissions from roles.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require explicit permission grant
- Log denials only
- All queries and logs scoped by org_id
"""

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission, SecurityEvent, UserPermissionOverride
from ..permissions import (
    PERMISSION_DEFINITIONS,
    DEFAULT_ROLE_PERMISSIONS,
    ELEVATED_ROLES,
    MANAGE_ITEMS,
    Actor,
    Capabilities,
    CAPABILITY_PERMISSIONS,
)
from checkout_tracker.time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> SecurityEvent:
    """
    Append a security event to the audit trail.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGOUT
    - USER_CREATED
    - CAPABILITIES_CHANGED
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_role_permission_codes(user_id: int) -> set[str]:
    """Permission codes granted by the user's roles, before overrides."""
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return {code for (code,) in rows}


def get_user_permissions(user_id: int) -> set[str]:
    """Effective permission codes for a user (roles, then GRANT/DENY overrides)."""
    permission_codes = get_role_permission_codes(user_id)

    overrides = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        is_active=True,
    ).all()

    for override in overrides:
        if override.override_type == "GRANT":
            permission_codes.add(override.permission_code)
        elif override.override_type == "DENY":
            permission_codes.discard(override.permission_code)

    return permission_codes


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return sorted(name for (name,) in rows)


def resolve_actor(user: User) -> Actor:
    """Build the Actor handed to every engine operation for this request."""
    return Actor(
        user_id=user.id,
        org_id=user.org_id,
        name=user.name,
        role_names=frozenset(get_user_role_names(user.id)),
        capabilities=Capabilities.from_permission_codes(get_user_permissions(user.id)),
    )


def get_user_capabilities(user_id: int) -> Capabilities:
    return Capabilities.from_permission_codes(get_user_permissions(user_id))


def set_user_capabilities(
    *,
    actor: Actor,
    user_id: int,
    flags: dict,
    reason: str | None = None,
) -> Capabilities:
    """
    Set capability flags for a user in the actor's organization.

    A flag equal to what the user's roles already give clears any override;
    otherwise a GRANT or DENY override is written.
    """
    if not actor.capabilities.can_manage_users:
        raise ForbiddenError("Permission denied", required_permission="MANAGE_USERS")

    user = db.session.query(User).filter_by(id=user_id, org_id=actor.org_id).first()
    if not user:
        raise NotFoundError("User not found")

    if user.id == actor.user_id:
        raise ForbiddenError("You cannot change your own permissions")

    unknown = sorted(set(flags) - set(CAPABILITY_PERMISSIONS))
    if unknown:
        raise ValidationError(
            "Unknown capability flags",
            errors=[{"field": f, "message": "unknown capability"} for f in unknown],
        )
    bad_values = sorted(f for f, v in flags.items() if not isinstance(v, bool))
    if bad_values:
        raise ValidationError(
            "Capability flags must be booleans",
            errors=[{"field": f, "message": "must be a boolean"} for f in bad_values],
        )

    role_codes = get_role_permission_codes(user.id)
    now = utcnow()

    for flag, wanted in flags.items():
        code = CAPABILITY_PERMISSIONS[flag]
        override = db.session.query(UserPermissionOverride).filter_by(
            user_id=user.id,
            permission_code=code,
        ).first()

        if wanted == (code in role_codes):
            if override:
                override.is_active = False
            continue

        override_type = "GRANT" if wanted else "DENY"
        if override:
            override.override_type = override_type
            override.granted_by_user_id = actor.user_id
            override.granted_at = now
            override.reason = reason
            override.is_active = True
        else:
            db.session.add(UserPermissionOverride(
                user_id=user.id,
                permission_code=code,
                override_type=override_type,
                granted_by_user_id=actor.user_id,
                granted_at=now,
                reason=reason,
                is_active=True,
            ))

    db.session.commit()

    log_security_event(
        user_id=actor.user_id,
        event_type="CAPABILITIES_CHANGED",
        success=True,
        resource=f"/api/users/{user.id}/permissions",
        action="UPDATE",
        reason=", ".join(f"{k}={v}" for k, v in sorted(flags.items())),
        org_id=actor.org_id,
    )

    return get_user_capabilities(user.id)


def list_item_managers(org_id: int) -> list[User]:
    """
    Active users in the org who hold an elevated role and MANAGE_ITEMS.

    These are the recipients of approval and extension requests.
    """
    candidates = (
        db.session.query(User)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .filter(
            User.org_id == org_id,
            User.is_active.is_(True),
            Role.name.in_(ELEVATED_ROLES),
        )
        .distinct()
        .order_by(User.id)
        .all()
    )
    return [u for u in candidates if MANAGE_ITEMS in get_user_permissions(u.id)]


def initialize_permissions() -> int:
    """
    Create Permission records for all codes in PERMISSION_DEFINITIONS.
    Idempotent.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()
        if not existing:
            db.session.add(Permission(
                code=code,
                name=name,
                description=description,
                category=category
            ))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions(org_id: int | None = None) -> int:
    """
    Link roles to their DEFAULT_ROLE_PERMISSIONS. Idempotent.

    With org_id, only that organization's roles are touched.
    """
    created_count = 0
    permissions = {p.code: p for p in db.session.query(Permission).all()}

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        roles = db.session.query(Role).filter_by(name=role_name)
        if org_id is not None:
            roles = roles.filter_by(org_id=org_id)

        for role in roles.all():
            for permission_code in permission_codes:
                permission = permissions.get(permission_code)
                if not permission:
                    continue

                existing = db.session.query(RolePermission).filter_by(
                    role_id=role.id,
                    permission_id=permission.id
                ).first()
                if not existing:
                    db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                    created_count += 1

    db.session.commit()
    return created_count
