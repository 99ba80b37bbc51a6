# Overview: Service-layer operations for authentication and user accounts.

"""
Authentication Service with Multi-Tenant Support

Users belong to exactly one organization. Username/email uniqueness is
tenant-scoped.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters; upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from sqlalchemy import func

from ..errors import ConflictError, ForbiddenError, NotFoundError, TrackerError, ValidationError
from ..extensions import db
from ..models import User, Role, UserRole, Organization
from ..permissions import DEFAULT_ROLES, ROLE_USER, Actor
from ..validation import require_text
from . import permission_service
from checkout_tracker.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_default_roles(org_id: int) -> list[Role]:
    """Create standard roles for an organization if they don't exist."""
    roles = []
    for name, desc in DEFAULT_ROLES:
        role = db.session.query(Role).filter_by(org_id=org_id, name=name).first()
        if not role:
            role = Role(org_id=org_id, name=name, description=desc)
            db.session.add(role)
        roles.append(role)

    db.session.commit()
    return roles


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    name: str | None = None,
    role_name: str = ROLE_USER,
    department: str | None = None,
    phone: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash and one role.

    Raises:
        ValidationError: org missing/inactive, unknown role, weak password
        ConflictError: username or email already used in this organization
    """
    org = db.session.get(Organization, org_id)
    if not org:
        raise ValidationError("Organization not found")
    if not org.is_active:
        raise ValidationError("Organization is not active")

    role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
    if not role:
        raise ValidationError(f"Role {role_name} not found")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists in this organization")

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        name=name or username,
        department=department,
        phone=phone,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.flush()

    db.session.add(UserRole(user_id=user.id, role_id=role.id))
    db.session.commit()
    return user


def authenticate(username: str, password: str, org_code: str | None = None) -> User | None:
    """
    Authenticate by username or email.

    When org_code is given, the lookup is scoped to that organization.
    Returns None for bad credentials, inactive users or inactive orgs.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if org_code:
        query = query.join(Organization, Organization.id == User.org_id).filter(
            Organization.code == org_code
        )

    user = query.first()
    if not user:
        return None

    org = db.session.get(Organization, user.org_id)
    if not org or not org.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def deactivate_user(user_id: int, org_id: int) -> User:
    from . import session_service

    user = db.session.query(User).filter_by(id=user_id, org_id=org_id).first()
    if not user:
        raise NotFoundError("User not found")

    user.is_active = False
    db.session.commit()
    session_service.revoke_all_user_sessions(user.id, reason="User account deactivated")
    return user


PROFILE_FIELDS = {"name": 120, "department": 100, "phone": 32}


def update_user(actor: Actor, user_id: int, data: dict) -> tuple[User, list[str]]:
    """
    Update a user's profile, and optionally their role and capability flags.

    Anyone may edit their own name, department and phone; managers and
    admins may edit anyone in their organization. Changing "role" or
    "permissions" requires MANAGE_USERS and never applies to yourself.

    Returns the user and the sorted names of the fields that were sent.

    Raises:
        NotFoundError: user not in the actor's organization
        ForbiddenError: editing someone else without an elevated role,
            or role/permission changes without MANAGE_USERS
        ValidationError: bad field values or unknown role
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    user = db.session.query(User).filter_by(id=user_id, org_id=actor.org_id).first()
    if not user:
        raise NotFoundError("User not found")
    if not actor.can_act_for(user.id):
        raise ForbiddenError("You can only update your own profile")

    unknown = sorted(set(data) - set(PROFILE_FIELDS) - {"role", "permissions", "reason"})
    if unknown:
        raise ValidationError(
            "Unknown fields",
            errors=[{"field": f, "message": "cannot be updated"} for f in unknown],
        )

    wants_access_change = "role" in data or "permissions" in data
    if wants_access_change:
        if not actor.capabilities.can_manage_users:
            raise ForbiddenError("Permission denied", required_permission="MANAGE_USERS")
        if user.id == actor.user_id:
            raise ForbiddenError("You cannot change your own role or permissions")

    profile = {}
    for field, max_length in PROFILE_FIELDS.items():
        if field in data:
            profile[field] = require_text(
                data[field], field, max_length=max_length, required=(field == "name"),
            )

    role = None
    if "role" in data:
        role_name = require_text(data["role"], "role", max_length=64)
        role = db.session.query(Role).filter_by(org_id=actor.org_id, name=role_name).first()
        if not role:
            raise ValidationError(
                f"Role {role_name} not found",
                errors=[{"field": "role", "message": "unknown role"}],
            )

    flags = data.get("permissions")
    if "permissions" in data and (not isinstance(flags, dict) or not flags):
        raise ValidationError(
            "permissions must be a non-empty object",
            errors=[{"field": "permissions", "message": "must be a non-empty object"}],
        )

    try:
        for field, value in profile.items():
            setattr(user, field, value)

        if role is not None:
            db.session.query(UserRole).filter_by(user_id=user.id).delete(synchronize_session=False)
            db.session.add(UserRole(user_id=user.id, role_id=role.id))
            db.session.flush()

        if flags:
            # Commits the profile and role changes together with the overrides
            permission_service.set_user_capabilities(
                actor=actor, user_id=user.id, flags=flags, reason=data.get("reason"),
            )
        else:
            db.session.commit()
    except TrackerError:
        db.session.rollback()
        raise

    changed = sorted(f for f in data if f != "reason")
    return user, changed


def list_departments(org_id: int) -> list[str]:
    """Distinct departments of active users in the organization."""
    rows = (
        db.session.query(User.department)
        .filter(
            User.org_id == org_id,
            User.is_active.is_(True),
            User.department.isnot(None),
        )
        .distinct()
        .order_by(User.department)
        .all()
    )
    return [department for (department,) in rows]


def user_stats(org_id: int) -> dict:
    """
    Head counts for the organization.

    by_role and by_department count active users only; users without a
    department are grouped under null.
    """
    base = db.session.query(User).filter(User.org_id == org_id)
    total = base.count()
    active = base.filter(User.is_active.is_(True)).count()

    by_role = dict(
        db.session.query(Role.name, func.count(User.id))
        .join(UserRole, UserRole.role_id == Role.id)
        .join(User, User.id == UserRole.user_id)
        .filter(User.org_id == org_id, User.is_active.is_(True))
        .group_by(Role.name)
        .all()
    )

    department_rows = (
        db.session.query(User.department, func.count(User.id))
        .filter(User.org_id == org_id, User.is_active.is_(True))
        .group_by(User.department)
        .all()
    )
    by_department = sorted(
        ({"department": department, "count": count} for department, count in department_rows),
        key=lambda row: (row["department"] is None, row["department"] or ""),
    )

    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "by_role": by_role,
        "by_department": by_department,
    }
