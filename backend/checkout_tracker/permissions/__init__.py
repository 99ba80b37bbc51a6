# Overview: Permission system package.
# Re-exports all public APIs so callers import from one place.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    TRANSACTION_PERMISSIONS,
    ITEM_PERMISSIONS,
    USER_PERMISSIONS,
    ANALYTICS_PERMISSIONS,
    CHECKOUT_ITEMS,
    MANAGE_ITEMS,
    MANAGE_USERS,
    VIEW_ANALYTICS,
)
from .roles import (
    DEFAULT_ROLES,
    DEFAULT_ROLE_PERMISSIONS,
    ELEVATED_ROLES,
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_USER,
)
from .capabilities import Actor, Capabilities, CAPABILITY_PERMISSIONS

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "TRANSACTION_PERMISSIONS",
    "ITEM_PERMISSIONS",
    "USER_PERMISSIONS",
    "ANALYTICS_PERMISSIONS",
    "CHECKOUT_ITEMS",
    "MANAGE_ITEMS",
    "MANAGE_USERS",
    "VIEW_ANALYTICS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "ELEVATED_ROLES",
    "ROLE_ADMIN",
    "ROLE_MANAGER",
    "ROLE_USER",
    "Actor",
    "Capabilities",
    "CAPABILITY_PERMISSIONS",
]
