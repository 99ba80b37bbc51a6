# Overview: Default role-to-permission mappings.

from .definitions import CHECKOUT_ITEMS, MANAGE_ITEMS, MANAGE_USERS, VIEW_ANALYTICS


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_USER = "user"

# Roles allowed to act on other users' transactions and decide approvals.
ELEVATED_ROLES = frozenset({ROLE_ADMIN, ROLE_MANAGER})

DEFAULT_ROLES = [
    (ROLE_ADMIN, "Full system access"),
    (ROLE_MANAGER, "Item management and approvals"),
    (ROLE_USER, "Checkout and return items"),
]

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: [CHECKOUT_ITEMS, MANAGE_ITEMS, MANAGE_USERS, VIEW_ANALYTICS],
    ROLE_MANAGER: [CHECKOUT_ITEMS, MANAGE_ITEMS, VIEW_ANALYTICS],
    ROLE_USER: [CHECKOUT_ITEMS],
}
