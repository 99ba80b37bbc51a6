# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


CHECKOUT_ITEMS = "CHECKOUT_ITEMS"
MANAGE_ITEMS = "MANAGE_ITEMS"
MANAGE_USERS = "MANAGE_USERS"
VIEW_ANALYTICS = "VIEW_ANALYTICS"


TRANSACTION_PERMISSIONS = [
    (
        CHECKOUT_ITEMS,
        "Checkout Items",
        "Check out items, return them and request extensions",
        PermissionCategory.TRANSACTIONS,
    ),
]

ITEM_PERMISSIONS = [
    (
        MANAGE_ITEMS,
        "Manage Items",
        "Create, edit and delete catalog items; receive approval and extension requests",
        PermissionCategory.ITEMS,
    ),
]

USER_PERMISSIONS = [
    (
        MANAGE_USERS,
        "Manage Users",
        "Create users and change their capability flags",
        PermissionCategory.USERS,
    ),
]

ANALYTICS_PERMISSIONS = [
    (
        VIEW_ANALYTICS,
        "View Analytics",
        "View notification statistics and reservation audits",
        PermissionCategory.ANALYTICS,
    ),
]


PERMISSION_DEFINITIONS = (
    TRANSACTION_PERMISSIONS
    + ITEM_PERMISSIONS
    + USER_PERMISSIONS
    + ANALYTICS_PERMISSIONS
)
