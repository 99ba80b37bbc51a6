# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    TRANSACTIONS = "TRANSACTIONS"
    ITEMS = "ITEMS"
    USERS = "USERS"
    ANALYTICS = "ANALYTICS"
