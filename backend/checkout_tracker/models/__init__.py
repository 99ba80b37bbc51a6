from .tenancy import Organization
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken, UserPermissionOverride
from .security import SecurityEvent
from .items import Item
from .transactions import ItemTransaction, TransactionExtension, TransactionPenalty, TransactionReminder
from .notifications import NotificationEvent, Notification, NotificationChannel

__all__ = [
    'Organization',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission',
    'SessionToken', 'UserPermissionOverride', 'SecurityEvent',
    'Item',
    'ItemTransaction', 'TransactionExtension', 'TransactionPenalty', 'TransactionReminder',
    'NotificationEvent', 'Notification', 'NotificationChannel',
]
