# Overview: Capability set resolved once per request and handed to the engines.

from __future__ import annotations

from dataclasses import dataclass, field

from .definitions import CHECKOUT_ITEMS, MANAGE_ITEMS, MANAGE_USERS, VIEW_ANALYTICS
from .roles import ELEVATED_ROLES


# Capability flag name -> permission code. The flag names are what the API
# exposes (PUT /api/users/<id>/permissions).
CAPABILITY_PERMISSIONS = {
    "can_checkout": CHECKOUT_ITEMS,
    "can_manage_items": MANAGE_ITEMS,
    "can_manage_users": MANAGE_USERS,
    "can_view_analytics": VIEW_ANALYTICS,
}


@dataclass(frozen=True)
class Capabilities:
    can_checkout: bool = False
    can_manage_items: bool = False
    can_manage_users: bool = False
    can_view_analytics: bool = False

    @classmethod
    def from_permission_codes(cls, codes) -> "Capabilities":
        codes = set(codes)
        return cls(**{flag: code in codes for flag, code in CAPABILITY_PERMISSIONS.items()})

    def to_dict(self) -> dict:
        return {flag: getattr(self, flag) for flag in CAPABILITY_PERMISSIONS}


@dataclass(frozen=True)
class Actor:
    """
    Who is calling an engine operation.

    Built by @require_auth from the session and the user's effective
    permissions; engines only ever look at this, never at roles directly.
    """
    user_id: int
    org_id: int
    name: str = ""
    role_names: frozenset = field(default_factory=frozenset)
    capabilities: Capabilities = field(default_factory=Capabilities)

    @property
    def is_elevated(self) -> bool:
        return bool(self.role_names & ELEVATED_ROLES)

    def can_act_for(self, user_id: int) -> bool:
        """Owner of the record, or an elevated role."""
        return self.user_id == user_id or self.is_elevated

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "org_id": self.org_id,
            "roles": sorted(self.role_names),
            "is_elevated": self.is_elevated,
            "capabilities": self.capabilities.to_dict(),
        }
