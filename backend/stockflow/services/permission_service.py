# Overview: Capability resolution for role-based access control.

"""
Fail closed: a capability is granted only by the role default or the
user's explicit list. Inactive users have none.
"""

from ..models import User
from ..permissions import CAPABILITIES, DEFAULT_ROLE_CAPABILITIES


def get_user_permissions(user: User) -> set[str]:
    if user.role == "admin":
        return set(CAPABILITIES)
    granted = set(DEFAULT_ROLE_CAPABILITIES.get(user.role, set()))
    granted.update(code for code in (user.permissions or []) if code in CAPABILITIES)
    return granted


def has_capability(user: User, capability: str) -> bool:
    if not user or not user.is_active:
        return False
    return capability in get_user_permissions(user)