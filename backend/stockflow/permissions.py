# Overview: Capability catalog and role defaults.

"""
Capabilities are "<area>.<level>" strings, e.g. "inventory.write".

A user's effective set is the role default plus the explicit list stored on
the user. Role admin implies every capability.
"""

CAPABILITY_AREAS = ("products", "inventory", "purchases", "sales", "users", "reports", "settings")
CAPABILITY_LEVELS = ("read", "write", "delete")

CAPABILITIES = frozenset(
    f"{area}.{level}" for area in CAPABILITY_AREAS for level in CAPABILITY_LEVELS
)


def _all(*areas, levels=("read", "write")) -> set[str]:
    return {f"{area}.{level}" for area in areas for level in levels}


# -- ROLE DEFAULTS --

DEFAULT_ROLE_CAPABILITIES = {
    "admin": set(CAPABILITIES),
    "manager": _all("products", "inventory", "purchases", "sales") | {"users.read", "reports.read"},
    "staff": {"products.read", "inventory.read", "sales.read", "sales.write"},
}
