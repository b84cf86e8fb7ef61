"""
Role permission table.

Permissions are (module, action) pairs. Each role maps to a fixed set of
actions per module; any role not listed gets DEFAULT_PERMISSIONS.
Admin has every action on every module.
"""

# =============================================================================
# MODULES AND ACTIONS
# =============================================================================

MODULES = (
    "dashboard",
    "products",
    "categories",
    "inventory",
    "sales",
    "employees",
    "reports",
    "settings",
)

CRUD = ["create", "read", "update", "delete"]


# =============================================================================
# ROLE MAPPINGS
# =============================================================================

_ADMIN = {
    "dashboard": ["read"],
    "products": CRUD,
    "categories": CRUD,
    "inventory": CRUD,
    "sales": CRUD,
    "employees": CRUD,
    "reports": ["read", "export"],
    "settings": ["read", "update"],
}

_MANAGER = {
    "dashboard": ["read"],
    "products": ["create", "read", "update"],
    "categories": ["read"],
    "inventory": ["read", "update"],
    "sales": ["create", "read", "update"],
    "employees": ["read"],
    "reports": ["read", "export"],
    "settings": ["read"],
}

# Front-of-house staff: cashiers and vendors
_COUNTER = {
    "dashboard": ["read"],
    "products": ["read"],
    "categories": ["read"],
    "inventory": ["read"],
    "sales": ["create", "read"],
    "employees": [],
    "reports": ["read"],
    "settings": [],
}

DEFAULT_PERMISSIONS = {
    "dashboard": ["read"],
    "products": ["read"],
    "sales": ["read"],
}

ROLE_PERMISSIONS = {
    "admin": _ADMIN,
    "manager": _MANAGER,
    "cashier": _COUNTER,
    "vendor": _COUNTER,
}


def permissions_for_role(role: str | None) -> dict[str, list[str]]:
    """Return a fresh copy of the module -> actions map for a role."""
    table = ROLE_PERMISSIONS.get((role or "").lower(), DEFAULT_PERMISSIONS)
    return {module: list(actions) for module, actions in table.items()}


def has_permission(role: str | None, module: str, action: str) -> bool:
    return action in permissions_for_role(role).get(module, [])
