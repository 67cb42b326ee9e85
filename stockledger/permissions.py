"""Role to module access map for the JSON API."""

from __future__ import annotations

from typing import Iterable, List, Sequence

ADMIN = "admin"
PURCHASING = "purchasing"
SALES = "sales"
STAFF = "staff"
MANAGER = "manager"

CORE_ROLES: dict[str, str] = {
    ADMIN: "Administrator",
    PURCHASING: "Purchasing team member",
    SALES: "Sales team member",
    STAFF: "Warehouse staff",
    MANAGER: "Operations manager",
}

# ``roles`` grants viewing; ``edit_roles``/``delete_roles`` default to it.
DEFAULT_API_ACCESS: dict[str, dict[str, Sequence[str]]] = {
    "dashboard": {
        "label": "Dashboard",
        "roles": (ADMIN, PURCHASING, SALES, MANAGER),
    },
    "inventory": {
        "label": "Inventory",
        "roles": (ADMIN, PURCHASING, SALES, STAFF, MANAGER),
        "edit_roles": (ADMIN, PURCHASING, SALES, STAFF),
        "delete_roles": (ADMIN, MANAGER),
    },
    "orders": {
        "label": "Orders",
        "roles": (ADMIN, SALES),
        "delete_roles": (ADMIN, MANAGER),
    },
    "stockrequests": {
        "label": "Stock Requests",
        "roles": (ADMIN, PURCHASING),
    },
    "reports": {
        "label": "Reports",
        "roles": (ADMIN, MANAGER),
    },
    "logs": {
        "label": "Audit Log",
        "roles": (ADMIN, MANAGER),
        "delete_roles": (ADMIN,),
    },
    "users": {
        "label": "Users",
        "roles": (ADMIN,),
    },
}


def resolve_roles(module: str, action: str = "view") -> tuple[str, ...]:
    """Return the roles allowed to perform ``action`` on ``module``."""

    config = DEFAULT_API_ACCESS.get(module)
    if config is None:
        return (ADMIN,)

    view_roles = tuple(config.get("roles", (ADMIN,)))
    if action == "view":
        return view_roles
    if action == "edit":
        return tuple(config.get("edit_roles", view_roles))
    if action == "delete":
        return tuple(config.get("delete_roles", config.get("edit_roles", view_roles)))
    raise ValueError(f"Unknown access action: {action}")


def modules_for(role_names: Iterable[str]) -> List[str]:
    """List the modules a holder of ``role_names`` may open, in menu order."""

    granted = set(role_names)
    return [
        module
        for module, config in DEFAULT_API_ACCESS.items()
        if granted.intersection(config.get("roles", ()))
    ]
