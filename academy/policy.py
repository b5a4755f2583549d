"""Role based access policy, evaluated once per request at the API boundary."""
from typing import Dict, FrozenSet

from academy.exceptions import PermissionDeniedError

ADMIN = "admin"
MANAGER = "manager"
ACCOUNTANT = "accountant"
FACULTY = "faculty"
STUDENT = "student"

ROLES = (ADMIN, MANAGER, ACCOUNTANT, FACULTY, STUDENT)

STAFF = frozenset({ADMIN, MANAGER, ACCOUNTANT, FACULTY})
MANAGEMENT = frozenset({ADMIN, MANAGER})
FINANCE = frozenset({ADMIN, MANAGER, ACCOUNTANT})
ADMIN_ONLY = frozenset({ADMIN})

POLICY: Dict[str, Dict[str, FrozenSet[str]]] = {
    "branches": {"read": STAFF, "create": MANAGEMENT, "update": MANAGEMENT, "delete": ADMIN_ONLY},
    "courses": {"read": STAFF, "create": MANAGEMENT, "update": MANAGEMENT, "delete": ADMIN_ONLY},
    "batches": {"read": STAFF, "create": MANAGEMENT, "update": MANAGEMENT, "delete": ADMIN_ONLY},
    "students": {"read": STAFF, "create": FINANCE, "update": FINANCE, "delete": ADMIN_ONLY},
    "payments": {"read": FINANCE, "create": FINANCE, "adjust": MANAGEMENT},
    "attendance": {
        "read": STAFF,
        "create": frozenset({ADMIN, MANAGER, FACULTY}),
        "update": frozenset({ADMIN, MANAGER, FACULTY}),
        "delete": ADMIN_ONLY,
    },
    "incomes": {"read": FINANCE, "create": FINANCE, "update": FINANCE, "delete": ADMIN_ONLY},
    "expenses": {"read": FINANCE, "create": FINANCE, "update": FINANCE, "delete": ADMIN_ONLY},
    "reports": {"read": FINANCE},
}


def is_allowed(role: str, resource: str, action: str) -> bool:
    return role in POLICY.get(resource, {}).get(action, frozenset())


def authorize(role: str, resource: str, action: str) -> None:
    if not is_allowed(role, resource, action):
        raise PermissionDeniedError(
            "Insufficient permissions",
            {"resource": resource, "action": action, "role": role},
        )
