import pytest

from academy import policy
from academy.exceptions import PermissionDeniedError


@pytest.mark.parametrize("role, resource, action, allowed", [
    ("admin", "payments", "adjust", True),
    ("manager", "payments", "adjust", True),
    ("accountant", "payments", "adjust", False),
    ("accountant", "payments", "create", True),
    ("faculty", "payments", "create", False),
    ("faculty", "attendance", "create", True),
    ("accountant", "attendance", "create", False),
    ("faculty", "reports", "read", False),
    ("manager", "students", "delete", False),
    ("admin", "students", "delete", True),
    ("student", "branches", "read", False),
    ("admin", "quizzes", "read", False),
    ("admin", "payments", "delete", False),
    ("root", "reports", "read", False),
])
def test_is_allowed(role, resource, action, allowed):
    assert policy.is_allowed(role, resource, action) is allowed


def test_every_staff_role_can_read_reference_data():
    for role in policy.STAFF:
        for resource in ("branches", "courses", "batches", "students", "attendance"):
            assert policy.is_allowed(role, resource, "read")


def test_authorize_raises_with_context():
    policy.authorize("admin", "incomes", "delete")
    with pytest.raises(PermissionDeniedError) as exc:
        policy.authorize("accountant", "incomes", "delete")
    assert exc.value.status_code == 403
    assert exc.value.details == {"resource": "incomes", "action": "delete", "role": "accountant"}
