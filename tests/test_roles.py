"""
tests/test_roles.py -- Unit tests for Role permission checks and Principal aggregation.

Pure in-memory tests; no database involved.
"""

from __future__ import annotations

from auth.models import Principal, Role

# ---------------------------------------------------------------------------
# Role membership checks
# ---------------------------------------------------------------------------


def _editor() -> Role:
    return Role(name="EDITOR", permissions={"PRODUCT_READ", "PRODUCT_UPDATE"})


def test_has_permission_is_exact_match():
    role = _editor()
    assert role.has_permission("PRODUCT_READ")
    assert not role.has_permission("product_read")
    assert not role.has_permission("PRODUCT")


def test_has_any_permission():
    role = _editor()
    assert role.has_any_permission(["USER_DELETE", "PRODUCT_UPDATE"])
    assert not role.has_any_permission(["USER_DELETE", "SYSTEM_MANAGE"])
    assert not role.has_any_permission([])


def test_has_all_permissions():
    role = _editor()
    assert role.has_all_permissions(["PRODUCT_READ", "PRODUCT_UPDATE"])
    assert not role.has_all_permissions(["PRODUCT_READ", "PRODUCT_DELETE"])


def test_has_all_permissions_is_vacuously_true_for_empty_list():
    assert Role(name="EMPTY").has_all_permissions([])


def test_add_and_remove_permission():
    role = _editor()
    role.add_permission("PRODUCT_DELETE")
    assert role.has_permission("PRODUCT_DELETE")
    role.remove_permission("PRODUCT_DELETE")
    assert not role.has_permission("PRODUCT_DELETE")


def test_remove_missing_permission_is_noop():
    role = _editor()
    role.remove_permission("NOT_THERE")
    assert role.permissions == {"PRODUCT_READ", "PRODUCT_UPDATE"}


# ---------------------------------------------------------------------------
# Principal aggregation
# ---------------------------------------------------------------------------


def test_principal_permissions_union_of_roles():
    principal = Principal(
        user_id=1,
        username="erin",
        roles=(
            Role(name="A", permissions={"X", "Y"}),
            Role(name="B", permissions={"Y", "Z"}),
        ),
    )
    assert principal.permissions == frozenset({"X", "Y", "Z"})
    assert principal.role_names == ["A", "B"]


def test_inactive_role_contributes_nothing():
    principal = Principal(
        user_id=1,
        username="erin",
        roles=(
            Role(name="A", permissions={"X"}),
            Role(name="RETIRED", active=False, permissions={"SYSTEM_MANAGE"}),
        ),
    )
    assert "SYSTEM_MANAGE" not in principal.permissions
    assert principal.permissions == frozenset({"X"})
    # still listed -- the role is attached, it just grants nothing
    assert "RETIRED" in principal.role_names


def test_principal_without_roles_has_no_permissions():
    assert Principal(user_id=1, username="erin").permissions == frozenset()
