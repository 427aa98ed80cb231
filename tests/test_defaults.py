"""
Test the default action matrix and module defaults.
"""

import pytest

from app.features.permissions.defaults import (
    DEFAULT_ACTION_PERMISSIONS,
    DEFAULT_MATRIX_TABLE,
    DEFAULT_VIEWER_MODULES,
    MATRIX_COLUMNS,
    build_matrix,
    default_role_modules,
    get_accessible_actions,
    get_default_action_permission,
    get_full_access_actions,
)
from app.features.permissions.exceptions import MatrixIncompleteError, UnknownActionError
from app.features.permissions.taxonomy import (
    ALL_ACTIONS,
    ALL_MODULES,
    ModuleId,
    PermissionLevel,
    Role,
)


def test_matrix_covers_every_role_and_action():
    assert set(DEFAULT_ACTION_PERMISSIONS) == set(Role)
    for role in Role:
        assert set(DEFAULT_ACTION_PERMISSIONS[role]) == set(ALL_ACTIONS)


def test_owner_has_full_access_everywhere():
    assert all(level is PermissionLevel.ALL for level in DEFAULT_ACTION_PERMISSIONS[Role.OWNER].values())
    assert get_full_access_actions(Role.OWNER) == list(ALL_ACTIONS)


def test_matrix_is_read_only():
    with pytest.raises(TypeError):
        DEFAULT_ACTION_PERMISSIONS[Role.VIEWER]["property:create"] = PermissionLevel.ALL


def test_build_matrix_rejects_missing_row():
    table = dict(DEFAULT_MATRIX_TABLE)
    del table["property:read"]

    with pytest.raises(MatrixIncompleteError) as exc_info:
        build_matrix(table)

    assert ("VIEWER", "property:read") in exc_info.value.missing
    assert ("OWNER", "property:read") in exc_info.value.missing


def test_build_matrix_rejects_short_row():
    table = dict(DEFAULT_MATRIX_TABLE)
    table["deal:accept"] = (PermissionLevel.NONE, PermissionLevel.INVOLVED)

    with pytest.raises(MatrixIncompleteError) as exc_info:
        build_matrix(table)

    assert exc_info.value.missing == [("LEAD", "deal:accept"), ("OWNER", "deal:accept")]


def test_build_matrix_rejects_actions_outside_catalog():
    table = dict(DEFAULT_MATRIX_TABLE)
    table["property:teleport"] = (PermissionLevel.NONE,) * len(MATRIX_COLUMNS)

    with pytest.raises(MatrixIncompleteError) as exc_info:
        build_matrix(table)

    assert ("*", "property:teleport") in exc_info.value.unexpected


def test_build_matrix_requires_every_role_column():
    with pytest.raises(MatrixIncompleteError):
        build_matrix(DEFAULT_MATRIX_TABLE, columns=(Role.VIEWER, Role.MEMBER, Role.LEAD))


@pytest.mark.parametrize("role,action,expected", [
    (Role.VIEWER, "property:read", PermissionLevel.ALL),
    (Role.VIEWER, "property:create", PermissionLevel.NONE),
    (Role.MEMBER, "property:update", PermissionLevel.OWN),
    (Role.MEMBER, "deal:accept", PermissionLevel.INVOLVED),
    (Role.LEAD, "admin:view_audit_log", PermissionLevel.ALL),
    (Role.LEAD, "admin:manage_roles", PermissionLevel.NONE),
    (Role.VIEWER, "notification:read", PermissionLevel.OWN),
])
def test_default_levels(role, action, expected):
    assert get_default_action_permission(role, action) is expected


def test_default_level_of_unknown_action_raises():
    with pytest.raises(UnknownActionError):
        get_default_action_permission(Role.MEMBER, "property:fly")


def test_accessible_actions_exclude_none():
    accessible = get_accessible_actions(Role.VIEWER)
    assert "property:read" in accessible
    assert "property:create" not in accessible
    assert "notification:read" in accessible


def test_role_module_defaults():
    assert default_role_modules(Role.OWNER) == ALL_MODULES
    assert default_role_modules(Role.LEAD) == ALL_MODULES
    assert default_role_modules(Role.MEMBER) == ALL_MODULES - {ModuleId.ADMIN}
    assert default_role_modules(Role.VIEWER) == DEFAULT_VIEWER_MODULES
    assert DEFAULT_VIEWER_MODULES == {
        ModuleId.DASHBOARD, ModuleId.MLS, ModuleId.CRM,
        ModuleId.CALENDAR, ModuleId.DOCUMENTS, ModuleId.REPORTS,
    }
