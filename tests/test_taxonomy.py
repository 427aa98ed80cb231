"""
Test roles, levels, the action catalog and role claim mapping.
"""

import logging

import pytest

from app.features.permissions.exceptions import UnknownActionError
from app.features.permissions.taxonomy import (
    ACTION_MODULES,
    ALL_ACTIONS,
    PermissionLevel,
    Role,
    get_action_module,
    get_action_name,
    is_known_action,
    role_from_claim,
    role_has_privilege,
    role_to_claim,
    validate_action,
)


def test_roles_are_ranked():
    assert Role.VIEWER < Role.MEMBER < Role.LEAD < Role.OWNER
    assert Role.lowest() is Role.VIEWER


@pytest.mark.parametrize("value,expected", [
    ("lead", Role.LEAD),
    ("OWNER", Role.OWNER),
    (" viewer ", Role.VIEWER),
    (2, Role.MEMBER),
    (Role.LEAD, Role.LEAD),
])
def test_role_parse(value, expected):
    assert Role.parse(value) is expected


def test_role_parse_rejects_unknown_name():
    with pytest.raises(ValueError):
        Role.parse("admin")


def test_permission_level_properties():
    assert PermissionLevel.ALL.is_allowed
    assert PermissionLevel.OWN.is_allowed and PermissionLevel.OWN.requires_ownership
    assert PermissionLevel.INVOLVED.requires_ownership
    assert not PermissionLevel.NONE.is_allowed
    assert not PermissionLevel.ALL.requires_ownership


def test_action_catalog_is_namespaced_and_unique():
    assert len(ALL_ACTIONS) == len(set(ALL_ACTIONS))
    assert all(action.count(":") == 1 for action in ALL_ACTIONS)
    assert sum(len(actions) for actions in ACTION_MODULES.values()) == len(ALL_ACTIONS)


def test_action_parts():
    assert get_action_module("property:update") == "property"
    assert get_action_name("property:update") == "update"


def test_unknown_action_is_rejected():
    assert not is_known_action("property:fly")
    with pytest.raises(UnknownActionError) as exc_info:
        validate_action("property:fly")
    assert exc_info.value.action == "property:fly"
    # Also a KeyError for callers indexing the matrix
    assert isinstance(exc_info.value, KeyError)


@pytest.mark.parametrize("claim,expected", [
    ("org:admin", Role.OWNER),
    ("org:owner", Role.OWNER),
    ("owner", Role.OWNER),
    ("org:lead", Role.LEAD),
    ("lead", Role.LEAD),
    ("org:member", Role.MEMBER),
    ("member", Role.MEMBER),
    ("org:viewer", Role.VIEWER),
    ("viewer", Role.VIEWER),
])
def test_role_claims(claim, expected):
    assert role_from_claim(claim) is expected


@pytest.mark.parametrize("claim", ["org:superuser", "", None])
def test_unknown_role_claim_falls_back_to_viewer(claim, caplog):
    with caplog.at_level(logging.WARNING):
        assert role_from_claim(claim) is Role.VIEWER
    assert "Unrecognized role claim" in caplog.text


def test_role_to_claim_round_trips():
    for role in Role:
        assert role_from_claim(role_to_claim(role)) is role


def test_role_hierarchy():
    assert role_has_privilege(Role.OWNER, Role.LEAD)
    assert role_has_privilege(Role.LEAD, Role.MEMBER)
    assert not role_has_privilege(Role.LEAD, Role.LEAD)
    assert not role_has_privilege(Role.MEMBER, Role.LEAD)
