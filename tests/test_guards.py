"""
Test guards, guard combinators and HTTP error mapping.
"""

import pytest
from fastapi import HTTPException

from app.features.permissions.guards import (
    GuardCode,
    GuardError,
    PermissionGuard,
    all_of,
    any_of,
    first_failure,
    not_found_error,
    raise_for_guard,
    status_code_for,
    validation_error,
)
from app.features.permissions.schemas import EntityContext
from app.features.permissions.taxonomy import ModuleId, Role


async def test_require_auth(engine, make_identity):
    assert await PermissionGuard(engine, make_identity()).require_auth() is None

    error = await PermissionGuard(engine, None).require_auth()
    assert error.code is GuardCode.UNAUTHORIZED


async def test_require_action(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.VIEWER))

    assert await guard.require_action("property:read") is None

    error = await guard.require_action("property:create")
    assert error.code is GuardCode.FORBIDDEN
    assert "property:create" in error.message


async def test_require_action_unauthenticated(engine):
    error = await PermissionGuard(engine, None).require_action("property:read")
    assert error.code is GuardCode.UNAUTHORIZED


async def test_require_action_custom_message(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.VIEWER))
    error = await guard.require_action("property:create", message="Viewers cannot add listings")
    assert error.message == "Viewers cannot add listings"


async def test_pending_ownership_passes_unless_strict(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.MEMBER, user_id="u1"))

    assert await guard.require_action("property:update") is None

    error = await guard.require_action("property:update", strict=True)
    assert error.code is GuardCode.OWNERSHIP_REQUIRED

    assert await guard.require_action("property:update", EntityContext(owner_id="u1"), strict=True) is None


async def test_require_module(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.VIEWER))

    assert await guard.require_module(ModuleId.CRM) is None
    error = await guard.require_module(ModuleId.ADMIN)
    assert error.code is GuardCode.FORBIDDEN

    assert (await PermissionGuard(engine, None).require_module(ModuleId.CRM)).code is GuardCode.UNAUTHORIZED


async def test_require_all_and_any_actions(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.LEAD))

    assert await guard.require_all_actions(["property:import", "client:import"]) is None
    error = await guard.require_all_actions(["property:import", "admin:manage_roles"])
    assert error.message == "Permission denied for: admin:manage_roles"

    assert await guard.require_any_action(["admin:manage_roles", "admin:invite_users"]) is None
    error = await guard.require_any_action(["admin:manage_roles", "admin:remove_users"])
    assert error.code is GuardCode.FORBIDDEN


async def test_first_failure_halts(engine, make_identity):
    calls = []

    async def failing():
        calls.append("failing")
        return validation_error("bad input")

    async def never_reached():
        calls.append("never_reached")
        return None

    guard = PermissionGuard(engine, make_identity(Role.VIEWER))
    error = await first_failure(guard.require_auth, failing, never_reached)

    assert error.code is GuardCode.VALIDATION_ERROR
    assert calls == ["failing"]


async def test_all_of(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.VIEWER))

    assert await all_of(guard.action("property:read"), guard.module(ModuleId.MLS))() is None

    error = await all_of(guard.action("property:read"), guard.action("property:create"))()
    assert error.code is GuardCode.FORBIDDEN


async def test_any_of(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.VIEWER))

    assert await any_of(guard.action("property:create"), guard.action("property:read"))() is None

    error = await any_of(
        guard.action("property:create"),
        guard.module(ModuleId.ADMIN),
        message="Nothing to do here",
    )()
    assert error == GuardError(code=GuardCode.FORBIDDEN, message="Nothing to do here")


async def test_any_of_reports_missing_authentication(engine):
    guard = PermissionGuard(engine, None)
    error = await any_of(guard.action("property:read"), guard.module(ModuleId.CRM))()
    assert error.code is GuardCode.UNAUTHORIZED


def test_combinators_need_at_least_one_guard():
    with pytest.raises(ValueError):
        any_of()
    with pytest.raises(ValueError):
        all_of()


async def test_require_all_actions_rejects_empty_list(engine, make_identity):
    guard = PermissionGuard(engine, make_identity(Role.OWNER))
    with pytest.raises(ValueError):
        await guard.require_all_actions([])


def test_error_helpers():
    assert not_found_error("Property", "p1").message == 'Property with ID "p1" not found'
    assert not_found_error("Property").code is GuardCode.NOT_FOUND
    assert validation_error("Missing title").code is GuardCode.VALIDATION_ERROR


@pytest.mark.parametrize("code,status_code", [
    (GuardCode.UNAUTHORIZED, 401),
    (GuardCode.FORBIDDEN, 403),
    (GuardCode.OWNERSHIP_REQUIRED, 403),
    (GuardCode.VALIDATION_ERROR, 400),
    (GuardCode.NOT_FOUND, 404),
])
def test_status_codes(code, status_code):
    assert status_code_for(GuardError(code=code, message="x")) == status_code


def test_raise_for_guard():
    raise_for_guard(None)

    with pytest.raises(HTTPException) as exc_info:
        raise_for_guard(not_found_error("Deal", "d1"))
    assert exc_info.value.status_code == 404


def test_ownership_required_is_not_exposed():
    error = GuardError(code=GuardCode.OWNERSHIP_REQUIRED, message="Ownership verification required for property:update")

    with pytest.raises(HTTPException) as exc_info:
        raise_for_guard(error)

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "Permission denied"


def test_guard_error_response():
    response = validation_error("Missing title").to_response()
    assert response.success is False
    assert response.code == "VALIDATION_ERROR"
