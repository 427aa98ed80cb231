"""
Test permission context resolution: fail-closed fallback, cancellation
and caching.
"""

import asyncio

import pytest

from app.features.permissions.cache import PermissionContextCache
from app.features.permissions.defaults import DEFAULT_ACTION_PERMISSIONS, DEFAULT_VIEWER_MODULES
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.exceptions import StoreUnavailableError
from app.features.permissions.resolver import PermissionContextResolver, parse_override_document
from app.features.permissions.schemas import Denied, NeedsOwnershipCheck
from app.features.permissions.store import InMemoryOverrideStore
from app.features.permissions.taxonomy import ModuleId, PermissionLevel, Role


class CountingStore(InMemoryOverrideStore):
    """In-memory store that records which reads were issued."""

    def __init__(self):
        super().__init__()
        self.calls = []

    async def get_role_override(self, organization_id, role):
        self.calls.append(("role_override", organization_id, role))
        return await super().get_role_override(organization_id, role)

    async def get_role_module_access(self, organization_id, role):
        self.calls.append(("role_modules", organization_id, role))
        return await super().get_role_module_access(organization_id, role)

    async def get_user_module_access(self, organization_id, user_id):
        self.calls.append(("user_modules", organization_id, user_id))
        return await super().get_user_module_access(organization_id, user_id)


class FailingStore(InMemoryOverrideStore):
    """Store whose override reads fail."""

    def __init__(self, error: BaseException):
        super().__init__()
        self.error = error

    async def get_role_override(self, organization_id, role):
        raise self.error


class SlowStore(InMemoryOverrideStore):
    """Store whose override reads never finish in time."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def get_role_override(self, organization_id, role):
        self.started.set()
        await asyncio.sleep(60)


async def test_resolve_merges_overrides_onto_defaults(make_identity):
    store = InMemoryOverrideStore()
    store.role_overrides[("org-1", Role.MEMBER)] = {"version": 1, "actions": {"property:import": "all"}}
    resolver = PermissionContextResolver(store, timeout=1.0)

    context = await resolver.resolve(make_identity(Role.MEMBER))

    assert context.level_for("property:import") is PermissionLevel.ALL
    assert context.level_for("property:update") is PermissionLevel.OWN
    assert dict(context.overrides) == {"property:import": PermissionLevel.ALL}
    assert not context.degraded


async def test_owner_is_resolved_without_store_reads(make_identity):
    store = CountingStore()
    store.role_overrides[("org-1", Role.OWNER)] = {"version": 1, "actions": {"property:read": "none"}}
    resolver = PermissionContextResolver(store, timeout=1.0)

    context = await resolver.resolve(make_identity(Role.OWNER))

    assert store.calls == []
    assert context.levels == DEFAULT_ACTION_PERMISSIONS[Role.OWNER]


async def test_module_records_are_fetched_for_viewer_only(make_identity):
    store = CountingStore()
    resolver = PermissionContextResolver(store, timeout=1.0)

    await resolver.resolve(make_identity(Role.MEMBER))
    assert [call[0] for call in store.calls] == ["role_override"]

    store.calls.clear()
    await resolver.resolve(make_identity(Role.VIEWER))
    assert sorted(call[0] for call in store.calls) == ["role_modules", "role_override", "user_modules"]


@pytest.mark.parametrize("error", [
    StoreUnavailableError("database is down"),
    ConnectionRefusedError("connection refused"),
])
async def test_store_outage_fails_closed(make_identity, error):
    resolver = PermissionContextResolver(FailingStore(error), timeout=1.0)

    context = await resolver.resolve(make_identity(Role.MEMBER))

    assert context.degraded
    assert "unavailable" in context.diagnostic
    assert context.levels == DEFAULT_ACTION_PERMISSIONS[Role.MEMBER]


async def test_store_timeout_fails_closed(make_identity):
    resolver = PermissionContextResolver(SlowStore(), timeout=0.05)

    context = await resolver.resolve(make_identity(Role.VIEWER))

    assert context.degraded
    assert context.role_modules == ()
    assert context.user_modules == ()


async def test_outage_never_grants_override_access(make_identity):
    store = FailingStore(StoreUnavailableError("down"))
    engine = AuthorizationEngine(store, timeout=1.0)

    decision = await engine.check(make_identity(Role.VIEWER), "property:create")
    modules = await engine.modules(make_identity(Role.VIEWER))

    assert isinstance(decision, Denied)
    assert modules == DEFAULT_VIEWER_MODULES


async def test_unexpected_errors_propagate(make_identity):
    resolver = PermissionContextResolver(FailingStore(RuntimeError("bug")), timeout=1.0)

    with pytest.raises(RuntimeError):
        await resolver.resolve(make_identity(Role.MEMBER))


async def test_cancellation_propagates(make_identity):
    store = SlowStore()
    resolver = PermissionContextResolver(store, timeout=30.0)

    task = asyncio.create_task(resolver.resolve(make_identity(Role.MEMBER)))
    await store.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


async def test_invalid_override_document_is_ignored(make_identity):
    store = InMemoryOverrideStore()
    store.role_overrides[("org-1", Role.VIEWER)] = {"version": 1, "actions": {"property:create": "everything"}}
    resolver = PermissionContextResolver(store, timeout=1.0)

    context = await resolver.resolve(make_identity(Role.VIEWER))

    assert context.level_for("property:create") is PermissionLevel.NONE
    assert context.diagnostic is not None
    assert not context.degraded


def test_parse_override_document():
    assert parse_override_document(None) == ({}, None)
    assert parse_override_document({"version": 1}) == ({}, None)

    overrides, diagnostic = parse_override_document({"version": 1, "actions": {"deal:create": "none"}})
    assert overrides == {"deal:create": PermissionLevel.NONE}
    assert diagnostic is None

    overrides, diagnostic = parse_override_document({"version": 7, "actions": {}})
    assert overrides == {}
    assert diagnostic is not None

    overrides, diagnostic = parse_override_document({"actions": {"deal:fly": "all"}})
    assert overrides == {}
    assert diagnostic is not None


async def test_context_is_cached(make_identity):
    store = CountingStore()
    resolver = PermissionContextResolver(store, cache=PermissionContextCache(ttl_seconds=10.0), timeout=1.0)
    member = make_identity(Role.MEMBER)

    first = await resolver.resolve(member)
    second = await resolver.resolve(member)

    assert first is second
    assert len(store.calls) == 1


async def test_degraded_context_is_not_cached(make_identity):
    cache = PermissionContextCache(ttl_seconds=10.0)
    resolver = PermissionContextResolver(FailingStore(StoreUnavailableError("down")), cache=cache, timeout=1.0)

    await resolver.resolve(make_identity(Role.MEMBER))

    assert len(cache) == 0


async def test_writes_invalidate_cached_contexts(make_identity):
    store = CountingStore()
    engine = AuthorizationEngine(store, cache=PermissionContextCache(ttl_seconds=10.0), timeout=1.0)
    viewer = make_identity(Role.VIEWER)

    assert isinstance(await engine.check(viewer, "property:create"), Denied)

    await engine.admin.update_action_override("org-1", Role.VIEWER, "property:create", "own")
    assert isinstance(await engine.check(viewer, "property:create"), NeedsOwnershipCheck)

    await engine.admin.update_module_access("org-1", ModuleId.FEED, True, user_id=viewer.user_id)
    assert ModuleId.FEED in await engine.modules(viewer)


async def test_other_organizations_stay_cached(make_identity):
    cache = PermissionContextCache(ttl_seconds=10.0)
    engine = AuthorizationEngine(InMemoryOverrideStore(), cache=cache, timeout=1.0)

    await engine.resolve(make_identity(Role.MEMBER, organization_id="org-a"))
    await engine.resolve(make_identity(Role.MEMBER, organization_id="org-b"))
    await engine.admin.update_action_override("org-a", Role.MEMBER, "deal:create", "none")

    assert len(cache) == 1
