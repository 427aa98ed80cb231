"""
Permission context resolution.

Turns an identity into the effective permission view for one request:
the default matrix row for the role, merged with the organization's
action overrides, plus the module-access records needed by the module
resolver. Store reads run concurrently and fail closed.
"""
import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from app.core import config
from app.features.permissions.cache import PermissionContextCache
from app.features.permissions.defaults import DEFAULT_ACTION_PERMISSIONS
from app.features.permissions.exceptions import StoreUnavailableError
from app.features.permissions.schemas import IdentityContext, ModuleAccessRecord, OverrideConfig
from app.features.permissions.store import OverrideStore
from app.features.permissions.taxonomy import PermissionLevel, Role, validate_action
from app.utils import get_logger


log = get_logger(__name__)

# Failures that mean "the store cannot answer right now"
STORE_FAILURES = (StoreUnavailableError, asyncio.TimeoutError, OSError)


@dataclass(frozen=True)
class EffectiveContext:
    """
    Resolved permission view for one identity.

    degraded is True when the store could not be read and the context was
    built from static defaults only.
    """
    identity: IdentityContext
    levels: Mapping[str, PermissionLevel]
    overrides: Mapping[str, PermissionLevel] = field(default_factory=lambda: MappingProxyType({}))
    role_modules: tuple[ModuleAccessRecord, ...] = ()
    user_modules: tuple[ModuleAccessRecord, ...] = ()
    degraded: bool = False
    diagnostic: Optional[str] = None

    @property
    def role(self) -> Role:
        return self.identity.role

    def level_for(self, action: str) -> PermissionLevel:
        return self.levels[validate_action(action)]


def merge_levels(role: Role, overrides: Mapping[str, PermissionLevel]) -> Mapping[str, PermissionLevel]:
    """Default matrix row for the role with overrides applied on top."""
    merged = dict(DEFAULT_ACTION_PERMISSIONS[role])
    merged.update(overrides)
    return MappingProxyType(merged)


def parse_override_document(document: Optional[dict[str, Any]]) -> tuple[dict[str, PermissionLevel], Optional[str]]:
    """
    Extract action overrides from a stored document.

    Returns (overrides, diagnostic). A malformed document yields no
    overrides and a diagnostic; it never widens access.
    """
    if not document:
        return {}, None
    try:
        override = OverrideConfig.model_validate(document)
    except ValidationError as e:
        return {}, f"Ignoring invalid override document: {e.error_count()} validation error(s)"
    return dict(override.actions or {}), None


class PermissionContextResolver:
    """Builds EffectiveContext values from the override store."""

    def __init__(
        self,
        store: OverrideStore,
        cache: Optional[PermissionContextCache[EffectiveContext]] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.cache = cache
        self.timeout = config.OVERRIDE_STORE_TIMEOUT_SECONDS if timeout is None else timeout

    async def resolve(self, identity: IdentityContext) -> EffectiveContext:
        """
        Resolve the effective permission context for an identity.

        Never raises for store outages: falls back to static defaults with
        degraded=True. Cancellation of the calling task propagates.
        """
        if self.cache is not None:
            cached = self.cache.get(identity)
            if cached is not None:
                return cached

        context = await self._load(identity)

        if self.cache is not None and not context.degraded:
            self.cache.put(identity, context)
        return context

    def defaults_for(self, identity: IdentityContext, diagnostic: Optional[str] = None) -> EffectiveContext:
        """Static-defaults context used when overrides are unavailable."""
        return EffectiveContext(
            identity=identity,
            levels=DEFAULT_ACTION_PERMISSIONS[identity.role],
            degraded=diagnostic is not None,
            diagnostic=diagnostic,
        )

    def invalidate(self, organization_id: str) -> None:
        if self.cache is not None:
            removed = self.cache.invalidate_organization(organization_id)
            if removed:
                log.debug(f"Invalidated {removed} cached permission context(s) for org {organization_id}")

    async def _load(self, identity: IdentityContext) -> EffectiveContext:
        # Owner is never overridable; nothing to fetch.
        if identity.role is Role.OWNER:
            return self.defaults_for(identity)

        org_id = identity.organization_id
        fetches = [self._bounded(self.store.get_role_override(org_id, identity.role))]
        if identity.role is Role.lowest():
            fetches.append(self._bounded(self.store.get_role_module_access(org_id, identity.role)))
            fetches.append(self._bounded(self.store.get_user_module_access(org_id, identity.user_id)))

        # return_exceptions keeps sibling reads running to completion;
        # cancelling the caller still cancels all of them.
        results = await asyncio.gather(*fetches, return_exceptions=True)

        for result in results:
            if isinstance(result, STORE_FAILURES):
                diagnostic = f"Override store unavailable: {type(result).__name__}: {result}"
                log.warning(
                    f"Falling back to default permissions for user {identity.user_id} "
                    f"in org {org_id}: {diagnostic}"
                )
                return self.defaults_for(identity, diagnostic)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        overrides, diagnostic = parse_override_document(results[0])
        if diagnostic:
            log.warning(f"Org {org_id} role {identity.role.name}: {diagnostic}")

        role_modules: tuple[ModuleAccessRecord, ...] = ()
        user_modules: tuple[ModuleAccessRecord, ...] = ()
        if len(results) == 3:
            role_modules = tuple(results[1])
            user_modules = tuple(results[2])

        return EffectiveContext(
            identity=identity,
            levels=merge_levels(identity.role, overrides),
            overrides=MappingProxyType(overrides),
            role_modules=role_modules,
            user_modules=user_modules,
            diagnostic=diagnostic,
        )

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)
