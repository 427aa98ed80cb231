"""
Authorization engine facade.

Wires the context resolver, action checker, module resolver and admin
service around one override store and one (optional) context cache.
"""
from typing import Optional, Sequence

from app.core import config
from app.features.permissions.admin import PermissionAdminService
from app.features.permissions.cache import PermissionContextCache
from app.features.permissions.checker import ActionChecker, Decision
from app.features.permissions.modules import ModuleAccessResolver
from app.features.permissions.resolver import EffectiveContext, PermissionContextResolver
from app.features.permissions.schemas import EntityContext, IdentityContext
from app.features.permissions.store import OverrideStore
from app.features.permissions.taxonomy import ModuleId
from app.utils import get_logger


log = get_logger(__name__)


class AuthorizationEngine:
    def __init__(
        self,
        store: OverrideStore,
        cache: Optional[PermissionContextCache[EffectiveContext]] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.resolver = PermissionContextResolver(store, cache=cache, timeout=timeout)
        self.checker = ActionChecker(self.resolver)
        self.module_access = ModuleAccessResolver(self.resolver, store)
        self.admin = PermissionAdminService(store, self.resolver)

    @classmethod
    def from_config(cls, store: OverrideStore) -> "AuthorizationEngine":
        """Engine with the cache settings from app.core.config (cache off when TTL is 0)."""
        cache = None
        if config.PERMISSION_CACHE_TTL_SECONDS > 0:
            cache = PermissionContextCache(
                ttl_seconds=config.PERMISSION_CACHE_TTL_SECONDS,
                maxsize=config.PERMISSION_CACHE_MAX_ENTRIES,
            )
        log.info(
            f"Authorization engine ready (cache ttl={config.PERMISSION_CACHE_TTL_SECONDS}s, "
            f"store timeout={config.OVERRIDE_STORE_TIMEOUT_SECONDS}s)"
        )
        return cls(store, cache=cache, timeout=config.OVERRIDE_STORE_TIMEOUT_SECONDS)

    async def resolve(self, identity: IdentityContext) -> EffectiveContext:
        return await self.resolver.resolve(identity)

    async def check(
        self,
        identity: Optional[IdentityContext],
        action: str,
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        return await self.checker.check(identity, action, entity)

    async def check_all(
        self,
        identity: Optional[IdentityContext],
        actions: Sequence[str],
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        return await self.checker.check_all(identity, actions, entity)

    async def check_any(
        self,
        identity: Optional[IdentityContext],
        actions: Sequence[str],
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        return await self.checker.check_any(identity, actions, entity)

    async def modules(self, identity: IdentityContext) -> frozenset[ModuleId]:
        return await self.module_access.modules(identity)

    async def can_access_module(self, identity: IdentityContext, module_id: ModuleId) -> bool:
        return await self.module_access.can_access_module(identity, module_id)
