"""
Module visibility.

Which feature modules a user can see. Owner, Lead and Member have fixed
sets; Viewer visibility is configurable per organization (role tier) and
per user (user tier), with the user tier taking precedence.
"""
from typing import Iterable

from app.features.permissions.defaults import DEFAULT_VIEWER_MODULES, default_role_modules
from app.features.permissions.resolver import EffectiveContext, PermissionContextResolver
from app.features.permissions.schemas import IdentityContext, ModuleAccessRecord
from app.features.permissions.store import OverrideStore
from app.features.permissions.taxonomy import ModuleId, Role
from app.utils import get_logger


log = get_logger(__name__)


def viewer_modules(
    role_records: Iterable[ModuleAccessRecord],
    user_records: Iterable[ModuleAccessRecord],
) -> frozenset[ModuleId]:
    """
    Effective Viewer module set.

    Role-tier records replace the static default set when any exist (only
    has_access=True entries count); user-tier records are then overlaid,
    True adding and False removing a module.
    """
    role_records = list(role_records)
    if role_records:
        modules = {record.module_id for record in role_records if record.has_access}
    else:
        modules = set(DEFAULT_VIEWER_MODULES)

    for record in user_records:
        if record.has_access:
            modules.add(record.module_id)
        else:
            modules.discard(record.module_id)
    return frozenset(modules)


def modules_in_context(context: EffectiveContext) -> frozenset[ModuleId]:
    if context.role is not Role.VIEWER:
        return default_role_modules(context.role)
    if context.degraded:
        # No overlay when the store could not be read
        return DEFAULT_VIEWER_MODULES
    return viewer_modules(context.role_modules, context.user_modules)


class ModuleAccessResolver:
    def __init__(self, resolver: PermissionContextResolver, store: OverrideStore):
        self.resolver = resolver
        self.store = store

    async def modules(self, identity: IdentityContext) -> frozenset[ModuleId]:
        context = await self.resolver.resolve(identity)
        modules = modules_in_context(context)
        log.debug(
            f"User {identity.user_id} ({identity.role.name}) in org {identity.organization_id} "
            f"sees {len(modules)} module(s)"
        )
        return modules

    async def can_access_module(self, identity: IdentityContext, module_id: ModuleId) -> bool:
        return ModuleId(module_id) in await self.modules(identity)

    async def role_module_matrix(self, organization_id: str, role: Role) -> dict[ModuleId, bool]:
        """
        Role-tier flag for every module, as a user of that role without
        user-tier records would see it. Once any Viewer role-tier record
        exists, unrecorded modules are reported as hidden.

        Store errors propagate (admin read path).
        """
        if role is Role.VIEWER:
            records = await self.store.get_role_module_access(organization_id, role)
            visible = viewer_modules(records, [])
        else:
            visible = default_role_modules(role)
        return {module_id: module_id in visible for module_id in ModuleId}
