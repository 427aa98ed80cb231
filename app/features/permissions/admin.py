"""
Override administration (write path).

Organization admins deviate from the default matrix by storing sparse
per-role action overrides and module-access records. Every write is
validated before it reaches the store and drops the organization's cached
permission contexts afterwards.
"""
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from app.features.permissions.exceptions import PermissionValidationError
from app.features.permissions.resolver import PermissionContextResolver, parse_override_document
from app.features.permissions.schemas import OVERRIDE_SCHEMA_VERSION, ModuleAccessRecord, OverrideConfig
from app.features.permissions.store import DELETE_OVERRIDE, OverrideDocument, OverrideStore
from app.features.permissions.taxonomy import ModuleId, PermissionLevel, Role, is_known_action
from app.utils import get_logger


log = get_logger(__name__)


def _check_role(role: Role) -> Role:
    try:
        role = Role.parse(role)
    except ValueError as e:
        raise PermissionValidationError(str(e)) from None
    if role is Role.OWNER:
        raise PermissionValidationError("Cannot modify owner permissions")
    return role


def _check_levels(updates: Mapping[str, Union[PermissionLevel, str]]) -> Dict[str, PermissionLevel]:
    if not updates:
        raise PermissionValidationError("No action overrides given")
    checked: Dict[str, PermissionLevel] = {}
    for action, level in updates.items():
        if not is_known_action(action):
            raise PermissionValidationError(f"Unknown action: {action}")
        try:
            checked[action] = PermissionLevel(level)
        except ValueError:
            raise PermissionValidationError(f"Invalid permission level {level!r} for {action}") from None
    return checked


def _check_module(module_id: Union[ModuleId, str]) -> ModuleId:
    try:
        return ModuleId(module_id)
    except ValueError:
        raise PermissionValidationError(f"Unknown module: {module_id}") from None


def merge_override_document(
    current: Optional[OverrideDocument],
    updates: Mapping[str, PermissionLevel],
) -> OverrideDocument:
    """
    Sparse merge of action levels into a stored document.

    Keys other than "actions" are preserved. The result is validated
    against OverrideConfig before it is returned.
    """
    document: Dict[str, Any] = dict(current or {})
    document.setdefault("version", OVERRIDE_SCHEMA_VERSION)
    actions = dict(document.get("actions") or {})
    actions.update({action: level.value for action, level in updates.items()})
    document["actions"] = actions

    try:
        return OverrideConfig.model_validate(document).to_document()
    except ValidationError as e:
        raise PermissionValidationError(f"Invalid override document: {e.errors()[0]['msg']}") from None


class PermissionAdminService:
    """Admin operations on organization overrides."""

    def __init__(self, store: OverrideStore, resolver: PermissionContextResolver):
        self.store = store
        self.resolver = resolver

    # ========================================================================
    # Action Overrides
    # ========================================================================

    async def update_action_override(
        self,
        organization_id: str,
        role: Role,
        action: str,
        level: Union[PermissionLevel, str],
    ) -> Dict[str, PermissionLevel]:
        return await self.update_action_overrides(organization_id, role, {action: level})

    async def update_action_overrides(
        self,
        organization_id: str,
        role: Role,
        updates: Mapping[str, Union[PermissionLevel, str]],
    ) -> Dict[str, PermissionLevel]:
        """
        Merge several action levels into the role's override record.

        Returns the role's full override map after the write.

        Raises:
            PermissionValidationError: Owner target, unknown action or invalid level
            StoreUnavailableError: the store failed
        """
        role = _check_role(role)
        checked = _check_levels(updates)

        written = await self.store.update_role_override(
            organization_id, role, lambda current: merge_override_document(current, checked)
        )
        self.resolver.invalidate(organization_id)

        log.info(
            f"Updated {len(checked)} action override(s) for role {role.name} in org {organization_id}: "
            + ", ".join(f"{action}={level.value}" for action, level in checked.items())
        )
        overrides, _ = parse_override_document(written)
        return overrides

    async def reset_overrides(self, organization_id: str, role: Role) -> bool:
        """
        Drop the role's action overrides, keeping any other stored metadata.

        Returns False when there was nothing to reset.
        """
        role = _check_role(role)
        found = False

        def clear_actions(current: Optional[OverrideDocument]) -> Optional[OverrideDocument]:
            nonlocal found
            if current is None or "actions" not in current:
                return None
            found = True
            current.pop("actions")
            if set(current) <= {"version"}:
                return DELETE_OVERRIDE
            return current

        await self.store.update_role_override(organization_id, role, clear_actions)
        if not found:
            log.debug(f"No overrides to reset for role {role.name} in org {organization_id}")
            return False

        self.resolver.invalidate(organization_id)
        log.info(f"Reset action overrides for role {role.name} in org {organization_id}")
        return True

    async def get_organization_overrides(self, organization_id: str) -> Dict[Role, Dict[str, PermissionLevel]]:
        """Stored action overrides of every non-Owner role (empty map when none)."""
        documents = await self.store.list_role_overrides(organization_id)
        result: Dict[Role, Dict[str, PermissionLevel]] = {}
        for role in Role:
            if role is Role.OWNER:
                continue
            overrides, diagnostic = parse_override_document(documents.get(role))
            if diagnostic:
                log.warning(f"Org {organization_id} role {role.name}: {diagnostic}")
            result[role] = overrides
        return result

    # ========================================================================
    # Module Access
    # ========================================================================

    async def update_module_access(
        self,
        organization_id: str,
        module_id: Union[ModuleId, str],
        has_access: bool,
        role: Optional[Role] = None,
        user_id: Optional[str] = None,
    ) -> ModuleAccessRecord:
        """
        Set a module-access record at the role tier or the user tier.

        Exactly one of role and user_id must be given.
        """
        if (role is None) == (user_id is None):
            raise PermissionValidationError("Specify exactly one of role or user_id")
        module_id = _check_module(module_id)

        if role is not None:
            role = _check_role(role)
            await self.store.upsert_role_module_access(organization_id, role, module_id, has_access)
            target = f"role {role.name}"
        else:
            await self.store.upsert_user_module_access(organization_id, user_id, module_id, has_access)
            target = f"user {user_id}"

        self.resolver.invalidate(organization_id)
        log.info(
            f"{'Granted' if has_access else 'Revoked'} module {module_id.value} "
            f"for {target} in org {organization_id}"
        )
        return ModuleAccessRecord(module_id=module_id, has_access=has_access)

    async def clear_user_module_access(
        self,
        organization_id: str,
        user_id: str,
        module_id: Union[ModuleId, str],
    ) -> bool:
        """Remove a user-tier record so the role tier applies again."""
        module_id = _check_module(module_id)
        removed = await self.store.delete_user_module_access(organization_id, user_id, module_id)
        if removed:
            self.resolver.invalidate(organization_id)
            log.info(f"Cleared module {module_id.value} override for user {user_id} in org {organization_id}")
        return removed
