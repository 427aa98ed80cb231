"""
Action authorization checks.

Evaluates actions against a resolved permission context and an optional
entity context. Expected outcomes are returned as decisions, never raised;
only unknown actions (a programming error) raise UnknownActionError.
"""
from typing import Optional, Sequence, Union

from app.features.permissions.resolver import EffectiveContext, PermissionContextResolver
from app.features.permissions.schemas import (
    Allowed,
    Denied,
    DenialCode,
    EntityContext,
    IdentityContext,
    NeedsOwnershipCheck,
)
from app.features.permissions.taxonomy import (
    EntityType,
    PermissionLevel,
    Role,
    role_has_privilege,
    validate_action,
)
from app.utils import get_logger


log = get_logger(__name__)

Decision = Union[Allowed, Denied, NeedsOwnershipCheck]

UNAUTHENTICATED = Denied(code=DenialCode.UNAUTHENTICATED, reason="unauthenticated")


def evaluate_level(
    level: PermissionLevel,
    action: str,
    user_id: str,
    entity: Optional[EntityContext] = None,
) -> Decision:
    """
    Resolve a permission level to a decision for one user.

    - none: denied
    - all: allowed
    - own: allowed iff entity.owner_id is the user; pending if no owner given
    - involved: allowed iff the user is in entity.involved_user_ids; pending if not given
    """
    if level is PermissionLevel.NONE:
        return Denied(code=DenialCode.NO_PERMISSION, reason=f'No permission to perform "{action}"')

    if level is PermissionLevel.ALL:
        return Allowed()

    entity_type = entity.entity_type if entity else None

    if level is PermissionLevel.OWN:
        if entity is None or entity.owner_id is None:
            return NeedsOwnershipCheck(
                level=level,
                reason="Ownership verification required",
                entity_type=entity_type,
            )
        if entity.owner_id != user_id:
            return Denied(
                code=DenialCode.NOT_OWNER,
                reason=f'Ownership mismatch: "{action}" is limited to your own records',
            )
        return Allowed()

    if level is PermissionLevel.INVOLVED:
        if entity is None or entity.involved_user_ids is None:
            return NeedsOwnershipCheck(
                level=level,
                reason="Involvement verification required",
                entity_type=entity_type,
            )
        if user_id not in entity.involved_user_ids:
            return Denied(
                code=DenialCode.NOT_INVOLVED,
                reason=f'"{action}" is limited to records you are involved in',
            )
        return Allowed()

    # Unreachable while PermissionLevel has four members
    return Denied(code=DenialCode.NO_PERMISSION, reason="Unknown permission level")


def validate_actions(actions: Sequence[str]) -> None:
    if not actions:
        raise ValueError("At least one action is required")
    for action in actions:
        validate_action(action)


class ActionChecker:
    """Answers "may this identity perform this action" questions."""

    def __init__(self, resolver: PermissionContextResolver):
        self.resolver = resolver

    async def check(
        self,
        identity: Optional[IdentityContext],
        action: str,
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        validate_action(action)
        if identity is None:
            return UNAUTHENTICATED
        context = await self.resolver.resolve(identity)
        return self.check_in_context(context, action, entity)

    def check_in_context(
        self,
        context: EffectiveContext,
        action: str,
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        """Evaluate against an already resolved context (no I/O)."""
        level = context.level_for(action)
        decision = evaluate_level(level, action, context.identity.user_id, entity)
        log.debug(
            f"User {context.identity.user_id} ({context.identity.role.name}) "
            f"{decision.kind} for {action} in org {context.identity.organization_id} [level={level.value}]"
        )
        return decision

    async def check_all(
        self,
        identity: Optional[IdentityContext],
        actions: Sequence[str],
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        """
        Logical AND over actions.

        Stops at the first denial; the reason lists the denied action.
        Any pending ownership check makes the combined decision pending.
        """
        validate_actions(actions)
        if identity is None:
            return UNAUTHENTICATED

        context = await self.resolver.resolve(identity)
        pending: Optional[NeedsOwnershipCheck] = None
        for action in actions:
            decision = self.check_in_context(context, action, entity)
            if isinstance(decision, Denied):
                return Denied(code=decision.code, reason=f"Permission denied for: {action}")
            if isinstance(decision, NeedsOwnershipCheck) and pending is None:
                pending = decision
        return pending if pending is not None else Allowed()

    async def check_any(
        self,
        identity: Optional[IdentityContext],
        actions: Sequence[str],
        entity: Optional[EntityContext] = None,
    ) -> Decision:
        """
        Logical OR over actions.

        A full allow wins over a pending ownership check. On total failure the
        reason lists every attempted action.
        """
        validate_actions(actions)
        if identity is None:
            return UNAUTHENTICATED

        context = await self.resolver.resolve(identity)
        pending: Optional[NeedsOwnershipCheck] = None
        for action in actions:
            decision = self.check_in_context(context, action, entity)
            if isinstance(decision, Allowed):
                return decision
            if isinstance(decision, NeedsOwnershipCheck) and pending is None:
                pending = decision
        if pending is not None:
            return pending
        return Denied(
            code=DenialCode.NO_PERMISSION,
            reason=f"Permission denied. Required one of: {', '.join(actions)}",
        )

    async def check_on_entity(
        self,
        identity: Optional[IdentityContext],
        action: str,
        entity_type: EntityType,
        entity_id: str,
        owner_id: str,
    ) -> Decision:
        """Check an action against an owned entity (property, client, task, ...)."""
        entity = EntityContext(entity_type=entity_type, entity_id=entity_id, owner_id=owner_id)
        return await self.check(identity, action, entity)

    async def check_on_deal(
        self,
        identity: Optional[IdentityContext],
        action: str,
        deal_id: str,
        property_agent_id: str,
        client_agent_id: str,
    ) -> Decision:
        """Deals use "involved" semantics: either agent on the deal is involved."""
        entity = EntityContext(
            entity_type=EntityType.DEAL,
            entity_id=deal_id,
            involved_user_ids=[property_agent_id, client_agent_id],
        )
        return await self.check(identity, action, entity)

    async def effective_level(self, identity: IdentityContext, action: str) -> PermissionLevel:
        validate_action(action)
        context = await self.resolver.resolve(identity)
        return context.level_for(action)

    async def effective_permissions(self, identity: IdentityContext) -> dict[str, PermissionLevel]:
        """Full action -> level map for the identity, overrides applied."""
        context = await self.resolver.resolve(identity)
        return dict(context.levels)

    async def accessible_actions(self, identity: IdentityContext) -> list[str]:
        """Actions allowed at any level above "none"."""
        context = await self.resolver.resolve(identity)
        return [action for action, level in context.levels.items() if level.is_allowed]

    async def can_manage_user(self, identity: Optional[IdentityContext], target_role: Role) -> Decision:
        """
        Whether the identity may manage (invite, remove, change) a user with target_role.

        Requires a user-management permission, a strictly higher role, and
        never allows managing an Owner.
        """
        if identity is None:
            return UNAUTHENTICATED

        context = await self.resolver.resolve(identity)
        can_invite = context.level_for("admin:invite_users").is_allowed
        can_remove = context.level_for("admin:remove_users").is_allowed
        if not can_invite and not can_remove:
            return Denied(code=DenialCode.NO_PERMISSION, reason="No user management permission")

        if target_role is Role.OWNER:
            return Denied(code=DenialCode.NO_PERMISSION, reason="Cannot manage organization owners")

        if not role_has_privilege(identity.role, target_role):
            return Denied(code=DenialCode.NO_PERMISSION, reason="Cannot manage users with equal or higher role")

        return Allowed()
