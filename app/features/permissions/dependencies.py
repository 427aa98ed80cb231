"""
FastAPI dependencies for action-level route protection.

Implements:
- The process-wide authorization engine
- Dependency factories that run guards and return the caller's identity
"""
from typing import List, Optional
from fastapi import Depends, HTTPException, status

from app.core.database.engine import AsyncSessionLocal
from app.features.identity.dependencies import get_identity
from app.features.permissions.checker import validate_actions
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.guards import PermissionGuard, first_failure, raise_for_guard
from app.features.permissions.schemas import IdentityContext
from app.features.permissions.store import SqlAlchemyOverrideStore
from app.features.permissions.taxonomy import ModuleId, validate_action
from app.utils import get_logger


log = get_logger(__name__)

_engine: Optional[AuthorizationEngine] = None


# ============================================================================
# Engine
# ============================================================================

def get_engine() -> AuthorizationEngine:
    """
    Authorization engine shared by all requests.

    Built on first use so that the context cache lives for the whole process.
    """
    global _engine
    if _engine is None:
        _engine = AuthorizationEngine.from_config(SqlAlchemyOverrideStore(AsyncSessionLocal))
    return _engine


async def get_guard(
    identity: Optional[IdentityContext] = Depends(get_identity),
    engine: AuthorizationEngine = Depends(get_engine),
) -> PermissionGuard:
    return PermissionGuard(engine, identity)


async def require_identity(identity: Optional[IdentityContext] = Depends(get_identity)) -> IdentityContext:
    """Caller identity; 401 when unauthenticated."""
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


# ============================================================================
# Dependency Factories
# ============================================================================

def require_action(action: str, strict: bool = False, message: Optional[str] = None):
    """
    FastAPI dependency to require a single action.

    Usage:
        @router.post("/properties")
        async def create_property(
            identity: IdentityContext = Depends(require_action("property:create"))
        ):
            pass

    Own/involved levels pass here (strict=False); the handler must re-check
    with the entity before mutating it.
    """
    validate_action(action)

    async def action_dependency(guard: PermissionGuard = Depends(get_guard)) -> IdentityContext:
        raise_for_guard(await first_failure(
            guard.require_auth,
            guard.action(action, strict=strict, message=message),
        ))
        return guard.identity

    return action_dependency


def require_any_action(actions: List[str], message: Optional[str] = None):
    """
    FastAPI dependency to require ANY of the given actions.

    Usage:
        @router.get("/team")
        async def team(
            identity: IdentityContext = Depends(require_any_action(["admin:manage_roles", "admin:invite_users"]))
        ):
            pass
    """
    validate_actions(actions)

    async def action_dependency(guard: PermissionGuard = Depends(get_guard)) -> IdentityContext:
        raise_for_guard(await guard.require_auth() or await guard.require_any_action(actions, message))
        return guard.identity

    return action_dependency


def require_all_actions(actions: List[str], message: Optional[str] = None):
    """FastAPI dependency to require ALL of the given actions."""
    validate_actions(actions)

    async def action_dependency(guard: PermissionGuard = Depends(get_guard)) -> IdentityContext:
        raise_for_guard(await guard.require_auth() or await guard.require_all_actions(actions, message))
        return guard.identity

    return action_dependency


def require_module_access(module_id: ModuleId):
    """FastAPI dependency to require visibility of a feature module."""
    module_id = ModuleId(module_id)

    async def module_dependency(guard: PermissionGuard = Depends(get_guard)) -> IdentityContext:
        raise_for_guard(await first_failure(guard.require_auth, guard.module(module_id)))
        return guard.identity

    return module_dependency


async def require_org_admin(
    organization_id: str,
    identity: IdentityContext = Depends(require_action("admin:manage_roles", strict=True)),
) -> IdentityContext:
    """
    Require admin:manage_roles in the organization named by the path.

    Admins manage only their own organization. Organization settings have
    no owner, so an own/involved level never grants administration here.
    """
    if identity.organization_id != organization_id:
        log.warning(
            f"User {identity.user_id} of org {identity.organization_id} "
            f"attempted to administer org {organization_id}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: not a member of this organization",
        )
    return identity
