"""
Permission API routes.

Provides endpoints for checking actions and module visibility for the
calling user, and for administering an organization's role overrides and
module-access records.
"""
from fastapi import APIRouter, Depends, HTTPException, status

from app.features.permissions.defaults import DEFAULT_VIEWER_MODULES
from app.features.permissions.dependencies import get_engine, require_identity, require_org_admin
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.schemas import (
    ActionDescription,
    ActionOverrideUpdate,
    ActionOverridesUpdate,
    IdentityContext,
    ModuleAccessResponse,
    ModuleAccessUpdate,
    OrganizationOverridesResponse,
    PermissionCheckManyRequest,
    PermissionCheckRequest,
    PermissionCheckResponse,
    RoleModuleMatrixResponse,
    RoleOverridesResponse,
    TaxonomyResponse,
    UserActionsResponse,
    UserModulesResponse,
)
from app.features.permissions.taxonomy import (
    ACTION_DESCRIPTIONS,
    PERMISSION_LEVEL_NAMES,
    ModuleId,
    Role,
    get_action_module,
    is_known_action,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _parse_role(role: str) -> Role:
    try:
        return Role.parse(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {role}"
        )


def _parse_module(module_id: str) -> ModuleId:
    try:
        return ModuleId(module_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Module {module_id} not found"
        )


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheckRequest,
    identity: IdentityContext = Depends(require_identity),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Check whether the calling user may perform an action."""
    decision = await engine.check(identity, check.action, check.entity)
    return PermissionCheckResponse.from_decision(decision)


@router.post("/check/all", response_model=PermissionCheckResponse)
async def check_all_permissions(
    check: PermissionCheckManyRequest,
    identity: IdentityContext = Depends(require_identity),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Check whether the calling user may perform every listed action."""
    decision = await engine.check_all(identity, check.actions)
    return PermissionCheckResponse.from_decision(decision)


@router.post("/check/any", response_model=PermissionCheckResponse)
async def check_any_permission(
    check: PermissionCheckManyRequest,
    identity: IdentityContext = Depends(require_identity),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Check whether the calling user may perform at least one listed action."""
    decision = await engine.check_any(identity, check.actions)
    return PermissionCheckResponse.from_decision(decision)


@router.get("/me/modules", response_model=UserModulesResponse)
async def get_my_modules(
    identity: IdentityContext = Depends(require_identity),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Modules visible to the calling user."""
    modules = await engine.modules(identity)
    return UserModulesResponse(
        user_id=identity.user_id,
        organization_id=identity.organization_id,
        role=identity.role.name.lower(),
        modules=sorted(modules, key=lambda m: m.value),
    )


@router.get("/me/actions", response_model=UserActionsResponse)
async def get_my_actions(
    identity: IdentityContext = Depends(require_identity),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Effective permission level of every action for the calling user."""
    context = await engine.resolve(identity)
    return UserActionsResponse(
        user_id=identity.user_id,
        organization_id=identity.organization_id,
        role=identity.role.name.lower(),
        permissions=dict(context.levels),
        accessible_actions=[action for action, level in context.levels.items() if level.is_allowed],
        degraded=context.degraded,
    )


# ============================================================================
# Override Administration Routes
# ============================================================================

@router.get("/organizations/{organization_id}/overrides", response_model=OrganizationOverridesResponse)
async def get_organization_overrides(
    organization_id: str,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Stored action overrides of every configurable role."""
    overrides = await engine.admin.get_organization_overrides(organization_id)
    return OrganizationOverridesResponse(
        organization_id=organization_id,
        roles={role.name.lower(): levels for role, levels in overrides.items()},
    )


@router.put("/organizations/{organization_id}/roles/{role}/actions", response_model=RoleOverridesResponse)
async def update_role_actions(
    organization_id: str,
    role: str,
    update: ActionOverridesUpdate,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Merge several action overrides into a role (other overrides are kept)."""
    target = _parse_role(role)
    overrides = await engine.admin.update_action_overrides(organization_id, target, update.actions)
    log.info(f"User {admin.user_id} updated {len(update.actions)} action override(s) for {target.name}")
    return RoleOverridesResponse(organization_id=organization_id, role=target.name.lower(), overrides=overrides)


@router.put(
    "/organizations/{organization_id}/roles/{role}/actions/{action}",
    response_model=RoleOverridesResponse,
)
async def update_role_action(
    organization_id: str,
    role: str,
    action: str,
    update: ActionOverrideUpdate,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Override the level of one action for a role."""
    target = _parse_role(role)
    if not is_known_action(action):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Action {action} not found"
        )
    overrides = await engine.admin.update_action_override(organization_id, target, action, update.level)
    log.info(f"User {admin.user_id} set {action}={update.level.value} for {target.name}")
    return RoleOverridesResponse(organization_id=organization_id, role=target.name.lower(), overrides=overrides)


@router.delete("/organizations/{organization_id}/roles/{role}/actions", status_code=status.HTTP_204_NO_CONTENT)
async def reset_role_actions(
    organization_id: str,
    role: str,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Reset a role's actions to the defaults."""
    target = _parse_role(role)
    await engine.admin.reset_overrides(organization_id, target)


@router.get("/organizations/{organization_id}/roles/{role}/modules", response_model=RoleModuleMatrixResponse)
async def get_role_modules(
    organization_id: str,
    role: str,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Role-tier access flag of every module."""
    target = _parse_role(role)
    matrix = await engine.module_access.role_module_matrix(organization_id, target)
    return RoleModuleMatrixResponse(organization_id=organization_id, role=target.name.lower(), modules=matrix)


@router.put(
    "/organizations/{organization_id}/roles/{role}/modules/{module_id}",
    response_model=ModuleAccessResponse,
)
async def update_role_module(
    organization_id: str,
    role: str,
    module_id: str,
    update: ModuleAccessUpdate,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Grant or revoke a module for a role."""
    target = _parse_role(role)
    record = await engine.admin.update_module_access(
        organization_id, _parse_module(module_id), update.has_access, role=target
    )
    return ModuleAccessResponse(
        organization_id=organization_id,
        module_id=record.module_id,
        has_access=record.has_access,
        role=target.name.lower(),
    )


@router.put(
    "/organizations/{organization_id}/users/{user_id}/modules/{module_id}",
    response_model=ModuleAccessResponse,
)
async def update_user_module(
    organization_id: str,
    user_id: str,
    module_id: str,
    update: ModuleAccessUpdate,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Grant or revoke a module for one user, overriding the role tier."""
    record = await engine.admin.update_module_access(
        organization_id, _parse_module(module_id), update.has_access, user_id=user_id
    )
    return ModuleAccessResponse(
        organization_id=organization_id,
        module_id=record.module_id,
        has_access=record.has_access,
        user_id=user_id,
    )


@router.delete(
    "/organizations/{organization_id}/users/{user_id}/modules/{module_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def clear_user_module(
    organization_id: str,
    user_id: str,
    module_id: str,
    admin: IdentityContext = Depends(require_org_admin),
    engine: AuthorizationEngine = Depends(get_engine),
):
    """Remove a user's module override so the role tier applies again."""
    removed = await engine.admin.clear_user_module_access(organization_id, user_id, _parse_module(module_id))
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Module override not found"
        )


# ============================================================================
# Taxonomy Routes
# ============================================================================

@router.get("/taxonomy", response_model=TaxonomyResponse)
async def get_taxonomy():
    """Roles, permission levels, modules and the action catalog."""
    return TaxonomyResponse(
        roles={role.name.lower(): role.value for role in Role},
        levels=dict(PERMISSION_LEVEL_NAMES),
        modules=list(ModuleId),
        default_viewer_modules=sorted(DEFAULT_VIEWER_MODULES, key=lambda m: m.value),
        actions=[
            ActionDescription(action=action, module=get_action_module(action), description=description)
            for action, description in ACTION_DESCRIPTIONS.items()
        ],
    )
