"""
Pydantic schemas for authorization decisions and override administration.

Domain values (identity, entity context, decisions, override records) and
the request/response models of the permissions API.
"""
import enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.features.permissions.taxonomy import (
    EntityType,
    ModuleId,
    PermissionLevel,
    Role,
    is_known_action,
)


OVERRIDE_SCHEMA_VERSION = 1


# ============================================================================
# Request-scoped Contexts
# ============================================================================

class IdentityContext(BaseModel):
    """Who is acting, in which organization, with which role."""
    user_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    role: Role

    model_config = ConfigDict(frozen=True)


class EntityContext(BaseModel):
    """
    The entity an action targets, for "own" and "involved" levels.

    owner_id resolves "own" (assigned_to, created_by, ...).
    involved_user_ids resolves "involved" (e.g. both agents on a deal).
    """
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    owner_id: Optional[str] = None
    involved_user_ids: Optional[List[str]] = None

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Decisions
# ============================================================================

class DenialCode(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    NO_PERMISSION = "no_permission"
    NOT_OWNER = "not_owner"
    NOT_INVOLVED = "not_involved"


class Allowed(BaseModel):
    kind: Literal["allowed"] = "allowed"
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def allowed(self) -> bool:
        return True

    @property
    def requires_ownership_check(self) -> bool:
        return False


class Denied(BaseModel):
    kind: Literal["denied"] = "denied"
    code: DenialCode
    reason: str

    model_config = ConfigDict(frozen=True)

    @property
    def allowed(self) -> bool:
        return False

    @property
    def requires_ownership_check(self) -> bool:
        return False


class NeedsOwnershipCheck(BaseModel):
    """
    Allowed pending verification: the level is "own" or "involved" but the
    caller supplied no entity data. The caller must re-check with the real
    owner / participants before mutating anything.
    """
    kind: Literal["needs_ownership_check"] = "needs_ownership_check"
    level: PermissionLevel
    reason: str
    entity_type: Optional[EntityType] = None

    model_config = ConfigDict(frozen=True)

    @property
    def allowed(self) -> bool:
        return True

    @property
    def requires_ownership_check(self) -> bool:
        return True


AuthDecision = Annotated[Union[Allowed, Denied, NeedsOwnershipCheck], Field(discriminator="kind")]


# ============================================================================
# Override Records
# ============================================================================

class OverrideConfig(BaseModel):
    """
    Versioned payload of an organization role override.

    Unknown top-level keys are kept so that metadata written by other
    tools survives merges and resets.
    """
    version: int = Field(OVERRIDE_SCHEMA_VERSION, description="Schema version of the override document")
    actions: Optional[Dict[str, PermissionLevel]] = Field(None, description="Sparse action -> level overrides")

    model_config = ConfigDict(extra="allow")

    @field_validator("version")
    @classmethod
    def supported_version(cls, v: int) -> int:
        if v != OVERRIDE_SCHEMA_VERSION:
            raise ValueError(f"Unsupported override schema version {v}")
        return v

    @field_validator("actions")
    @classmethod
    def known_actions(cls, v: Optional[Dict[str, PermissionLevel]]) -> Optional[Dict[str, PermissionLevel]]:
        if v is None:
            return v
        unknown = sorted(action for action in v if not is_known_action(action))
        if unknown:
            raise ValueError(f"Unknown actions: {', '.join(unknown)}")
        return v

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready dict for the store, without empty action payloads."""
        return self.model_dump(mode="json", exclude_none=True)


class ModuleAccessRecord(BaseModel):
    """One module-access row, either role tier or user tier."""
    module_id: ModuleId
    has_access: bool

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Permission Check API Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check a single action for the calling user."""
    action: str = Field(..., description="Action in '<module>:<verb>' form")
    entity: Optional[EntityContext] = Field(None, description="Target entity for ownership checks")

    @field_validator("action")
    @classmethod
    def action_in_catalog(cls, v: str) -> str:
        if not is_known_action(v):
            raise ValueError(f"Unknown action: {v}")
        return v


class PermissionCheckManyRequest(BaseModel):
    """Check several actions at once (all-of or any-of)."""
    actions: List[str] = Field(..., min_length=1)

    @field_validator("actions")
    @classmethod
    def actions_in_catalog(cls, v: List[str]) -> List[str]:
        unknown = [action for action in v if not is_known_action(action)]
        if unknown:
            raise ValueError(f"Unknown actions: {', '.join(unknown)}")
        return v


class PermissionCheckResponse(BaseModel):
    """Flattened decision for API clients."""
    allowed: bool
    decision: str
    reason: Optional[str] = None
    requires_ownership_check: bool = False

    @classmethod
    def from_decision(cls, decision: Union[Allowed, Denied, NeedsOwnershipCheck]) -> "PermissionCheckResponse":
        return cls(
            allowed=decision.allowed,
            decision=decision.kind,
            reason=decision.reason,
            requires_ownership_check=decision.requires_ownership_check,
        )


class UserModulesResponse(BaseModel):
    user_id: str
    organization_id: str
    role: str
    modules: List[ModuleId]


class UserActionsResponse(BaseModel):
    """Effective action levels for the calling user."""
    user_id: str
    organization_id: str
    role: str
    permissions: Dict[str, PermissionLevel]
    accessible_actions: List[str]
    degraded: bool = False


# ============================================================================
# Override Administration Schemas
# ============================================================================

class ActionOverrideUpdate(BaseModel):
    level: PermissionLevel


class ActionOverridesUpdate(BaseModel):
    actions: Dict[str, PermissionLevel] = Field(..., min_length=1)

    @field_validator("actions")
    @classmethod
    def actions_in_catalog(cls, v: Dict[str, PermissionLevel]) -> Dict[str, PermissionLevel]:
        unknown = sorted(action for action in v if not is_known_action(action))
        if unknown:
            raise ValueError(f"Unknown actions: {', '.join(unknown)}")
        return v


class ModuleAccessUpdate(BaseModel):
    has_access: bool


class RoleOverridesResponse(BaseModel):
    organization_id: str
    role: str
    overrides: Dict[str, PermissionLevel] = {}


class OrganizationOverridesResponse(BaseModel):
    organization_id: str
    roles: Dict[str, Dict[str, PermissionLevel]]


class RoleModuleMatrixResponse(BaseModel):
    organization_id: str
    role: str
    modules: Dict[ModuleId, bool]


class ModuleAccessResponse(BaseModel):
    organization_id: str
    module_id: ModuleId
    has_access: bool
    role: Optional[str] = None
    user_id: Optional[str] = None


# ============================================================================
# Taxonomy Schemas
# ============================================================================

class ActionDescription(BaseModel):
    action: str
    module: str
    description: str


class TaxonomyResponse(BaseModel):
    roles: Dict[str, int]
    levels: Dict[PermissionLevel, str]
    modules: List[ModuleId]
    default_viewer_modules: List[ModuleId]
    actions: List[ActionDescription]


class GuardErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
