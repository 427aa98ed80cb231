"""
Guards for protecting handlers with action-level permissions.

A guard is an async zero-arg callable returning None when the caller may
proceed, or a GuardError describing why it must stop. Guards never raise
for expected outcomes; raise_for_guard turns a GuardError into an
HTTPException at the HTTP boundary.

Usage:
    guard = PermissionGuard(engine, identity)
    error = await first_failure(
        guard.require_auth,
        guard.action("property:update", entity=entity, strict=True),
    )
    raise_for_guard(error)
"""
import enum
import functools
from typing import Awaitable, Callable, Optional, Sequence

from fastapi import HTTPException, status
from pydantic import BaseModel, ConfigDict

from app.features.permissions.checker import Decision
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.schemas import (
    Denied,
    DenialCode,
    EntityContext,
    GuardErrorResponse,
    IdentityContext,
)
from app.features.permissions.taxonomy import ModuleId, validate_action
from app.utils import get_logger


log = get_logger(__name__)


class GuardCode(str, enum.Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    OWNERSHIP_REQUIRED = "OWNERSHIP_REQUIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"


class GuardError(BaseModel):
    code: GuardCode
    message: str

    model_config = ConfigDict(frozen=True)

    def to_response(self) -> GuardErrorResponse:
        return GuardErrorResponse(error=self.message, code=self.code.value)


GuardResult = Optional[GuardError]
Guard = Callable[[], Awaitable[GuardResult]]


AUTHENTICATION_REQUIRED = GuardError(code=GuardCode.UNAUTHORIZED, message="Authentication required")


def guard_error_for(
    decision: Decision,
    action: str,
    strict: bool = False,
    message: Optional[str] = None,
) -> GuardResult:
    """Map a decision to a guard result. Pending ownership passes unless strict."""
    if isinstance(decision, Denied):
        if decision.code is DenialCode.UNAUTHENTICATED:
            return AUTHENTICATION_REQUIRED
        return GuardError(code=GuardCode.FORBIDDEN, message=message or decision.reason or f"Permission denied: {action}")
    if decision.requires_ownership_check and strict:
        return GuardError(
            code=GuardCode.OWNERSHIP_REQUIRED,
            message=message or f"Ownership verification required for {action}",
        )
    return None


class PermissionGuard:
    """Guards bound to one engine and the identity of the current request."""

    def __init__(self, engine: AuthorizationEngine, identity: Optional[IdentityContext]):
        self.engine = engine
        self.identity = identity

    async def require_auth(self) -> GuardResult:
        if self.identity is None:
            return AUTHENTICATION_REQUIRED
        return None

    async def require_action(
        self,
        action: str,
        entity: Optional[EntityContext] = None,
        strict: bool = False,
        message: Optional[str] = None,
    ) -> GuardResult:
        """
        Require a single action.

        With strict=False a pending ownership check passes and the caller
        must re-check with entity data before mutating anything.
        """
        decision = await self.engine.check(self.identity, action, entity)
        return guard_error_for(decision, action, strict=strict, message=message)

    async def require_all_actions(self, actions: Sequence[str], message: Optional[str] = None) -> GuardResult:
        decision = await self.engine.check_all(self.identity, actions)
        return guard_error_for(decision, ", ".join(actions), message=message)

    async def require_any_action(self, actions: Sequence[str], message: Optional[str] = None) -> GuardResult:
        decision = await self.engine.check_any(self.identity, actions)
        return guard_error_for(decision, ", ".join(actions), message=message)

    async def require_module(self, module_id: ModuleId, message: Optional[str] = None) -> GuardResult:
        if self.identity is None:
            return AUTHENTICATION_REQUIRED
        if await self.engine.can_access_module(self.identity, module_id):
            return None
        return GuardError(
            code=GuardCode.FORBIDDEN,
            message=message or f"No access to module {ModuleId(module_id).value}",
        )

    def action(
        self,
        action: str,
        entity: Optional[EntityContext] = None,
        strict: bool = False,
        message: Optional[str] = None,
    ) -> Guard:
        """Bind require_action into a zero-arg guard for the combinators."""
        validate_action(action)
        return functools.partial(self.require_action, action, entity, strict, message)

    def module(self, module_id: ModuleId, message: Optional[str] = None) -> Guard:
        return functools.partial(self.require_module, ModuleId(module_id), message)


# ============================================================================
# Combinators
# ============================================================================

async def first_failure(*guards: Guard) -> GuardResult:
    """Run guards in order and stop at the first failure."""
    for guard in guards:
        result = await guard()
        if result is not None:
            return result
    return None


def all_of(*guards: Guard) -> Guard:
    """Guard that passes only if every guard passes (sequential, halts on first failure)."""
    if not guards:
        raise ValueError("all_of() requires at least one guard")

    async def combined() -> GuardResult:
        return await first_failure(*guards)
    return combined


def any_of(*guards: Guard, message: Optional[str] = None) -> Guard:
    """
    Guard that passes if at least one guard passes.

    On total failure an authentication error wins, otherwise the last
    failure is returned (or a FORBIDDEN error with message, if given).
    """
    if not guards:
        raise ValueError("any_of() requires at least one guard")

    async def combined() -> GuardResult:
        failures = []
        for guard in guards:
            result = await guard()
            if result is None:
                return None
            failures.append(result)
        for failure in failures:
            if failure.code is GuardCode.UNAUTHORIZED:
                return failure
        if message:
            return GuardError(code=GuardCode.FORBIDDEN, message=message)
        return failures[-1]
    return combined


# ============================================================================
# Error Helpers
# ============================================================================

def not_found_error(entity_type: str, entity_id: Optional[str] = None) -> GuardError:
    message = f'{entity_type} with ID "{entity_id}" not found' if entity_id else f"{entity_type} not found"
    return GuardError(code=GuardCode.NOT_FOUND, message=message)


def validation_error(message: str) -> GuardError:
    return GuardError(code=GuardCode.VALIDATION_ERROR, message=message)


GUARD_STATUS_CODES = {
    GuardCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    GuardCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    GuardCode.OWNERSHIP_REQUIRED: status.HTTP_403_FORBIDDEN,
    GuardCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    GuardCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def status_code_for(error: GuardError) -> int:
    return GUARD_STATUS_CODES[error.code]


def raise_for_guard(error: GuardResult) -> None:
    """
    Raise an HTTPException for a failed guard; do nothing when it passed.

    OWNERSHIP_REQUIRED is internal to the caller and surfaces as a plain 403.
    """
    if error is None:
        return

    detail = error.message
    if error.code is GuardCode.OWNERSHIP_REQUIRED:
        log.debug(f"Ownership check pending, rejecting request: {error.message}")
        detail = "Permission denied"

    headers = {"WWW-Authenticate": "Bearer"} if error.code is GuardCode.UNAUTHORIZED else None
    raise HTTPException(status_code=status_code_for(error), detail=detail, headers=headers)
