"""
FastAPI dependencies for resolving the calling identity.
"""
from typing import Annotated, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.features.identity.auth import identity_from_claims, verify_jwt_token
from app.features.permissions.schemas import IdentityContext


# Missing credentials are not an error here: guards decide what an
# anonymous caller may do.
security = HTTPBearer(auto_error=False)


async def get_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[IdentityContext]:
    """
    Identity of the caller, or None when unauthenticated.

    Usage:
        @router.get("/me")
        async def me(identity: Optional[IdentityContext] = Depends(get_identity)):
            ...
    """
    if credentials is None:
        return None
    payload = verify_jwt_token(credentials.credentials)
    return identity_from_claims(payload)


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
