"""
Identity token verification.

Tokens are issued by the session provider and carry the user, the active
organization and the user's role claim in that organization.
"""
from typing import Optional

import jwt
from fastapi import HTTPException, status

from app.core import config
from app.features.permissions.schemas import IdentityContext
from app.features.permissions.taxonomy import role_from_claim
from app.utils import get_logger


log = get_logger(__name__)


def verify_jwt_token(token: str) -> dict:
    """
    Verify a session JWT and return its payload.

    The signature is checked when JWT_SECRET is configured; otherwise only
    the expiry is (local development).

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        if config.JWT_SECRET:
            payload = jwt.decode(
                token,
                config.JWT_SECRET,
                algorithms=[config.JWT_ALGORITHM],
                options={"verify_aud": False},
            )
        else:
            payload = jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": True}
            )

        return payload

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def identity_from_claims(payload: dict) -> Optional[IdentityContext]:
    """
    Build the identity of a token payload.

    Returns None when the token has no user or no active organization.
    An unrecognized role claim maps to the lowest role.
    """
    user_id = payload.get(config.JWT_USER_CLAIM)
    organization_id = payload.get(config.JWT_ORG_CLAIM)
    if not user_id or not organization_id:
        log.debug("Token without user or active organization, treating as unauthenticated")
        return None

    return IdentityContext(
        user_id=str(user_id),
        organization_id=str(organization_id),
        role=role_from_claim(payload.get(config.JWT_ROLE_CLAIM)),
    )
