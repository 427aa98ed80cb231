"""
Test token verification and identity extraction.
"""

import time

import jwt
import pytest
from fastapi import HTTPException

from app.core import config
from app.features.identity.auth import identity_from_claims, verify_jwt_token
from app.features.permissions.taxonomy import Role


SECRET = "identity-test-secret-with-enough-bytes"


def test_identity_from_claims():
    identity = identity_from_claims({"sub": "u1", "org_id": "org-1", "org_role": "org:member"})

    assert identity.user_id == "u1"
    assert identity.organization_id == "org-1"
    assert identity.role is Role.MEMBER


def test_unknown_role_claim_maps_to_viewer():
    identity = identity_from_claims({"sub": "u1", "org_id": "org-1", "org_role": "org:billing"})
    assert identity.role is Role.VIEWER


def test_missing_organization_is_unauthenticated():
    assert identity_from_claims({"sub": "u1"}) is None
    assert identity_from_claims({"org_id": "org-1"}) is None


def test_verify_with_secret(monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET", SECRET)
    token = jwt.encode({"sub": "u1"}, SECRET, algorithm="HS256")

    assert verify_jwt_token(token)["sub"] == "u1"

    forged = jwt.encode({"sub": "u1"}, "some-other-secret-with-enough-bytes", algorithm="HS256")
    with pytest.raises(HTTPException) as exc_info:
        verify_jwt_token(forged)
    assert exc_info.value.status_code == 401


def test_verify_without_secret_checks_expiry(monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET", None)
    token = jwt.encode({"sub": "u1"}, SECRET, algorithm="HS256")
    assert verify_jwt_token(token)["sub"] == "u1"

    expired = jwt.encode({"sub": "u1", "exp": int(time.time()) - 60}, SECRET, algorithm="HS256")
    with pytest.raises(HTTPException) as exc_info:
        verify_jwt_token(expired)
    assert exc_info.value.detail == "Token has expired"
