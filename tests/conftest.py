"""Pytest configuration and fixtures for authorization engine tests."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.base import Base
from app.features.permissions import models  # noqa: F401
from app.features.permissions.cache import PermissionContextCache
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.schemas import IdentityContext
from app.features.permissions.store import InMemoryOverrideStore
from app.features.permissions.taxonomy import Role


@pytest.fixture
def store():
    """Empty in-memory override store."""
    return InMemoryOverrideStore()


@pytest.fixture
def cache():
    return PermissionContextCache(ttl_seconds=10.0, maxsize=128)


@pytest.fixture
def engine(store, cache):
    """Engine over the in-memory store, with a context cache."""
    return AuthorizationEngine(store, cache=cache, timeout=1.0)


@pytest.fixture
def make_identity():
    """Factory for identities; defaults to a Member of org-1."""
    def _make(role: Role = Role.MEMBER, user_id: str = "user-1", organization_id: str = "org-1"):
        return IdentityContext(user_id=user_id, organization_id=organization_id, role=role)
    return _make


@pytest_asyncio.fixture
async def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    db_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    await db_engine.dispose()
