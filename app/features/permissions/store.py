"""
Override store contract and implementations.

The engine only depends on OverrideStore. SqlAlchemyOverrideStore persists
overrides in the service database; InMemoryOverrideStore keeps them in
process memory (tests, local tooling).

Store implementations raise StoreUnavailableError for any backend failure;
the context resolver turns that into a fail-closed fallback.
"""
import abc
import copy
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.permissions.exceptions import StoreUnavailableError
from app.features.permissions.models import (
    OrganizationRolePermission,
    RoleModuleAccess,
    UserModuleAccess,
)
from app.features.permissions.schemas import ModuleAccessRecord
from app.features.permissions.taxonomy import ModuleId, Role
from app.utils import get_logger


log = get_logger(__name__)

OverrideDocument = Dict[str, Any]

# Returned by a mutator to remove the record inside the same transaction
DELETE_OVERRIDE: Dict[str, Any] = {"__delete__": True}

OverrideMutator = Callable[[Optional[OverrideDocument]], Optional[OverrideDocument]]


class OverrideStore(abc.ABC):
    """Read/write contract for organization overrides and module-access records."""

    # Reads

    @abc.abstractmethod
    async def get_role_override(self, organization_id: str, role: Role) -> Optional[OverrideDocument]:
        """Raw override document for (organization, role), or None."""

    @abc.abstractmethod
    async def list_role_overrides(self, organization_id: str) -> Dict[Role, OverrideDocument]:
        """All override documents of an organization, keyed by role."""

    @abc.abstractmethod
    async def get_role_module_access(self, organization_id: str, role: Role) -> List[ModuleAccessRecord]:
        """Role-tier module records for (organization, role)."""

    @abc.abstractmethod
    async def get_user_module_access(self, organization_id: str, user_id: str) -> List[ModuleAccessRecord]:
        """User-tier module records for (organization, user)."""

    # Writes

    @abc.abstractmethod
    async def update_role_override(
        self,
        organization_id: str,
        role: Role,
        mutate: OverrideMutator,
    ) -> Optional[OverrideDocument]:
        """
        Read-merge-write the override document atomically.

        mutate receives a copy of the current document (None if absent) and
        returns the new document, None to leave the store untouched, or
        DELETE_OVERRIDE to remove the record under the same lock.
        Returns what was written (None after a delete).
        """

    @abc.abstractmethod
    async def delete_role_override(self, organization_id: str, role: Role) -> bool:
        """Remove the whole override record. Returns True if one existed."""

    @abc.abstractmethod
    async def upsert_role_module_access(
        self, organization_id: str, role: Role, module_id: ModuleId, has_access: bool
    ) -> None:
        """Create or update a role-tier module record."""

    @abc.abstractmethod
    async def upsert_user_module_access(
        self, organization_id: str, user_id: str, module_id: ModuleId, has_access: bool
    ) -> None:
        """Create or update a user-tier module record."""

    @abc.abstractmethod
    async def delete_user_module_access(self, organization_id: str, user_id: str, module_id: ModuleId) -> bool:
        """Remove a user-tier module record. Returns True if one existed."""


# ============================================================================
# SQLAlchemy Store
# ============================================================================

class SqlAlchemyOverrideStore(OverrideStore):
    """
    Override store backed by the service database.

    Every call opens its own session from the factory, so concurrent reads
    issued by the resolver never share an AsyncSession.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_role_override(self, organization_id: str, role: Role) -> Optional[OverrideDocument]:
        try:
            async with self._session_factory() as session:
                record = await self._find_role_override(session, organization_id, role)
                return copy.deepcopy(record.permissions) if record else None
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read role override for {organization_id}/{role.name}") from e

    async def list_role_overrides(self, organization_id: str) -> Dict[Role, OverrideDocument]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(OrganizationRolePermission)
                    .where(OrganizationRolePermission.organization_id == organization_id)
                )
                return {record.role: copy.deepcopy(record.permissions) for record in result.scalars().all()}
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to list role overrides for {organization_id}") from e

    async def get_role_module_access(self, organization_id: str, role: Role) -> List[ModuleAccessRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RoleModuleAccess).where(
                        RoleModuleAccess.organization_id == organization_id,
                        RoleModuleAccess.role == role,
                    )
                )
                return _to_records(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read role module access for {organization_id}/{role.name}") from e

    async def get_user_module_access(self, organization_id: str, user_id: str) -> List[ModuleAccessRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserModuleAccess).where(
                        UserModuleAccess.organization_id == organization_id,
                        UserModuleAccess.user_id == user_id,
                    )
                )
                return _to_records(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read user module access for {organization_id}/{user_id}") from e

    async def update_role_override(
        self,
        organization_id: str,
        role: Role,
        mutate: OverrideMutator,
    ) -> Optional[OverrideDocument]:
        # One retry covers two writers racing to create the same record
        for attempt in range(2):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        record = await self._find_role_override(session, organization_id, role, for_update=True)
                        current = copy.deepcopy(record.permissions) if record else None
                        updated = mutate(current)
                        if updated is None:
                            return None
                        if updated is DELETE_OVERRIDE:
                            if record is not None:
                                await session.delete(record)
                            return None
                        if record is None:
                            session.add(OrganizationRolePermission(
                                organization_id=organization_id,
                                role=role,
                                permissions=updated,
                            ))
                        else:
                            record.permissions = updated
                        return updated
            except IntegrityError:
                if attempt == 1:
                    raise StoreUnavailableError(
                        f"Concurrent writes to role override {organization_id}/{role.name}"
                    ) from None
                log.debug(f"Role override {organization_id}/{role.name} created concurrently, retrying")
            except SQLAlchemyError as e:
                raise StoreUnavailableError(f"Failed to write role override for {organization_id}/{role.name}") from e
        return None

    async def delete_role_override(self, organization_id: str, role: Role) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(OrganizationRolePermission).where(
                            OrganizationRolePermission.organization_id == organization_id,
                            OrganizationRolePermission.role == role,
                        )
                    )
                    return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to delete role override for {organization_id}/{role.name}") from e

    async def upsert_role_module_access(
        self, organization_id: str, role: Role, module_id: ModuleId, has_access: bool
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(RoleModuleAccess).where(
                            RoleModuleAccess.organization_id == organization_id,
                            RoleModuleAccess.role == role,
                            RoleModuleAccess.module_id == module_id.value,
                        )
                    )
                    record = result.scalar_one_or_none()
                    if record is None:
                        session.add(RoleModuleAccess(
                            organization_id=organization_id,
                            role=role,
                            module_id=module_id.value,
                            has_access=has_access,
                        ))
                    else:
                        record.has_access = has_access
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to write role module access for {organization_id}/{role.name}") from e

    async def upsert_user_module_access(
        self, organization_id: str, user_id: str, module_id: ModuleId, has_access: bool
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(UserModuleAccess).where(
                            UserModuleAccess.organization_id == organization_id,
                            UserModuleAccess.user_id == user_id,
                            UserModuleAccess.module_id == module_id.value,
                        )
                    )
                    record = result.scalar_one_or_none()
                    if record is None:
                        session.add(UserModuleAccess(
                            organization_id=organization_id,
                            user_id=user_id,
                            module_id=module_id.value,
                            has_access=has_access,
                        ))
                    else:
                        record.has_access = has_access
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to write user module access for {organization_id}/{user_id}") from e

    async def delete_user_module_access(self, organization_id: str, user_id: str, module_id: ModuleId) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(UserModuleAccess).where(
                            UserModuleAccess.organization_id == organization_id,
                            UserModuleAccess.user_id == user_id,
                            UserModuleAccess.module_id == module_id.value,
                        )
                    )
                    return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to delete user module access for {organization_id}/{user_id}") from e

    @staticmethod
    async def _find_role_override(
        session: AsyncSession,
        organization_id: str,
        role: Role,
        for_update: bool = False,
    ) -> Optional[OrganizationRolePermission]:
        stmt = select(OrganizationRolePermission).where(
            OrganizationRolePermission.organization_id == organization_id,
            OrganizationRolePermission.role == role,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()


def _to_records(rows) -> List[ModuleAccessRecord]:
    records = []
    for row in rows:
        try:
            module_id = ModuleId(row.module_id)
        except ValueError:
            log.warning(f"Ignoring module access record for unknown module {row.module_id!r}")
            continue
        records.append(ModuleAccessRecord(module_id=module_id, has_access=row.has_access))
    return records


# ============================================================================
# In-memory Store
# ============================================================================

class InMemoryOverrideStore(OverrideStore):
    """Process-local store. Not shared between workers."""

    def __init__(self):
        self.role_overrides: Dict[tuple[str, Role], OverrideDocument] = {}
        self.role_modules: Dict[tuple[str, Role], Dict[ModuleId, bool]] = {}
        self.user_modules: Dict[tuple[str, str], Dict[ModuleId, bool]] = {}

    async def get_role_override(self, organization_id: str, role: Role) -> Optional[OverrideDocument]:
        document = self.role_overrides.get((organization_id, role))
        return copy.deepcopy(document) if document is not None else None

    async def list_role_overrides(self, organization_id: str) -> Dict[Role, OverrideDocument]:
        return {
            role: copy.deepcopy(document)
            for (org_id, role), document in self.role_overrides.items()
            if org_id == organization_id
        }

    async def get_role_module_access(self, organization_id: str, role: Role) -> List[ModuleAccessRecord]:
        modules = self.role_modules.get((organization_id, role), {})
        return [ModuleAccessRecord(module_id=m, has_access=a) for m, a in modules.items()]

    async def get_user_module_access(self, organization_id: str, user_id: str) -> List[ModuleAccessRecord]:
        modules = self.user_modules.get((organization_id, user_id), {})
        return [ModuleAccessRecord(module_id=m, has_access=a) for m, a in modules.items()]

    async def update_role_override(
        self,
        organization_id: str,
        role: Role,
        mutate: OverrideMutator,
    ) -> Optional[OverrideDocument]:
        current = await self.get_role_override(organization_id, role)
        updated = mutate(current)
        if updated is DELETE_OVERRIDE:
            self.role_overrides.pop((organization_id, role), None)
            return None
        if updated is not None:
            self.role_overrides[(organization_id, role)] = copy.deepcopy(updated)
        return updated

    async def delete_role_override(self, organization_id: str, role: Role) -> bool:
        return self.role_overrides.pop((organization_id, role), None) is not None

    async def upsert_role_module_access(
        self, organization_id: str, role: Role, module_id: ModuleId, has_access: bool
    ) -> None:
        self.role_modules.setdefault((organization_id, role), {})[module_id] = has_access

    async def upsert_user_module_access(
        self, organization_id: str, user_id: str, module_id: ModuleId, has_access: bool
    ) -> None:
        self.user_modules.setdefault((organization_id, user_id), {})[module_id] = has_access

    async def delete_user_module_access(self, organization_id: str, user_id: str, module_id: ModuleId) -> bool:
        modules = self.user_modules.get((organization_id, user_id), {})
        return modules.pop(module_id, None) is not None
