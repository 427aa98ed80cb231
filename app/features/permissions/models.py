"""
Override store tables for organization-scoped authorization.

- Organization role overrides: sparse action-level deviations from the
  default matrix, one record per (organization, role)
- Role module access: module visibility per (organization, role, module)
- User module access: per-user module visibility overlay

Organization and user ids come from the external identity provider,
so they are stored as opaque strings without foreign keys.
"""
from typing import Any, Dict
from sqlalchemy import String, Boolean, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from ulid import ULID

from app.core.database.base import Base, TimestampMixin
from app.features.permissions.taxonomy import Role


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


class OrganizationRolePermission(Base, TimestampMixin):
    """
    Action-level overrides for one role inside one organization.

    The payload is a versioned document validated by OverrideConfig:
        {"version": 1, "actions": {"admin:manage_roles": "all"}}
    Keys other than "actions" are preserved across resets.
    """
    __tablename__ = "organization_role_permissions"
    __table_args__ = (
        UniqueConstraint("organization_id", "role", name="uq_org_role_permission"),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[Role] = mapped_column(SQLEnum(Role, name="org_role"), nullable=False)

    permissions: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<OrganizationRolePermission(id={self.id}, org_id={self.organization_id}, role={self.role.name})>"


class RoleModuleAccess(Base, TimestampMixin):
    """Module visibility for every user holding a role in an organization."""
    __tablename__ = "role_module_access"
    __table_args__ = (
        UniqueConstraint("organization_id", "role", "module_id", name="uq_role_module_access"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[Role] = mapped_column(SQLEnum(Role, name="org_role"), nullable=False)
    module_id: Mapped[str] = mapped_column(String(50), nullable=False)
    has_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<RoleModuleAccess(org_id={self.organization_id}, role={self.role.name}, "
            f"module={self.module_id}, has_access={self.has_access})>"
        )


class UserModuleAccess(Base, TimestampMixin):
    """Per-user module visibility; takes precedence over the role tier."""
    __tablename__ = "user_module_access"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", "module_id", name="uq_user_module_access"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    module_id: Mapped[str] = mapped_column(String(50), nullable=False)
    has_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<UserModuleAccess(org_id={self.organization_id}, user_id={self.user_id}, "
            f"module={self.module_id}, has_access={self.has_access})>"
        )
