"""
Seed script to write an organization's explicit Viewer module records.

Run this script after database initialization to:
- Create role-tier module records for the Viewer role from the static
  default set (so admins see and edit concrete rows)
- Log a summary of the default action matrix

Usage:
    uv run python -m scripts.seed_permissions <organization_id>
    SEED_ORGANIZATION_ID=<organization_id> uv run python -m scripts.seed_permissions
"""
import asyncio
import os
import sys
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.permissions.defaults import DEFAULT_ACTION_PERMISSIONS, DEFAULT_VIEWER_MODULES
from app.features.permissions.models import RoleModuleAccess
from app.features.permissions.taxonomy import ModuleId, PermissionLevel, Role
from app.utils import get_logger


log = get_logger(__name__)


async def seed_viewer_modules(db: AsyncSession, organization_id: str) -> int:
    """
    Create missing Viewer module records for an organization.

    Existing records are left untouched.

    Returns:
        Number of records created
    """
    log.info(f"Creating Viewer module records for org {organization_id}...")
    result = await db.execute(
        select(RoleModuleAccess.module_id).where(
            RoleModuleAccess.organization_id == organization_id,
            RoleModuleAccess.role == Role.VIEWER,
        )
    )
    existing = set(result.scalars().all())

    created = 0
    for module_id in ModuleId:
        if module_id.value in existing:
            log.debug(f"Module '{module_id.value}' already configured, skipping")
            continue
        db.add(RoleModuleAccess(
            organization_id=organization_id,
            role=Role.VIEWER,
            module_id=module_id.value,
            has_access=module_id in DEFAULT_VIEWER_MODULES,
        ))
        created += 1

    await db.commit()
    log.info(f"Created {created} Viewer module record(s)")
    return created


def log_matrix_summary():
    for role in sorted(Role, reverse=True):
        levels = DEFAULT_ACTION_PERMISSIONS[role].values()
        counts = {level: sum(1 for lvl in levels if lvl is level) for level in PermissionLevel}
        log.info(
            f"  - {role.name.lower()}: "
            + ", ".join(f"{count} {level.value}" for level, count in counts.items())
        )


async def main():
    """Main function to seed module records."""
    organization_id = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("SEED_ORGANIZATION_ID")
    if not organization_id:
        log.error("Usage: python -m scripts.seed_permissions <organization_id>")
        sys.exit(1)

    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            await seed_viewer_modules(db, organization_id)

            log.info("Permission seeding completed successfully!")
            log.info("")
            log.info("Default action matrix:")
            log_matrix_summary()

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
