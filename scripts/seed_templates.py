"""
Seed script to populate the global permission templates.

Run this script after database initialization to create the templates every
organization can apply on top of a user's role defaults.

Usage:
    uv run python -m scripts.seed_templates
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.permissions.models import PermissionTemplate
from app.features.permissions.service import PermissionService
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_TEMPLATES = {
    "Team Lead": {
        "description": "Sees and coordinates the work of their team",
        "permissions": {
            "tasks": {"view_team": True},
            "timesheet": {"view_team": True},
            "leaves": {"view_team": True},
            "analytics": {"view_team": True},
        },
    },
    "Approver": {
        "description": "Approves team tasks, timesheets and leave requests",
        "permissions": {
            "tasks": {"approve": True},
            "timesheet": {"approve_team": True},
            "leaves": {"approve_team": True},
        },
    },
    "Resource Coordinator": {
        "description": "Books, allocates and manages spaces and equipment",
        "permissions": {
            "resources": {"view": True, "book": True, "allocate": True, "manage": True},
        },
    },
    "HR Partner": {
        "description": "Manages membership and sees organization analytics",
        "permissions": {
            "members": {"view": True, "add": True, "edit": True, "remove": True},
            "leaves": {"view_team": True},
            "analytics": {"view_org": True},
        },
    },
    "Read Only": {
        "description": "Can view own data but not change anything",
        "permissions": {
            "tasks": {"create": False, "edit_own": False},
            "timesheet": {"edit_own": False},
            "leaves": {"request": False},
        },
    },
}


async def seed_templates(db: AsyncSession) -> int:
    """Create the global templates that do not exist yet."""
    log.info("Creating default permission templates...")
    service = PermissionService(db)
    created = 0
    
    for name, template_config in DEFAULT_TEMPLATES.items():
        stmt = select(PermissionTemplate).where(
            PermissionTemplate.name == name,
            PermissionTemplate.organization_id.is_(None),
        )
        result = await db.execute(stmt)
        if result.scalars().first():
            log.debug(f"Template '{name}' already exists, skipping")
            continue
        
        await service.create_template(
            name=name,
            permissions=template_config["permissions"],
            description=template_config["description"],
        )
        created += 1
        log.info(f"Created template: {name}")
    
    log.info(f"Created {created} templates")
    return created


async def main():
    """Main function to seed permission templates."""
    log.info("Starting template seeding...")
    
    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()
    
    async for db in get_db():
        try:
            await seed_templates(db)
            log.info("Template seeding completed successfully!")
        except Exception as e:
            log.error(f"Error seeding templates: {e}", exc_info=True)
            await db.rollback()
            raise
        
        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
