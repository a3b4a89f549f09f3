"""
Async engine and request-scoped sessions.

SQLite through aiosqlite is the default store. Pointing DATABASE_URL at
postgresql+asyncpg://... is enough to move to PostgreSQL, where the
organization row locks taken by the hierarchy service become real locks.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config


_is_sqlite = config.SQLALCHEMY_DATABASE_URL.startswith("sqlite")

engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    # SQLite connections are cheap and must not be shared across event loops
    poolclass=NullPool if _is_sqlite else None,
    echo=False,
)

# Services commit explicitly and keep using their objects afterwards
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request; anything left pending is committed on success.

    Usage:
        @router.get("/users/{user_id}/effective")
        async def effective(db: AsyncSession = Depends(get_db)):
            return await PermissionService(db).get_effective_permissions(user_id)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None):
    """
    Create every table that does not exist yet.

    Called on application startup; tests pass their own engine.
    """
    from app.core.database.base import Base

    # Register every mapped class on Base.metadata
    from app.features.users.models import User  # noqa: F401
    from app.features.organizations.models import Organization, Team  # noqa: F401
    from app.features.permissions.models import (  # noqa: F401
        PermissionTemplate, PermissionAssignment, AuditLog
    )
    from app.features.hierarchy.models import ManagementEdge  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
