"""
Identity store: keyed user lookups for the permission and hierarchy services.
"""
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.features.users.models import User, UserRole


class IdentityStore:
    """Read-only access to user records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def require_user(self, user_id: str) -> User:
        """Get a user or raise NotFoundError."""
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def get_users_by_role(self, organization_id: str, role: UserRole) -> Sequence[User]:
        result = await self.db.execute(
            select(User)
            .where(User.organization_id == organization_id, User.role == role)
            .order_by(User.name, User.id)
        )
        return result.scalars().all()
