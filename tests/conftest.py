"""Shared pytest fixtures: a throwaway SQLite database per test."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.organizations.models import Organization, Team
from app.features.users.models import User, UserRole
from app.main import app


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine with every table created."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'access.sqlite'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def org(db: AsyncSession) -> Organization:
    organization = Organization(name="Acme", slug="acme")
    db.add(organization)
    await db.commit()
    return organization


@pytest_asyncio.fixture()
async def other_org(db: AsyncSession) -> Organization:
    organization = Organization(name="Globex", slug="globex")
    db.add(organization)
    await db.commit()
    return organization


@pytest_asyncio.fixture()
async def team(db: AsyncSession, org: Organization) -> Team:
    team = Team(organization_id=org.id, name="Platform")
    db.add(team)
    await db.commit()
    return team


@pytest.fixture()
def make_user(db: AsyncSession, org: Organization) -> Callable[..., Awaitable[User]]:
    """Factory creating committed users; defaults to a member of `org`."""

    async def _make(
        name: str,
        role: UserRole = UserRole.MEMBER,
        organization: Organization | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=f"{name.lower()}@example.com",
            name=name,
            role=role,
            organization_id=(organization or org).id,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture()
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    """HTTPX client bound to the app, with request sessions on the test database."""

    async def _get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = jwt.encode({"sub": user.id}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
        return {"Authorization": f"Bearer {token}"}

    return _headers
