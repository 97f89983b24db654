"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses a file-backed SQLite database through aiosqlite so that several sessions
can commit independently (needed to provoke real version conflicts) without
PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ops_portal.auth.permissions import Actor
from ops_portal.common.constants import UserRole, UserStatus
from ops_portal.config import settings
from ops_portal.database import Base, get_sessions
from ops_portal.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import ops_portal.common.audit  # noqa: F401
import ops_portal.leave.models  # noqa: F401
import ops_portal.notifications.models  # noqa: F401
import ops_portal.org.models  # noqa: F401
import ops_portal.tasks.models  # noqa: F401

from ops_portal.leave.models import LeavePolicy
from ops_portal.org.models import Department, User

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite file per test) ────────────────────────────

@pytest.fixture
async def engine(tmp_path):
    """Fresh database file with all tables for each test."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ops_portal_test.db'}",
        echo=False,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def sessions(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory handed to the services, exactly as in production."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(sessions) -> AsyncGenerator[AsyncSession, None]:
    """Direct session for seeding and assertions; committed on teardown."""
    async with sessions() as session:
        yield session
        await session.commit()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(sessions):
    """Create a fresh app instance with the session factory overridden."""
    application = create_app()
    application.dependency_overrides[get_sessions] = lambda: sessions
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Model factories ─────────────────────────────────────────────────

async def seed_department(
    sessions: async_sessionmaker[AsyncSession],
    *,
    name: str = "Operations",
    code: Optional[str] = None,
) -> Department:
    async with sessions() as session:
        async with session.begin():
            department = Department(
                id=uuid.uuid4(),
                name=name,
                code=code or f"D{uuid.uuid4().hex[:6].upper()}",
                is_active=True,
            )
            session.add(department)
    return department


async def seed_user(
    sessions: async_sessionmaker[AsyncSession],
    *,
    role: UserRole = UserRole.staff,
    department_id: Optional[uuid.UUID] = None,
    status: UserStatus = UserStatus.active,
    overrides: Optional[dict[str, bool]] = None,
    first_name: Optional[str] = None,
) -> User:
    async with sessions() as session:
        async with session.begin():
            user = User(
                id=uuid.uuid4(),
                email=f"{uuid.uuid4().hex[:10]}@ops.example",
                first_name=first_name or role.value.replace("_", " ").title(),
                last_name="Tester",
                role=role,
                status=status,
                department_id=department_id,
                permission_overrides=dict(overrides or {}),
            )
            session.add(user)
    return user


async def seed_policy(
    sessions: async_sessionmaker[AsyncSession],
    *,
    leave_type: str = "annual",
    manager_max_days: Decimal = Decimal("14"),
    department_head_max_days: Decimal = Decimal("30"),
    default_allocation: Decimal = Decimal("20"),
    **kwargs,
) -> LeavePolicy:
    async with sessions() as session:
        async with session.begin():
            policy = LeavePolicy(
                id=uuid.uuid4(),
                leave_type=leave_type,
                manager_max_days=manager_max_days,
                department_head_max_days=department_head_max_days,
                default_allocation=default_allocation,
                **kwargs,
            )
            session.add(policy)
    return policy


@pytest.fixture
async def department(sessions) -> Department:
    return await seed_department(sessions)


@pytest.fixture
async def staff(sessions, department) -> User:
    return await seed_user(sessions, role=UserRole.staff, department_id=department.id)


@pytest.fixture
async def manager(sessions, department) -> User:
    return await seed_user(sessions, role=UserRole.manager, department_id=department.id)


@pytest.fixture
async def department_head(sessions, department) -> User:
    return await seed_user(
        sessions, role=UserRole.department_head, department_id=department.id,
    )


@pytest.fixture
async def admin(sessions) -> User:
    return await seed_user(sessions, role=UserRole.admin)


def actor_of(user: User) -> Actor:
    return user.to_actor()


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(user_id: uuid.UUID, expired: bool = False) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {"sub": str(user_id), "exp": exp}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
