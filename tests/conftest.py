"""
Pytest fixtures for TaskGate tests.
"""

import os
from datetime import datetime, timedelta
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure test config is set before importing taskgate modules.
os.environ.setdefault("TASKGATE_ENV", "development")
os.environ.setdefault("TASKGATE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TASKGATE_BCRYPT_ROUNDS", "4")
os.environ.setdefault("TASKGATE_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("TASKGATE_NOTIFICATION_BACKEND", "memory")

from taskgate.auth.context import RequestContext
from taskgate.auth.passwords import hash_password
from taskgate.db.base import Base, enable_sqlite_savepoints
from taskgate.db.repositories import UserRepository
from taskgate.engine.core import TaskGateEngine
from taskgate.models import Role, User
from taskgate.notifications.gateway import InMemoryNotificationGateway
from taskgate.utils.time import utc_now
import taskgate.db.tables  # noqa: F401

pytest_plugins = ("pytest_asyncio",)

PASSWORD = "Passw0rd"
CLIENT_IP = "203.0.113.7"


class FakeClock:
    """Controllable clock. Starts at the real current time."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or utc_now()

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
async def db_engine():
    """Fresh in-memory database wired into taskgate.db.base."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)

    # Override global engine/session factory for dependency injection.
    from taskgate import db as db_module

    db_module.base.engine = engine
    db_module.base.async_session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db_engine):
    """Provide a database session per test."""
    from taskgate import db as db_module

    async with db_module.base.async_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return InMemoryNotificationGateway()


@pytest.fixture
def context():
    return RequestContext(ip_address=CLIENT_IP, user_agent="pytest")


@pytest.fixture
def gate(session, context, gateway, clock):
    """A TaskGateEngine bound to the test session, fake clock and in-memory gateway."""
    return TaskGateEngine(session, context, gateway=gateway, clock=clock)


async def create_user(
    session: AsyncSession,
    name: str,
    role: Role,
    manager: Optional[User] = None,
    email: Optional[str] = None,
    password: str = PASSWORD,
) -> User:
    return await UserRepository(session).create(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        password_hash=hash_password(password),
        role=role,
        now=utc_now(),
        manager_id=manager.id if manager else None,
    )


@pytest.fixture
async def admin(session):
    return await create_user(session, "Ada Admin", Role.SUPER_ADMIN)


@pytest.fixture
async def manager(session):
    return await create_user(session, "Mona Manager", Role.MANAGER)


@pytest.fixture
async def employee(session, manager):
    return await create_user(session, "Eli Employee", Role.EMPLOYEE, manager=manager)


@pytest.fixture
async def teammate(session, manager):
    return await create_user(session, "Tess Teammate", Role.EMPLOYEE, manager=manager)


@pytest.fixture
async def other_manager(session):
    return await create_user(session, "Otto Manager", Role.MANAGER)


@pytest.fixture
async def outsider(session, other_manager):
    """Employee on another manager's team."""
    return await create_user(session, "Omar Outsider", Role.EMPLOYEE, manager=other_manager)


@pytest.fixture
async def client(db_engine):
    """Async test client against the app; the database is the in-memory test engine."""
    from taskgate.main import app
    from taskgate.notifications.gateway import get_notification_gateway

    get_notification_gateway().clear()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded(db_engine):
    """Committed users for API tests: {role_name: User}."""
    from taskgate import db as db_module

    async with db_module.base.async_session_factory() as session:
        admin_user = await create_user(session, "Ada Admin", Role.SUPER_ADMIN)
        manager_user = await create_user(session, "Mona Manager", Role.MANAGER)
        employee_user = await create_user(
            session, "Eli Employee", Role.EMPLOYEE, manager=manager_user
        )
        other_manager_user = await create_user(session, "Otto Manager", Role.MANAGER)
        outsider_user = await create_user(
            session, "Omar Outsider", Role.EMPLOYEE, manager=other_manager_user
        )
        await session.commit()

    return {
        "admin": admin_user,
        "manager": manager_user,
        "employee": employee_user,
        "other_manager": other_manager_user,
        "outsider": outsider_user,
    }


async def login(client: AsyncClient, user: User, password: str = PASSWORD) -> dict[str, str]:
    """Log in over the API and return Authorization headers."""
    response = await client.post(
        "/v1/auth/login", json={"email": user.email, "password": password}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def future(days: int = 3) -> datetime:
    return utc_now() + timedelta(days=days)

