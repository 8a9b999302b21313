"""
Pytest configuration and fixtures for eventlens tests
"""

import os
import sys
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Import Base first, before importing the app
from eventlens.database import Base, build_session_factory, get_db
from eventlens.policy import PolicyEngine
from eventlens.services.rate_limit_service import RateLimiter
from utils.mocks import FakeRedis, InMemoryStorage, MockAuditLogger
from utils.mock_utils import create_test_user


@pytest.fixture(scope="function")
async def test_engine():
    """A fresh in-memory database per test; StaticPool keeps every session on one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit() -> MockAuditLogger:
    return MockAuditLogger()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
async def test_user(test_db):
    return await create_test_user(test_db, "Alice")


@pytest.fixture
async def other_user(test_db):
    return await create_test_user(test_db, "Bob")


@pytest.fixture
async def test_admin(test_db):
    return await create_test_user(test_db, "Admin", is_global_admin=True)


@pytest.fixture
def actor_for(test_db):
    """Build the policy context for a user row."""

    async def _actor_for(user):
        return await PolicyEngine(test_db).get_user_context(user.id)

    return _actor_for


@pytest.fixture
def row_exists(test_db):
    """Check a row by primary key with a fresh query, bypassing the identity map."""

    async def _row_exists(model, row_id) -> bool:
        result = await test_db.execute(select(model.id).where(model.id == row_id))
        return result.scalar_one_or_none() is not None

    return _row_exists


@pytest.fixture
def app(session_factory, storage, fake_redis):
    """The application wired to the test database, in-memory storage and fake Redis."""
    from main import create_app

    application = create_app(
        storage=storage,
        rate_limiter=RateLimiter(fake_redis, fail_open=False),
        session_factory=session_factory,
    )

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def auth_headers():
    """Generate authentication headers for a user row"""
    from eventlens.auth import create_access_token

    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
