"""
Test configuration and fixtures for the Entitlements service.

Provides shared fixtures for unit and integration tests. Service tests run
against a throwaway SQLite file database built from the SQLModel metadata.
"""

import os

# Settings are read once at import time, so the environment goes first
os.environ.pop("DATABASE_URL", None)
os.environ.update({
    "ENVIRONMENT": "testing",
    "SUPABASE_URL": "https://testproject.supabase.co",
    "SUPABASE_JWT_SECRET": "test-jwt-secret-with-at-least-32-bytes!",
    "STRIPE_SECRET_KEY": "sk_test_entitlements",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_entitlements",
    "ADMIN_API_KEY": "test-admin-key",
    "CRON_SECRET": "test-cron-secret",
    "FREE_TIER_HORSE_LIMIT": "0",
})
os.environ.pop("RESEND_API_KEY", None)

from typing import AsyncGenerator, Dict
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from entitlements.infrastructure.db.models import PlanModel

from factories import seed_plans


# =============================================================================
# Database Fixtures
# =============================================================================

async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite file database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'entitlements.db'}")
    await _create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def locking_engine(tmp_path):
    """
    SQLite database whose transactions take the write lock up front.

    pysqlite's deferred BEGIN lets two writers deadlock on lock upgrade;
    BEGIN IMMEDIATE serializes them instead, which is what concurrent
    activation tests need.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'locking.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await _create_schema(engine)
    yield engine
    await engine.dispose()


def _factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return _factory(engine)


@pytest.fixture
def locking_session_factory(locking_engine) -> async_sessionmaker[AsyncSession]:
    return _factory(locking_engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# =============================================================================
# Sample Data
# =============================================================================

@pytest.fixture
async def plans(session) -> Dict[str, PlanModel]:
    return await seed_plans(session)


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_stripe_service():
    """Mock for StripeService; network calls are AsyncMocks."""
    mock = MagicMock()
    mock.create_checkout_session = AsyncMock(
        return_value={"id": "cs_test_123", "url": "https://checkout.stripe.com/c/pay/cs_test_123"}
    )
    mock.retrieve_subscription = AsyncMock()
    return mock


@pytest.fixture
def mock_notifier():
    mock = MagicMock()
    mock.send_subscription_expired = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def mock_user_directory():
    mock = MagicMock()
    mock.get_email = AsyncMock(return_value="rider@example.com")
    return mock


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from entitlements.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def authenticated_user(user_id):
    from entitlements.api.dependencies import AuthenticatedUser
    return AuthenticatedUser(id=user_id, email="rider@example.com")


@pytest.fixture
def api(app, session_factory, authenticated_user):
    """
    App wired to the test database with authentication stubbed out.

    Requests share the pytest event loop, so the aiosqlite engine is safe
    to use from route handlers.
    """
    from entitlements.api.dependencies import get_current_user
    from entitlements.infrastructure.db.database import get_session

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_user():
        return authenticated_user

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_current_user] = override_user
    return app


@pytest.fixture
async def async_client(api) -> AsyncGenerator[AsyncClient, None]:
    """Async test client on the current event loop."""
    async with AsyncClient(transport=ASGITransport(app=api), base_url="http://test") as ac:
        yield ac
