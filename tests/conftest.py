"""
Shared test configuration and fixtures.

Provides PostgreSQL database setup for the model and sweep tests (skipped when no database is
reachable) and settings for the service-level tests.
"""

import os
import uuid
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import NoOpMetricsClient
from de.hejtalent.crm.model.base import Base
from de.hejtalent.crm.model import accounts, crm, ms365, outreach  # noqa: F401


# Test database configuration
TEST_DB_HOST = os.getenv("TEST_DB_HOST", "postgres")
TEST_DB_PORT = os.getenv("TEST_DB_PORT", "5432")
TEST_DB_USER = os.getenv("TEST_DB_USER", "postgres")
TEST_DB_PASSWORD = os.getenv("TEST_DB_PASSWORD", "password")

# Admin URL for database creation/deletion (connects to postgres database)
ADMIN_DATABASE_URL = f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@{TEST_DB_HOST}:{TEST_DB_PORT}/postgres"


async def check_postgres_available():
    """Check if PostgreSQL is available for testing."""
    try:
        admin_engine = create_async_engine(ADMIN_DATABASE_URL, echo=False)
        async with admin_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await admin_engine.dispose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture(scope="function")
async def test_database():
    """Create and clean up test database for each test function."""
    if not await check_postgres_available():
        pytest.skip("PostgreSQL database not available for testing")

    # Use a unique database name for each test to avoid conflicts
    unique_db_name = f"crm_test_{uuid.uuid4().hex[:8]}"
    unique_db_url = (
        f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@"
        f"{TEST_DB_HOST}:{TEST_DB_PORT}/{unique_db_name}"
    )

    admin_engine = create_async_engine(
        ADMIN_DATABASE_URL, echo=False, isolation_level="AUTOCOMMIT"
    )

    try:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {unique_db_name}"))

        yield unique_db_url

    finally:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"DROP DATABASE IF EXISTS {unique_db_name}"))
        await admin_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def engine(test_database):
    """Create async SQLAlchemy engine with every mapped table."""
    engine = create_async_engine(
        test_database,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_maker):
    """Create async database session for testing."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def settings():
    """Fully configured settings that never point at a real service."""
    return Settings(
        debug=False,
        supabase_url="http://auth.test",
        supabase_service_role_key="service-role-key",
        supabase_jwt_secret="test-jwt-secret-with-at-least-32-bytes",
        ms365_client_id="client-id",
        ms365_client_secret="client-secret",
        ms365_tenant_id="tenant-id",
        ms365_login_base_url="http://login.test",
        ms365_graph_base_url="http://graph.test/v1.0",
        resend_api_key="resend-key",
        resend_base_url="http://mail.test",
        research_delay=0,
        test_email_delay=0,
        metrics_backend="none",
    )  # type: ignore


@pytest.fixture
def metrics_client():
    return NoOpMetricsClient()
