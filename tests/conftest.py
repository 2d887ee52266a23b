"""pytest fixtures for EventTracker tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite database with the schema created
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings with small depths and no retry delays
- chain: In-memory chain source
- pipeline: IngestionPipeline wired to ``chain`` and ``uow_factory``

Tests run against a temporary SQLite file through aiosqlite. Set
TEST_DATABASE=postgres to run them against a PostgreSQL testcontainer with
the Alembic migrations applied instead.
"""

import os
import subprocess
from typing import AsyncGenerator

# Chain connectivity settings are only required outside tests
os.environ.setdefault("APP_ENV", "test")

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventtracker.core.config import Settings
from eventtracker.core.database import create_schema, setup_db_session
from eventtracker.services.ingestion.pipeline import IngestionPipeline
from eventtracker.uow import create_uow_factory
from fakes import FakeChain

# Children before parents
TABLES = (
    "sale_listings",
    "offers",
    "nfts",
    "projects",
    "randao_commits",
    "randao_rounds",
    "market_statistics",
    "chain_events",
    "applied_blocks",
    "integrity_alerts",
    "system_state",
)


@pytest.fixture(scope="session")
def postgres_url():
    """Provide a session-scoped PostgreSQL URL with migrations applied, if requested.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    if os.environ.get("TEST_DATABASE") != "postgres":
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_eventtracker",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
        )

        yield db_url


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(
    tmp_path, postgres_url
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over an empty database.

    SQLite gets a fresh file per test. PostgreSQL tables are emptied after
    each test for isolation.
    """
    if postgres_url is None:
        factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'eventtracker.db'}")
        await create_schema(factory.kw["bind"])
    else:
        factory = setup_db_session(postgres_url, pool_size=5)

    yield factory

    if postgres_url is not None:
        async with factory() as session:
            for table in TABLES:
                await session.execute(text(f"DELETE FROM {table}"))
            await session.commit()

    await factory.kw["bind"].dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    """Test settings: small confirmation depth and window, no retry delay."""
    return Settings(
        app_env="test",
        database_url="sqlite+aiosqlite://",
        confirmation_depth=2,
        reorg_safety_margin=4,
        max_blocks_per_sync=100,
        prefetch_concurrency=4,
        retry_base_seconds=0,
        retry_max_seconds=0,
        randao_quorum=3,
        randao_reveal_window_blocks=0,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the pipeline under test."""
    return []


@pytest.fixture
def pipeline(chain, uow_factory, settings, sleeps) -> IngestionPipeline:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return IngestionPipeline(chain, uow_factory, settings, sleep=record_sleep)
