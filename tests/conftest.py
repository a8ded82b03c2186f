"""Test configuration and fixtures for berryorm."""

from dotenv import load_dotenv
import pytest
import asyncio
import os
import sys
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from berryorm import create_instance_with_engine
from tests.schema import schema

# Try to load environment variables from .env file
load_dotenv()


@pytest.fixture(scope="session", autouse=True)
def event_loop_policy():
    """Set event loop policy for Windows compatibility."""
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    yield


@pytest.fixture(scope="function")
async def engine():
    """Create a test database engine for each test function."""
    test_db_url = os.getenv('BERRYORM_TEST_DATABASE_URL')

    if test_db_url:
        if test_db_url.startswith("postgresql"):
            # asyncpg: keep the pool tiny to avoid event loop issues between tests
            engine = create_async_engine(
                test_db_url,
                echo=False,
                future=True,
                pool_size=1,
                max_overflow=0,
                pool_pre_ping=False,
                pool_recycle=-1,
            )
        else:
            engine = create_async_engine(test_db_url, echo=False, future=True, pool_pre_ping=True)
        # Start from an empty database
        async with engine.begin() as conn:
            await conn.run_sync(schema.metadata.drop_all)
        is_external_db = True
    else:
        # In-memory SQLite shared by every connection of this engine
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        is_external_db = False

    yield engine

    if is_external_db:
        async with engine.begin() as conn:
            await conn.run_sync(schema.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def orm(engine):
    """The test schema bound to ``engine`` with every table migrated."""
    instance = create_instance_with_engine(schema, engine)
    await instance.migrate()
    return instance
