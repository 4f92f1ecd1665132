"""
Core pytest configuration for the entire test suite.

This module provides only the essential database setup and core utilities that are
needed across all test packages. Domain-specific fixtures live in:
- tests/test_fixtures/model_fixtures.py       (record types used by the tests)
- tests/test_fixtures/repository_fixtures.py  (repository, stats, factories)
"""

from __future__ import annotations

# -------------------------------
# Standard library imports
# -------------------------------
import logging
from pathlib import Path
from typing import AsyncGenerator

# -------------------------------
# Early logging tuning (IMPORTANT)
# -------------------------------
# Set the level for noisy third-party loggers at import time (before importing modules that
# might initialize them). This prevents log spam during pytest collection (Faker, SQLAlchemy, etc.).
NOISY_LOGGERS = (
    "faker",
    "faker.factory",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "asyncio",
    "aiosqlite",
)
for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)

# -------------------------------
# Third-party / project imports
# -------------------------------
import pytest
from pytest import FixtureRequest
from sqlalchemy.ext.asyncio import AsyncEngine

from daokit.config import get_settings
from daokit.core.logging.builder import setup_logging
from daokit.database.base import Base
from daokit.database.session import create_engine

from .test_fixtures import model_fixtures  # noqa: F401 – import to register models with Base.metadata

settings = get_settings()
logger = logging.getLogger(__name__)


@pytest.fixture(scope="session", autouse=True)
def configure_logging(request: FixtureRequest):
    """
    Install the library logging configuration (stdout only) for the test session, then
    re-attach pytest's capture handler so `caplog.records` keeps working after dictConfig.
    """
    setup_logging(settings.model_copy(update={"LOG_TO_STDOUT": True, "LOG_LEVEL": "DEBUG"}))

    caplog_plugin = request.config.pluginmanager.getplugin("logging-plugin")
    handler = getattr(caplog_plugin, "caplog_handler", None)
    if handler is not None:
        logging.getLogger().addHandler(handler)

    yield


# ------------------------------------------------------------------------------------------------
# DATABASE FIXTURES
# ------------------------------------------------------------------------------------------------


def get_test_database_url(tmp_path: Path) -> str:
    """
    A file-based SQLite database per test.

    A file (not `:memory:`) is needed because the repository opens a new session, and
    therefore possibly a new connection, for every operation.
    """
    return f"sqlite+aiosqlite:///{tmp_path / 'test_database.db'}"


@pytest.fixture()
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    # One pooled connection: SQLite allows a single writer, so concurrent creates
    # queue for the connection instead of failing with "database is locked".
    test_settings = settings.model_copy(update={"DATABASE_URL": get_test_database_url(tmp_path)})
    engine = create_engine(test_settings, pool_size=1, max_overflow=0)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


# Repository test fixtures
from .test_fixtures.repository_fixtures import (  # noqa: E402
    stats,
    repo,
    statement_log,
    two_rows_per_mutation,
    make_user,
    created_user,
    notes,
)
