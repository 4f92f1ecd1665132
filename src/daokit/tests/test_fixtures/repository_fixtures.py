"""Fixtures for repository tests."""

import uuid

import pytest
from faker import Faker
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from daokit.repositories.repository import Repository
from daokit.stats.collector import StatsCollector

from .model_fixtures import Note, User

# NOTE: All fixtures in this file depend on the `async_engine` fixture defined in conftest.py.
# Every test gets its own SQLite file, so no cleanup is needed between tests.

fake = Faker()


@pytest.fixture
def stats():
    """
    A started StatsCollector whose reporter never fires during a test.

    Tests call `stats.wait_idle()` before inspecting `stats.snapshot()`, so every
    sample produced by the operation under test has been aggregated.
    """
    collector = StatsCollector("test stats", interval=3600, warmup_intervals=(), slow_query_ms=None)
    collector.start()
    yield collector
    collector.stop()


@pytest.fixture
async def repo(async_engine: AsyncEngine, stats: StatsCollector) -> Repository:
    """
    Repository bound to the per-test engine and the started stats collector.

    Usage:
        - Injected into tests that exercise create/update/delete/query round trips.
        - The unique index `idx_email` is registered with the message "email taken".
    """
    repository = Repository(async_engine, stats)
    repository.register_unique_message("idx_email", "email taken")
    return repository


@pytest.fixture
def statement_log(async_engine: AsyncEngine):
    """
    Every SQL statement sent to the database during the test, in order.

    Used to prove that a guarded operation made no storage call at all.
    """
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(async_engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(async_engine.sync_engine, "before_cursor_execute", _record)


class _RowcountOverride:
    """A result whose rowcount is replaced; everything else comes from the real result."""

    def __init__(self, result, rowcount: int):
        self._result = result
        self.rowcount = rowcount

    def __getattr__(self, name):
        return getattr(self._result, name)


@pytest.fixture
def two_rows_per_mutation(monkeypatch):
    """
    Every UPDATE/DELETE executed through an AsyncSession reports two affected rows,
    while still running against the single real row.
    """
    original_execute = AsyncSession.execute

    async def execute(self, statement, *args, **kwargs):
        result = await original_execute(self, statement, *args, **kwargs)
        if getattr(statement, "is_update", False) or getattr(statement, "is_delete", False):
            return _RowcountOverride(result, 2)
        return result

    monkeypatch.setattr(AsyncSession, "execute", execute)


@pytest.fixture
def make_user():
    """
    Factory for unsaved users with unique emails.

    Usage:
        user = make_user(name="bob")
    """
    def _make(**overrides) -> User:
        data = {
            "email": f"user_{uuid.uuid4().hex[:8]}@example.com",
            "name": fake.first_name(),
        }
        data.update(overrides)
        return User(**data)

    return _make


@pytest.fixture
async def created_user(repo: Repository, make_user) -> User:
    """A single persisted user."""
    return await repo.create(make_user(email="testuser@example.com"))


@pytest.fixture
async def notes(repo: Repository) -> list[Note]:
    """
    100 persisted notes, codes `code-000` .. `code-099`, rank equal to the index.

    Supports pagination, ordering and counting tests.
    """
    created = []
    for idx in range(100):
        created.append(await repo.create(Note(code=f"code-{idx:03d}", body=fake.sentence(), rank=idx)))
    return created
