"""
Generic repository: create/read/update/delete for any record type over one AsyncEngine.

The repository owns the engine for its lifetime and opens a short-lived session and
transaction per operation, so one instance can be shared by any number of concurrent
tasks. Every operation commits on its own; there is no cross-operation transaction.

Single-row mutations (update, delete, hard delete, increment) always filter on the
record identity and refuse to run with a nil identity. Without that guard an empty
identity filter would let a statement reach every row of the table, so the check
happens before any storage call is made. A statement that still touches more than
one row is reported at CRITICAL and raised as MultiRowMutationError.

Usage:
    repo = Repository(engine, stats)
    user = User(email="a@b.com")
    await repo.create(user)
    await repo.update_columns(user, User.email)
    users = await repo.query(User).filter("email", "like", "%@b.com").all()
"""

import asyncio
import logging
import threading
import time
import uuid
from typing import Any, Mapping, TypeVar

from sqlalchemy import Index, delete, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from daokit.config.settings import Settings, get_settings
from daokit.database.base import Base, utcnow
from daokit.database.session import create_engine, make_sessionmaker
from daokit.exceptions.base import (
    IdentityParseError,
    InvalidFieldError,
    InvalidIdentityError,
    InvalidRecordError,
    MultiRowMutationError,
)
from daokit.exceptions.mapper import storage_error_handler
from daokit.stats.collector import NullStatsCollector, StatsCollector

from .hooks import DbHook, HookCtx, ListenerFunc, ListenerRegistry, merge_before_save, run_hooks
from .model_info import (
    CREATED_AT_COLUMN,
    DELETED_AT_COLUMN,
    ID_COLUMN,
    UPDATED_AT_COLUMN,
    ModelInfo,
    model_info_for,
)
from .query import Query

ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


def _is_nil(value: Any) -> bool:
    return value is None or value == uuid.UUID(int=0)


class Repository:
    """
    Args:
        engine: the AsyncEngine this repository owns.
        stats: where per-operation timings go (a NullStatsCollector by default).
        sessionmaker: optional factory override; defaults to one bound to `engine`.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        stats: NullStatsCollector | None = None,
        *,
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.engine = engine
        self.sessionmaker = sessionmaker or make_sessionmaker(engine)
        self.stats = stats or NullStatsCollector()
        self.listeners = ListenerRegistry()

        # constraint/index name -> user-facing message; copy-on-write like the listener registry
        self._unique_messages: Mapping[str, str] = {}
        self._unique_messages_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, start_stats: bool = True) -> "Repository":
        """
        Build engine and stats collector from settings. The collector is started
        unless `start_stats` is False; `dispose()` stops it again.
        """
        settings = settings or get_settings()
        stats = StatsCollector.from_settings(settings)
        if start_stats:
            stats.start()
        return cls(create_engine(settings), stats)

    async def dispose(self) -> None:
        self.stats.stop()
        await self.engine.dispose()

    # =================================================================================================================
    # Registration
    # =================================================================================================================

    def query(self, model: type[ModelType]) -> Query[ModelType]:
        return Query(model, self.sessionmaker, self.stats)

    def add_listener(self, model: type, listener: ListenerFunc) -> None:
        """Call `listener(hook, record, hctx)` on every hook for records of `model`."""
        self.listeners.add(model_info_for(model).type_key, listener)

    def remove_listener(self, model: type, listener: ListenerFunc) -> None:
        self.listeners.remove(model_info_for(model).type_key, listener)

    def register_unique_message(self, constraint: str, message: str) -> None:
        """Message surfaced when a write violates the unique constraint/index `constraint`."""
        with self._unique_messages_lock:
            updated = dict(self._unique_messages)
            updated[constraint] = message
            self._unique_messages = updated

    @property
    def unique_messages(self) -> Mapping[str, str]:
        return self._unique_messages

    async def add_unique_index(self, index: str, message: str, model: type, *columns: Any) -> None:
        """
        Register `message` for the unique index `index` and create the index on
        `columns` of the model's table if it does not exist yet.
        """
        await self._add_index(index, message, model, columns, unique=True)

    async def add_index(self, index: str, message: str, model: type, *columns: Any) -> None:
        """Like add_unique_index, for a plain (non-unique) index."""
        await self._add_index(index, message, model, columns, unique=False)

    async def _add_index(self, index: str, message: str, model: type, columns, *, unique: bool) -> None:
        info = model_info_for(model)
        names = info.column_names(columns)
        self.register_unique_message(index, message)

        table = info.model.__table__
        idx = next((i for i in table.indexes if i.name == index), None)
        new_index = idx is None
        if new_index:
            # Index() joins the shared table metadata right away
            idx = Index(index, *(table.c[n] for n in names), unique=unique)

        ready = False
        try:
            async with storage_error_handler("adding index", info.name):
                async with self.engine.begin() as conn:
                    await conn.run_sync(lambda sync_conn: idx.create(sync_conn, checkfirst=True))
            ready = True
        finally:
            if new_index and not ready:
                table.indexes.discard(idx)
        logger.info(
            "repo.index.ready",
            extra={"model": info.name, "index": index, "columns": names, "unique": unique},
        )

    # =================================================================================================================
    # Internal helpers
    # =================================================================================================================

    def _errors(self, operation: str, info: ModelInfo):
        return storage_error_handler(
            operation,
            info.name,
            unique_messages=self._unique_messages,
            unique_sets=info.unique_sets,
        )

    @staticmethod
    def _require_record(record: Any) -> ModelInfo:
        if record is None:
            raise InvalidRecordError("nil record")
        return model_info_for(record)

    @staticmethod
    def _assert_id_valid(record: Any, info: ModelInfo) -> None:
        # Must run before any statement that targets one row by identity.
        if record.is_id_nil():
            logger.info("repo.identity_guard", extra={"model": info.name})
            raise InvalidIdentityError(f"id nil ({info.name})")

    def _check_single_row(self, rowcount: int, operation: str, info: ModelInfo, record_id: Any) -> None:
        if rowcount > 1:
            logger.critical(
                "repo.%s.multi_row", operation,
                extra={"model": info.name, "id": str(record_id), "rows_affected": rowcount},
            )
            raise MultiRowMutationError(
                f"Expected 1 row for {operation} {info.name}, got {rowcount}", rows_affected=rowcount
            )
        if rowcount == 0:
            logger.warning(
                "repo.%s.no_rows", operation,
                extra={"model": info.name, "id": str(record_id)},
            )

    # =================================================================================================================
    # Create
    # =================================================================================================================

    async def create(self, record: ModelType) -> ModelType:
        """
        Insert a new record.

        The identity is generated here, exactly once, right before the insert.

        Raises:
            InvalidRecordError: record is None.
            InvalidIdentityError: the record already has an identity.
            UniqueConstraintViolation: a unique constraint/index was violated; its
                text is the registered message when there is one.
            StorageError: any other storage failure.
        """
        info = self._require_record(record)
        if not record.is_id_nil():
            raise InvalidIdentityError(f"inserting an existing object, {info.name} with {record.get_id()}")

        start = time.perf_counter()
        with self.stats.measure("creating %s", info.name):
            record.generate_id()
            now = utcnow()
            record.created_at = now
            record.updated_at = now

            hctx = HookCtx(all_fields=True)
            await run_hooks(self.listeners, info, record, DbHook.BEFORE_CREATE, hctx)

            derived = merge_before_save(info, record, {})
            info.write(record, derived)

            logger.debug("repo.create.start", extra={"model": info.name, "operation": "create"})
            async with self._errors("creating", info):
                async with self.sessionmaker() as session:
                    async with session.begin():
                        session.add(record)
                        await session.flush()
                        await session.refresh(record)
                    session.expunge(record)

            await run_hooks(self.listeners, info, record, DbHook.AFTER_CREATE, hctx)

        logger.info(
            "repo.create.success",
            extra={
                "model": info.name,
                "operation": "create",
                "id": str(record.get_id()),
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return record

    async def create_multi(self, *records: ModelType) -> list[ModelType]:
        """
        Create every record concurrently, one task per record.

        Returns as soon as one create fails, raising the error of the create that
        failed first (in completion order, not argument order). Creates still in
        flight are not cancelled and may commit; nothing is rolled back across the
        batch.
        """
        if not records:
            return []
        tasks = [asyncio.create_task(self.create(record)) for record in records]
        for finished in asyncio.as_completed(tasks):
            try:
                await finished
            except Exception as exc:
                for task in tasks:
                    if not task.done():
                        task.add_done_callback(_log_detached_create)
                    elif not task.cancelled() and task.exception() not in (None, exc):
                        # retrieved so asyncio does not report it as unhandled
                        logger.warning(
                            "repo.create_multi.additional_failure",
                            extra={"error": type(task.exception()).__name__},
                        )
                raise
        return [t.result() for t in tasks]

    # =================================================================================================================
    # Read
    # =================================================================================================================

    async def by_id(self, model: type[ModelType], record_id: uuid.UUID) -> ModelType:
        """
        Raises:
            InvalidIdentityError: nil id.
            NotFoundError: no live (not soft-deleted) record with that id.
        """
        info = model_info_for(model)
        if _is_nil(record_id):
            raise InvalidIdentityError(f"nil id {info.name}")
        with self.stats.measure("getting %s", info.name):
            return await self.query(model).filter(ID_COLUMN, "=", record_id).first()

    async def by_string_id(self, model: type[ModelType], record_id: str) -> ModelType:
        info = model_info_for(model)
        if not record_id:
            raise IdentityParseError(f"model={info.name}, id empty")
        try:
            parsed = uuid.UUID(record_id)
        except (ValueError, AttributeError, TypeError) as exc:
            raise IdentityParseError(f"invalid id for {info.name}: {record_id!r}") from exc
        return await self.by_id(model, parsed)

    async def get_deleted_by_id(self, model: type[ModelType], record_id: uuid.UUID) -> ModelType:
        """Like by_id, but soft-deleted records are returned too."""
        info = model_info_for(model)
        if _is_nil(record_id):
            raise InvalidIdentityError(f"nil id {info.name}")
        with self.stats.measure("getting %s", info.name):
            return await self.query(model).include_deleted().filter(ID_COLUMN, "=", record_id).first()

    async def load(self, record: ModelType) -> ModelType:
        """Refresh every column of `record` from storage, in place."""
        info = self._require_record(record)
        if record.is_id_nil():
            raise InvalidIdentityError(f"nil id {info.name}")
        with self.stats.measure("loading %s", info.name):
            fetched = await self.query(info.model).filter(ID_COLUMN, "=", record.get_id()).first()
        info.write(record, info.read_all(fetched))
        return record

    async def reload(self, *records: ModelType) -> None:
        for record in records:
            await self.load(record)

    # =================================================================================================================
    # Update
    # =================================================================================================================

    async def update_columns(self, record: ModelType, *columns: Any) -> ModelType:
        """
        Write the current values of the named columns of `record`.

            user.email = "new@b.com"
            await repo.update_columns(user, User.email)     # or "email"
        """
        info = self._require_record(record)
        names = info.column_names(columns)
        return await self.update_column_values(record, info.read(record, names))

    async def update_column(self, record: ModelType, column: Any, value: Any) -> ModelType:
        return await self.update_column_values(record, {column: value})

    async def update_column_values(self, record: ModelType, values: Mapping[Any, Any]) -> ModelType:
        """
        Write explicit column values to the row of `record` and copy them onto it.

        Raises:
            InvalidIdentityError: record has no identity (nothing is executed).
            InvalidFieldError: unknown column, or an attempt to change the identity.
            MultiRowMutationError: more than one row was touched.
            UniqueConstraintViolation / StorageError: storage failures.
        """
        return await self._update(record, values, all_fields=False)

    async def incr_column(self, record: ModelType, column: Any, delta: int | float = 1) -> ModelType:
        """Atomically add `delta` to a numeric column; the record gets the stored result."""
        info = self._require_record(record)
        self._assert_id_valid(record, info)
        name = info.column_name(column)
        return await self._update(record, {name: info.attribute(name) + delta}, all_fields=False)

    async def create_or_update(self, record: ModelType) -> ModelType:
        """Create when the record has no identity yet, else write all its columns."""
        info = self._require_record(record)
        if record.is_id_nil():
            return await self.create(record)
        values = {
            name: value
            for name, value in info.read_all(record).items()
            if name not in (ID_COLUMN, CREATED_AT_COLUMN, UPDATED_AT_COLUMN)
        }
        return await self._update(record, values, all_fields=True)

    async def create_or_update_columns(self, record: ModelType, *columns: Any) -> ModelType:
        info = self._require_record(record)
        if record.is_id_nil():
            return await self.create(record)
        names = info.column_names(columns)
        return await self.update_column_values(record, info.read(record, names))

    async def _update(self, record: ModelType, values: Mapping[Any, Any], *, all_fields: bool) -> ModelType:
        info = self._require_record(record)
        self._assert_id_valid(record, info)
        columns = info.normalize(values)
        if ID_COLUMN in columns:
            raise InvalidFieldError(f"{info.name} identity cannot be updated", fields=[ID_COLUMN])

        record_id = record.get_id()
        with self.stats.measure("updating %s", info.name):
            hctx = HookCtx(fields=columns, all_fields=all_fields)
            await run_hooks(self.listeners, info, record, DbHook.BEFORE_UPDATE, hctx)
            # listeners may have added columns to hctx.fields
            columns = info.normalize(hctx.fields)
            if ID_COLUMN in columns:
                raise InvalidFieldError(f"{info.name} identity cannot be updated", fields=[ID_COLUMN])
            hctx.fields = columns

            merge_before_save(info, record, columns)
            columns.setdefault(UPDATED_AT_COLUMN, utcnow())

            expressions = [name for name, value in columns.items() if isinstance(value, ColumnElement)]
            stmt = (
                update(info.model)
                .where(info.attribute(ID_COLUMN) == record_id)
                .values({info.columns[name]: value for name, value in columns.items()})
                .execution_options(synchronize_session=False)
            )

            logger.debug(
                "repo.update.start",
                extra={"model": info.name, "operation": "update", "columns": sorted(columns)},
            )
            async with self._errors("updating", info):
                async with self.sessionmaker() as session:
                    async with session.begin():
                        result = await session.execute(stmt)
                        self._check_single_row(result.rowcount, "update", info, record_id)
                        computed = {}
                        if expressions and result.rowcount == 1:
                            row = (await session.execute(
                                select(*(info.attribute(name) for name in expressions))
                                .where(info.attribute(ID_COLUMN) == record_id)
                            )).one()
                            computed = dict(zip(expressions, row))

            plain = {name: value for name, value in columns.items() if name not in expressions}
            info.write(record, plain)
            info.write(record, computed)
            for name, value in computed.items():
                columns[name] = value

            await run_hooks(self.listeners, info, record, DbHook.AFTER_UPDATE, hctx)
        return record

    # =================================================================================================================
    # Delete
    # =================================================================================================================

    async def delete(self, record: ModelType) -> ModelType:
        """
        Soft delete: set `deleted_at` and `updated_at` through the update path, so
        the identity guard and one-row check apply exactly as for updates.

        Record types without a `deleted_at` column are removed with hard_delete().
        """
        info = self._require_record(record)
        self._assert_id_valid(record, info)
        if not info.soft_delete:
            logger.debug("repo.delete.hard_fallback", extra={"model": info.name})
            return await self.hard_delete(record)

        with self.stats.measure("deleting %s", info.name):
            now = utcnow()
            await self._update(record, {DELETED_AT_COLUMN: now, UPDATED_AT_COLUMN: now}, all_fields=False)
            hctx = HookCtx(fields={DELETED_AT_COLUMN: now, UPDATED_AT_COLUMN: now})
            await run_hooks(self.listeners, info, record, DbHook.AFTER_DELETE, hctx)
        return record

    async def hard_delete(self, record: ModelType) -> ModelType:
        """Physically remove the row, whether or not it is soft-deleted."""
        info = self._require_record(record)
        self._assert_id_valid(record, info)
        record_id = record.get_id()

        with self.stats.measure("hard deleting %s", info.name):
            stmt = (
                delete(info.model)
                .where(info.attribute(ID_COLUMN) == record_id)
                .execution_options(synchronize_session=False)
            )
            async with self._errors("deleting", info):
                async with self.sessionmaker() as session:
                    async with session.begin():
                        result = await session.execute(stmt)
                        self._check_single_row(result.rowcount, "delete", info, record_id)

            await run_hooks(self.listeners, info, record, DbHook.AFTER_DELETE, HookCtx())

        logger.info("repo.hard_delete.success", extra={"model": info.name, "id": str(record_id)})
        return record


def _log_detached_create(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("repo.create_multi.late_failure", extra={"error": type(exc).__name__})


__all__ = ["Repository"]
