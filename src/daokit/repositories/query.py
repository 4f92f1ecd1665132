"""
Fluent, single-table query builder.

    users = await (
        repo.query(User)
        .filter("email", "=", "a@b.com")
        .filter_in("code", "a", "a", "b")
        .order_by_desc("created_at")
        .with_page_size(25)
        .all()
    )

Predicates are SQL fragments with `?` positional placeholders. Each fragment is
checked when it is added: a placeholder/parameter count mismatch poisons the query
and the MalformedQueryError is raised by the terminal call (`first`, `all`,
`all_with_page_full`, `count`, `all_iterator`).

Fragments are conjoined with AND, each wrapped in parentheses. Soft-deleted rows
(`deleted_at IS NOT NULL`) are excluded unless `include_deleted()` is called.

Every terminal call records exactly one stats sample labelled with the accumulated
description of the query, e.g. `filter email = ? page-size:25 all:User`.
"""

import logging
import uuid
from typing import Any, AsyncIterator, Generic, Sequence, TypeVar

from sqlalchemy import Uuid, bindparam, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import TextClause

from daokit.database.base import Base
from daokit.exceptions.base import MalformedQueryError, NotFoundError, RepositoryError
from daokit.exceptions.mapper import storage_error_handler
from daokit.stats.collector import NullStatsCollector

from .model_info import DELETED_AT_COLUMN, ModelInfo, get_model_info

ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)

DEFAULT_QUERY_PAGE_SIZE = 50
MAX_INT_PAGE_SIZE = 2**31 - 1

_BIND_PREFIX = "dao_p"


class ExprValue:
    """
    Marks a value inside `filter_expr()` / `order_by_expression()` parts; it is
    rendered as a `?` placeholder and bound as a parameter.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"ExprValue({self.value!r})"


def prepare_expr(*parts: Any) -> tuple[str, list[Any]]:
    """
    Join expression parts with spaces; ExprValue parts become `?` and are collected
    as parameters.

        prepare_expr("age >", ExprValue(18)) -> ("age > ?", [18])
    """
    sql_parts: list[str] = []
    values: list[Any] = []
    for part in parts:
        if isinstance(part, ExprValue):
            sql_parts.append("?")
            values.append(part.value)
        else:
            sql_parts.append(str(part))
    return " ".join(sql_parts), values


def _dedupe(values: Sequence[Any]) -> list[Any]:
    # keyed by type too: 1 and True (or 0 and False) are different filter values
    unique: list[Any] = []
    seen: set = set()
    for value in values:
        key = (type(value), value)
        try:
            if key in seen:
                continue
            seen.add(key)
        except TypeError:
            # unhashable values fall back to equality checks
            if any(type(u) is type(value) and u == value for u in unique):
                continue
        unique.append(value)
    return unique


def _escape_colons(sql: str) -> str:
    # text() reads `:name` as a bind parameter; only our own binds may be named
    return sql.replace(":", "\\:")


def prepare_substring_search(table: str, columns: Sequence[str], values: Sequence[str], limit: int) -> tuple[str, list[Any]]:
    """
    Case-insensitive substring match over the concatenated columns, every value
    must appear somewhere in the result (PostgreSQL `ilike`).

        prepare_substring_search("items", ["code", "name"], ["ab"], 10)
        -> ("select * from (select items.*, code ||' '|| name search_string from items)"
            " as search_table where search_string ilike '%'||?||'%'  limit 10", ["ab"])
    """
    sql = "select * from (select " + table + ".*, " + " ||' '|| ".join(columns)
    sql += " search_string from " + table + ") as search_table where "
    sql += " and ".join("search_string ilike '%'||?||'%' " for _ in values)
    sql += " limit " + str(int(limit))
    return sql, list(values)


class Query(Generic[ModelType]):
    """
    One query over one record type. Build it, run one terminal operation, drop it:
    instances are not meant to be shared between tasks.
    """

    def __init__(
        self,
        model: type[ModelType],
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
        stats: NullStatsCollector | None = None,
    ):
        self.model = model
        self.info: ModelInfo = get_model_info(model)
        self._sessionmaker = sessionmaker
        self._stats = stats or NullStatsCollector()

        self._error: MalformedQueryError | None = None
        self._page_no = 0
        self._page_size = 0
        self._include_deleted = False
        self._log: list[str] = []

        self._expressions: list[str] = []
        self._params: list[Any] = []
        self._param_types: list[Any] = []

        self._order_by: list[str] = []
        self._order_params: list[Any] = []

    # =================================================================================================================
    # Filters
    # =================================================================================================================

    def _poison(self, message: str) -> None:
        # keep the first problem; later ones are usually consequences of it
        if self._error is None:
            self._error = MalformedQueryError(message)
            logger.debug("query.malformed", extra={"model": self.info.name, "reason": message})

    def _check_placeholders(self, expression: str, values: Sequence[Any]) -> None:
        if expression.count("?") != len(values):
            self._poison(
                f"invalid expression placeholders count: '{expression}' has "
                f"{expression.count('?')} placeholder(s) for {len(values)} param(s)"
            )

    def _append_filter(self, descr: str, expression: str, values: Sequence[Any], types: Sequence[Any] | None = None) -> None:
        self._check_placeholders(expression, values)
        self._log.append(f"{descr} {expression}".strip())
        if expression:
            self._expressions.append(expression)
        self._params.extend(values)
        self._param_types.extend(types if types is not None else [None] * len(values))

    def _column(self, column: Any) -> tuple[str, Any]:
        """
        Column SQL text and SQL type for a column name, attribute key or mapped
        attribute. Anything else (e.g. `lower(email)`) is used verbatim, untyped.
        """
        if isinstance(column, str) and column not in self.info.columns and column not in self.info.attributes:
            return column, None
        name = self.info.column_name(column)
        return name, self.info.attribute(name).type

    def filter_raw_expression(self, expression: str, *values: Any) -> "Query[ModelType]":
        self._append_filter("filter", expression, values)
        return self

    def filter(self, column: Any, operation: str, value: Any) -> "Query[ModelType]":
        """`filter("age", ">=", 18)` -> `age >= ?`"""
        name, sql_type = self._column(column)
        self._append_filter("filter", f"{name} {operation.strip()} ?", [value], [sql_type])
        return self

    def filter_in(self, column: Any, *values: Any) -> "Query[ModelType]":
        """
        `column in (?, ...)` over the distinct values, in first-seen order.
        With no values at all the predicate matches nothing.
        """
        name, sql_type = self._column(column)
        unique = _dedupe(values)
        if not unique:
            self._append_filter("filter-in", "1 = 0", [])
            return self
        placeholders = ",".join("?" for _ in unique)
        self._append_filter("filter-in", f"{name} in ({placeholders})", unique, [sql_type] * len(unique))
        return self

    def filter_in_strings(self, column: Any, *values: str) -> "Query[ModelType]":
        return self.filter_in(column, *values)

    def filter_is_not_null(self, column: Any) -> "Query[ModelType]":
        name, _ = self._column(column)
        self._append_filter("not_null", f"{name} is not null", [])
        return self

    def filter_expr(self, *parts: Any) -> "Query[ModelType]":
        """`filter_expr("age >", ExprValue(18), "and age <", ExprValue(65))`"""
        expression, values = prepare_expr(*parts)
        return self.filter_raw_expression(expression, *values)

    def fulltext_search(self, columns: Sequence[str], values: Sequence[str]) -> "Query[ModelType]":
        """
        PostgreSQL full-text match of whole words over the concatenated columns.
        Each value may hold several `&`-separated terms; all terms must match.
        """
        parts: list[Any] = ["to_tsvector(concat("]
        for n, column in enumerate(columns):
            if n > 0:
                parts.append(", ' ',")
            parts.append(self._column(column)[0])
        parts.append(")) @@ to_tsquery(")

        terms = [
            term.strip()
            for value in values
            for term in value.split("&")
            if term.strip()
        ]
        parts.append(ExprValue(" & ".join(terms)))
        parts.append(")")
        return self.filter_expr(*parts)

    def fulltext_substring_search(self, columns: Sequence[str], values: Sequence[str], limit: int) -> AsyncIterator[Any]:
        """
        Raw rows of the model's table whose concatenated `columns` contain every
        value, at most `limit` of them. Scans the whole table, so it can be slow.
        Filters, ordering and soft-delete scoping of this query do not apply.
        """
        names = [self._column(column)[0] for column in columns]
        sql, params = prepare_substring_search(self.info.model.__tablename__, names, values, limit)
        return self.raw_iterator(sql, *params)

    def include_deleted(self) -> "Query[ModelType]":
        self._include_deleted = True
        return self

    # =================================================================================================================
    # Ordering & pagination
    # =================================================================================================================

    def order_by_raw_expression(self, expression: str, *values: Any) -> "Query[ModelType]":
        self._check_placeholders(expression, values)
        self._order_by.append(expression)
        self._order_params.append(list(values))
        self._log.append(f"order_by:{expression}")
        return self

    def order_by_expression(self, *parts: Any) -> "Query[ModelType]":
        expression, values = prepare_expr(*parts)
        return self.order_by_raw_expression(expression, *values)

    def order_by_asc(self, column: Any) -> "Query[ModelType]":
        return self.order_by_raw_expression(f"{self._column(column)[0]} asc")

    def order_by_desc(self, column: Any) -> "Query[ModelType]":
        return self.order_by_raw_expression(f"{self._column(column)[0]} desc")

    def with_page_no(self, page_no: int) -> "Query[ModelType]":
        self._log.append(f"page:{page_no}")
        self._page_no = page_no
        return self

    def with_string_page_no(self, page_no: str | None) -> "Query[ModelType]":
        """Page number from a request string; `""`/None is page 0, garbage poisons the query."""
        if not page_no:
            return self.with_page_no(0)
        try:
            parsed = int(page_no)
        except ValueError:
            self._poison(f"invalid page: {page_no}")
            return self
        return self.with_page_no(parsed)

    def with_page_size(self, page_size: int) -> "Query[ModelType]":
        self._log.append(f"page-size:{page_size}")
        self._page_size = page_size
        return self

    def with_default_page_size(self) -> "Query[ModelType]":
        return self.with_page_size(DEFAULT_QUERY_PAGE_SIZE)

    def with_max_int_page_size(self) -> "Query[ModelType]":
        return self.with_page_size(MAX_INT_PAGE_SIZE)

    # =================================================================================================================
    # Compilation
    # =================================================================================================================

    @property
    def error(self) -> MalformedQueryError | None:
        return self._error

    @property
    def descriptor(self) -> str:
        return " ".join(self._log)

    @property
    def page_size(self) -> int:
        return self._page_size or DEFAULT_QUERY_PAGE_SIZE

    def compile(self) -> tuple[str, list[Any]]:
        """
        The WHERE text (with `?` placeholders) and its parameters, without the
        implicit soft-delete predicate.

            Query(Item).filter_in("code", "a", "a", "b").compile()
            -> ("(code in (?,?))", ["a", "b"])
        """
        where = " and ".join(f"({expression})" for expression in self._expressions)
        return where, list(self._params)

    def _text(self, sql: str, params: Sequence[Any], types: Sequence[Any], counter: list[int]) -> TextClause:
        """Rewrite `?` to uniquely named binds and attach the values."""
        pieces = [_escape_colons(piece) for piece in sql.split("?")]
        out = [pieces[0]]
        binds = []
        for piece, value, sql_type in zip(pieces[1:], params, types):
            name = f"{_BIND_PREFIX}{counter[0]}"
            counter[0] += 1
            out.append(f":{name}{piece}")
            if sql_type is None and isinstance(value, uuid.UUID):
                sql_type = Uuid()
            binds.append(bindparam(name, value, type_=sql_type))
        clause = text("".join(out))
        return clause.bindparams(*binds) if binds else clause

    def _where_clauses(self, counter: list[int]) -> list[Any]:
        clauses: list[Any] = []
        where, params = self.compile()
        if where:
            clauses.append(self._text(where, params, self._param_types, counter))
        if self.info.soft_delete and not self._include_deleted:
            clauses.append(self.info.attribute(DELETED_AT_COLUMN).is_(None))
        return clauses

    def _order_clauses(self, counter: list[int]) -> list[TextClause]:
        return [
            self._text(expression, params, [None] * len(params), counter)
            for expression, params in zip(self._order_by, self._order_params)
        ]

    def _select(self, *, paginate: bool):
        counter = [0]
        stmt = select(self.model).where(*self._where_clauses(counter)).order_by(*self._order_clauses(counter))
        if paginate:
            stmt = stmt.limit(self.page_size)
            if self._page_no > 0:
                stmt = stmt.offset(self._page_no * self.page_size)
        return stmt

    def _session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RepositoryError(f"query on {self.info.name} is not bound to a repository")
        return self._sessionmaker()

    def _ready(self, terminal: str) -> str:
        if self._error is not None:
            raise self._error
        self._log.append(f"{terminal}:{self.info.name}")
        return self.descriptor

    # =================================================================================================================
    # Terminal operations
    # =================================================================================================================

    async def first(self) -> ModelType:
        """
        First matching record.

        Raises:
            MalformedQueryError: the query was poisoned while being built.
            NotFoundError: no row matches.
            StorageError: any other storage failure.
        """
        descriptor = self._ready("first")
        with self._stats.measure(descriptor):
            async with storage_error_handler(f"getting first {self.info.name}", self.info.name):
                async with self._session() as session:
                    stmt = self._select(paginate=False).limit(1)
                    record = (await session.execute(stmt)).scalars().first()
        if record is None:
            raise NotFoundError(f"{self.info.name} not found")
        return record

    async def all(self) -> list[ModelType]:
        descriptor = self._ready("all")
        with self._stats.measure(descriptor):
            async with storage_error_handler(f"getting {self.info.name} list", self.info.name):
                async with self._session() as session:
                    result = await session.execute(self._select(paginate=True))
                    records = list(result.scalars().all())
        logger.debug("query.all", extra={"model": self.info.name, "rows": len(records)})
        return records

    async def all_with_page_full(self) -> tuple[list[ModelType], bool]:
        """
        Records of the current page plus whether the page came back full (a hint
        that a next page may exist).
        """
        if self._page_size == 0:
            self._page_size = DEFAULT_QUERY_PAGE_SIZE
        records = await self.all()
        return records, len(records) >= self._page_size

    async def count(self) -> int:
        """Number of matching rows (pagination is ignored)."""
        descriptor = self._ready("count")
        with self._stats.measure(descriptor):
            async with storage_error_handler(f"counting {self.info.name}", self.info.name):
                async with self._session() as session:
                    stmt = select(func.count()).select_from(self.model).where(*self._where_clauses([0]))
                    return int((await session.execute(stmt)).scalar_one())

    async def all_iterator(self) -> AsyncIterator[ModelType]:
        """
        Stream the current page row by row over a server-side cursor.

            async with contextlib.aclosing(query.all_iterator()) as rows:
                async for user in rows:
                    ...

        The stats sample covers the whole iteration and is recorded when the
        iterator is exhausted or closed.
        """
        descriptor = self._ready("iterate")
        with self._stats.measure(descriptor):
            async with storage_error_handler(f"iterating {self.info.name}", self.info.name):
                async with self._session() as session:
                    result = await session.stream(self._select(paginate=True))
                    async for record in result.scalars():
                        yield record

    async def raw_rows(self, sql: str, *values: Any) -> list[Any]:
        """
        Run a raw statement (with `?` placeholders) and return all rows. Passthrough:
        no soft-delete scoping, no pagination.
        """
        self._check_placeholders(sql, values)
        if self._error is not None:
            raise self._error
        with self._stats.measure("raw:%s", sql):
            async with storage_error_handler("raw query", self.info.name):
                async with self._session() as session:
                    result = await session.execute(self._text(sql, values, [None] * len(values), [0]))
                    return list(result.all())

    async def raw_iterator(self, sql: str, *values: Any) -> AsyncIterator[Any]:
        self._check_placeholders(sql, values)
        if self._error is not None:
            raise self._error
        with self._stats.measure("raw-iterate:%s", sql):
            async with storage_error_handler("raw query", self.info.name):
                async with self._session() as session:
                    result = await session.stream(self._text(sql, values, [None] * len(values), [0]))
                    async for row in result:
                        yield row
