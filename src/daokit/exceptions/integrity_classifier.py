"""
Low-level classification of driver integrity errors.

These classes are internal labels ("what exactly failed in the database"); mapper.py
turns them into the public taxonomy in base.py.
"""

import logging
from enum import Enum
from typing import Iterator, Type

from .base import RepositoryError

logger = logging.getLogger(__name__)

# =================================================================================================================
# Constraint-specific exceptions
# =================================================================================================================


class ConstraintViolationError(RepositoryError):
    """Base for integrity/constraint violations."""
    pass


class UniqueConstraintError(ConstraintViolationError):
    pass


class NotNullConstraintError(ConstraintViolationError):
    pass


class ForeignKeyConstraintError(ConstraintViolationError):
    pass


class CheckConstraintError(ConstraintViolationError):
    pass


class UnknownIntegrityError(ConstraintViolationError):
    pass


# =================================================================================================================
# Postgres error code mapping
# =================================================================================================================

# https://www.postgresql.org/docs/current/errcodes-appendix.html
class PostgresErrorCodes(str, Enum):
    UNIQUE_VIOLATION = "23505"
    NOT_NULL_VIOLATION = "23502"
    FOREIGN_KEY_VIOLATION = "23503"
    CHECK_VIOLATION = "23514"


PGCODE_EXCEPTION_MAP = {
    PostgresErrorCodes.UNIQUE_VIOLATION: UniqueConstraintError,
    PostgresErrorCodes.NOT_NULL_VIOLATION: NotNullConstraintError,
    PostgresErrorCodes.FOREIGN_KEY_VIOLATION: ForeignKeyConstraintError,
    PostgresErrorCodes.CHECK_VIOLATION: CheckConstraintError,
}


# =================================================================================================================
# Error chain helpers
# =================================================================================================================

def iter_error_chain(exc: BaseException | None) -> Iterator[BaseException]:
    """
    Yield `exc` and every error it wraps.

    Follows SQLAlchemy's `.orig` (DBAPIError -> driver error) as well as the
    standard `__cause__` / `__context__` links, so a classification works no matter
    how many wrapping layers sit on top of the driver error.
    """
    seen: set[int] = set()
    stack = [exc]
    while stack:
        current = stack.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.append(getattr(current, "orig", None))
        stack.append(current.__cause__)
        stack.append(current.__context__)


def get_sqlstate(exc: BaseException) -> str | None:
    """
    First SQLSTATE found in the chain.

    psycopg exposes it as `pgcode`/`sqlstate`, asyncpg as `sqlstate`; SQLAlchemy's
    asyncpg adapter copies it onto its own wrapper as `pgcode`.
    """
    for err in iter_error_chain(exc):
        code = getattr(err, "pgcode", None) or getattr(err, "sqlstate", None)
        if isinstance(code, str) and code:
            return code
    return None


def get_constraint_name(exc: BaseException) -> str | None:
    for err in iter_error_chain(exc):
        diag = getattr(err, "diag", None)
        name = getattr(diag, "constraint_name", None) if diag is not None else None
        name = name or getattr(err, "constraint_name", None)
        if isinstance(name, str) and name:
            return name
    return None


# =================================================================================================================
# Integrity Error Classifiers
# =================================================================================================================

def _match_any(msg: str, keywords: list[str]) -> bool:
    return any(keyword in msg for keyword in keywords)


def _classify_from_postgres_diag(exc: BaseException) -> tuple[Type[ConstraintViolationError] | None, str | None]:
    pgcode = get_sqlstate(exc)
    if not pgcode:
        return None, None

    constraint_name = get_constraint_name(exc)
    exception_class = PGCODE_EXCEPTION_MAP.get(pgcode)

    if exception_class:
        logger.debug("Postgres integrity diagnostic",
                     extra={"pgcode": pgcode, "constraint_name": constraint_name})
        return exception_class, constraint_name

    logger.warning(
        "Unknown Postgres integrity error code encountered",
        extra={"pgcode": pgcode, "constraint_name": constraint_name}
    )
    return UnknownIntegrityError, constraint_name


def _classify_from_generic_message(msg: str) -> tuple[Type[ConstraintViolationError], None]:
    """
    Classify integrity error based on message content (fallback for SQLite, MySQL, etc).
    """
    normalized = msg.lower()

    if _match_any(normalized, ["unique constraint", "unique failed", "unique violation", "duplicate"]):
        return UniqueConstraintError, None

    if _match_any(normalized, ["not null constraint", "not null", "null value in column"]):
        return NotNullConstraintError, None

    if _match_any(normalized, ["foreign key constraint", "foreign key", "is not present in table"]):
        return ForeignKeyConstraintError, None

    if _match_any(normalized, ["check constraint", "check failed"]):
        return CheckConstraintError, None

    logger.warning("Unknown integrity error message encountered", extra={"message_snippet": (msg or "")[:200]})
    return UnknownIntegrityError, None


def classify_integrity_error(exc: BaseException) -> tuple[Type[ConstraintViolationError], str | None]:
    """
    Heuristically classify an integrity error into a ConstraintViolationError subclass.

    Returns:
        A tuple of (ExceptionClass, constraint_name if the backend reports it)
    """
    exception_class, constraint_name = _classify_from_postgres_diag(exc)
    if exception_class is not None:
        return exception_class, constraint_name

    orig = getattr(exc, "orig", None)
    return _classify_from_generic_message(str(orig if orig is not None else exc))


def is_unique_violation(exc: BaseException) -> bool:
    if get_sqlstate(exc) == PostgresErrorCodes.UNIQUE_VIOLATION.value:
        return True
    return any(
        _match_any(str(err).lower(), ["unique constraint failed", "duplicate key value", "duplicate entry"])
        for err in iter_error_chain(exc)
    )
