import re
import logging
from contextlib import asynccontextmanager
from typing import Mapping, Sequence

from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError

from .integrity_classifier import (
    classify_integrity_error,
    iter_error_chain,
    is_unique_violation,
    UniqueConstraintError,
    NotNullConstraintError,
    ForeignKeyConstraintError,
    CheckConstraintError,
)
from .base import NotFoundError, RepositoryError, StorageError, UniqueConstraintViolation

logger = logging.getLogger(__name__)

# -----------------------
# Column extraction helpers
# -----------------------

def _extract_columns_postgres(msg: str) -> list[str] | None:
    """
    - 'null value in column "username" violates not-null constraint'
    - 'DETAIL:  Key (email, username)=(a@b.com, u) already exists.'
    """
    m = re.search(r'null value in column "(?P<col>[^"]+)"', msg, flags=re.IGNORECASE)
    if m:
        return [m.group("col")]

    m = re.search(r'key \((?P<cols>[^)]+)\)=', msg, flags=re.IGNORECASE)
    if m:
        return [c.strip().strip('"') for c in m.group("cols").split(",")]

    return None


def _extract_columns_sqlite(msg: str) -> list[str] | None:
    # 'UNIQUE constraint failed: users.email' / 'NOT NULL constraint failed: users.email'
    m = re.search(r'(?:UNIQUE|NOT NULL) constraint failed: (?P<cols>[^\n\]\[]+)', msg, flags=re.IGNORECASE)
    if m:
        return [c.split('.')[-1].strip() for c in re.split(r',\s*', m.group("cols").strip())]
    return None


def extract_columns_from_integrity(exc: BaseException) -> list[str] | None:
    """
    Best-effort extraction of column names from the driver message (Postgres, SQLite).
    """
    orig = getattr(exc, "orig", None)
    msg = str(orig) if orig is not None else str(exc)
    if not msg:
        return None
    return _extract_columns_postgres(msg) or _extract_columns_sqlite(msg)


# -----------------------
# Classification predicates
# -----------------------

def is_not_found(err: BaseException | None) -> bool:
    """
    True when `err`, or anything it wraps, means "no matching row".
    """
    return any(
        isinstance(e, (NotFoundError, NoResultFound)) for e in iter_error_chain(err)
    )


def is_unique_constraint_error(err: BaseException | None) -> bool:
    if err is None:
        return False
    if any(isinstance(e, UniqueConstraintViolation) for e in iter_error_chain(err)):
        return True
    return is_unique_violation(err)


def resolve_unique_constraint(
    constraint_name: str | None,
    columns: Sequence[str] | None,
    unique_sets: Mapping[str, Sequence[str]] | None,
) -> str | None:
    """
    Name of the violated unique constraint.

    Postgres reports the name directly. SQLite only reports the columns, so they are
    matched against the record type's known unique column sets.
    """
    if constraint_name:
        return constraint_name
    if not columns or not unique_sets:
        return None
    wanted = set(columns)
    for name, cols in unique_sets.items():
        if set(cols) == wanted:
            return name
    return None


# -----------------------
# Mapper
# -----------------------

def map_integrity_error(
    exc: IntegrityError,
    *,
    model_name: str | None = None,
    unique_messages: Mapping[str, str] | None = None,
    unique_sets: Mapping[str, Sequence[str]] | None = None,
) -> RepositoryError:
    """
    Map a SQLAlchemy IntegrityError to an app-level exception (returned, not raised,
    so the caller can `raise ... from exc`).
    """
    exc_cls, constraint_name = classify_integrity_error(exc)
    columns = extract_columns_from_integrity(exc)
    model_part = model_name or "Record"

    if exc_cls is UniqueConstraintError:
        constraint = resolve_unique_constraint(constraint_name, columns, unique_sets)
        user_message = (unique_messages or {}).get(constraint) if constraint else None
        # Duplicates are expected client-level outcomes; INFO without values.
        logger.info(
            "mapper.duplicate_detected",
            extra={
                "model": model_part,
                "fields": columns,
                "constraint": constraint,
                "registered_message": user_message is not None,
            },
        )
        if user_message is None:
            logger.warning(
                "mapper.unregistered_unique_constraint",
                extra={"model": model_part, "constraint": constraint},
            )
        return UniqueConstraintViolation(
            f"{model_part} already exists (unique constraint)",
            constraint=constraint,
            user_message=user_message,
            fields=columns,
        )

    if exc_cls is NotNullConstraintError:
        logger.info("mapper.not_null_violation", extra={"model": model_part, "fields": columns})
        if columns:
            return RepositoryError(f"Missing required field(s): {', '.join(columns)} for {model_part}",
                                   fields=columns, constraint=constraint_name, error_code="invalid_input")
        return RepositoryError(f"Missing required field for {model_part}", constraint=constraint_name,
                               error_code="invalid_input")

    if exc_cls is ForeignKeyConstraintError:
        logger.info("mapper.foreign_key_violation", extra={"model": model_part, "constraint": constraint_name})
        return RepositoryError(f"{model_part} referenced entity not found", fields=columns,
                               constraint=constraint_name, error_code="invalid_input")

    if exc_cls is CheckConstraintError:
        logger.debug("mapper.check_constraint_failure", extra={"model": model_part, "constraint": constraint_name})
        return RepositoryError(f"{model_part} business rule violated (check constraint).",
                               constraint=constraint_name, error_code="invalid_input")

    logger.warning("mapper.unknown_integrity_error", extra={"model": model_part, "constraint": constraint_name})
    return StorageError(f"{model_part} database integrity error.", model=model_name)


def map_storage_error(
    exc: BaseException,
    *,
    operation: str,
    model_name: str | None = None,
    unique_messages: Mapping[str, str] | None = None,
    unique_sets: Mapping[str, Sequence[str]] | None = None,
) -> RepositoryError:
    """
    Classify any error raised by a storage call into the public taxonomy.

    RepositoryErrors pass through unchanged; "no rows" becomes NotFoundError;
    integrity errors go through map_integrity_error; everything else is wrapped in
    StorageError carrying operation and record-type context.
    """
    if isinstance(exc, RepositoryError):
        return exc
    if is_not_found(exc):
        return NotFoundError(f"{model_name or 'Record'} not found ({operation})")
    if isinstance(exc, IntegrityError):
        return map_integrity_error(
            exc, model_name=model_name, unique_messages=unique_messages, unique_sets=unique_sets
        )
    return StorageError(
        f"{operation} {model_name or 'record'} failed: {type(exc).__name__}",
        operation=operation,
        model=model_name,
    )


# -----------------------
# Async context manager to DRY error handling in the repository and query builder
# -----------------------
@asynccontextmanager
async def storage_error_handler(
    operation: str,
    model_name: str | None = None,
    *,
    unique_messages: Mapping[str, str] | None = None,
    unique_sets: Mapping[str, Sequence[str]] | None = None,
):
    """
    Usage:
        async with storage_error_handler("creating", "User", unique_messages=...):
            ... storage calls ...

    Transactions opened inside the block roll themselves back on the way out;
    this only translates the error. The original error is always chained.
    """
    try:
        yield
    except RepositoryError:
        raise
    except (SQLAlchemyError, OSError) as exc:
        mapped = map_storage_error(
            exc,
            operation=operation,
            model_name=model_name,
            unique_messages=unique_messages,
            unique_sets=unique_sets,
        )
        if isinstance(mapped, StorageError):
            logger.exception(
                "storage.error",
                extra={"operation": operation, "model": model_name},
            )
        raise mapped from exc
