"""
daokit: async record access over SQLAlchemy.

    from daokit import Repository, StatsCollector
    from daokit.config import get_settings

    repo = Repository.from_settings(get_settings())
"""

from daokit.exceptions import (
    InvalidFieldError,
    InvalidIdentityError,
    MalformedQueryError,
    NotFoundError,
    RepositoryError,
    StorageError,
    UniqueConstraintViolation,
    is_not_found,
    is_unique_constraint_error,
)
from daokit.repositories import Cursor, DbHook, ExprValue, HookCtx, Query, Repository
from daokit.stats import NullStatsCollector, StatsCollector

__all__ = [
    "Repository",
    "Query",
    "ExprValue",
    "Cursor",
    "DbHook",
    "HookCtx",
    "StatsCollector",
    "NullStatsCollector",
    "RepositoryError",
    "NotFoundError",
    "UniqueConstraintViolation",
    "InvalidFieldError",
    "InvalidIdentityError",
    "MalformedQueryError",
    "StorageError",
    "is_not_found",
    "is_unique_constraint_error",
]
