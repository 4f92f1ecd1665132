"""
Repository layer.

    from daokit.repositories import Repository, Query, Cursor, DbHook, HookCtx
"""

from .cursor import DEFAULT_CURSOR_LIMIT, DEFAULT_PAGE_SIZE, Cursor
from .hooks import DbHook, HookCtx, ListenerRegistry
from .model_info import ModelInfo, get_model_info
from .query import DEFAULT_QUERY_PAGE_SIZE, MAX_INT_PAGE_SIZE, ExprValue, Query, prepare_expr
from .repository import Repository

__all__ = [
    "Repository",
    "Query",
    "ExprValue",
    "prepare_expr",
    "Cursor",
    "DbHook",
    "HookCtx",
    "ListenerRegistry",
    "ModelInfo",
    "get_model_info",
    "DEFAULT_CURSOR_LIMIT",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_QUERY_PAGE_SIZE",
    "MAX_INT_PAGE_SIZE",
]
