"""
Change hooks.

Two ways to observe writes:

1. A record type implements the optional listener capability:

       class Invoice(RecordMixin, Base):
           def db_hook(self, hook: DbHook, hctx: HookCtx) -> None: ...

2. A callback is registered on the repository for a record type:

       async def audit(hook, record, hctx): ...
       repo.add_listener(Invoice, audit)

Callbacks may be plain functions or coroutine functions. Both receive the same
HookCtx for every hook of one operation, so `hctx.vars` can carry state from a
BEFORE_* hook to the matching AFTER_* hook.

A record type may also implement `before_save() -> dict[column, value]`; the returned
columns are merged into the write right before it executes.
"""

import enum
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Union

from .model_info import ModelInfo

logger = logging.getLogger(__name__)


class DbHook(enum.Enum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    AFTER_DELETE = "after_delete"


@dataclass
class HookCtx:
    """
    What a hook is told about the write.

    - fields: column -> value being written (empty for creates/deletes)
    - all_fields: every column is being written (create, full update)
    - vars: scratch space shared by all hooks of one operation
    - hook: the hook currently being executed
    """

    fields: dict[str, Any] = field(default_factory=dict)
    all_fields: bool = False
    vars: dict[str, Any] = field(default_factory=dict)
    hook: DbHook | None = None

    def has_field(self, name: str) -> bool:
        return self.all_fields or name in self.fields


ListenerFunc = Callable[[DbHook, Any, HookCtx], Union[None, Awaitable[None]]]


class ListenerRegistry:
    """
    Record type -> listeners.

    Registration happens rarely (at startup) and lookups on every write. Writers
    copy the mapping under a lock and swap it in; readers take the current mapping
    without locking, so a lookup never waits for a registration.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Mapping[str, tuple[ListenerFunc, ...]] = {}

    def add(self, type_key: str, listener: ListenerFunc) -> None:
        if not callable(listener):
            raise TypeError(f"listener for {type_key} is not callable")
        with self._lock:
            updated = dict(self._listeners)
            updated[type_key] = updated.get(type_key, ()) + (listener,)
            self._listeners = updated

    def remove(self, type_key: str, listener: ListenerFunc) -> None:
        with self._lock:
            current = self._listeners.get(type_key, ())
            if listener not in current:
                return
            updated = dict(self._listeners)
            remaining = tuple(fn for fn in current if fn is not listener)
            if remaining:
                updated[type_key] = remaining
            else:
                updated.pop(type_key, None)
            self._listeners = updated

    def get(self, type_key: str) -> tuple[ListenerFunc, ...]:
        return self._listeners.get(type_key, ())

    def __len__(self) -> int:
        return sum(len(v) for v in self._listeners.values())


async def _call(fn: Callable, *args) -> None:
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


async def run_hooks(
    registry: ListenerRegistry,
    info: ModelInfo,
    record: Any,
    hook: DbHook,
    hctx: HookCtx,
) -> None:
    """
    Run the record's own `db_hook` (when the type has that capability) and then
    every registered listener, in registration order. Listener errors propagate.
    """
    hctx.hook = hook
    if info.is_listener:
        await _call(record.db_hook, hook, hctx)
    for listener in registry.get(info.type_key):
        await _call(listener, hook, record, hctx)


def merge_before_save(info: ModelInfo, record: Any, columns: dict[str, Any]) -> dict[str, Any]:
    """
    Merge the columns returned by `record.before_save()` into `columns`.

    Derived values win over explicit ones; each collision is logged as a warning
    (column names only). Returns the derived columns (normalized to column names).
    """
    if not info.has_before_save:
        return {}
    derived = record.before_save() or {}
    derived = info.normalize(derived)
    for name, value in derived.items():
        if name in columns:
            logger.warning(
                "repo.before_save.overwriting_column",
                extra={"model": info.name, "column": name},
            )
        columns[name] = value
    return derived
