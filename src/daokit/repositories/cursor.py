"""
Opaque pagination cursor.

Wire form is the hex encoding of `"<limit>:<offset>"`, e.g. `Cursor(20, 40)` ->
`"32303a3430"`. A missing cursor (None / empty string) means "first batch of
DEFAULT_CURSOR_LIMIT rows".
"""

import binascii
from dataclasses import dataclass

from daokit.exceptions.base import InvalidCursorError

DEFAULT_CURSOR_LIMIT = 1000
DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class Cursor:
    limit: int
    offset: int = 0

    @classmethod
    def first_page(cls) -> "Cursor":
        return cls(DEFAULT_PAGE_SIZE, 0)

    def next_page(self) -> "Cursor":
        """Same page size, offset advanced by one page."""
        return Cursor(self.limit, self.offset + self.limit)

    def serialize(self) -> str:
        return f"{self.limit}:{self.offset}".encode("ascii").hex()

    @classmethod
    def unserialize(cls, serialized: str | None) -> "Cursor":
        """
        Parse the wire form.

        Raises:
            InvalidCursorError: not hex, not `limit:offset`, or non-integer parts.
        """
        if not serialized:
            return cls(DEFAULT_CURSOR_LIMIT, 0)

        try:
            decoded = bytes.fromhex(serialized).decode("ascii")
        except (ValueError, UnicodeDecodeError, binascii.Error) as exc:
            raise InvalidCursorError(f"Invalid cursor serialized={serialized}") from exc

        parts = decoded.split(":")
        if len(parts) != 2:
            raise InvalidCursorError(f"Invalid cursor unserialized={decoded}")

        try:
            limit, offset = int(parts[0]), int(parts[1])
        except ValueError as exc:
            raise InvalidCursorError(f"Invalid cursor unserialized={decoded}") from exc

        return cls(limit, offset)


# Helpers for an optional cursor, where None stands for "no cursor given yet".

def cursor_limit(cursor: Cursor | None) -> int:
    return DEFAULT_CURSOR_LIMIT if cursor is None else cursor.limit


def cursor_offset(cursor: Cursor | None) -> int:
    return 0 if cursor is None else cursor.offset


def next_page(cursor: Cursor | None) -> Cursor:
    return Cursor.first_page() if cursor is None else cursor.next_page()


def serialize_cursor(cursor: Cursor | None) -> str:
    return "" if cursor is None else cursor.serialize()
