"""
Declarative base, column types and mixins shared by every record type.

A record is any model deriving from `Base` and `RecordMixin`:

    class User(RecordMixin, Base):
        __tablename__ = "users"
        email: Mapped[str] = mapped_column(String(100))

Records that should be soft-deleted additionally mix in `SoftDeleteMixin`.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    pass


# Naming convention for constraints and indexes
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    Values are normalised to UTC on the way in; naive values read back from
    backends without native timezone support (SQLite) are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class RecordMixin:
    """
    Identity and modification timestamps.

    Identity is left unset (None) at construction time; the repository assigns it
    exactly once, right before the first insert.
    """

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def get_id(self) -> uuid.UUID | None:
        return self.id

    def generate_id(self) -> uuid.UUID:
        self.id = uuid.uuid4()
        return self.id

    def is_id_nil(self) -> bool:
        return self.id is None or self.id == uuid.UUID(int=0)


class SoftDeleteMixin:
    """Adds `deleted_at`; rows with a value are hidden from queries by default."""

    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
