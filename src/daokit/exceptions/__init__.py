# daokit/
# │
# ├── exceptions/
# │   ├── __init__.py
# │   ├── base.py                    # Public errors (RepositoryError, NotFoundError, UniqueConstraintViolation, ...)
# │   ├── integrity_classifier.py    # SQL-level / driver-specific classification
# │   └── mapper.py                  # Map driver errors to public errors

from .base import (
    RepositoryError,
    NotFoundError,
    UniqueConstraintViolation,
    InvalidFieldError,
    InvalidIdentityError,
    IdentityParseError,
    InvalidRecordError,
    InvalidCursorError,
    MalformedQueryError,
    MultiRowMutationError,
    StorageError,
)
from .mapper import (
    is_not_found,
    is_unique_constraint_error,
    map_storage_error,
    storage_error_handler,
)

__all__ = [
    "RepositoryError",
    "NotFoundError",
    "UniqueConstraintViolation",
    "InvalidFieldError",
    "InvalidIdentityError",
    "IdentityParseError",
    "InvalidRecordError",
    "InvalidCursorError",
    "MalformedQueryError",
    "MultiRowMutationError",
    "StorageError",
    "is_not_found",
    "is_unique_constraint_error",
    "map_storage_error",
    "storage_error_handler",
]
