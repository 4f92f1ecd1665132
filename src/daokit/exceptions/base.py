"""
Custom exceptions for repository and query operations.
"""

from typing import Iterable

# canonical repository-level exception

class RepositoryError(Exception):
    """
    Base exception for repository errors.

    - message: human-friendly message (safe to show to clients)
    - fields: optional list of column names related to the error (e.g., ['email'])
    - constraint: optional DB constraint name (for logs only)
    - error_code: canonical short code (e.g., 'duplicate', 'invalid_identity') used by clients
    """

    # Map canonical error_code -> default HTTP status.
    ERROR_CODE_TO_STATUS = {
        "duplicate": 409,
        "invalid_field": 422,
        "not_found": 404,
        "invalid_input": 422,
        "invalid_identity": 422,
        "malformed_query": 400,
        "multi_row_mutation": 500,
        "storage_error": 500,
        # fallback: default to 400 for general repository errors
    }

    def __init__(self, message: str, *, fields: Iterable[str] | None = None,
                 constraint: str | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields) if fields else None
        self.constraint = constraint
        self.error_code = error_code

    def __str__(self) -> str:
        base = self.message
        parts = []
        if self.fields:
            parts.append(f"fields: {', '.join(self.fields)}")
        if self.constraint:
            parts.append(f"constraint: {self.constraint}")
        if self.error_code:
            parts.append(f"code: {self.error_code}")
        if parts:
            return f"{base} ({'; '.join(parts)})"
        return base

    def to_payload(self) -> dict:
        """
        Return a JSON-serializable dict suitable for HTTP responses:
            {"detail": "...", "code": "duplicate", "fields": ["email"]}
        The constraint name is intentionally left out of the payload.
        """
        payload = {"detail": self.message}
        if self.error_code:
            payload["code"] = self.error_code
        if self.fields:
            payload["fields"] = list(self.fields)
        return payload

    def http_status(self) -> int:
        if self.error_code:
            return self.ERROR_CODE_TO_STATUS.get(self.error_code, 400)
        return 400


# Subclasses inherit to_payload() and http_status()

class NotFoundError(RepositoryError):
    def __init__(self, message: str = "Not found", *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields, error_code="not_found")


class UniqueConstraintViolation(RepositoryError):
    """
    A write collided with a unique constraint.

    When a human-readable message was registered for the constraint it becomes the
    primary text of the error (`str(err) == user_message`); otherwise a generic
    message is used and the constraint name is kept as context. The driver error
    is always chained as `__cause__`.
    """

    def __init__(self, message: str | None = None, *, constraint: str | None = None,
                 user_message: str | None = None, fields: Iterable[str] | None = None):
        self.user_message = user_message
        super().__init__(
            user_message or message or "unique constraint violated",
            fields=fields,
            constraint=constraint,
            error_code="duplicate",
        )

    def __str__(self) -> str:
        if self.user_message:
            return self.user_message
        return super().__str__()


class InvalidFieldError(RepositoryError):
    """Raised when the caller names columns the record type does not have."""

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields, error_code="invalid_field")


class InvalidIdentityError(RepositoryError):
    """Nil identity on a single-row operation, or non-nil identity on insert."""

    def __init__(self, message: str = "id nil"):
        super().__init__(message, error_code="invalid_identity")


class IdentityParseError(InvalidIdentityError):
    """The given string is empty or not a valid identity encoding."""


class InvalidRecordError(RepositoryError):
    def __init__(self, message: str = "nil record"):
        super().__init__(message, error_code="invalid_input")


class InvalidCursorError(RepositoryError):
    def __init__(self, message: str):
        super().__init__(message, error_code="invalid_input")


class MalformedQueryError(RepositoryError):
    """Placeholder/parameter count mismatch or an unparsable page number."""

    def __init__(self, message: str):
        super().__init__(message, error_code="malformed_query")


class MultiRowMutationError(RepositoryError):
    """A statement meant for one row touched several. Never retried."""

    def __init__(self, message: str, *, rows_affected: int | None = None):
        super().__init__(message, error_code="multi_row_mutation")
        self.rows_affected = rows_affected


class StorageError(RepositoryError):
    """
    Opaque storage failure wrapped with operation and record-type context.
    The driver error is chained as `__cause__`.
    """

    def __init__(self, message: str, *, operation: str | None = None, model: str | None = None):
        super().__init__(message, error_code="storage_error")
        self.operation = operation
        self.model = model


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
]
