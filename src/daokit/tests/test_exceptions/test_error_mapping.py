from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError

from daokit.exceptions.base import (
    NotFoundError,
    RepositoryError,
    StorageError,
    UniqueConstraintViolation,
)
from daokit.exceptions.integrity_classifier import (
    NotNullConstraintError,
    UniqueConstraintError,
    classify_integrity_error,
    iter_error_chain,
)
from daokit.exceptions.mapper import (
    is_not_found,
    is_unique_constraint_error,
    map_integrity_error,
    resolve_unique_constraint,
    storage_error_handler,
)


class FakePgError(Exception):
    """Driver error carrying SQLSTATE and diagnostics the way psycopg does."""

    def __init__(self, message, pgcode, constraint=None):
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = SimpleNamespace(constraint_name=constraint)


def pg_unique_error():
    orig = FakePgError(
        'duplicate key value violates unique constraint "idx_email"\n'
        "DETAIL:  Key (email)=(a@b.com) already exists.",
        "23505",
        "idx_email",
    )
    return IntegrityError("INSERT INTO test_users ...", {}, orig)


def sqlite_error(message):
    return IntegrityError("INSERT INTO test_users ...", {}, Exception(message))


class TestClassification:

    def test_postgres_sqlstate_and_constraint(self):
        assert classify_integrity_error(pg_unique_error()) == (UniqueConstraintError, "idx_email")

    def test_message_fallback(self):
        exc_cls, constraint = classify_integrity_error(
            sqlite_error("NOT NULL constraint failed: test_users.email")
        )
        assert exc_cls is NotNullConstraintError
        assert constraint is None

    def test_unique_violation_detected_through_wrapping(self):
        try:
            try:
                raise pg_unique_error()
            except IntegrityError as exc:
                raise StorageError("creating failed") from exc
        except StorageError as wrapped:
            assert is_unique_constraint_error(wrapped)

    def test_chain_follows_orig(self):
        exc = pg_unique_error()
        assert exc.orig in list(iter_error_chain(exc))


class TestMapping:

    def test_registered_message_becomes_error_text(self):
        """
        Behavior:
                - A unique violation on a constraint with a registered message maps to
                  UniqueConstraintViolation whose text is exactly that message.
        """
        mapped = map_integrity_error(pg_unique_error(), model_name="User", unique_messages={"idx_email": "email taken"})

        assert isinstance(mapped, UniqueConstraintViolation)
        assert str(mapped) == "email taken"
        assert mapped.fields == ["email"]
        assert mapped.to_payload() == {"detail": "email taken", "code": "duplicate", "fields": ["email"]}

    def test_sqlite_columns_resolve_to_index(self):
        mapped = map_integrity_error(
            sqlite_error("UNIQUE constraint failed: test_users.email"),
            model_name="User",
            unique_messages={"idx_email": "email taken"},
            unique_sets={"pk_test_users": ("id",), "idx_email": ("email",)},
        )

        assert mapped.constraint == "idx_email"
        assert str(mapped) == "email taken"

    def test_unregistered_constraint_uses_generic_text(self):
        mapped = map_integrity_error(pg_unique_error(), model_name="User")

        assert "User already exists" in str(mapped)
        assert mapped.user_message is None

    def test_not_null_maps_to_invalid_input(self):
        mapped = map_integrity_error(sqlite_error("NOT NULL constraint failed: test_users.email"), model_name="User")

        assert mapped.error_code == "invalid_input"
        assert mapped.fields == ["email"]

    def test_resolve_unique_constraint(self):
        sets = {"idx_a_b": ("a", "b")}
        assert resolve_unique_constraint("named", None, sets) == "named"
        assert resolve_unique_constraint(None, ["b", "a"], sets) == "idx_a_b"
        assert resolve_unique_constraint(None, ["c"], sets) is None


class TestNotFound:

    def test_direct(self):
        assert is_not_found(NotFoundError())
        assert is_not_found(NoResultFound())

    def test_wrapped(self):
        try:
            try:
                raise NoResultFound()
            except NoResultFound as exc:
                raise RuntimeError("lookup failed") from exc
        except RuntimeError as wrapped:
            assert is_not_found(wrapped)

    def test_other_errors(self):
        assert not is_not_found(RuntimeError("x"))
        assert not is_not_found(None)


@pytest.mark.asyncio
class TestStorageErrorHandler:

    async def test_wraps_driver_errors_with_context(self):
        driver_error = OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        with pytest.raises(StorageError) as exc_info:
            async with storage_error_handler("loading", "User"):
                raise driver_error

        assert exc_info.value.operation == "loading"
        assert exc_info.value.model == "User"
        assert exc_info.value.__cause__ is driver_error
        assert exc_info.value.http_status() == 500

    async def test_repository_errors_pass_through(self):
        original = NotFoundError("User not found")

        with pytest.raises(NotFoundError) as exc_info:
            async with storage_error_handler("loading", "User"):
                raise original

        assert exc_info.value is original

    async def test_no_result_maps_to_not_found(self):
        with pytest.raises(NotFoundError):
            async with storage_error_handler("loading", "User"):
                raise NoResultFound()

    async def test_unrelated_errors_propagate(self):
        with pytest.raises(KeyError):
            async with storage_error_handler("loading", "User"):
                raise KeyError("x")


def test_error_codes_map_to_http_status():
    assert RepositoryError("x", error_code="malformed_query").http_status() == 400
    assert RepositoryError("x").http_status() == 400
