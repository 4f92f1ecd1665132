"""
Per-record-type column table and capability flags.

Built once per model class (cached) from SQLAlchemy's mapper, so the hot path never
inspects the class again: reading the values of named columns off a record, writing
values back after an update, and checking the optional `before_save` / `db_hook`
capabilities are plain dictionary lookups.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Mapping

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm.attributes import QueryableAttribute

from daokit.exceptions.base import InvalidFieldError
from daokit.validators.model_validators import get_column_names, get_unique_column_sets

ID_COLUMN = "id"
CREATED_AT_COLUMN = "created_at"
UPDATED_AT_COLUMN = "updated_at"
DELETED_AT_COLUMN = "deleted_at"


@dataclass(frozen=True)
class ModelInfo:
    model: type
    name: str
    table_name: str
    # column name -> attribute key
    columns: Mapping[str, str]
    # attribute key -> column name
    attributes: Mapping[str, str]
    soft_delete: bool
    has_before_save: bool
    is_listener: bool

    @property
    def type_key(self) -> str:
        """Stable registry key for listener lookups."""
        return f"{self.model.__module__}.{self.model.__qualname__}"

    @property
    def unique_sets(self) -> dict[str, tuple[str, ...]]:
        # Read from the table each time: add_unique_index() may attach indexes later.
        return get_unique_column_sets(self.model)

    def column_name(self, column: Any) -> str:
        """
        Resolve a column name, attribute key or mapped attribute (`User.email`)
        to the column name.

        Raises:
            InvalidFieldError: when it is not a column of this record type.
        """
        if isinstance(column, QueryableAttribute):
            if column.class_ is not None and not issubclass(self.model, column.class_):
                raise InvalidFieldError(
                    f"Column {column.key} does not belong to {self.name}", fields=[column.key]
                )
            column = column.key
        if isinstance(column, str):
            if column in self.columns:
                return column
            if column in self.attributes:
                return self.attributes[column]
        raise InvalidFieldError(f"Unknown column(s) for {self.name}: {column}", fields=[str(column)])

    def column_names(self, columns: Iterable[Any]) -> list[str]:
        names = []
        unknown = []
        for column in columns:
            try:
                names.append(self.column_name(column))
            except InvalidFieldError:
                unknown.append(getattr(column, "key", str(column)))
        if unknown:
            raise InvalidFieldError(f"Unknown column(s) for {self.name}: {', '.join(unknown)}", fields=unknown)
        return names

    def normalize(self, values: Mapping[Any, Any]) -> dict[str, Any]:
        """Key a `{column: value}` mapping by column name."""
        names = self.column_names(values.keys())
        return dict(zip(names, values.values()))

    def read(self, record: Any, columns: Iterable[str]) -> dict[str, Any]:
        return {name: getattr(record, self.columns[name]) for name in columns}

    def read_all(self, record: Any) -> dict[str, Any]:
        return self.read(record, self.columns)

    def write(self, record: Any, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            setattr(record, self.columns[name], value)

    def attribute(self, column_name: str):
        """The mapped class attribute for a column name (for building statements)."""
        return getattr(self.model, self.columns[column_name])


@lru_cache(maxsize=None)
def get_model_info(model: type) -> ModelInfo:
    """
    Build (once) the ModelInfo for a mapped record class.
    """
    mapper = sa_inspect(model)
    columns = get_column_names(model)
    return ModelInfo(
        model=model,
        name=model.__name__,
        table_name=mapper.local_table.name,
        columns=columns,
        attributes={key: name for name, key in columns.items()},
        soft_delete=DELETED_AT_COLUMN in columns,
        has_before_save=callable(getattr(model, "before_save", None)),
        is_listener=callable(getattr(model, "db_hook", None)),
    )


def model_info_for(record_or_model: Any) -> ModelInfo:
    model = record_or_model if isinstance(record_or_model, type) else type(record_or_model)
    return get_model_info(model)
