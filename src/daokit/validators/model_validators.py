from sqlalchemy import UniqueConstraint
from sqlalchemy import inspect as sa_inspect


def get_column_names(model) -> dict[str, str]:
    """
    Return `{column_name: attribute_key}` for every mapped column of `model`.

    The two differ when a model maps a column under another attribute name, e.g.
    `display: Mapped[str] = mapped_column("display_name", String)`.
    """
    mapper = sa_inspect(model)
    names = {}
    for attr in mapper.column_attrs:
        for column in attr.columns:
            names[column.name] = attr.key
    return names


def get_unique_column_sets(model) -> dict[str, tuple[str, ...]]:
    """
    Return `{constraint_or_index_name: column_names}` for every unique rule of
    the model's table. Covers:
      - Column(unique=True) and UniqueConstraint (names resolved through the
        metadata naming convention)
      - Index(..., unique=True), including ones added after mapping
    """
    table = sa_inspect(model).local_table
    unique_sets: dict[str, tuple[str, ...]] = {}

    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint):
            columns = tuple(c.name for c in constraint.columns)
            name = constraint.name
            if not isinstance(name, str) or not name:
                name = f"uq_{table.name}_{columns[0]}"
            unique_sets[str(name)] = columns

    for idx in table.indexes:
        if idx.unique and idx.name:
            unique_sets[str(idx.name)] = tuple(c.name for c in idx.columns)

    return unique_sets
