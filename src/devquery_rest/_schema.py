"""Schema extraction for relational engines and document collections."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from sqlalchemy import Engine, inspect as sa_inspect

from ._models import ColumnSchema, TableSchema


def get_relational_tables(engine: Engine) -> list[TableSchema]:
    """Extract table and column descriptors through the SQLAlchemy inspector.

    The inspector issues the dialect's catalog queries (information_schema,
    ``PRAGMA table_info``, ``all_tab_columns``...) one table at a time; the
    result is aggregated here. Columns keep their declared order.
    """
    inspector = sa_inspect(engine)
    tables: list[TableSchema] = []

    for table_name in inspector.get_table_names():
        columns: list[ColumnSchema] = []

        for col_info in inspector.get_columns(table_name):
            default = col_info.get("default")
            columns.append(
                ColumnSchema(
                    column_name=col_info["name"],
                    data_type=str(col_info["type"]),
                    nullable=bool(col_info.get("nullable", True)),
                    default=None if default is None else str(default),
                )
            )

        tables.append(TableSchema(table_name=table_name, columns=columns))

    return tables


def _bson_type_name(value: Any) -> str:
    """Name a document value's type the way BSON does."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "long" if abs(value) > 2**31 - 1 else "int"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__.lower()  # ObjectId -> "objectid", datetime -> "datetime"


def infer_document_fields(documents: Iterable[Mapping[str, Any]]) -> list[ColumnSchema]:
    """Infer top-level fields from sampled documents.

    Fields are listed in order of first appearance. A field is nullable when any
    sampled document lacks it or holds ``null``; mixed types are joined with ``|``.
    """
    seen_types: dict[str, list[str]] = {}
    present: dict[str, int] = {}
    nullable: set[str] = set()
    total = 0

    for doc in documents:
        total += 1
        for name, value in doc.items():
            present[name] = present.get(name, 0) + 1
            if value is None:
                nullable.add(name)
                continue
            type_name = _bson_type_name(value)
            types = seen_types.setdefault(name, [])
            if type_name not in types:
                types.append(type_name)

    columns: list[ColumnSchema] = []
    for name, count in present.items():
        types = seen_types.get(name) or ["null"]
        columns.append(
            ColumnSchema(
                column_name=name,
                data_type="|".join(types),
                nullable=name in nullable or count < total,
            )
        )
    return columns
