"""DDL creation scripts for a schema catalog.

Tables are rendered from their columns; triggers, routines and views emit
the script text stored in the snapshot.  Every object is followed by ``GO``
so the output can be run as a batch script.

Usage:
    from db_drift.schema.ddl import generate_create_script
    from db_drift.schema.serialization import load_snapshot

    print(generate_create_script(load_snapshot("prod.dbs")))
"""

import logging
from collections.abc import Iterable

from db_drift.schema.models import (
    CatalogSchema,
    ColumnSchema,
    SchemaScopedObjectSchema,
    SqlType,
    TableSchema,
    TypeSchema,
)

logger = logging.getLogger(__name__)

BATCH_SEPARATOR = "GO"

# Types whose size is given as (precision, scale) rather than a length
_PRECISION_TYPES = {SqlType.DECIMAL}


def type_script(db_type: TypeSchema) -> str:
    """Render a data type, e.g. ``[nvarchar](50)`` or ``[decimal](10,2)``.

    A length of -1 is rendered as ``(max)``.
    """
    if db_type.sql_type in _PRECISION_TYPES and db_type.precision > 0:
        return f"[{db_type.name}]({db_type.precision},{db_type.scale})"
    if db_type.length == -1:
        return f"[{db_type.name}](max)"
    if db_type.length > 0:
        return f"[{db_type.name}]({db_type.length})"
    return f"[{db_type.name}]"


def column_script(column: ColumnSchema) -> str:
    """Render one column definition line of a CREATE TABLE statement."""
    parts = [f"[{column.name}]", type_script(column.db_type)]
    if column.collation:
        parts.append(f"COLLATE {column.collation}")
    if column.default_value is not None:
        parts.append(f"DEFAULT {column.default_value}")
    parts.append("NULL" if column.db_type.allow_null else "NOT NULL")
    return " ".join(parts)


def table_script(table: TableSchema) -> str:
    """Render ``CREATE TABLE`` with columns ordered by ``fake_order_id``."""
    columns = sorted(table.columns, key=lambda c: c.fake_order_id)
    body = ",\n".join(f"    {column_script(column)}" for column in columns)
    return f"CREATE TABLE {table.full_name}(\n{body}\n)"


def _sorted(objects: Iterable[SchemaScopedObjectSchema]) -> list:
    return sorted(objects, key=lambda o: o.full_name.casefold())


def _section(title: str, scripts: list[str]) -> list[str]:
    lines = [f"--{title}"]
    for script in scripts:
        lines.append(script.rstrip())
        lines.append(BATCH_SEPARATOR)
    return lines


def generate_create_script(catalog: CatalogSchema) -> str:
    """Generate the creation script for a whole catalog.

    Sections appear in a fixed order (tables, triggers, stored procedures,
    functions, table-valued functions, views); objects within a section are
    sorted by full name.  Empty sections still print their header.

    Raises:
        ValueError: If ``catalog`` is None.
    """
    if catalog is None:
        raise ValueError("catalog must not be None")

    tables = _sorted(catalog.tables)
    triggers = _sorted(trigger for table in catalog.tables for trigger in table.triggers)

    lines = [f"-- {catalog.full_name}"]
    lines += _section("TABLES", [table_script(t) for t in tables])
    lines += _section("TRIGGERS", [t.script_text for t in triggers])
    lines += _section(
        "STORED PROCEDURES", [p.script_text for p in _sorted(catalog.stored_procedures)]
    )
    lines += _section("FUNCTIONS", [f.script_text for f in _sorted(catalog.functions)])
    lines += _section(
        "TABLE VALUED FUNCTIONS",
        [f.script_text for f in _sorted(catalog.table_valued_functions)],
    )
    lines += _section("VIEWS", [v.text for v in _sorted(catalog.views)])

    logger.debug("Generated create script for %s", catalog.full_name)
    return "\n".join(lines) + "\n"
