"""Catalog builder: raw introspection rows to a ``CatalogSchema``.

Readers (see ``db_drift.schema.introspector``) only have to produce two kinds
of flat rows:

- ``ObjectParamRow``: one column, parameter or return value of an object.
- ``ObjectTextRow``: one fragment of an object's SQL text.  Fragments are
  joined in ``order_id`` order.

The builder groups rows by (schema, object) identity, creates the entity
matching the row's object-type code, and attaches everything to its owner.
Trigger names only need to be unique per table, so triggers are identified
by their parent table too.  Text fragments are collected per owning object,
never by name alone.
Columns go through ``TableSchema.add_column`` so ``fake_order_id`` is always
re-indexed.

Object-type codes follow the SQL Server ``sys.objects.type`` letters, which
readers for other databases map onto (a PostgreSQL ordinary table is ``U``,
a set-returning function ``TF`` and so on).

Usage:
    from db_drift.schema.builder import CatalogBuilder, ObjectParamRow

    builder = CatalogBuilder("localhost", "shop")
    builder.add_param(ObjectParamRow(
        schema_name="dbo", object_name="users", object_type="U",
        param_name="id", type_name="int", order_id=1,
    ))
    catalog = builder.build()
"""

import logging
from collections.abc import Iterable, Mapping
from enum import Enum

from pydantic import BaseModel

from db_drift.errors import UnsupportedValueError
from db_drift.schema.models import (
    CatalogSchema,
    ColumnSchema,
    FunctionSchema,
    ParameterSchema,
    RoutineSchema,
    SqlType,
    StoredProcedureSchema,
    TableSchema,
    TableValuedFunctionSchema,
    TriggerSchema,
    TypeSchema,
    ViewSchema,
)

logger = logging.getLogger(__name__)


class SourceObjectType(str, Enum):
    """Object-type codes of the ingestion rows."""

    AGGREGATE_FUNCTION = "AF"
    CHECK_CONSTRAINT = "C"
    DEFAULT = "D"
    FOREIGN_KEY = "F"
    SCALAR_FUNCTION = "FN"
    CLR_SCALAR_FUNCTION = "FS"
    CLR_TABLE_FUNCTION = "FT"
    INLINE_TABLE_FUNCTION = "IF"
    INTERNAL_TABLE = "IT"
    STORED_PROCEDURE = "P"
    CLR_STORED_PROCEDURE = "PC"
    PLAN_GUIDE = "PG"
    PRIMARY_KEY = "PK"
    RULE = "R"
    REPLICATION_FILTER_PROCEDURE = "RF"
    SYSTEM_TABLE = "S"
    SYNONYM = "SN"
    SERVICE_QUEUE = "SQ"
    CLR_TRIGGER = "TA"
    TABLE_FUNCTION = "TF"
    TRIGGER = "TR"
    TABLE_TYPE = "TT"
    USER_TABLE = "U"
    UNIQUE_CONSTRAINT = "UQ"
    VIEW = "V"
    EXTENDED_STORED_PROCEDURE = "X"


_FUNCTION_CODES = {SourceObjectType.SCALAR_FUNCTION}
_TABLE_FUNCTION_CODES = {
    SourceObjectType.INLINE_TABLE_FUNCTION,
    SourceObjectType.TABLE_FUNCTION,
}

_ROUTINE_CLASSES: dict[SourceObjectType, type[RoutineSchema]] = {
    SourceObjectType.STORED_PROCEDURE: StoredProcedureSchema,
    SourceObjectType.SCALAR_FUNCTION: FunctionSchema,
    SourceObjectType.INLINE_TABLE_FUNCTION: TableValuedFunctionSchema,
    SourceObjectType.TABLE_FUNCTION: TableValuedFunctionSchema,
}


# Type names as returned by SQL Server's systypes
MSSQL_TYPE_MAP: dict[str, SqlType] = {t.value: t for t in SqlType}
MSSQL_TYPE_MAP.update(
    {
        "numeric": SqlType.DECIMAL,
        "sysname": SqlType.NVARCHAR,
        "hierarchyid": SqlType.UDT,
        "geometry": SqlType.UDT,
        "geography": SqlType.UDT,
        "rowversion": SqlType.TIMESTAMP,
    }
)

# Type names as returned by PostgreSQL's information_schema (data_type)
POSTGRES_TYPE_MAP: dict[str, SqlType] = {
    "smallint": SqlType.SMALLINT,
    "integer": SqlType.INT,
    "bigint": SqlType.BIGINT,
    "numeric": SqlType.DECIMAL,
    "real": SqlType.REAL,
    "double precision": SqlType.FLOAT,
    "money": SqlType.MONEY,
    "boolean": SqlType.BIT,
    "character": SqlType.NCHAR,
    "character varying": SqlType.NVARCHAR,
    "text": SqlType.NTEXT,
    "bytea": SqlType.VARBINARY,
    "uuid": SqlType.UNIQUEIDENTIFIER,
    "date": SqlType.DATE,
    "time without time zone": SqlType.TIME,
    "time with time zone": SqlType.TIME,
    "timestamp without time zone": SqlType.DATETIME2,
    "timestamp with time zone": SqlType.DATETIMEOFFSET,
    "interval": SqlType.VARIANT,
    "json": SqlType.NTEXT,
    "jsonb": SqlType.NTEXT,
    "xml": SqlType.XML,
    "ARRAY": SqlType.STRUCTURED,
    "USER-DEFINED": SqlType.UDT,
    "record": SqlType.STRUCTURED,
    "bit": SqlType.BINARY,
    "bit varying": SqlType.VARBINARY,
    '"char"': SqlType.CHAR,
    "name": SqlType.NVARCHAR,
    "oid": SqlType.BIGINT,
    "regclass": SqlType.NVARCHAR,
    "inet": SqlType.VARCHAR,
    "cidr": SqlType.VARCHAR,
    "macaddr": SqlType.VARCHAR,
    "tsvector": SqlType.NTEXT,
    "tsquery": SqlType.NTEXT,
    "void": SqlType.VARIANT,
    "trigger": SqlType.VARIANT,
    "event_trigger": SqlType.VARIANT,
    "anyelement": SqlType.VARIANT,
}


# ============================================================================
# Ingestion rows
# ============================================================================


class ObjectParamRow(BaseModel):
    """One column, parameter or return value of a database object."""

    schema_name: str
    object_name: str
    object_type: SourceObjectType
    object_id: int = 0
    param_name: str
    type_name: str
    type_length: int = 0
    type_precision: int = 0
    type_scale: int = 0
    is_nullable: bool = True
    order_id: int = 0
    collation: str | None = None
    default_object_id: int = 0  # id of a D text row holding the default
    default_value: str | None = None  # inline default, wins over default_object_id
    is_output: bool = False  # routine result rather than input parameter


class ObjectTextRow(BaseModel):
    """One fragment of a database object's SQL text."""

    schema_name: str
    object_name: str
    object_type: SourceObjectType
    object_id: int = 0
    order_id: int = 0
    text: str
    parent_schema_name: str | None = None  # owning table, for triggers
    parent_object_name: str | None = None


# ============================================================================
# Builder
# ============================================================================


class CatalogBuilder:
    """Accumulates introspection rows and builds a ``CatalogSchema``.

    Rows may arrive in any order.  ``build()`` can be called once per
    builder; it returns a new catalog.
    """

    def __init__(
        self,
        server: str,
        database: str,
        type_map: Mapping[str, SqlType] = MSSQL_TYPE_MAP,
    ):
        self._server = server
        self._database = database
        self._type_map = type_map
        self._params: list[ObjectParamRow] = []
        self._texts: list[ObjectTextRow] = []

    def add_param(self, row: ObjectParamRow) -> None:
        self._params.append(row)

    def add_text(self, row: ObjectTextRow) -> None:
        self._texts.append(row)

    def add_rows(
        self,
        params: Iterable[ObjectParamRow] = (),
        texts: Iterable[ObjectTextRow] = (),
    ) -> None:
        """Add many rows at once."""
        self._params.extend(params)
        self._texts.extend(texts)

    def build(self) -> CatalogSchema:
        """Create the catalog from the accumulated rows.

        Raises:
            UnsupportedValueError: If a row carries an object-type code or a
                type name that has no mapping.
            ValueError: If a trigger text row has no parent table.
        """
        catalog = CatalogSchema(name=self._database, server=self._server)
        tables: dict[tuple[str, str], TableSchema] = {}
        routines: dict[tuple[str, str], RoutineSchema] = {}
        views: dict[tuple[str, str], ViewSchema] = {}
        # Trigger names are unique per table, not per schema
        triggers: dict[tuple[str, str, str, str], TriggerSchema] = {}
        # Text fragments grouped per owning object, keyed by id(owner)
        fragments: dict[
            int, tuple[RoutineSchema | TriggerSchema | ViewSchema, list[ObjectTextRow]]
        ] = {}
        defaults: dict[int, list[ObjectTextRow]] = {}

        def table_for(schema_name: str, name: str) -> TableSchema:
            key = _identity(schema_name, name)
            if key not in tables:
                tables[key] = TableSchema(name=name, schema_name=schema_name)
                catalog.tables.append(tables[key])
            return tables[key]

        def view_for(schema_name: str, name: str) -> ViewSchema:
            key = _identity(schema_name, name)
            if key not in views:
                views[key] = ViewSchema(name=name, schema_name=schema_name)
                catalog.views.append(views[key])
            return views[key]

        def routine_for(
            code: SourceObjectType, schema_name: str, name: str, object_id: int
        ) -> RoutineSchema:
            key = _identity(schema_name, name)
            if key not in routines:
                routines[key] = self._new_routine(catalog, code, schema_name, name, object_id)
            routine = routines[key]
            if type(routine) is not _ROUTINE_CLASSES[code]:
                raise ValueError(
                    f"Object {schema_name}.{name} reported as both "
                    f"{type(routine).__name__} and {code.value}"
                )
            if not routine.object_id and object_id:
                routine.object_id = object_id
            return routine

        # Text rows first: defaults must be known before columns are created
        for text in self._texts:
            code = text.object_type
            if code == SourceObjectType.DEFAULT:
                defaults.setdefault(text.object_id, []).append(text)
                continue
            if code in _ROUTINE_CLASSES:
                owner = routine_for(code, text.schema_name, text.object_name, text.object_id)
            elif code == SourceObjectType.VIEW:
                owner = view_for(text.schema_name, text.object_name)
            elif code == SourceObjectType.TRIGGER:
                if not text.parent_object_name:
                    raise ValueError(
                        f"Trigger {text.schema_name}.{text.object_name} has no parent table"
                    )
                parent_schema = text.parent_schema_name or text.schema_name
                key = (
                    *_identity(parent_schema, text.parent_object_name),
                    *_identity(text.schema_name, text.object_name),
                )
                if key not in triggers:
                    triggers[key] = TriggerSchema(
                        name=text.object_name,
                        schema_name=text.schema_name,
                        object_id=text.object_id,
                    )
                    table_for(parent_schema, text.parent_object_name).triggers.append(triggers[key])
                owner = triggers[key]
            else:
                raise UnsupportedValueError(code.value, "object type")

            fragments.setdefault(id(owner), (owner, []))[1].append(text)

        default_values = {
            object_id: _join_fragments(rows) for object_id, rows in defaults.items()
        }

        for row in self._params:
            code = row.object_type
            if code == SourceObjectType.USER_TABLE:
                column = ColumnSchema(
                    name=row.param_name,
                    db_type=self._type_for(row),
                    order_id=row.order_id,
                    collation=row.collation or "",
                    default_value=(
                        row.default_value
                        if row.default_value is not None
                        else default_values.get(row.default_object_id)
                    ),
                )
                table_for(row.schema_name, row.object_name).add_column(column)
            elif code == SourceObjectType.STORED_PROCEDURE:
                routine = routine_for(code, row.schema_name, row.object_name, row.object_id)
                routine.add_parameter(self._parameter_for(row))
            elif code in _FUNCTION_CODES | _TABLE_FUNCTION_CODES:
                function = routine_for(code, row.schema_name, row.object_name, row.object_id)
                if row.is_output:
                    function.add_return_value(self._parameter_for(row, code in _TABLE_FUNCTION_CODES))
                else:
                    function.add_parameter(self._parameter_for(row))
            elif code == SourceObjectType.VIEW:
                # View columns follow from the view text; only the view itself is kept
                view_for(row.schema_name, row.object_name)
            else:
                raise UnsupportedValueError(code.value, "object type")

        for owner, rows in fragments.values():
            if isinstance(owner, ViewSchema):
                owner.text = _join_fragments(rows)
            else:
                owner.script_text = _join_fragments(rows)

        logger.debug(
            "Built catalog %s: %d tables, %d procedures, %d functions, "
            "%d table-valued functions, %d views",
            catalog.full_name,
            len(catalog.tables),
            len(catalog.stored_procedures),
            len(catalog.functions),
            len(catalog.table_valued_functions),
            len(catalog.views),
        )
        return catalog

    def _new_routine(
        self,
        catalog: CatalogSchema,
        code: SourceObjectType,
        schema_name: str,
        name: str,
        object_id: int,
    ) -> RoutineSchema:
        cls = _ROUTINE_CLASSES.get(code)
        if cls is None:
            raise UnsupportedValueError(code.value, "object type")
        routine = cls(name=name, schema_name=schema_name, object_id=object_id)
        if cls is StoredProcedureSchema:
            catalog.stored_procedures.append(routine)
        elif cls is TableValuedFunctionSchema:
            catalog.table_valued_functions.append(routine)
        else:
            catalog.functions.append(routine)
        return routine

    def _type_for(self, row: ObjectParamRow) -> TypeSchema:
        sql_type = self._type_map.get(row.type_name) or self._type_map.get(row.type_name.lower())
        if sql_type is None:
            raise UnsupportedValueError(row.type_name, "data type")
        return TypeSchema(
            sql_type=sql_type,
            length=row.type_length,
            precision=row.type_precision,
            scale=row.type_scale,
            allow_null=row.is_nullable,
        )

    def _parameter_for(self, row: ObjectParamRow, as_column: bool = False) -> ParameterSchema:
        # Table-valued function results are table columns
        cls = ColumnSchema if as_column else ParameterSchema
        parameter = cls(name=row.param_name, db_type=self._type_for(row), order_id=row.order_id)
        if isinstance(parameter, ColumnSchema):
            parameter.collation = row.collation or ""
        return parameter


def _identity(schema_name: str, name: str) -> tuple[str, str]:
    return schema_name.casefold(), name.casefold()


def _join_fragments(rows: list[ObjectTextRow]) -> str:
    return "".join(row.text for row in sorted(rows, key=lambda r: r.order_id))
