"""Pydantic models for the database schema catalog and its comparison.

This module contains schema-domain models:
- Enums: DbObjectType, SqlType, CompareResultType
- Entity models: TypeSchema, ParameterSchema, ColumnSchema, TriggerSchema,
  StoredProcedureSchema, FunctionSchema, TableValuedFunctionSchema,
  ViewSchema, TableSchema, CatalogSchema
- Comparison result: SchemaCompareResult

Comparison logic lives in db_drift.schema.comparator, the snapshot
reader/writers in db_drift.schema.serialization.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterator
from enum import Enum, IntFlag
from typing import ClassVar

from pydantic import BaseModel, Field, PrivateAttr

from db_drift.schema.serialization import (
    DUMMY_STRING,
    ObjectReadWriter,
    resolve_exact,
    resolve_from,
)


# ============================================================================
# Enums
# ============================================================================


class DbObjectType(Enum):
    """Kind of database object, fixed per entity class."""

    DATABASE_CATALOG = 1
    TABLE = 2
    FUNCTION = 3
    STORED_PROCEDURE = 4
    PARAMETER = 5
    TRIGGER = 6
    DATABASE_TYPE = 7
    VIEW = 8


class SqlType(str, Enum):
    """Vendor-neutral SQL data type; the value is the SQL spelling."""

    BIGINT = "bigint"
    BINARY = "binary"
    BIT = "bit"
    CHAR = "char"
    DATE = "date"
    DATETIME = "datetime"
    DATETIME2 = "datetime2"
    DATETIMEOFFSET = "datetimeoffset"
    DECIMAL = "decimal"
    FLOAT = "float"
    IMAGE = "image"
    INT = "int"
    MONEY = "money"
    NCHAR = "nchar"
    NTEXT = "ntext"
    NVARCHAR = "nvarchar"
    REAL = "real"
    SMALLDATETIME = "smalldatetime"
    SMALLINT = "smallint"
    SMALLMONEY = "smallmoney"
    STRUCTURED = "structured"
    TEXT = "text"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TINYINT = "tinyint"
    UDT = "udt"
    UNIQUEIDENTIFIER = "uniqueidentifier"
    VARBINARY = "varbinary"
    VARCHAR = "varchar"
    VARIANT = "sql_variant"
    XML = "xml"


class CompareResultType(IntFlag):
    """Verdict bitmask; a node's effective verdict ORs in all children."""

    EQUAL = 0
    MISSING = 1  # present in master, absent in checked
    DIFFERENT = 2
    REDUNDANT = 4  # present in checked, absent in master


def describe_result_type(result_type: CompareResultType) -> str:
    """Human-readable flag list, e.g. ``"MISSING|DIFFERENT"``."""
    names = [
        flag.name
        for flag in (
            CompareResultType.MISSING,
            CompareResultType.DIFFERENT,
            CompareResultType.REDUNDANT,
        )
        if result_type & flag
    ]
    return "|".join(names) if names else "EQUAL"


def same_identifier(left: str, right: str) -> bool:
    """Case-insensitive identifier comparison (Unicode casefold)."""
    return left.casefold() == right.casefold()


def _reindex(items: list) -> None:
    """Stable-sort by ``order_id`` and assign dense 0-based ``fake_order_id``."""
    items.sort(key=lambda item: item.order_id)
    for fake_order_id, item in enumerate(items):
        item.fake_order_id = fake_order_id


# ============================================================================
# Base models
# ============================================================================


class DbObjectSchema(BaseModel):
    """Base for every schema entity.

    ``object_type`` is a class-level constant; pydantic refuses to set it
    on an instance.
    """

    object_type: ClassVar[DbObjectType]

    @property
    @abstractmethod
    def full_name(self) -> str:
        """Full database name/identifier used in reports."""

    @abstractmethod
    def de_serialize(self, rw: ObjectReadWriter) -> None:
        """Read or write this object through ``rw``."""


class NamedObjectSchema(DbObjectSchema):
    """Entity with a stored name."""

    name: str = DUMMY_STRING


class SchemaScopedObjectSchema(NamedObjectSchema):
    """Entity identified by (schema name, object name)."""

    schema_name: str = DUMMY_STRING

    @property
    def full_name(self) -> str:
        return f"[{self.schema_name}].[{self.name}]"

    def matches(self, schema_name: str, name: str) -> bool:
        """True if this object is named ``schema_name.name`` (ignoring case)."""
        return same_identifier(self.schema_name, schema_name) and same_identifier(
            self.name, name
        )

    def is_same_db_name(self, other: SchemaScopedObjectSchema) -> bool:
        """True if ``other`` names the same database object.

        Raises:
            ValueError: If ``other`` is None.
        """
        if other is None:
            raise ValueError("other must not be None")
        return self.matches(other.schema_name, other.name)


# ============================================================================
# Types, parameters, columns
# ============================================================================


class TypeSchema(DbObjectSchema):
    """Data type of a column or parameter.

    Example:
        >>> t = TypeSchema(sql_type=SqlType.NVARCHAR, length=50, allow_null=True)
        >>> t.name
        'nvarchar'
    """

    object_type: ClassVar[DbObjectType] = DbObjectType.DATABASE_TYPE

    sql_type: SqlType = SqlType.VARIANT
    length: int = 0
    precision: int = 0
    scale: int = 0
    allow_null: bool = False

    @property
    def name(self) -> str:
        """Derived from ``sql_type``; there is no stored name."""
        return self.sql_type.value

    @property
    def full_name(self) -> str:
        return self.name

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self.sql_type = rw.read_write_enum("sql_type", self.sql_type, SqlType)
        self.length = rw.read_write_int32("length", self.length)
        self.precision = rw.read_write_int32("precision", self.precision)
        self.scale = rw.read_write_int32("scale", self.scale)
        self.allow_null = rw.read_write_bool("allow_null", self.allow_null)


class ParameterSchema(NamedObjectSchema):
    """Parameter of a stored procedure or function."""

    object_type: ClassVar[DbObjectType] = DbObjectType.PARAMETER

    db_type: TypeSchema = Field(default_factory=TypeSchema)
    order_id: int = 0
    fake_order_id: int = 0  # dense 0-based rank of order_id within the owner

    @property
    def full_name(self) -> str:
        return self.name

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self.name = rw.read_write_str("name", self.name)
        self.db_type = rw.read_write_object("db_type", self.db_type, TypeSchema)
        self.order_id = rw.read_write_int32("order_id", self.order_id)
        self.fake_order_id = rw.read_write_int32("fake_order_id", self.fake_order_id)


class ColumnSchema(ParameterSchema):
    """Table column: a parameter with a default value and collation.

    Example:
        >>> col = ColumnSchema(name="id", db_type=TypeSchema(sql_type=SqlType.INT))
        >>> col.default_value is None
        True
    """

    default_value: str | None = None
    collation: str = ""

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        super().de_serialize(rw)
        self.default_value = rw.read_write_str_n("default_value", self.default_value)
        self.collation = rw.read_write_str("collation", self.collation)


def _parameter_resolver():
    # Parameter lists may hold plain parameters or columns (table-valued
    # function results)
    return resolve_from(
        {
            ParameterSchema.__name__: ParameterSchema,
            ColumnSchema.__name__: ColumnSchema,
        }
    )


# ============================================================================
# Script objects: triggers, stored procedures, functions
# ============================================================================


class ScriptedObjectSchema(SchemaScopedObjectSchema):
    """Schema-scoped object defined by SQL script text."""

    object_id: int = 0
    script_text: str = ""

    def _de_serialize_script(self, rw: ObjectReadWriter) -> None:
        self.name = rw.read_write_str("name", self.name)
        self.object_id = rw.read_write_int64("object_id", self.object_id)
        self.schema_name = rw.read_write_str("schema_name", self.schema_name)
        self.script_text = rw.read_write_str("script_text", self.script_text)


class TriggerSchema(ScriptedObjectSchema):
    """Table trigger."""

    object_type: ClassVar[DbObjectType] = DbObjectType.TRIGGER

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self._de_serialize_script(rw)


class RoutineSchema(ScriptedObjectSchema):
    """Script object with input parameters."""

    parameters: list[ParameterSchema] = Field(default_factory=list)

    def add_parameter(self, parameter: ParameterSchema) -> None:
        """Append a parameter and re-index ``fake_order_id``."""
        self.parameters.append(parameter)
        _reindex(self.parameters)

    def _de_serialize_parameters(self, rw: ObjectReadWriter) -> None:
        self.parameters = rw.read_write_list(
            "parameters", self.parameters, _parameter_resolver()
        )


class StoredProcedureSchema(RoutineSchema):
    """Stored procedure."""

    object_type: ClassVar[DbObjectType] = DbObjectType.STORED_PROCEDURE

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self._de_serialize_script(rw)
        self._de_serialize_parameters(rw)


class FunctionSchema(RoutineSchema):
    """Scalar function: parameters plus return values."""

    object_type: ClassVar[DbObjectType] = DbObjectType.FUNCTION

    return_values: list[ParameterSchema] = Field(default_factory=list)

    def add_return_value(self, parameter: ParameterSchema) -> None:
        """Append a return value and re-index ``fake_order_id``."""
        self.return_values.append(parameter)
        _reindex(self.return_values)

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self._de_serialize_script(rw)
        self._de_serialize_parameters(rw)
        self.return_values = rw.read_write_list(
            "return_values", self.return_values, _parameter_resolver()
        )


class TableValuedFunctionSchema(FunctionSchema):
    """Function returning a table; its result columns are the return values."""

    pass


# ============================================================================
# Views, tables, catalog
# ============================================================================


class ViewSchema(SchemaScopedObjectSchema):
    """View with its defining text."""

    object_type: ClassVar[DbObjectType] = DbObjectType.VIEW

    text: str = ""

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self.name = rw.read_write_str("name", self.name)
        self.schema_name = rw.read_write_str("schema_name", self.schema_name)
        self.text = rw.read_write_str("text", self.text)


class TableSchema(SchemaScopedObjectSchema):
    """Table with ordered columns and triggers.

    Columns can only be added through ``add_column`` so that they stay
    sorted by ``order_id`` with a dense ``fake_order_id``.

    Example:
        >>> table = TableSchema(name="users", schema_name="dbo")
        >>> table.add_column(ColumnSchema(name="name", order_id=5))
        >>> table.add_column(ColumnSchema(name="id", order_id=1))
        >>> [(c.name, c.fake_order_id) for c in table.columns]
        [('id', 0), ('name', 1)]
    """

    object_type: ClassVar[DbObjectType] = DbObjectType.TABLE

    triggers: list[TriggerSchema] = Field(default_factory=list)
    _columns: list[ColumnSchema] = PrivateAttr(default_factory=list)

    @property
    def columns(self) -> tuple[ColumnSchema, ...]:
        """Columns ordered by ``order_id`` (read-only)."""
        return tuple(self._columns)

    def add_column(self, column: ColumnSchema) -> None:
        """Add a column, re-sorting and re-indexing ``fake_order_id``."""
        self._columns.append(column)
        _reindex(self._columns)

    def get_column(self, name: str) -> ColumnSchema | None:
        """Column with exactly this name, or None."""
        return next((c for c in self._columns if c.name == name), None)

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        rw.read_write_version(0)
        self.name = rw.read_write_str("name", self.name)
        self.schema_name = rw.read_write_str("schema_name", self.schema_name)
        self._columns = rw.read_write_list(
            "columns", self._columns, resolve_exact(ColumnSchema)
        )
        self.triggers = rw.read_write_list(
            "triggers", self.triggers, resolve_exact(TriggerSchema)
        )


class CatalogSchema(NamedObjectSchema):
    """Complete schema snapshot of one database.

    Version history of the serialized form:
    - 0: no views
    - 1: views
    """

    object_type: ClassVar[DbObjectType] = DbObjectType.DATABASE_CATALOG

    server: str = DUMMY_STRING
    stored_procedures: list[StoredProcedureSchema] = Field(default_factory=list)
    functions: list[FunctionSchema] = Field(default_factory=list)
    table_valued_functions: list[TableValuedFunctionSchema] = Field(default_factory=list)
    tables: list[TableSchema] = Field(default_factory=list)
    views: list[ViewSchema] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"[{self.server}] {self.name}"

    def find_table(self, schema_name: str, name: str) -> TableSchema | None:
        """Table named ``schema_name.name`` (ignoring case), or None."""
        return next((t for t in self.tables if t.matches(schema_name, name)), None)

    def object_count(self) -> int:
        """Number of top-level objects in the catalog."""
        return (
            len(self.stored_procedures)
            + len(self.functions)
            + len(self.table_valued_functions)
            + len(self.tables)
            + len(self.views)
        )

    def de_serialize(self, rw: ObjectReadWriter) -> None:
        version = rw.read_write_version(1)
        self.name = rw.read_write_str("name", self.name)
        self.server = rw.read_write_str("server", self.server)
        self.stored_procedures = rw.read_write_list(
            "stored_procedures", self.stored_procedures, resolve_exact(StoredProcedureSchema)
        )
        self.functions = rw.read_write_list(
            "functions", self.functions, resolve_exact(FunctionSchema)
        )
        self.table_valued_functions = rw.read_write_list(
            "table_valued_functions",
            self.table_valued_functions,
            resolve_exact(TableValuedFunctionSchema),
        )
        self.tables = rw.read_write_list("tables", self.tables, resolve_exact(TableSchema))
        if version >= 1:
            self.views = rw.read_write_list("views", self.views, resolve_exact(ViewSchema))


# ============================================================================
# Comparison result
# ============================================================================


class SchemaCompareResult(BaseModel):
    """Node of a comparison result tree.

    ``local_result`` is this node's own verdict; ``result_type`` is the
    effective verdict, the OR of ``local_result`` and every descendant.
    Verdicts only ever gain bits (``mark`` ORs, it never overwrites).

    Example:
        >>> result = SchemaCompareResult(master=ViewSchema(name="v1", schema_name="dbo"))
        >>> result.mark(CompareResultType.MISSING)
        >>> result.result_type
        <CompareResultType.MISSING: 1>
        >>> result.object_full_name
        '[dbo].[v1]'
    """

    master: DbObjectSchema | None = None
    checked: DbObjectSchema | None = None
    local_result: CompareResultType = CompareResultType.EQUAL
    inner_results: list[SchemaCompareResult] = Field(default_factory=list)

    def mark(self, result_type: CompareResultType) -> None:
        """Add bits to this node's own verdict."""
        self.local_result |= result_type

    def add_inner_result(self, result: SchemaCompareResult) -> None:
        """Attach a child result.

        Raises:
            ValueError: If this node is MISSING or REDUNDANT; an object
                absent on one side has nothing to recurse into.
        """
        if self.local_result & (CompareResultType.MISSING | CompareResultType.REDUNDANT):
            raise ValueError(
                f"Cannot attach inner results to {describe_result_type(self.local_result)} "
                f"node {self.object_full_name}"
            )
        self.inner_results.append(result)

    @property
    def result_type(self) -> CompareResultType:
        """Effective verdict including all descendants."""
        result = self.local_result
        for inner in self.inner_results:
            result |= inner.result_type
        return result

    @property
    def is_equal(self) -> bool:
        return self.result_type == CompareResultType.EQUAL

    @property
    def object_type(self) -> DbObjectType:
        """Type of the compared object (master's, else checked's)."""
        for obj in (self.master, self.checked):
            if obj is not None:
                return obj.object_type
        raise ValueError("Compare result has neither master nor checked object")

    @property
    def object_full_name(self) -> str:
        """Full name of the compared object (master's, else checked's)."""
        for obj in (self.master, self.checked):
            if obj is not None:
                return obj.full_name
        return "Unknown"

    def walk(self, depth: int = 0) -> Iterator[tuple[int, SchemaCompareResult]]:
        """Yield ``(depth, node)`` for this node and all descendants, pre-order."""
        yield depth, self
        for inner in self.inner_results:
            yield from inner.walk(depth + 1)

    def iter_differences(self) -> Iterator[tuple[int, SchemaCompareResult]]:
        """Like ``walk`` but only nodes whose effective verdict is not EQUAL."""
        for depth, node in self.walk():
            if not node.is_equal:
                yield depth, node

    def format_report(self) -> str:
        """Format the differences as a human-readable indented report."""
        if self.is_equal:
            return "Schema equal"

        lines = [f"Schema drift detected: {self.object_full_name}"]
        for depth, node in self.iter_differences():
            if depth == 0:
                continue
            label = describe_result_type(node.local_result)
            if node.local_result == CompareResultType.EQUAL:
                label = "CHANGED"
            lines.append(f"{'  ' * depth}- [{label}] {node.object_full_name}")
        return "\n".join(lines)
