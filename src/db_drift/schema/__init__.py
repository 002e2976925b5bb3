"""Schema model, snapshots, comparison, DDL generation and introspection.

Provides the catalog model (``CatalogSchema`` and its entities), snapshot
serialization (``dump_catalog``, ``load_catalog``, ``save_snapshot``,
``load_snapshot``), drift detection (``compare_catalogs``), creation scripts
(``generate_create_script``), row-based catalog building (``CatalogBuilder``)
and live PostgreSQL introspection (``PostgresCatalogReader``).

Usage:
    from db_drift.schema import compare_catalogs, load_snapshot
    from db_drift.schema import generate_create_script, PostgresCatalogReader
"""

from db_drift.schema.builder import (
    MSSQL_TYPE_MAP,
    POSTGRES_TYPE_MAP,
    CatalogBuilder,
    ObjectParamRow,
    ObjectTextRow,
    SourceObjectType,
)
from db_drift.schema.comparator import (
    compare_catalogs,
    compare_column,
    compare_function,
    compare_objects,
    compare_parameter,
    compare_stored_procedure,
    compare_table,
    compare_trigger,
    compare_type,
    compare_view,
)
from db_drift.schema.ddl import generate_create_script
from db_drift.schema.introspector import PostgresCatalogReader
from db_drift.schema.models import (
    CatalogSchema,
    ColumnSchema,
    CompareResultType,
    DbObjectType,
    FunctionSchema,
    ParameterSchema,
    SchemaCompareResult,
    SqlType,
    StoredProcedureSchema,
    TableSchema,
    TableValuedFunctionSchema,
    TriggerSchema,
    TypeSchema,
    ViewSchema,
)
from db_drift.schema.serialization import (
    dump_catalog,
    load_catalog,
    load_snapshot,
    save_snapshot,
)

__all__ = [
    # Models
    "CatalogSchema",
    "ColumnSchema",
    "CompareResultType",
    "DbObjectType",
    "FunctionSchema",
    "ParameterSchema",
    "SchemaCompareResult",
    "SqlType",
    "StoredProcedureSchema",
    "TableSchema",
    "TableValuedFunctionSchema",
    "TriggerSchema",
    "TypeSchema",
    "ViewSchema",
    # Comparison
    "compare_catalogs",
    "compare_column",
    "compare_function",
    "compare_objects",
    "compare_parameter",
    "compare_stored_procedure",
    "compare_table",
    "compare_trigger",
    "compare_type",
    "compare_view",
    # Snapshots
    "dump_catalog",
    "load_catalog",
    "save_snapshot",
    "load_snapshot",
    # DDL
    "generate_create_script",
    # Building and introspection
    "CatalogBuilder",
    "ObjectParamRow",
    "ObjectTextRow",
    "SourceObjectType",
    "MSSQL_TYPE_MAP",
    "POSTGRES_TYPE_MAP",
    "PostgresCatalogReader",
]
