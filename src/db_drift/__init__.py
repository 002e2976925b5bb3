"""db-drift: Database schema snapshots, drift detection and DDL scripts.

Captures a database schema into a versioned in-memory model, saves it as a
binary or JSON snapshot, compares two schemas into a result tree and
regenerates creation scripts.

Usage:
    from db_drift import compare_catalogs, load_snapshot, save_snapshot
    from db_drift import PostgresCatalogReader, generate_create_script
    from db_drift import load_config, resolve_url
"""

__version__ = "0.1.0"

# Errors
from db_drift.errors import SchemaError, SerializationError, UnsupportedValueError

# Config
from db_drift.config.loader import load_config, resolve_url
from db_drift.config.models import DatabaseProfile, DriftConfig

# Schema
from db_drift.schema.comparator import compare_catalogs, compare_objects
from db_drift.schema.ddl import generate_create_script
from db_drift.schema.introspector import PostgresCatalogReader
from db_drift.schema.models import CatalogSchema, CompareResultType, SchemaCompareResult
from db_drift.schema.serialization import (
    dump_catalog,
    load_catalog,
    load_snapshot,
    save_snapshot,
)

__all__ = [
    # Errors
    "SchemaError",
    "SerializationError",
    "UnsupportedValueError",
    # Config
    "load_config",
    "resolve_url",
    "DatabaseProfile",
    "DriftConfig",
    # Schema
    "CatalogSchema",
    "CompareResultType",
    "SchemaCompareResult",
    "compare_catalogs",
    "compare_objects",
    "generate_create_script",
    "PostgresCatalogReader",
    # Snapshots
    "dump_catalog",
    "load_catalog",
    "save_snapshot",
    "load_snapshot",
]
