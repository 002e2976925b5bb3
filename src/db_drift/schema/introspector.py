"""PostgreSQL catalog reader via information_schema and pg_catalog.

Queries a live database and produces a ``CatalogSchema``:
- Tables and views with their columns (types, nullability, defaults, collation)
- Functions and procedures with parameters, return values and definitions
- View definitions
- Triggers with their definitions, attached to their tables

The query results are turned into ``ObjectParamRow``/``ObjectTextRow`` rows
and handed to ``CatalogBuilder``.  Object kinds use the builder's codes:
ordinary tables ``U``, views ``V``, procedures ``P``, set-returning
functions ``TF``, other functions ``FN`` and triggers ``TR``.  Overloaded
routines are named with their argument list so each overload stays a
separate object.

Uses psycopg (v3) async connections.
"""

import logging
from collections.abc import Iterable

import psycopg
from psycopg import AsyncConnection

from db_drift.schema.builder import (
    POSTGRES_TYPE_MAP,
    CatalogBuilder,
    ObjectParamRow,
    ObjectTextRow,
    SourceObjectType,
)
from db_drift.schema.models import CatalogSchema

logger = logging.getLogger(__name__)

# Name of the synthesized result row of functions without OUT parameters
RETURN_VALUE_NAME = "RETURN_VALUE"

_TABLE_TYPE_CODES = {
    "BASE TABLE": SourceObjectType.USER_TABLE,
    "VIEW": SourceObjectType.VIEW,
}

_ROUTINE_KIND_SQL = """
    CASE
        WHEN p.prokind = 'p' THEN 'P'
        WHEN p.proretset THEN 'TF'
        ELSE 'FN'
    END
"""


class PostgresCatalogReader:
    """Reads a PostgreSQL database into a ``CatalogSchema``.

    Usage:
        async with PostgresCatalogReader(database_url, schemas=("public",)) as reader:
            catalog = await reader.read_catalog()
    """

    def __init__(
        self,
        database_url: str,
        schemas: tuple[str, ...] | list[str] = ("public",),
        connect_timeout: int = 10,
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
            schemas: PostgreSQL schemas to read
            connect_timeout: Connection timeout in seconds
        """
        self._database_url = database_url
        self._schemas = list(schemas)
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "PostgresCatalogReader":
        """Async context manager entry - opens connection."""
        self._conn = await psycopg.AsyncConnection.connect(
            self._database_url,
            connect_timeout=self._connect_timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_connection(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Catalog reader not connected. Use async with statement.")
        return self._conn

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` on the open connection.

        Raises:
            RuntimeError: If not connected.
            ConnectionError: If the query fails.
        """
        conn = self._require_connection()
        try:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1")
                await cur.fetchone()
        except psycopg.Error as e:
            raise ConnectionError(f"Connection test failed: {e}") from e
        return True

    async def read_catalog(self) -> CatalogSchema:
        """Read the configured schemas into a new catalog.

        The catalog is named after the connected database; its server is the
        connection host.

        Raises:
            RuntimeError: If not connected.
            UnsupportedValueError: If a column or parameter has a data type
                without a mapping.
        """
        conn = self._require_connection()

        builder = CatalogBuilder(
            server=conn.info.host or "localhost",
            database=conn.info.dbname,
            type_map=POSTGRES_TYPE_MAP,
        )
        builder.add_rows(params=await self._get_columns())
        builder.add_rows(params=await self._get_routine_parameters())
        builder.add_rows(texts=await self._get_routine_definitions())
        builder.add_rows(texts=await self._get_view_definitions())
        builder.add_rows(texts=await self._get_triggers())

        catalog = builder.build()
        logger.debug(
            "Read %d objects from %s (schemas: %s)",
            catalog.object_count(),
            catalog.full_name,
            ", ".join(self._schemas),
        )
        return catalog

    async def _fetch(self, query: str) -> list[tuple]:
        conn = self._require_connection()
        async with conn.cursor() as cur:
            await cur.execute(query, (self._schemas,))
            return await cur.fetchall()

    async def _get_columns(self) -> list[ObjectParamRow]:
        """Columns of tables and views."""
        query = """
            SELECT
                c.table_schema,
                c.table_name,
                t.table_type,
                c.column_name,
                c.data_type,
                COALESCE(c.character_maximum_length, 0),
                COALESCE(c.numeric_precision, 0),
                COALESCE(c.numeric_scale, 0),
                c.is_nullable,
                c.ordinal_position,
                c.collation_name,
                c.column_default
            FROM information_schema.columns c
            JOIN information_schema.tables t
                ON t.table_schema = c.table_schema
                AND t.table_name = c.table_name
            WHERE c.table_schema = ANY(%s)
              AND t.table_type IN ('BASE TABLE', 'VIEW')
            ORDER BY c.table_schema, c.table_name, c.ordinal_position
        """
        rows = []
        for row in await self._fetch(query):
            (
                schema_name,
                table_name,
                table_type,
                column_name,
                data_type,
                length,
                precision,
                scale,
                is_nullable,
                ordinal,
                collation,
                default,
            ) = row
            rows.append(
                ObjectParamRow(
                    schema_name=schema_name,
                    object_name=table_name,
                    object_type=_TABLE_TYPE_CODES[table_type],
                    param_name=column_name,
                    type_name=data_type,
                    type_length=length,
                    type_precision=precision,
                    type_scale=scale,
                    is_nullable=(is_nullable == "YES"),
                    order_id=ordinal,
                    collation=collation,
                    default_value=default,
                )
            )
        return rows

    async def _get_routine_parameters(self) -> list[ObjectParamRow]:
        """Parameters and return values of functions and procedures.

        OUT, INOUT and TABLE parameters are return values.  Functions that
        have none get a single ``RETURN_VALUE`` row of their declared return
        type.
        """
        query = f"""
            SELECT
                r.routine_schema,
                r.routine_name,
                p.oid,
                {_ROUTINE_KIND_SQL} AS object_type,
                r.data_type,
                pa.parameter_name,
                pa.data_type,
                pa.ordinal_position,
                pa.parameter_mode,
                pg_get_function_identity_arguments(p.oid)
            FROM information_schema.routines r
            JOIN pg_catalog.pg_proc p
                ON r.specific_name = p.proname || '_' || p.oid
            LEFT JOIN information_schema.parameters pa
                ON pa.specific_schema = r.specific_schema
                AND pa.specific_name = r.specific_name
            WHERE r.routine_schema = ANY(%s)
              AND p.prokind IN ('f', 'p')
            ORDER BY r.routine_schema, r.routine_name, pa.ordinal_position
        """
        rows: list[ObjectParamRow] = []
        return_types: dict[tuple[str, str], tuple[int, str, str]] = {}
        with_outputs: set[tuple[str, str]] = set()

        result = await self._fetch(query)
        names = _routine_names((row[0], row[1], row[2], row[9]) for row in result)
        for row in result:
            (
                schema_name,
                _,
                oid,
                code,
                return_type,
                param_name,
                param_type,
                ordinal,
                mode,
                _,
            ) = row
            routine_name = names[oid]
            object_type = SourceObjectType(code)
            key = (schema_name, routine_name)
            if object_type != SourceObjectType.STORED_PROCEDURE:
                return_types.setdefault(key, (oid, code, return_type))

            if ordinal is None:
                continue  # routine without parameters

            is_output = mode in ("OUT", "INOUT", "TABLE")
            if is_output:
                with_outputs.add(key)
            rows.append(
                ObjectParamRow(
                    schema_name=schema_name,
                    object_name=routine_name,
                    object_type=object_type,
                    object_id=oid,
                    param_name=param_name or f"${ordinal}",
                    type_name=param_type,
                    order_id=ordinal,
                    is_output=is_output and object_type != SourceObjectType.STORED_PROCEDURE,
                )
            )

        for (schema_name, routine_name), (oid, code, return_type) in return_types.items():
            if (schema_name, routine_name) in with_outputs:
                continue
            rows.append(
                ObjectParamRow(
                    schema_name=schema_name,
                    object_name=routine_name,
                    object_type=SourceObjectType(code),
                    object_id=oid,
                    param_name=RETURN_VALUE_NAME,
                    type_name=return_type,
                    is_output=True,
                )
            )
        return rows

    async def _get_routine_definitions(self) -> list[ObjectTextRow]:
        """Full CREATE statements of functions and procedures."""
        query = f"""
            SELECT
                n.nspname,
                p.proname,
                p.oid,
                {_ROUTINE_KIND_SQL} AS object_type,
                pg_get_functiondef(p.oid),
                pg_get_function_identity_arguments(p.oid)
            FROM pg_catalog.pg_proc p
            JOIN pg_catalog.pg_namespace n ON n.oid = p.pronamespace
            WHERE n.nspname = ANY(%s)
              AND p.prokind IN ('f', 'p')
            ORDER BY n.nspname, p.proname, p.oid
        """
        result = await self._fetch(query)
        names = _routine_names((row[0], row[1], row[2], row[5]) for row in result)
        return [
            ObjectTextRow(
                schema_name=schema_name,
                object_name=names[oid],
                object_type=SourceObjectType(code),
                object_id=oid,
                order_id=order_id,
                text=definition,
            )
            for order_id, (schema_name, _, oid, code, definition, _) in enumerate(result)
        ]

    async def _get_view_definitions(self) -> list[ObjectTextRow]:
        """View definitions (the SELECT text)."""
        query = """
            SELECT schemaname, viewname, definition
            FROM pg_catalog.pg_views
            WHERE schemaname = ANY(%s)
            ORDER BY schemaname, viewname
        """
        return [
            ObjectTextRow(
                schema_name=schema_name,
                object_name=name,
                object_type=SourceObjectType.VIEW,
                text=definition,
            )
            for schema_name, name, definition in await self._fetch(query)
        ]

    async def _get_triggers(self) -> list[ObjectTextRow]:
        """User triggers with their CREATE TRIGGER statement."""
        query = """
            SELECT
                n.nspname,
                t.tgname,
                t.oid,
                c.relname,
                pg_get_triggerdef(t.oid)
            FROM pg_catalog.pg_trigger t
            JOIN pg_catalog.pg_class c ON c.oid = t.tgrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            WHERE NOT t.tgisinternal
              AND n.nspname = ANY(%s)
            ORDER BY n.nspname, c.relname, t.tgname
        """
        return [
            ObjectTextRow(
                schema_name=schema_name,
                object_name=name,
                object_type=SourceObjectType.TRIGGER,
                object_id=oid,
                text=definition,
                parent_schema_name=schema_name,
                parent_object_name=table_name,
            )
            for schema_name, name, oid, table_name, definition in await self._fetch(query)
        ]


def _routine_names(routines: Iterable[tuple[str, str, int, str]]) -> dict[int, str]:
    """Map routine oids to catalog names.

    PostgreSQL allows overloading, so an overloaded routine is named with its
    identity arguments (``total(integer)``, ``total(text)``).  Routines whose
    name is unique in their schema keep the bare name.

    Args:
        routines: ``(schema, name, oid, identity_arguments)`` tuples; an oid
            may repeat.
    """
    signatures: dict[int, tuple[str, str]] = {}
    overloads: dict[tuple[str, str], set[int]] = {}
    for schema_name, name, oid, arguments in routines:
        signatures[oid] = (name, arguments)
        overloads.setdefault((schema_name, name), set()).add(oid)

    names = {}
    for oids in overloads.values():
        for oid in oids:
            name, arguments = signatures[oid]
            names[oid] = f"{name}({arguments})" if len(oids) > 1 else name
    return names
