"""Tests for PostgresCatalogReader.

The psycopg connection is replaced by mocks; each catalog query returns a
canned result in the order read_catalog() issues them.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from db_drift.errors import UnsupportedValueError
from db_drift.schema.introspector import RETURN_VALUE_NAME, PostgresCatalogReader, _routine_names
from db_drift.schema.models import (
    ColumnSchema,
    ParameterSchema,
    SqlType,
    TableValuedFunctionSchema,
)


COLUMN_ROWS = [
    # schema, table, type, column, data_type, length, precision, scale, nullable, ordinal, collation, default
    ("public", "users", "BASE TABLE", "id", "integer", 0, 32, 0, "NO", 1, None, "nextval('users_id_seq'::regclass)"),
    ("public", "users", "BASE TABLE", "email", "character varying", 255, 0, 0, "YES", 2, "C", None),
    ("public", "v_users", "VIEW", "id", "integer", 0, 32, 0, "YES", 1, None, None),
]

PARAMETER_ROWS = [
    # schema, routine, oid, kind, return type, param name, param type, ordinal, mode, identity args
    ("public", "add_user", 101, "P", None, "p_email", "text", 1, "IN", "p_email text"),
    ("public", "user_count", 102, "FN", "bigint", None, None, None, None, ""),
    ("public", "users_by_domain", 103, "TF", "record", "domain", "text", 1, "IN", "domain text"),
    ("public", "users_by_domain", 103, "TF", "record", "id", "integer", 2, "TABLE", "domain text"),
    ("public", "users_by_domain", 103, "TF", "record", "email", "character varying", 3, "TABLE", "domain text"),
]

DEFINITION_ROWS = [
    ("public", "add_user", 101, "P", "CREATE OR REPLACE PROCEDURE public.add_user(p_email text)", "p_email text"),
    ("public", "user_count", 102, "FN", "CREATE OR REPLACE FUNCTION public.user_count()", ""),
    ("public", "users_by_domain", 103, "TF", "CREATE OR REPLACE FUNCTION public.users_by_domain(domain text)", "domain text"),
]

VIEW_ROWS = [
    ("public", "v_users", " SELECT users.id\n   FROM users;"),
]

TRIGGER_ROWS = [
    ("public", "trg_users_audit", 201, "users", "CREATE TRIGGER trg_users_audit AFTER INSERT ON public.users"),
]


def _connected_reader(*results: list[tuple]) -> tuple[PostgresCatalogReader, AsyncMock]:
    """Reader with a mocked connection returning ``results`` in query order."""
    reader = PostgresCatalogReader("postgresql://localhost/shop", schemas=("public",))

    mock_cursor = AsyncMock()
    mock_cursor.fetchall.side_effect = list(results)

    # cursor() returns an async context manager
    mock_ctx = MagicMock()
    mock_ctx.__aenter__ = AsyncMock(return_value=mock_cursor)
    mock_ctx.__aexit__ = AsyncMock(return_value=None)

    mock_conn = MagicMock()
    mock_conn.cursor.return_value = mock_ctx
    mock_conn.info.host = "db.local"
    mock_conn.info.dbname = "shop"

    reader._conn = mock_conn
    return reader, mock_cursor


def _read_sample():
    reader, cursor = _connected_reader(
        COLUMN_ROWS, PARAMETER_ROWS, DEFINITION_ROWS, VIEW_ROWS, TRIGGER_ROWS
    )
    return asyncio.run(reader.read_catalog()), cursor


# ============================================================
# Test: Async context manager
# ============================================================


class TestAsyncContextManager:
    """Verify __aenter__ and __aexit__ behavior with mocks."""

    def test_aenter_opens_connection(self) -> None:
        reader = PostgresCatalogReader("postgresql://localhost/shop", connect_timeout=15)
        mock_conn = AsyncMock()

        with patch(
            "db_drift.schema.introspector.psycopg.AsyncConnection.connect",
            new_callable=AsyncMock,
            return_value=mock_conn,
        ) as mock_connect:
            result = asyncio.run(reader.__aenter__())

        mock_connect.assert_awaited_once_with("postgresql://localhost/shop", connect_timeout=15)
        assert result is reader
        assert reader._conn is mock_conn

    def test_aexit_closes_connection(self) -> None:
        reader = PostgresCatalogReader("postgresql://localhost/shop")
        mock_conn = AsyncMock()
        reader._conn = mock_conn

        asyncio.run(reader.__aexit__(None, None, None))

        mock_conn.close.assert_awaited_once()
        assert reader._conn is None

    def test_aexit_noop_when_no_connection(self) -> None:
        reader = PostgresCatalogReader("postgresql://localhost/shop")
        asyncio.run(reader.__aexit__(None, None, None))
        assert reader._conn is None

    def test_defaults(self) -> None:
        reader = PostgresCatalogReader("postgresql://localhost/shop")
        assert reader._schemas == ["public"]
        assert reader._connect_timeout == 10


class TestConnectionNotEstablished:
    """Verify methods raise RuntimeError when not connected."""

    def test_read_catalog_requires_connection(self) -> None:
        reader = PostgresCatalogReader("postgresql://localhost/shop")
        with pytest.raises(RuntimeError, match="not connected"):
            asyncio.run(reader.read_catalog())

    def test_test_connection_requires_connection(self) -> None:
        reader = PostgresCatalogReader("postgresql://localhost/shop")
        with pytest.raises(RuntimeError, match="not connected"):
            asyncio.run(reader.test_connection())


class TestTestConnection:
    """Verify test_connection()."""

    def test_success(self) -> None:
        reader, cursor = _connected_reader()
        cursor.fetchone.return_value = (1,)
        assert asyncio.run(reader.test_connection()) is True
        cursor.execute.assert_awaited_once_with("SELECT 1")

    def test_failure_raises_connection_error(self) -> None:
        reader, cursor = _connected_reader()
        cursor.execute.side_effect = psycopg.Error("connection lost")
        with pytest.raises(ConnectionError, match="Connection test failed"):
            asyncio.run(reader.test_connection())


# ============================================================
# Test: read_catalog
# ============================================================


class TestReadCatalog:
    """Verify query results are turned into a catalog."""

    def test_catalog_identity(self) -> None:
        catalog, _ = _read_sample()
        assert catalog.name == "shop"
        assert catalog.server == "db.local"

    def test_queries_use_schema_list(self) -> None:
        _, cursor = _read_sample()
        assert cursor.execute.await_count == 5
        for call in cursor.execute.await_args_list:
            assert call.args[1] == (["public"],)

    def test_table_columns(self) -> None:
        catalog, _ = _read_sample()
        users = catalog.find_table("public", "users")
        assert [c.name for c in users.columns] == ["id", "email"]

        id_column, email = users.columns
        assert id_column.db_type.sql_type == SqlType.INT
        assert id_column.db_type.allow_null is False
        assert id_column.default_value == "nextval('users_id_seq'::regclass)"
        assert email.db_type.sql_type == SqlType.NVARCHAR
        assert email.db_type.length == 255
        assert email.collation == "C"

    def test_trigger_attached_to_table(self) -> None:
        catalog, _ = _read_sample()
        trigger = catalog.find_table("public", "users").triggers[0]
        assert trigger.name == "trg_users_audit"
        assert trigger.object_id == 201
        assert trigger.script_text.startswith("CREATE TRIGGER trg_users_audit")

    def test_view(self) -> None:
        catalog, _ = _read_sample()
        assert len(catalog.tables) == 1
        view = catalog.views[0]
        assert view.full_name == "[public].[v_users]"
        assert "FROM users" in view.text

    def test_procedure(self) -> None:
        catalog, _ = _read_sample()
        procedure = catalog.stored_procedures[0]
        assert procedure.name == "add_user"
        assert procedure.object_id == 101
        assert [p.name for p in procedure.parameters] == ["p_email"]
        assert procedure.script_text.startswith("CREATE OR REPLACE PROCEDURE")

    def test_scalar_function_gets_return_value(self) -> None:
        catalog, _ = _read_sample()
        function = catalog.functions[0]
        assert function.name == "user_count"
        assert function.parameters == []
        assert [r.name for r in function.return_values] == [RETURN_VALUE_NAME]
        assert type(function.return_values[0]) is ParameterSchema
        assert function.return_values[0].db_type.sql_type == SqlType.BIGINT

    def test_set_returning_function(self) -> None:
        catalog, _ = _read_sample()
        tvf = catalog.table_valued_functions[0]
        assert type(tvf) is TableValuedFunctionSchema
        assert [p.name for p in tvf.parameters] == ["domain"]
        assert [r.name for r in tvf.return_values] == ["id", "email"]
        assert all(type(r) is ColumnSchema for r in tvf.return_values)

    def test_unnamed_parameter(self) -> None:
        reader, _ = _connected_reader(
            [],
            [("public", "f", 1, "FN", "integer", None, "integer", 1, "IN", "integer")],
            [],
            [],
            [],
        )
        function = asyncio.run(reader.read_catalog()).functions[0]
        assert function.parameters[0].name == "$1"

    def test_unknown_type_raises(self) -> None:
        reader, _ = _connected_reader(
            [("public", "t", "BASE TABLE", "c", "hyperint", 0, 0, 0, "YES", 1, None, None)],
            [],
            [],
            [],
            [],
        )
        with pytest.raises(UnsupportedValueError, match="hyperint"):
            asyncio.run(reader.read_catalog())

    def test_same_trigger_name_on_two_tables(self) -> None:
        """Trigger names only have to be unique per table."""
        columns = [
            ("public", table, "BASE TABLE", "id", "integer", 0, 32, 0, "NO", 1, None, None)
            for table in ("orders", "users")
        ]
        triggers = [
            ("public", "set_updated_at", 301, "orders", "CREATE TRIGGER set_updated_at BEFORE UPDATE ON public.orders"),
            ("public", "set_updated_at", 302, "users", "CREATE TRIGGER set_updated_at BEFORE UPDATE ON public.users"),
        ]
        reader, _ = _connected_reader(columns, [], [], [], triggers)

        catalog = asyncio.run(reader.read_catalog())

        for table_name, oid in (("orders", 301), ("users", 302)):
            (trigger,) = catalog.find_table("public", table_name).triggers
            assert trigger.object_id == oid
            assert trigger.script_text.endswith(f"ON public.{table_name}")


class TestOverloadedRoutines:
    """Verify overloads become separate routines."""

    def test_scalar_and_set_returning_overloads(self) -> None:
        parameters = [
            ("public", "total", 401, "FN", "numeric", "id", "integer", 1, "IN", "id integer"),
            ("public", "total", 402, "TF", "numeric", "code", "text", 1, "IN", "code text"),
        ]
        definitions = [
            ("public", "total", 401, "FN", "CREATE FUNCTION public.total(id integer)", "id integer"),
            ("public", "total", 402, "TF", "CREATE FUNCTION public.total(code text)", "code text"),
        ]
        reader, _ = _connected_reader([], parameters, definitions, [], [])

        catalog = asyncio.run(reader.read_catalog())

        (function,) = catalog.functions
        (tvf,) = catalog.table_valued_functions
        assert function.name == "total(id integer)"
        assert function.script_text == "CREATE FUNCTION public.total(id integer)"
        assert [p.name for p in function.parameters] == ["id"]
        assert tvf.name == "total(code text)"
        assert tvf.script_text == "CREATE FUNCTION public.total(code text)"

    def test_routine_names(self) -> None:
        names = _routine_names(
            [
                ("public", "total", 1, "integer"),
                ("public", "total", 1, "integer"),
                ("public", "total", 2, "text"),
                ("sales", "total", 3, "integer"),
                ("public", "single", 4, ""),
            ]
        )
        assert names == {
            1: "total(integer)",
            2: "total(text)",
            3: "total",
            4: "single",
        }
