"""Tests for CatalogBuilder: introspection rows to a CatalogSchema."""

import pytest

from db_drift.errors import UnsupportedValueError
from db_drift.schema.builder import (
    MSSQL_TYPE_MAP,
    POSTGRES_TYPE_MAP,
    CatalogBuilder,
    ObjectParamRow,
    ObjectTextRow,
    SourceObjectType,
)
from db_drift.schema.models import (
    ColumnSchema,
    FunctionSchema,
    ParameterSchema,
    SqlType,
    StoredProcedureSchema,
    TableValuedFunctionSchema,
)


def _param(object_type: str, object_name: str, param_name: str, type_name: str = "int", **kwargs) -> ObjectParamRow:
    return ObjectParamRow(
        schema_name=kwargs.pop("schema_name", "dbo"),
        object_name=object_name,
        object_type=object_type,
        param_name=param_name,
        type_name=type_name,
        **kwargs,
    )


def _text(object_type: str, object_name: str, text: str, **kwargs) -> ObjectTextRow:
    return ObjectTextRow(
        schema_name=kwargs.pop("schema_name", "dbo"),
        object_name=object_name,
        object_type=object_type,
        text=text,
        **kwargs,
    )


# ============================================================
# Test: Tables
# ============================================================


class TestTables:
    """Verify table and column building."""

    def test_columns_sorted_regardless_of_row_order(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "users", "name", "nvarchar", type_length=50, order_id=2))
        builder.add_param(_param("U", "users", "id", "int", order_id=1, is_nullable=False))

        catalog = builder.build()

        assert catalog.name == "db"
        assert catalog.server == "srv"
        table = catalog.tables[0]
        assert table.full_name == "[dbo].[users]"
        assert [(c.name, c.fake_order_id) for c in table.columns] == [("id", 0), ("name", 1)]
        assert table.columns[1].db_type.sql_type == SqlType.NVARCHAR
        assert table.columns[1].db_type.length == 50
        assert table.columns[0].db_type.allow_null is False

    def test_rows_of_one_table_grouped_ignoring_case(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "Users", "a", order_id=1))
        builder.add_param(_param("U", "USERS", "b", order_id=2, schema_name="DBO"))
        catalog = builder.build()
        assert len(catalog.tables) == 1
        assert catalog.tables[0].name == "Users"

    def test_default_from_text_row(self) -> None:
        """A column default can come from a D text row, split in fragments."""
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "users", "active", "bit", default_object_id=99))
        builder.add_text(_text("D", "DF_active", "0))", object_id=99, order_id=2))
        builder.add_text(_text("D", "DF_active", "((", object_id=99, order_id=1))

        catalog = builder.build()

        assert catalog.tables[0].get_column("active").default_value == "((0))"

    def test_inline_default_wins(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "users", "n", default_value="42", default_object_id=1))
        builder.add_text(_text("D", "DF_n", "0", object_id=1))
        assert builder.build().tables[0].get_column("n").default_value == "42"

    def test_no_default(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "users", "n"))
        assert builder.build().tables[0].get_column("n").default_value is None

    def test_collation(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "users", "s", "varchar", collation="Czech_CI_AS"))
        builder.add_param(_param("U", "users", "t", "varchar"))
        table = builder.build().tables[0]
        assert table.get_column("s").collation == "Czech_CI_AS"
        assert table.get_column("t").collation == ""


class TestTriggers:
    """Verify triggers attach to their parent table."""

    def test_trigger_attached(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "users", "id"))
        builder.add_text(
            _text(
                "TR",
                "trg_users",
                "CREATE TRIGGER trg_users",
                object_id=5,
                parent_schema_name="dbo",
                parent_object_name="users",
            )
        )

        catalog = builder.build()

        assert len(catalog.tables) == 1
        trigger = catalog.tables[0].triggers[0]
        assert trigger.name == "trg_users"
        assert trigger.object_id == 5
        assert trigger.script_text == "CREATE TRIGGER trg_users"

    def test_same_trigger_name_on_two_tables(self) -> None:
        builder = CatalogBuilder("srv", "db", POSTGRES_TYPE_MAP)
        for table_name, object_id in (("a", 1), ("b", 2)):
            builder.add_text(
                _text(
                    "TR",
                    "set_updated_at",
                    f"CREATE TRIGGER set_updated_at ON {table_name}",
                    object_id=object_id,
                    parent_object_name=table_name,
                )
            )

        catalog = builder.build()

        assert [t.name for t in catalog.tables] == ["a", "b"]
        for table, object_id in zip(catalog.tables, (1, 2)):
            (trigger,) = table.triggers
            assert trigger.object_id == object_id
            assert trigger.script_text == f"CREATE TRIGGER set_updated_at ON {table.name}"

    def test_trigger_and_function_with_same_name(self) -> None:
        """A trigger function named after its trigger keeps its own text."""
        builder = CatalogBuilder("srv", "db")
        builder.add_text(_text("FN", "audit", "CREATE FUNCTION audit()"))
        builder.add_text(_text("TR", "audit", "CREATE TRIGGER audit ON a", parent_object_name="a"))

        catalog = builder.build()

        assert catalog.functions[0].script_text == "CREATE FUNCTION audit()"
        assert catalog.tables[0].triggers[0].script_text == "CREATE TRIGGER audit ON a"

    def test_view_and_procedure_texts_kept_apart(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_text(_text("V", "report", "SELECT 1"))
        builder.add_text(_text("P", "REPORT", "CREATE PROCEDURE report"))

        catalog = builder.build()

        assert catalog.views[0].text == "SELECT 1"
        assert catalog.stored_procedures[0].script_text == "CREATE PROCEDURE report"

    def test_trigger_without_parent_raises(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_text(_text("TR", "trg", "X"))
        with pytest.raises(ValueError, match="no parent table"):
            builder.build()


# ============================================================
# Test: Routines and views
# ============================================================


class TestRoutines:
    """Verify procedures and functions."""

    def test_stored_procedure(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("P", "sp_get", "@b", order_id=2, object_id=10))
        builder.add_param(_param("P", "sp_get", "@a", order_id=1, object_id=10))
        builder.add_text(_text("P", "sp_get", "AS SELECT 1", object_id=10, order_id=2))
        builder.add_text(_text("P", "sp_get", "CREATE PROCEDURE sp_get ", object_id=10, order_id=1))

        catalog = builder.build()

        procedure = catalog.stored_procedures[0]
        assert type(procedure) is StoredProcedureSchema
        assert procedure.object_id == 10
        assert [p.name for p in procedure.parameters] == ["@a", "@b"]
        assert procedure.script_text == "CREATE PROCEDURE sp_get AS SELECT 1"

    def test_scalar_function_return_value(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("FN", "fn_total", "@id", order_id=1))
        builder.add_param(_param("FN", "fn_total", "", "money", is_output=True))

        function = builder.build().functions[0]

        assert type(function) is FunctionSchema
        assert [p.name for p in function.parameters] == ["@id"]
        assert function.return_values[0].db_type.sql_type == SqlType.MONEY
        assert type(function.return_values[0]) is ParameterSchema

    @pytest.mark.parametrize("code", ["IF", "TF"])
    def test_table_valued_function(self, code: str) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param(code, "tvf", "id", is_output=True, order_id=1, collation="x"))
        builder.add_text(_text(code, "tvf", "CREATE FUNCTION tvf"))

        catalog = builder.build()

        assert catalog.functions == []
        tvf = catalog.table_valued_functions[0]
        assert type(tvf) is TableValuedFunctionSchema
        assert type(tvf.return_values[0]) is ColumnSchema
        assert tvf.return_values[0].collation == "x"
        assert tvf.script_text == "CREATE FUNCTION tvf"

    def test_conflicting_kinds_raise(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_text(_text("P", "thing", "X"))
        builder.add_param(_param("FN", "thing", "@a"))
        with pytest.raises(ValueError, match="reported as both"):
            builder.build()

    def test_scalar_and_table_function_with_same_name_raise(self) -> None:
        """Rows must name overloads apart; one name cannot be two kinds."""
        builder = CatalogBuilder("srv", "db")
        builder.add_text(_text("FN", "total", "CREATE FUNCTION total(int)"))
        builder.add_text(_text("TF", "total", "CREATE FUNCTION total(text)"))
        with pytest.raises(ValueError, match="FunctionSchema and TF"):
            builder.build()


class TestViews:
    """Verify views."""

    def test_view_text_and_columns(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("V", "v_users", "id"))
        builder.add_text(_text("V", "v_users", "SELECT id ", order_id=1))
        builder.add_text(_text("V", "v_users", "FROM users", order_id=2))

        catalog = builder.build()

        assert len(catalog.views) == 1
        assert catalog.views[0].text == "SELECT id FROM users"
        assert catalog.tables == []


# ============================================================
# Test: Unsupported input
# ============================================================


class TestUnsupported:
    """Verify unmapped codes and types are rejected."""

    @pytest.mark.parametrize("code", ["PK", "SN", "S"])
    def test_unmapped_param_code(self, code: str) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param(code, "x", "y"))
        with pytest.raises(UnsupportedValueError) as exc_info:
            builder.build()
        assert exc_info.value.value == code
        assert exc_info.value.kind == "object type"

    def test_unmapped_text_code(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_text(_text("C", "CK_x", "CHECK (x > 0)"))
        with pytest.raises(UnsupportedValueError):
            builder.build()

    def test_unknown_type_name(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "t", "c", "hyperint"))
        with pytest.raises(UnsupportedValueError, match="hyperint") as exc_info:
            builder.build()
        assert exc_info.value.kind == "data type"

    def test_unknown_source_code_rejected_by_row(self) -> None:
        with pytest.raises(ValueError):
            _param("ZZ", "t", "c")


class TestTypeMaps:
    """Verify the bundled type maps."""

    def test_mssql_map_covers_every_sql_type(self) -> None:
        for sql_type in SqlType:
            assert MSSQL_TYPE_MAP[sql_type.value] is sql_type

    def test_type_lookup_ignores_case(self) -> None:
        builder = CatalogBuilder("srv", "db")
        builder.add_param(_param("U", "t", "c", "NVARCHAR"))
        assert builder.build().tables[0].columns[0].db_type.sql_type == SqlType.NVARCHAR

    def test_postgres_map(self) -> None:
        builder = CatalogBuilder("srv", "db", type_map=POSTGRES_TYPE_MAP)
        builder.add_param(_param("U", "t", "a", "character varying", order_id=1))
        builder.add_param(_param("U", "t", "b", "timestamp with time zone", order_id=2))
        columns = builder.build().tables[0].columns
        assert columns[0].db_type.sql_type == SqlType.NVARCHAR
        assert columns[1].db_type.sql_type == SqlType.DATETIMEOFFSET

    def test_source_codes(self) -> None:
        assert SourceObjectType("U") is SourceObjectType.USER_TABLE
        assert SourceObjectType("TF") is SourceObjectType.TABLE_FUNCTION
