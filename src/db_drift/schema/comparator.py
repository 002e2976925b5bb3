"""Structural comparison of schema catalogs.

Compares a master catalog (reference) against a checked catalog (candidate)
and builds a ``SchemaCompareResult`` tree.  Pure logic -- no I/O, no database
connections, inputs are never modified.

Every collection is compared the same way: objects only in master become
MISSING children, objects only in checked become REDUNDANT children, and
matched pairs are compared field by field with the type-specific function.
A parent's effective verdict is the OR of its own verdict and its children's.

Usage:
    from db_drift.schema.comparator import compare_catalogs
    from db_drift.schema.serialization import load_snapshot

    result = compare_catalogs(load_snapshot("prod.dbs"), load_snapshot("dev.dbs"))
    if result.is_equal:
        print("Schema is equal")
    else:
        print(result.format_report())
"""

import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

from db_drift.schema.models import (
    CatalogSchema,
    ColumnSchema,
    CompareResultType,
    DbObjectSchema,
    DbObjectType,
    FunctionSchema,
    ParameterSchema,
    SchemaCompareResult,
    SchemaScopedObjectSchema,
    StoredProcedureSchema,
    TableSchema,
    TriggerSchema,
    TypeSchema,
    ViewSchema,
    describe_result_type,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DbObjectSchema)
P = TypeVar("P", bound=ParameterSchema)


def _require(value: object, name: str) -> None:
    if value is None:
        raise ValueError(f"{name} must not be None")


def compare_collection(
    result: SchemaCompareResult,
    master_items: Sequence[T],
    checked_items: Sequence[T],
    same_object: Callable[[T, T], bool],
    compare: Callable[[T, T], SchemaCompareResult],
) -> None:
    """Partition two collections and append the child results to ``result``.

    Args:
        result: Parent result receiving one child per object.
        master_items: Objects of the master side.
        checked_items: Objects of the checked side.
        same_object: Identity predicate ("is this the same database object").
        compare: Type-specific comparison for matched pairs.

    Children are appended in master order (MISSING or matched), followed by
    the REDUNDANT objects in checked order.
    """
    matched_checked: set[int] = set()

    for master in master_items:
        match_index = next(
            (
                index
                for index, candidate in enumerate(checked_items)
                if index not in matched_checked and same_object(master, candidate)
            ),
            None,
        )
        if match_index is None:
            missing = SchemaCompareResult(master=master)
            missing.mark(CompareResultType.MISSING)
            result.add_inner_result(missing)
            continue

        matched_checked.add(match_index)
        result.add_inner_result(compare(master, checked_items[match_index]))

    for index, checked in enumerate(checked_items):
        if index in matched_checked:
            continue
        redundant = SchemaCompareResult(checked=checked)
        redundant.mark(CompareResultType.REDUNDANT)
        result.add_inner_result(redundant)


def _same_name(left: DbObjectSchema, right: DbObjectSchema) -> bool:
    return left.name == right.name


def _same_db_name(left: SchemaScopedObjectSchema, right: SchemaScopedObjectSchema) -> bool:
    return left.is_same_db_name(right)


def _relative_positions(
    items: Sequence[ParameterSchema], names: set[str]
) -> dict[str, int]:
    """Rank of each named item by ``fake_order_id`` among ``names`` only."""
    ranked = sorted((item for item in items if item.name in names), key=lambda i: i.fake_order_id)
    return {item.name: position for position, item in enumerate(ranked)}


def compare_ordered_collection(
    result: SchemaCompareResult,
    master_items: Sequence[P],
    checked_items: Sequence[P],
    compare: Callable[..., SchemaCompareResult],
) -> None:
    """Compare parameter-like collections matched by exact name.

    Order is checked on the relative rank of ``fake_order_id`` among the
    objects present on both sides, so renumbering or an extra object
    elsewhere does not make the matched ones DIFFERENT.  ``compare`` is
    called as ``compare(master, checked, master_position, checked_position)``.
    """
    common = {item.name for item in master_items} & {item.name for item in checked_items}
    master_positions = _relative_positions(master_items, common)
    checked_positions = _relative_positions(checked_items, common)

    def _compare(master: P, checked: P) -> SchemaCompareResult:
        return compare(
            master,
            checked,
            master_positions[master.name],
            checked_positions[checked.name],
        )

    compare_collection(result, master_items, checked_items, _same_name, _compare)


# ============================================================================
# Leaf comparisons
# ============================================================================


def compare_type(master: TypeSchema, checked: TypeSchema) -> SchemaCompareResult:
    """Compare data types on type, length, precision, scale and nullability.

    Raises:
        ValueError: If either argument is None.
    """
    _require(master, "master")
    _require(checked, "checked")

    result = SchemaCompareResult(master=master, checked=checked)
    equal = (
        master.sql_type == checked.sql_type
        and master.length == checked.length
        and master.precision == checked.precision
        and master.scale == checked.scale
        and master.allow_null == checked.allow_null
    )
    if not equal:
        result.mark(CompareResultType.DIFFERENT)
    return result


def compare_parameter(
    master: ParameterSchema | None,
    checked: ParameterSchema | None,
    master_position: int | None = None,
    checked_position: int | None = None,
) -> SchemaCompareResult:
    """Compare two parameters.

    A missing side yields MISSING (no checked) or REDUNDANT (no master)
    without touching any field.  Otherwise the data types are compared as a
    child result and the order is compared on the given positions,
    defaulting to ``fake_order_id``.

    Raises:
        ValueError: If both sides are None.
    """
    if master is None and checked is None:
        raise ValueError("master and checked must not both be None")

    result = SchemaCompareResult(master=master, checked=checked)
    if checked is None:
        result.mark(CompareResultType.MISSING)
        return result
    if master is None:
        result.mark(CompareResultType.REDUNDANT)
        return result

    result.add_inner_result(compare_type(master.db_type, checked.db_type))

    if master_position is None:
        master_position = master.fake_order_id
    if checked_position is None:
        checked_position = checked.fake_order_id
    if master_position != checked_position:
        result.mark(CompareResultType.DIFFERENT)

    return result


def compare_column(
    master: ColumnSchema,
    checked: ColumnSchema,
    master_position: int | None = None,
    checked_position: int | None = None,
) -> SchemaCompareResult:
    """Compare table columns: parameter checks plus default and collation.

    Raises:
        ValueError: If either argument is None.
    """
    _require(master, "master")
    _require(checked, "checked")

    result = compare_parameter(master, checked, master_position, checked_position)
    if master.default_value != checked.default_value:
        result.mark(CompareResultType.DIFFERENT)
    if master.collation != checked.collation:
        result.mark(CompareResultType.DIFFERENT)
    return result


def compare_trigger(master: TriggerSchema, checked: TriggerSchema) -> SchemaCompareResult:
    """Compare triggers by exact script text.

    Raises:
        ValueError: If either argument is None.
    """
    _require(master, "master")
    _require(checked, "checked")

    result = SchemaCompareResult(master=master, checked=checked)
    if master.script_text != checked.script_text:
        result.mark(CompareResultType.DIFFERENT)
    return result


def compare_view(master: ViewSchema, checked: ViewSchema) -> SchemaCompareResult:
    """Compare views by exact definition text.

    Raises:
        ValueError: If either argument is None.
    """
    _require(master, "master")
    _require(checked, "checked")

    result = SchemaCompareResult(master=master, checked=checked)
    if master.text != checked.text:
        result.mark(CompareResultType.DIFFERENT)
    return result


# ============================================================================
# Composite comparisons
# ============================================================================


def compare_stored_procedure(
    master: StoredProcedureSchema, checked: StoredProcedureSchema
) -> SchemaCompareResult:
    """Compare script text, then parameters matched by exact name.

    Raises:
        ValueError: If either argument is None.
    """
    result = compare_trigger(master, checked)
    compare_ordered_collection(result, master.parameters, checked.parameters, compare_parameter)
    return result


def compare_function(master: FunctionSchema, checked: FunctionSchema) -> SchemaCompareResult:
    """Compare like a stored procedure, then return values by exact name.

    Also used for table-valued functions.

    Raises:
        ValueError: If either argument is None.
    """
    result = compare_stored_procedure(master, checked)
    compare_ordered_collection(
        result, master.return_values, checked.return_values, compare_parameter
    )
    return result


def compare_table(master: TableSchema, checked: TableSchema) -> SchemaCompareResult:
    """Compare columns (exact name) and triggers (schema + name, any case).

    Raises:
        ValueError: If either argument is None.
    """
    _require(master, "master")
    _require(checked, "checked")

    result = SchemaCompareResult(master=master, checked=checked)
    compare_ordered_collection(result, master.columns, checked.columns, compare_column)
    compare_collection(result, master.triggers, checked.triggers, _same_db_name, compare_trigger)
    return result


def compare_catalogs(master: CatalogSchema, checked: CatalogSchema) -> SchemaCompareResult:
    """Compare two database catalogs.

    Stored procedures, functions, table-valued functions, tables and views
    are each partitioned independently; all child results hang directly off
    the returned root.

    Args:
        master: Reference catalog (left).
        checked: Catalog checked against the reference (right).

    Returns:
        Root ``SchemaCompareResult``; ``result.result_type`` is the overall
        verdict.

    Raises:
        ValueError: If either argument is None.

    Examples:
        >>> master = CatalogSchema(name="db", server="prod")
        >>> master.views.append(ViewSchema(name="v1", schema_name="dbo", text="SELECT 1"))
        >>> result = compare_catalogs(master, CatalogSchema(name="db", server="dev"))
        >>> result.result_type
        <CompareResultType.MISSING: 1>
        >>> compare_catalogs(master, master).is_equal
        True
    """
    _require(master, "master")
    _require(checked, "checked")

    result = SchemaCompareResult(master=master, checked=checked)

    compare_collection(
        result,
        master.stored_procedures,
        checked.stored_procedures,
        _same_db_name,
        compare_stored_procedure,
    )
    compare_collection(result, master.functions, checked.functions, _same_db_name, compare_function)
    compare_collection(
        result,
        master.table_valued_functions,
        checked.table_valued_functions,
        _same_db_name,
        compare_function,
    )
    compare_collection(result, master.tables, checked.tables, _same_db_name, compare_table)
    compare_collection(result, master.views, checked.views, _same_db_name, compare_view)

    logger.debug(
        "Compared %s with %s: %s (%d objects)",
        master.full_name,
        checked.full_name,
        describe_result_type(result.result_type),
        len(result.inner_results),
    )
    return result


# Comparison by object kind.  Parameters and columns share an object type;
# columns are told apart by class.
_COMPARERS: dict[DbObjectType, Callable[..., SchemaCompareResult]] = {
    DbObjectType.DATABASE_CATALOG: compare_catalogs,
    DbObjectType.TABLE: compare_table,
    DbObjectType.FUNCTION: compare_function,
    DbObjectType.STORED_PROCEDURE: compare_stored_procedure,
    DbObjectType.PARAMETER: compare_parameter,
    DbObjectType.TRIGGER: compare_trigger,
    DbObjectType.DATABASE_TYPE: compare_type,
    DbObjectType.VIEW: compare_view,
}


def compare_objects(master: DbObjectSchema, checked: DbObjectSchema) -> SchemaCompareResult:
    """Compare two objects of the same kind.

    Raises:
        ValueError: If either argument is None or the kinds differ.
    """
    _require(master, "master")
    _require(checked, "checked")
    if type(master) is not type(checked):
        raise ValueError(
            f"Cannot compare {type(master).__name__} with {type(checked).__name__}"
        )

    if isinstance(master, ColumnSchema):
        return compare_column(master, checked)
    return _COMPARERS[master.object_type](master, checked)
