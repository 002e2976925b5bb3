"""CLI module for schema snapshots, drift detection and DDL scripts.

Provides commands to capture a database schema into a snapshot file,
compare two schemas and regenerate creation scripts.  Wherever a SOURCE is
expected, either a snapshot file path or a profile name from
``db-drift.toml`` can be given.

Usage:
    db-drift profiles
    db-drift snapshot prod -o prod.dbs
    db-drift snapshot prod -o prod.json --format json
    db-drift compare prod.dbs dev
    db-drift compare prod.dbs dev.dbs --all
    db-drift script prod.dbs -o prod.sql

Commands:
    profiles  - List available profiles
    snapshot  - Save a schema snapshot of a profile or re-encode a snapshot
    compare   - Compare a master schema with a checked schema
    script    - Generate the DDL creation script of a schema
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import psycopg
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from db_drift.config.loader import load_config, resolve_url
from db_drift.config.models import DriftConfig
from db_drift.errors import SchemaError
from db_drift.schema.comparator import compare_catalogs
from db_drift.schema.ddl import generate_create_script
from db_drift.schema.introspector import PostgresCatalogReader
from db_drift.schema.models import (
    CatalogSchema,
    CompareResultType,
    SchemaCompareResult,
    describe_result_type,
)
from db_drift.schema.serialization import SNAPSHOT_FORMATS, load_snapshot, save_snapshot

console = Console()
logger = logging.getLogger(__name__)

_RESULT_STYLES = {
    CompareResultType.MISSING: "red",
    CompareResultType.REDUNDANT: "yellow",
    CompareResultType.DIFFERENT: "magenta",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ============================================================================
# Source resolution
# ============================================================================


def _load_config_for(args: argparse.Namespace) -> DriftConfig:
    return load_config(getattr(args, "config", None))


async def _read_profile(config: DriftConfig, profile_name: str) -> CatalogSchema:
    """Introspect the database of a configured profile."""
    profile = config.profiles[profile_name]
    console.print(f"Reading profile [cyan]{profile_name}[/cyan]...", style="dim")
    async with PostgresCatalogReader(resolve_url(profile), schemas=profile.schemas) as reader:
        return await reader.read_catalog()


async def _load_source(args: argparse.Namespace, source: str) -> CatalogSchema:
    """Load a catalog from a snapshot file or a profile name.

    An existing file always wins over a profile of the same name.

    Raises:
        FileNotFoundError: If ``source`` is neither a file nor a configured
            profile and no config file exists.
        ValueError: If ``source`` is neither a file nor a configured profile.
    """
    if Path(source).is_file():
        logger.debug("Loading snapshot %s", source)
        return load_snapshot(source)

    config = _load_config_for(args)
    if source not in config.profiles:
        available = ", ".join(config.profiles) or "none"
        raise ValueError(
            f"'{source}' is neither a snapshot file nor a profile (profiles: {available})"
        )
    return await _read_profile(config, source)


# ============================================================================
# Output helpers
# ============================================================================


def _node_label(node: SchemaCompareResult) -> str:
    local = node.local_result
    if local == CompareResultType.EQUAL:
        label = "[green]EQUAL[/green]" if node.is_equal else "[cyan]CHANGED[/cyan]"
    else:
        style = next(
            (s for flag, s in _RESULT_STYLES.items() if local & flag),
            "white",
        )
        label = f"[{style}]{describe_result_type(local)}[/{style}]"
    kind = node.object_type.name.lower()
    return f"{label} {kind} [bold]{escape(node.object_full_name)}[/bold]"


def _add_branches(tree: Tree, node: SchemaCompareResult, show_all: bool) -> None:
    for inner in node.inner_results:
        if inner.is_equal and not show_all:
            continue
        branch = tree.add(_node_label(inner))
        _add_branches(branch, inner, show_all)


def build_result_tree(result: SchemaCompareResult, show_all: bool = False) -> Tree:
    """Render a comparison result as a rich tree.

    Args:
        result: Root of the comparison result.
        show_all: Include EQUAL nodes too.
    """
    tree = Tree(_node_label(result))
    _add_branches(tree, result, show_all)
    return tree


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_snapshot(args: argparse.Namespace) -> int:
    """Async implementation for snapshot command.

    Returns:
        0 on success.
    """
    fmt = args.format
    if fmt is None:
        try:
            fmt = _load_config_for(args).snapshot_format
        except FileNotFoundError:
            fmt = "binary"

    catalog = await _load_source(args, args.source)
    path = save_snapshot(args.output, catalog, fmt)

    console.print(
        f"[bold green]v[/bold green] Saved {fmt} snapshot of "
        f"[bold cyan]{escape(catalog.full_name)}[/bold cyan] to {path} "
        f"({catalog.object_count()} objects)"
    )
    return 0


async def _async_compare(args: argparse.Namespace) -> int:
    """Async implementation for compare command.

    Returns:
        0 when the schemas are equal, 1 on drift.
    """
    master = await _load_source(args, args.master)
    checked = await _load_source(args, args.checked)

    result = compare_catalogs(master, checked)

    if result.is_equal:
        console.print(
            f"[bold green]v[/bold green] Schema equal: "
            f"[cyan]{escape(master.full_name)}[/cyan] = [cyan]{escape(checked.full_name)}[/cyan]"
        )
        if args.all:
            console.print(build_result_tree(result, show_all=True))
        return 0

    console.print(
        f"[bold red]x[/bold red] Schema drift detected: "
        f"[cyan]{escape(master.full_name)}[/cyan] -> [cyan]{escape(checked.full_name)}[/cyan] "
        f"({describe_result_type(result.result_type)})"
    )
    console.print(build_result_tree(result, show_all=args.all))
    return 1


async def _async_script(args: argparse.Namespace) -> int:
    """Async implementation for script command.

    Returns:
        0 on success.
    """
    catalog = await _load_source(args, args.source)
    script = generate_create_script(catalog)

    if args.output:
        Path(args.output).write_text(script, encoding="utf-8")
        console.print(f"[bold green]v[/bold green] Wrote creation script to {args.output}")
    else:
        console.print(script, markup=False, highlight=False, emoji=False, soft_wrap=True)
    return 0


def _run(coro) -> int:
    """Run an async command, turning expected failures into exit code 1."""
    try:
        return asyncio.run(coro)
    except (SchemaError, FileNotFoundError, ValueError, ConnectionError, psycopg.Error) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1


# ============================================================================
# Command handlers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db-drift.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if the config is missing or invalid.
    """
    try:
        config = _load_config_for(args)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Schemas")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        table.add_row(
            f"[cyan]{name}[/cyan]",
            profile.provider,
            ", ".join(profile.schemas),
            profile.description or "",
        )

    console.print(table)
    console.print(f"\nSnapshot format: [bold]{config.snapshot_format}[/bold]")
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    """Save a schema snapshot.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return _run(_async_snapshot(args))


def cmd_compare(args: argparse.Namespace) -> int:
    """Compare two schemas.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return _run(_async_compare(args))


def cmd_script(args: argparse.Namespace) -> int:
    """Generate a DDL creation script.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return _run(_async_script(args))


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors or drift).
    """
    parser = argparse.ArgumentParser(
        prog="db-drift",
        description="Database schema snapshots, drift detection and DDL scripts",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db-drift.toml (default: $DB_DRIFT_CONFIG or ./db-drift.toml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # snapshot command
    p_snapshot = subparsers.add_parser(
        "snapshot",
        help="Save a schema snapshot of a profile or snapshot file",
    )
    p_snapshot.add_argument("source", help="Profile name or snapshot file")
    p_snapshot.add_argument(
        "--output",
        "-o",
        required=True,
        help="Snapshot file to write",
    )
    p_snapshot.add_argument(
        "--format",
        choices=SNAPSHOT_FORMATS,
        default=None,
        help="Snapshot encoding (default: [snapshot] format from config, else binary)",
    )
    p_snapshot.set_defaults(func=cmd_snapshot)

    # compare command
    p_compare = subparsers.add_parser(
        "compare",
        help="Compare a master schema with a checked schema",
    )
    p_compare.add_argument("master", help="Reference profile name or snapshot file")
    p_compare.add_argument("checked", help="Checked profile name or snapshot file")
    p_compare.add_argument(
        "--all",
        action="store_true",
        help="Show equal objects too",
    )
    p_compare.set_defaults(func=cmd_compare)

    # script command
    p_script = subparsers.add_parser(
        "script",
        help="Generate the DDL creation script of a schema",
    )
    p_script.add_argument("source", help="Profile name or snapshot file")
    p_script.add_argument(
        "--output",
        "-o",
        default=None,
        help="File to write (default: print to stdout)",
    )
    p_script.set_defaults(func=cmd_script)

    args = parser.parse_args()
    _setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
