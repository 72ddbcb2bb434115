"""Command-line access to the database providers."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .config.settings import Settings, setup_logging
from .providers import QueryContext, get_registry
from .providers.base import DatabaseProvider
from .providers.registry import ENGINES
from .utils.errors import DataShapeError, SimpleDBError

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _json_object(text: str, what: str) -> Dict[str, Any]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise DataShapeError(f"--{what} must be a JSON object: {e}") from e
    if not isinstance(value, dict):
        raise DataShapeError(f"--{what} must be a JSON object")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="simpledb",
        description="Browse, query, edit, import and export database tables",
    )
    parser.add_argument("--engine", choices=ENGINES, help="Database engine (default: from URL)")
    parser.add_argument("--log-level", help="Override SIMPLEDB_LOG_LEVEL")
    parser.add_argument("--timeout", type=float, help="Connect and command timeout in seconds")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("engines", help="List supported engines")

    tables_parser = subparsers.add_parser("tables", help="List tables, collections or key prefixes")
    tables_parser.add_argument("conn", help="Connection string or database path")

    rows_parser = subparsers.add_parser("rows", help="Show a page of records")
    rows_parser.add_argument("conn")
    rows_parser.add_argument("table")
    rows_parser.add_argument("--limit", type=float, help="Maximum records (default: all)")
    rows_parser.add_argument("--offset", type=float, default=0)
    rows_parser.add_argument(
        "--sort",
        action="append",
        default=[],
        metavar="COLUMN[:asc|desc]",
        help="Sort key, repeat for secondary keys",
    )

    count_parser = subparsers.add_parser("count", help="Count records in a table")
    count_parser.add_argument("conn")
    count_parser.add_argument("table")

    query_parser = subparsers.add_parser("query", help="Run a native query")
    query_parser.add_argument("conn")
    query_parser.add_argument("text", help="SQL, mongo shell query or Redis command")
    query_parser.add_argument("--table", help="Selected table/collection for bare filters")
    query_parser.add_argument("--limit", type=int, help="Maximum rows returned")

    update_parser = subparsers.add_parser("update", help="Update one record")
    update_parser.add_argument("conn")
    update_parser.add_argument("table")
    update_parser.add_argument("--where", required=True, help="Identifier as a JSON object")
    update_parser.add_argument(
        "--set", dest="updates", required=True, help="JSON object of changes"
    )

    identify_parser = subparsers.add_parser("identify", help="Show the identifier for a record")
    identify_parser.add_argument("conn")
    identify_parser.add_argument("table")
    identify_parser.add_argument("--record", required=True, help="Record as a JSON object")

    export_parser = subparsers.add_parser("export", help="Export a table to CSV or JSON")
    export_parser.add_argument("conn")
    export_parser.add_argument("table")
    export_parser.add_argument("destination", help="Output file (.csv or .json)")
    export_parser.add_argument("--format", choices=("csv", "json"))

    import_parser = subparsers.add_parser("import", help="Import a CSV or JSON file into a table")
    import_parser.add_argument("conn")
    import_parser.add_argument("table")
    import_parser.add_argument("source", help="Input file (.csv or .json)")
    import_parser.add_argument("--format", choices=("csv", "json"))

    return parser


def _provider(args: argparse.Namespace) -> DatabaseProvider:
    registry = get_registry()
    if args.engine:
        provider = registry.get(args.engine)
    else:
        provider = registry.for_connection(args.conn)
    if args.timeout:
        provider.timeout = args.timeout
    return provider


async def run_command(args: argparse.Namespace) -> Any:
    if args.command == "engines":
        return list(ENGINES)

    provider = _provider(args)

    if args.command == "tables":
        return await provider.list_tables(args.conn)

    if args.command == "rows":
        return await provider.get_records(
            args.conn, args.table, limit=args.limit, offset=args.offset, sort=args.sort or None
        )

    if args.command == "count":
        return {"count": await provider.get_record_count(args.conn, args.table)}

    if args.command == "query":
        context = QueryContext(table_name=args.table, limit=args.limit)
        return await provider.run_query(args.conn, args.text, context)

    if args.command == "update":
        result = await provider.update_record(
            args.conn,
            args.table,
            _json_object(args.where, "where"),
            _json_object(args.updates, "set"),
        )
        return result.to_dict()

    if args.command == "identify":
        return await provider.resolve_identifier(
            args.conn, args.table, _json_object(args.record, "record")
        )

    if args.command == "export":
        path = await provider.export_table(args.conn, args.table, args.destination, fmt=args.format)
        return {"path": path}

    if args.command == "import":
        count = await provider.import_table(args.conn, args.table, args.source, fmt=args.format)
        return {"imported": count}

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    Settings.log_config()

    if not args.command:
        parser.print_help()
        return 1

    try:
        result = await run_command(args)
    except SimpleDBError as e:
        logger.debug(f"{args.command} failed: {e.to_dict()}")
        print(e.format_for_user(), file=sys.stderr)
        return 1

    _print_json(result)
    return 0


def app() -> None:
    """Entry point for the CLI application."""
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    app()
