"""Command-line front end for the connection vault and the data facade.

Examples::

    dbstudio connections add --type postgresql --name local --host localhost \
        --user app --database shop --password secret
    dbstudio connections list
    dbstudio rows <id> users --page 2 --page-size 50 --filter age:gt:30
    dbstudio query <id> "SELECT count(*) FROM users"
    dbstudio export <id> users --out exports --format json

Every command prints one JSON object and exits 0 on success, 1 otherwise.
"""

from __future__ import annotations

import argparse
import getpass
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from dbstudio.config.settings import load_settings
from dbstudio.exceptions.errors import DbStudioError
from dbstudio.export.exporter import FORMATS, export_page
from dbstudio.logging.logger import get_logger, init_logging
from dbstudio.service.results import OperationResult
from dbstudio.service.studio import DataStudio
from dbstudio.vault.store import open_vault

log = get_logger("tools.cli")


def parse_filter(text: str) -> Dict[str, Any]:
    """``column:op[:value]`` -> wire-format predicate. The value may contain colons."""
    parts = text.split(":", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise argparse.ArgumentTypeError(f"Filter must look like column:op[:value], got {text!r}")
    pred: Dict[str, Any] = {"column": parts[0], "op": parts[1]}
    if len(parts) == 3:
        pred["value"] = parts[2]
    return pred


def _descriptor_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--type", required=True, help="mysql, postgresql or mongodb.")
    p.add_argument("--name", default="", help="Display name for the connection.")
    p.add_argument("--host", required=True)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--user", default="")
    p.add_argument("--database", default="")
    p.add_argument("--password", default=None, help="Prompted for when omitted.")
    p.add_argument("--protocol", default=None, help="MongoDB only: mongodb or mongodb+srv.")
    p.add_argument("--search", default=None, help="Extra connection params, e.g. 'ssl-mode=REQUIRED&charset=utf8mb4'.")
    p.add_argument("--ssl", action="store_true", help="Enable TLS without certificate verification.")


def _page_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--page-size", dest="page_size", type=int, default=None)
    p.add_argument(
        "--filter",
        dest="filters",
        action="append",
        type=parse_filter,
        default=[],
        help="column:op[:value], repeatable (ops: eq, neq, gt, gte, lt, lte, contains, starts_with, ...).",
    )
    p.add_argument("--schema", default=None, help="Database schema (PostgreSQL) or database (MySQL).")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbstudio", description="Browse and edit MySQL, PostgreSQL and MongoDB data.")
    parser.add_argument("--config-dir", default="config", help="Directory holding <APP_ENV>.yaml.")
    sub = parser.add_subparsers(dest="command", required=True)

    conns = sub.add_parser("connections", help="Manage stored connections.")
    csub = conns.add_subparsers(dest="action", required=True)
    _descriptor_args(csub.add_parser("add", help="Encrypt and store a connection."))
    csub.add_parser("list", help="List stored connections (no secrets).")
    show = csub.add_parser("show", help="Show one connection's metadata.")
    show.add_argument("id")
    remove = csub.add_parser("remove", help="Delete a stored connection.")
    remove.add_argument("id")
    _descriptor_args(csub.add_parser("test", help="Try a connection without storing it."))
    imp = csub.add_parser("import", help="Encrypt connections from a legacy plaintext JSON export.")
    imp.add_argument("file")

    tables = sub.add_parser("tables", help="List tables or collections with row counts.")
    tables.add_argument("id")
    tables.add_argument("--schema", default=None)

    desc = sub.add_parser("describe", help="Show a relational table's columns.")
    desc.add_argument("id")
    desc.add_argument("table")
    desc.add_argument("--schema", default=None)

    rows = sub.add_parser("rows", help="Fetch one page of rows or documents.")
    rows.add_argument("id")
    rows.add_argument("table")
    _page_args(rows)

    query = sub.add_parser("query", help="Run a raw SQL statement or MongoDB command document.")
    query.add_argument("id")
    query.add_argument("text")

    export = sub.add_parser("export", help="Write one page of rows to CSV or JSON.")
    export.add_argument("id")
    export.add_argument("table")
    export.add_argument("--out", required=True, help="Output directory.")
    export.add_argument("--format", dest="fmt", choices=FORMATS, default="csv")
    _page_args(export)

    return parser


def _descriptor_payload(args: argparse.Namespace) -> Dict[str, Any]:
    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
    return {
        "type": args.type,
        "name": args.name or args.host,
        "host": args.host,
        "port": args.port,
        "user": args.user,
        "database": args.database,
        "password": password,
        "protocol": args.protocol,
        "search": args.search,
        "ssl": args.ssl,
    }


def _import_file(studio: DataStudio, path: str) -> OperationResult:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        return OperationResult.fail(f"Cannot read import file: {e}")
    records: List[Any] = raw if isinstance(raw, list) else [raw]
    try:
        report = studio.vault.import_legacy(records)
    except DbStudioError as e:
        return OperationResult.fail(str(e))
    imported = [s.to_dict() for s in report["imported"]]
    return OperationResult(
        success=not report["failed"],
        message=f"Imported {len(imported)} connection(s), {len(report['failed'])} failed.",
        connections=imported,
        extra={"failed": report["failed"]} if report["failed"] else {},
    )


def _export(studio: DataStudio, args: argparse.Namespace) -> OperationResult:
    page = studio.fetch_page(args.id, args.table, args.page, args.page_size, args.filters, args.schema)
    if not page.success:
        return page
    try:
        path = export_page(page.data or [], args.out, f"{args.table}_page{page.page}", args.fmt)
    except DbStudioError as e:
        return OperationResult.fail(str(e))
    return OperationResult.ok(f"Exported {len(page.data or [])} record(s).", extra={"path": path})


def run(args: argparse.Namespace, studio: DataStudio) -> OperationResult:
    if args.command == "connections":
        if args.action == "add":
            return studio.create_connection(_descriptor_payload(args))
        if args.action == "list":
            return studio.list_connections()
        if args.action == "show":
            return studio.connection_meta(args.id)
        if args.action == "remove":
            return studio.remove_connection(args.id)
        if args.action == "test":
            return studio.test_connection(_descriptor_payload(args))
        if args.action == "import":
            return _import_file(studio, args.file)
    if args.command == "tables":
        return studio.list_tables(args.id, args.schema)
    if args.command == "describe":
        return studio.describe_table(args.id, args.table, args.schema)
    if args.command == "rows":
        return studio.fetch_page(args.id, args.table, args.page, args.page_size, args.filters, args.schema)
    if args.command == "query":
        return studio.raw_query(args.id, args.text)
    if args.command == "export":
        return _export(studio, args)
    return OperationResult.fail(f"Unknown command: {args.command}")


def _build_studio(args: argparse.Namespace) -> DataStudio:
    settings = load_settings(args.config_dir)
    init_logging(settings.log_level, settings.log_file)
    return DataStudio(open_vault(settings), settings=settings)


def main(argv: Optional[List[str]] = None, studio: Optional[DataStudio] = None) -> int:
    args = build_parser().parse_args(argv)

    owned = studio is None
    if studio is None:
        studio = _build_studio(args)
    log.debug("CLI command", extra={"command": args.command, "action": getattr(args, "action", None)})
    try:
        result = run(args, studio)
    finally:
        if owned:
            studio.close()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
