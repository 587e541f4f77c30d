"""Command line access to saved connections, queries and SSH checks."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import AppConfig, load_config, migrate_legacy_ssh, save_config
from .credentials import MemorySecretStore
from .errors import TabularisError
from .models import QueryResult
from .service import DatabaseService


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tabularis", description=__doc__)
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("connections", help="List saved connections")

    query = commands.add_parser("query", help="Run SQL on a saved connection and print JSON")
    query.add_argument("connection_id", help="Saved connection id")
    query.add_argument("sql", help="Statement to execute")
    query.add_argument("--limit", type=int, default=None, help="Page size (defaults to result_page_size)")
    query.add_argument("--page", type=int, default=1, help="Page number, starting at 1")

    ssh_test = commands.add_parser("ssh-test", help="Check the credentials of a saved SSH profile")
    ssh_test.add_argument("profile_id", help="Saved SSH profile id")
    return parser.parse_args(argv)


def configure_logging(config: AppConfig, *, debug: bool) -> None:
    level = logging.getLevelName(config.log_level.upper())
    if debug:
        level = logging.DEBUG
    elif not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def format_result(result: QueryResult) -> str:
    payload: dict[str, object] = {
        "columns": list(result.columns),
        "rows": [list(row) for row in result.rows],
        "status": result.status,
        "elapsed_ms": result.elapsed_ms,
        "truncated": result.truncated,
        "affected_rows": result.affected_rows,
    }
    if result.pagination is not None:
        payload["pagination"] = {
            "page": result.pagination.page,
            "page_size": result.pagination.page_size,
            "total_rows": result.pagination.total_rows,
        }
    return json.dumps(payload, indent=2)


async def _run(args: argparse.Namespace, service: DatabaseService) -> int:
    try:
        if args.command == "connections":
            for conn in service.config.connections:
                via = f" via ssh:{conn.ssh_profile_id}" if conn.ssh_enabled and conn.ssh_profile_id else ""
                print(f"{conn.id}\t{conn.name}\t{conn.driver}{via}")
        elif args.command == "query":
            limit = args.limit if args.limit is not None else service.config.result_page_size
            result = await service.execute_query(args.connection_id, args.sql, limit, args.page)
            print(format_result(result))
        else:
            print(await service.test_ssh_connection(args.profile_id))
    finally:
        await service.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config = load_config()
    configure_logging(config, debug=args.debug)
    secrets = MemorySecretStore()
    migrated = migrate_legacy_ssh(config, secrets)
    if migrated is not config:
        save_config(migrated)
    service = DatabaseService(migrated, secrets=secrets, on_config_change=save_config)
    try:
        return asyncio.run(_run(args, service))
    except TabularisError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
