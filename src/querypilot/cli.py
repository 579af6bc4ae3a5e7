#!/usr/bin/env python3
"""
CLI entrypoint for QueryPilot.
"""
import argparse
import pathlib
import sys
from typing import List, Optional

from querypilot.common.logger import configure_logging
from querypilot.common.settings import settings
from querypilot.reporting import ConsolePresenter


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plan natural-language questions as tenant-scoped SQL.")
    parser.add_argument("--database-url", type=str, default=None, help="SQLAlchemy URL (default: DATABASE_URL)")
    parser.add_argument("--metadata", type=pathlib.Path, default=None, help="Path to metadata catalog YAML")
    parser.add_argument("--verbose", action="store_true", help="Show plan details and INFO logs")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logs")

    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Plan a question and print the SQL")
    ask.add_argument("question", type=str)
    ask.add_argument("--tenant", type=str, default=settings.default_tenant_id, help="Tenant id (default: TENANT_ID)")
    ask.add_argument("--topic", type=str, default=None, help="Topic of the previous question")

    sub.add_parser("tables", help="List introspected tables")

    schema = sub.add_parser("schema", help="Show the introspected schema")
    schema.add_argument("--table", type=str, default=None, help="Show a single table")
    schema.add_argument("--json", action="store_true", help="Print the serialized schema")

    sub.add_parser("refresh", help="Re-introspect the database schema")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    level = "WARNING"
    if args.debug:
        level = "DEBUG"
    elif args.verbose:
        level = "INFO"
    configure_logging(level=level, json_format=settings.log_json)

    from querypilot.public_api import QueryPilot

    presenter = ConsolePresenter()
    pilot = QueryPilot(database_url=args.database_url, metadata_config_path=args.metadata)
    try:
        if args.command == "ask":
            result = pilot.plan_and_validate_query(args.question, tenant_id=args.tenant, last_topic=args.topic)
            presenter.print_query_result(result, verbose=args.verbose)
            if not result.success:
                sys.exit(1)
        elif args.command == "tables":
            presenter.print_list(pilot.schema.list_tables(), title="Tables")
        elif args.command == "schema":
            if args.json:
                presenter.print_json(pilot.schema.get_schema())
            elif args.table:
                table = pilot.schema.get_table_schema(args.table)
                if table is None:
                    presenter.print_error(f"Table '{args.table}' not found.")
                    sys.exit(1)
                presenter.print_table_schema(table)
            else:
                presenter.console.print(pilot.schema.describe_schema())
        elif args.command == "refresh":
            if pilot.schema.refresh_schema():
                presenter.print_success(f"Schema refreshed: {len(pilot.schema.list_tables())} tables.")
            else:
                presenter.print_error("Schema refresh failed; see logs.")
                sys.exit(1)
    except KeyboardInterrupt:
        presenter.print_warning("Operation cancelled by user.")
        sys.exit(130)
    finally:
        pilot.close()


if __name__ == "__main__":
    main()
