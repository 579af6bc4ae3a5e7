from __future__ import annotations

import json
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from querypilot.api.query_api import QueryResult
from querypilot.schema.models import TableSchema


class ConsolePresenter:
    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def print_success(self, message: str) -> None:
        self.console.print(f"[green][OK][/green] {message}")

    def print_error(self, message: str) -> None:
        self.console.print(f"[red][FAIL][/red] {message}")

    def print_info(self, message: str) -> None:
        self.console.print(f"[blue][INFO][/blue] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow][WARN][/yellow] {message}")

    def print_list(self, items: List[str], title: str) -> None:
        table = Table(title=title)
        table.add_column("name")
        for item in items:
            table.add_row(item)
        self.console.print(table)

    def print_table_schema(self, schema: TableSchema) -> None:
        table = Table(title=schema.business_name or schema.name)
        for header in ("column", "type", "native", "nullable", "key", "category"):
            table.add_column(header)
        for column in schema.columns.values():
            key = "PK" if column.is_primary_key else ("UQ" if column.is_unique else "")
            table.add_row(
                column.name,
                column.normalized_type.value,
                column.native_type,
                "yes" if column.nullable else "no",
                key,
                column.data_category.value if column.data_category else "",
            )
        self.console.print(table)
        for fk in schema.foreign_keys:
            self.console.print(f"  {fk.column_name} -> {fk.referenced_table}.{fk.referenced_column}")

    def print_json(self, payload: Dict[str, Any]) -> None:
        self.console.print_json(json.dumps(payload, default=str))

    def print_query_result(self, result: QueryResult, verbose: bool = False) -> None:
        header = f"{result.intent or 'unknown'} (confidence {result.confidence or 0:.2f})"
        self.console.print(Panel(result.question, title=header))

        for correction in result.validation.corrections:
            self.print_info(f"{correction.type.value}: {correction.description}")
        for warning in result.validation.warnings:
            self.print_warning(warning)

        if not result.success:
            self.print_error(result.error or "Query planning failed.")
            for error in result.validation.errors:
                self.console.print(f"  - {error}")
            return

        self.console.print(Syntax(result.sql.text, "sql", word_wrap=True))
        self.console.print(f"[dim]params:[/dim] {result.sql.params!r}")
        if result.visualization:
            self.console.print(f"[dim]visualization:[/dim] {result.visualization}")
        if verbose:
            for suggestion in result.suggestions:
                self.console.print(f"[dim]suggestion:[/dim] {suggestion}")
            self.print_json(result.plan.model_dump())
