from __future__ import annotations

from typing import Any, List, Optional

import sqlglot
from pydantic import BaseModel, ConfigDict, Field
from sqlglot import expressions as exp
from sqlglot.errors import SqlglotError

from querypilot.common.logger import get_logger
from querypilot.planning.models import VALID_AGGREGATIONS, PlanCondition, QueryPlan

logger = get_logger("sql_builder")

DIALECT_MAP = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "sqlite": "sqlite",
}

# LIMIT sentinels for engines that reject a bare OFFSET.
_UNBOUNDED_LIMIT = {"mysql": "18446744073709551615", "sqlite": "-1"}


class SqlBuildError(ValueError):
    """Raised when a plan cannot be rendered safely."""


class SqlQuery(BaseModel):
    text: str
    params: List[Any] = Field(default_factory=list)
    dialect: str

    model_config = ConfigDict(frozen=True)


def resolve_dialect(name: str) -> str:
    try:
        return DIALECT_MAP[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported SQL dialect: {name}") from None


class _Parameters:
    """Collects bound values in placeholder order."""

    def __init__(self, dialect: str):
        self.dialect = dialect
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}" if self.dialect == "postgres" else "?"


class SqlBuilder:
    """
    Renders a validated `QueryPlan` into parameterized SQL.

    Identifiers are always quoted for the target dialect and every
    condition value is bound as a parameter. Plan expressions are kept in
    sqlglot's neutral dialect and transpiled here.
    """

    def build(self, plan: QueryPlan, dialect: str) -> SqlQuery:
        target = resolve_dialect(dialect)
        params = _Parameters(target)

        clauses = [
            self._build_select(plan, target),
            self._build_from(plan, target),
            *self._build_joins(plan, target),
            self._build_where(plan, target, params),
            self._build_group_by(plan, target),
            self._build_order_by(plan, target),
            self._build_limit(plan, target),
        ]
        text = " ".join(clause for clause in clauses if clause)
        logger.debug(f"Rendered {target} SQL: {text}")
        return SqlQuery(text=text, params=params.values, dialect=target)

    def _quote(self, name: str, dialect: str) -> str:
        return exp.to_identifier(name, quoted=True).sql(dialect=dialect)

    def _ref(self, plan: QueryPlan, table: Optional[str], column: str, dialect: str) -> str:
        if column == "*":
            return column
        return f"{self._quote(table or plan.primary_table, dialect)}.{self._quote(column, dialect)}"

    def _expression(self, expression: str, dialect: str) -> str:
        try:
            return sqlglot.transpile(expression, write=dialect)[0]
        except SqlglotError as e:
            raise SqlBuildError(f"Cannot render expression '{expression}': {e}") from e

    def _aggregate(self, aggregation: str, rendered: str, dialect: str) -> str:
        function = aggregation.upper()
        if function not in VALID_AGGREGATIONS:
            raise SqlBuildError(f"Unsupported aggregation: {aggregation}")
        if function == "GROUP_CONCAT" and dialect == "postgres":
            return f"STRING_AGG(CAST({rendered} AS TEXT), ',')"
        return f"{function}({rendered})"

    def _build_select(self, plan: QueryPlan, dialect: str) -> str:
        """Builds the SELECT clause."""
        items = []
        for column in plan.columns:
            if column.expression:
                rendered = self._expression(column.expression, dialect)
            else:
                rendered = self._ref(plan, column.table, column.column, dialect)
            if column.aggregation:
                rendered = self._aggregate(column.aggregation, rendered, dialect)
            # Expression items always carry an output name.
            alias = column.alias or (column.column if column.expression else None)
            if alias:
                rendered += f" AS {self._quote(alias, dialect)}"
            items.append(rendered)
        return "SELECT " + (", ".join(items) or "*")

    def _build_from(self, plan: QueryPlan, dialect: str) -> str:
        """Builds the FROM clause."""
        return f"FROM {self._quote(plan.primary_table, dialect)}"

    def _build_joins(self, plan: QueryPlan, dialect: str) -> List[str]:
        """Builds the JOIN clauses."""
        clauses = []
        for join in plan.joins:
            on = join.on
            clauses.append(
                f"{join.join_type} JOIN {self._quote(join.table, dialect)} ON "
                f"{self._ref(plan, on.left_table, on.left_column, dialect)} = "
                f"{self._ref(plan, on.right_table, on.right_column, dialect)}"
            )
        return clauses

    def _condition(self, plan: QueryPlan, condition: PlanCondition, dialect: str, params: _Parameters) -> str:
        column = self._ref(plan, condition.table, condition.column, dialect)
        operator, value = condition.operator, condition.value

        if operator in ("=", "!=") and value is None:
            return f"{column} IS NULL" if operator == "=" else f"{column} IS NOT NULL"
        if operator in ("IS NULL", "IS NOT NULL"):
            return f"{column} {operator}"
        if operator in ("IN", "NOT IN"):
            values = list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]
            if not values:
                return "1 = 0" if operator == "IN" else "1 = 1"
            placeholders = ", ".join(params.add(v) for v in values)
            return f"{column} {operator} ({placeholders})"
        if operator == "BETWEEN":
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise SqlBuildError(f"BETWEEN on '{condition.column}' needs exactly two values")
            return f"{column} BETWEEN {params.add(value[0])} AND {params.add(value[1])}"
        if operator in ("ILIKE", "NOT ILIKE"):
            negation = "NOT " if operator == "NOT ILIKE" else ""
            return f"LOWER({column}) {negation}LIKE LOWER({params.add(value)})"
        if operator == "!=":
            operator = "<>"
        return f"{column} {operator} {params.add(value)}"

    def _build_where(self, plan: QueryPlan, dialect: str, params: _Parameters) -> str:
        """Builds the WHERE clause. Conditions are ANDed."""
        if not plan.conditions:
            return ""
        parts = [self._condition(plan, c, dialect, params) for c in plan.conditions]
        return "WHERE " + " AND ".join(parts)

    def _build_group_by(self, plan: QueryPlan, dialect: str) -> str:
        """Builds the GROUP BY clause."""
        if not plan.group_by:
            return ""
        items = [
            self._expression(g.expression, dialect) if g.expression
            else self._ref(plan, g.table, g.column, dialect)
            for g in plan.group_by
        ]
        return "GROUP BY " + ", ".join(items)

    def _build_order_by(self, plan: QueryPlan, dialect: str) -> str:
        """Builds the ORDER BY clause, preferring select aliases."""
        if not plan.order_by:
            return ""
        output_names = set(plan.aliases) | {c.column for c in plan.columns if c.expression}
        items = []
        for item in plan.order_by:
            if item.table is None and item.column in output_names:
                target = self._quote(item.column, dialect)
            else:
                target = self._ref(plan, item.table, item.column, dialect)
            items.append(f"{target} {item.direction}")
        return "ORDER BY " + ", ".join(items)

    def _build_limit(self, plan: QueryPlan, dialect: str) -> str:
        """Builds LIMIT/OFFSET; both are validated integers and rendered inline."""
        parts = []
        if plan.limit is not None:
            parts.append(f"LIMIT {int(plan.limit)}")
        elif plan.offset and dialect in _UNBOUNDED_LIMIT:
            parts.append(f"LIMIT {_UNBOUNDED_LIMIT[dialect]}")
        if plan.offset:
            parts.append(f"OFFSET {int(plan.offset)}")
        return " ".join(parts)
