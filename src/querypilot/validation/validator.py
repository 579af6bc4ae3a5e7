from __future__ import annotations

from enum import Enum
from typing import List, Optional, Set, Tuple

import sqlglot
from pydantic import BaseModel, Field
from sqlglot import exp
from sqlglot.errors import SqlglotError

from querypilot.common.logger import get_logger
from querypilot.common.settings import settings
from querypilot.planning.models import (
    VALID_AGGREGATIONS,
    GroupByItem,
    JoinCondition,
    PlanColumn,
    PlanCondition,
    PlanJoin,
    QueryPlan,
)
from querypilot.schema.metadata import SchemaMetadataService
from querypilot.schema.models import DatabaseSchema

logger = get_logger("query_validator")


class CorrectionType(str, Enum):
    FIX_TABLE = "fix_table"
    FIX_COLUMN = "fix_column"
    ADD_JOIN = "add_join"
    ADD_GROUP_BY = "add_group_by"
    FIX_AGGREGATION = "fix_aggregation"
    ADD_TENANT_FILTER = "add_tenant_filter"
    FIX_TENANT_FILTER = "fix_tenant_filter"
    ADD_LIMIT = "add_limit"


class Correction(BaseModel):
    type: CorrectionType
    description: str
    applied: bool = True


class ValidationResult(BaseModel):
    """Outcome of validating one plan. Errors block SQL generation."""

    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    corrections: List[Correction] = Field(default_factory=list)

    def error(self, message: str) -> None:
        logger.warning(f"Validation error: {message}")
        self.errors.append(message)
        self.is_valid = False

    def warn(self, message: str) -> None:
        logger.info(f"Validation warning: {message}")
        self.warnings.append(message)

    def correct(self, kind: CorrectionType, description: str) -> None:
        logger.info(f"Correction [{kind.value}]: {description}")
        self.corrections.append(Correction(type=kind, description=description))


class QueryValidator:
    """
    Validates a `QueryPlan` against the live schema and corrects what it can.

    Checks run in a fixed order: table resolution, column resolution,
    GROUP BY completeness, join targets, tenant isolation, aggregation
    sanity, the safety limit and finally ORDER BY targets. Every change
    made to the plan is recorded as a `Correction`; validating an already
    corrected plan yields no further corrections.
    """

    def __init__(
        self,
        metadata: SchemaMetadataService,
        tenant_column: Optional[str] = None,
        safety_limit: Optional[int] = None,
    ):
        self.metadata = metadata
        self.tenant_column = tenant_column or settings.tenant_column
        self.safety_limit = safety_limit or settings.safety_row_limit

    def validate_and_correct(
        self, plan: QueryPlan, schema: DatabaseSchema, tenant_id: Optional[str] = None
    ) -> Tuple[QueryPlan, ValidationResult]:
        """
        Validates a plan and returns a corrected copy alongside the result.

        Args:
            plan: Plan produced by the planner (left untouched).
            schema: Live schema to check references against.
            tenant_id: When given, the plan is scoped to this tenant.

        Returns:
            The corrected plan and its ValidationResult.
        """
        plan = plan.model_copy(deep=True)
        result = ValidationResult()

        if not self._resolve_tables(plan, schema, result):
            return plan, result
        self._resolve_columns(plan, schema, result)
        self._ensure_group_by(plan, result)
        self._check_joins(plan, schema, result)
        if tenant_id:
            self._ensure_tenant_filter(plan, schema, tenant_id, result)
        self._check_aggregations(plan, schema, result)
        self._ensure_limit(plan, result)
        self._check_order_by(plan, schema, result)

        logger.debug(
            f"Validated plan on {plan.primary_table}: valid={result.is_valid} "
            f"errors={len(result.errors)} warnings={len(result.warnings)} corrections={len(result.corrections)}"
        )
        return plan, result

    # -- tables ----------------------------------------------------------

    def _lookup_table(self, name: str, schema: DatabaseSchema) -> Optional[str]:
        live = schema.get_table(name)
        if live is not None:
            return live.name
        return self.metadata.find_table_by_business_name(name, schema)

    def _rename_table(self, plan: QueryPlan, old: str, new: str) -> None:
        items = [*plan.columns, *plan.conditions, *plan.group_by, *plan.order_by]
        for item in items:
            if item.table == old:
                item.table = new
        for join in plan.joins:
            if join.table == old:
                join.table = new
            if join.on.left_table == old:
                join.on.left_table = new
            if join.on.right_table == old:
                join.on.right_table = new

    def _resolve_tables(self, plan: QueryPlan, schema: DatabaseSchema, result: ValidationResult) -> bool:
        resolved = self._lookup_table(plan.primary_table, schema)
        if resolved is None:
            result.error(f"Table '{plan.primary_table}' not found in schema")
            return False
        if resolved != plan.primary_table:
            result.correct(CorrectionType.FIX_TABLE, f"Table '{plan.primary_table}' resolved to '{resolved}'")
            self._rename_table(plan, plan.primary_table, resolved)
            plan.primary_table = resolved

        for join in plan.joins:
            resolved = self._lookup_table(join.table, schema)
            if resolved is None:
                result.error(f"Join target '{join.table}' not found in schema")
            elif resolved != join.table:
                result.correct(CorrectionType.FIX_TABLE, f"Join table '{join.table}' resolved to '{resolved}'")
                self._rename_table(plan, join.table, resolved)
        return True

    def _plan_tables(self, plan: QueryPlan) -> Set[str]:
        return {plan.primary_table, *(join.table for join in plan.joins)}

    def _join_for(self, plan: QueryPlan, table: str, schema: DatabaseSchema) -> Optional[PlanJoin]:
        for known in self._plan_tables(plan):
            for rel in schema.relationships_between(known, table):
                if rel.source_table == known:
                    on = JoinCondition(left_table=known, left_column=rel.source_column,
                                       right_table=table, right_column=rel.target_column)
                else:
                    on = JoinCondition(left_table=known, left_column=rel.target_column,
                                       right_table=table, right_column=rel.source_column)
                return PlanJoin(table=table, on=on)
        return None

    def _resolve_table_ref(
        self, plan: QueryPlan, table: Optional[str], schema: DatabaseSchema, result: ValidationResult
    ) -> Optional[str]:
        """Returns the live table a reference points at, joining it in when needed."""
        if table is None:
            return plan.primary_table
        resolved = self._lookup_table(table, schema)
        if resolved is None:
            result.error(f"Table '{table}' not found in schema")
            return None
        if resolved != table:
            result.correct(CorrectionType.FIX_TABLE, f"Table '{table}' resolved to '{resolved}'")
            self._rename_table(plan, table, resolved)
        if resolved not in self._plan_tables(plan):
            join = self._join_for(plan, resolved, schema)
            if join is None:
                result.error(f"Table '{resolved}' is referenced but cannot be joined to '{plan.primary_table}'")
                return None
            plan.joins.append(join)
            result.correct(
                CorrectionType.ADD_JOIN,
                f"Joined '{resolved}' on {join.on.left_table}.{join.on.left_column} = "
                f"{join.on.right_table}.{join.on.right_column}",
            )
        return resolved

    # -- columns ---------------------------------------------------------

    def _resolve_column(
        self, table: str, column: str, schema: DatabaseSchema, result: ValidationResult
    ) -> str:
        if column == "*":
            return column
        live_table = schema.get_table(table)
        if live_table is None:
            return column
        live = live_table.get_column(column)
        if live is not None:
            if live.name != column:
                result.correct(CorrectionType.FIX_COLUMN, f"Column '{table}.{column}' resolved to '{live.name}'")
            return live.name
        resolved = self.metadata.find_column_by_synonym(table, column, schema)
        if resolved:
            result.correct(CorrectionType.FIX_COLUMN, f"Column '{table}.{column}' resolved to '{resolved}'")
            return resolved
        result.warn(f"Column '{column}' not found in table '{table}'")
        return column

    def _check_expression(
        self, plan: QueryPlan, expression: str, schema: DatabaseSchema, result: ValidationResult
    ) -> None:
        """Parses an expression and checks every column it reads.

        Expressions are rendered verbatim. They must be a single scalar
        expression over the plan's own tables; subqueries and statements
        would escape the tenant filter.
        """
        try:
            tree = sqlglot.parse_one(expression)
        except SqlglotError as e:
            result.error(f"Invalid expression '{expression}': {e}")
            return
        if not isinstance(tree, exp.Condition) or tree.find(exp.Query) is not None:
            result.error(f"Expression '{expression}' must not contain a query or statement")
            return

        tables = self._plan_tables(plan)
        for column in tree.find_all(exp.Column):
            table = column.table or plan.primary_table
            if table not in tables:
                result.error(f"Expression '{expression}' reads table '{table}' which is not in the query")
                continue
            if isinstance(column.this, exp.Star):
                continue
            live_table = schema.get_table(table)
            if live_table is not None and live_table.get_column(column.name) is None:
                result.error(f"Column '{table}.{column.name}' in expression '{expression}' not found in schema")

    def _resolve_columns(self, plan: QueryPlan, schema: DatabaseSchema, result: ValidationResult) -> None:
        for column in plan.columns:
            if column.expression:
                self._check_expression(plan, column.expression, schema, result)
                continue
            table = self._resolve_table_ref(plan, column.table, schema, result)
            if table:
                column.column = self._resolve_column(table, column.column, schema, result)

        tenant = self.tenant_column.lower()
        for condition in plan.conditions:
            table = self._resolve_table_ref(plan, condition.table, schema, result)
            # Tenant conditions are owned by the isolation check.
            if table and condition.column.lower() != tenant:
                condition.column = self._resolve_column(table, condition.column, schema, result)

        for group in plan.group_by:
            if group.expression:
                self._check_expression(plan, group.expression, schema, result)
                continue
            table = self._resolve_table_ref(plan, group.table, schema, result)
            if table:
                group.column = self._resolve_column(table, group.column, schema, result)

    # -- group by --------------------------------------------------------

    def _covers(self, plan: QueryPlan, group: GroupByItem, column: PlanColumn) -> bool:
        if column.expression:
            if group.expression is not None and group.expression == column.expression:
                return True
            return group.table is None and group.column in {column.alias, column.column}
        if group.expression is None:
            if group.column == column.column and (group.table or plan.primary_table) == (column.table or plan.primary_table):
                return True
            return group.table is None and column.alias is not None and group.column == column.alias
        return False

    def _ensure_group_by(self, plan: QueryPlan, result: ValidationResult) -> None:
        if not plan.has_aggregation:
            return
        for column in plan.columns:
            if column.aggregation or column.column == "*":
                continue
            if any(self._covers(plan, group, column) for group in plan.group_by):
                continue
            if column.expression:
                item = GroupByItem(column=column.alias or column.column, expression=column.expression)
            else:
                item = GroupByItem(table=column.table, column=column.column)
            plan.group_by.append(item)
            result.correct(CorrectionType.ADD_GROUP_BY, f"Added '{column.alias or column.column}' to GROUP BY")

    # -- joins -----------------------------------------------------------

    def _check_joins(self, plan: QueryPlan, schema: DatabaseSchema, result: ValidationResult) -> None:
        for join in plan.joins:
            if schema.get_table(join.table) is None:
                continue
            on = join.on
            for side in ("left", "right"):
                table = getattr(on, f"{side}_table")
                if schema.get_table(table) is None:
                    result.error(f"Join condition references unknown table '{table}'")
                    continue
                column = getattr(on, f"{side}_column")
                live = schema.get_table(table).get_column(column)
                if live is None:
                    result.error(f"Join column '{table}.{column}' not found in schema")
                elif live.name != column:
                    result.correct(CorrectionType.FIX_COLUMN, f"Join column '{table}.{column}' resolved to '{live.name}'")
                    setattr(on, f"{side}_column", live.name)

    # -- tenant ----------------------------------------------------------

    def _ensure_tenant_filter(
        self, plan: QueryPlan, schema: DatabaseSchema, tenant_id: str, result: ValidationResult
    ) -> None:
        live_table = schema.get_table(plan.primary_table)
        live = live_table.get_column(self.tenant_column) if live_table else None
        tenant_column = live.name if live else self.tenant_column
        if live is None:
            result.warn(f"Table '{plan.primary_table}' has no '{self.tenant_column}' column; tenant filter still applied")

        def on_tenant(condition: PlanCondition) -> bool:
            return (
                condition.column.lower() == tenant_column.lower()
                and (condition.table or plan.primary_table) == plan.primary_table
            )

        existing = [c for c in plan.conditions if on_tenant(c)]
        good = [
            c for c in existing
            if c.operator == "=" and str(c.value) == str(tenant_id) and c.column == tenant_column
        ]
        if existing and (len(existing) > 1 or not good):
            keep = good[:1]
            plan.conditions = [c for c in plan.conditions if not on_tenant(c)] + keep
            result.correct(
                CorrectionType.FIX_TENANT_FILTER,
                f"Replaced {len(existing) - len(keep)} conflicting tenant condition(s) on '{tenant_column}'",
            )
        if not good:
            plan.conditions.append(
                PlanCondition(table=plan.primary_table, column=tenant_column, operator="=", value=tenant_id)
            )
            result.correct(CorrectionType.ADD_TENANT_FILTER, f"Added tenant filter on '{plan.primary_table}.{tenant_column}'")

    # -- aggregations ----------------------------------------------------

    def _check_aggregations(self, plan: QueryPlan, schema: DatabaseSchema, result: ValidationResult) -> None:
        for column in plan.columns:
            if not column.aggregation:
                continue
            normalized = column.aggregation.strip().upper()
            if normalized != column.aggregation:
                result.correct(CorrectionType.FIX_AGGREGATION, f"Aggregation '{column.aggregation}' normalized to '{normalized}'")
                column.aggregation = normalized
            if normalized not in VALID_AGGREGATIONS:
                result.warn(f"Unknown aggregation '{normalized}' on '{column.column}'")
                continue
            if normalized in ("SUM", "AVG") and column.column != "*" and not column.expression:
                meta = self.metadata.get_column_metadata(column.table or plan.primary_table, column.column, schema)
                if meta is not None and meta.aggregatable is False:
                    result.warn(f"{normalized} applied to non-aggregatable column '{column.column}'")

    # -- limit -----------------------------------------------------------

    def _ensure_limit(self, plan: QueryPlan, result: ValidationResult) -> None:
        if plan.has_aggregation:
            return
        if plan.limit is None:
            plan.limit = self.safety_limit
            result.correct(CorrectionType.ADD_LIMIT, f"Added safety limit of {self.safety_limit} rows")
        elif plan.limit > self.safety_limit:
            result.correct(CorrectionType.ADD_LIMIT, f"Capped limit {plan.limit} to {self.safety_limit} rows")
            plan.limit = self.safety_limit

    # -- order by --------------------------------------------------------

    def _check_order_by(self, plan: QueryPlan, schema: DatabaseSchema, result: ValidationResult) -> None:
        aliases = set(plan.aliases)
        output_names = {c.column for c in plan.columns if c.expression}
        for item in plan.order_by:
            if item.table is None and (item.column in aliases or item.column in output_names):
                continue
            live_table = schema.get_table(item.table or plan.primary_table)
            if live_table is None or live_table.get_column(item.column) is None:
                result.warn(f"ORDER BY target '{item.column}' not found in schema or select aliases")

    def suggest_improvements(self, plan: QueryPlan) -> List[str]:
        """Advisory notes for a plan; never changes it."""
        suggestions = []
        if plan.limit is not None and not plan.order_by:
            suggestions.append("Add an ORDER BY so the limited rows are deterministic")
        if plan.group_by and not plan.order_by:
            suggestions.append("Order grouped results by a measure or the grouping column")
        if not plan.conditions:
            suggestions.append("Add a filter (for example a timeframe) to narrow the scan")
        if len(plan.columns) > 10:
            suggestions.append("Select fewer columns; wide result sets are hard to chart")
        if any(c.column == "*" and not c.aggregation for c in plan.columns):
            suggestions.append("Name the columns to select instead of using '*'")
        return suggestions
