from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ConditionOperator = Literal[
    "=", "!=", "<", ">", "<=", ">=",
    "LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE",
    "IN", "NOT IN", "IS NULL", "IS NOT NULL", "BETWEEN",
]
VALID_AGGREGATIONS = ("COUNT", "SUM", "AVG", "MAX", "MIN", "GROUP_CONCAT")


class PlanColumn(BaseModel):
    """One SELECT item. ``expression`` items use ``column`` as their output name."""
    table: Optional[str] = None
    column: str
    aggregation: Optional[str] = None
    alias: Optional[str] = None
    expression: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class JoinCondition(BaseModel):
    left_table: str
    left_column: str
    right_table: str
    right_column: str

    model_config = ConfigDict(extra="forbid")


class PlanJoin(BaseModel):
    table: str
    on: JoinCondition
    join_type: Literal["INNER", "LEFT", "RIGHT", "FULL"] = "LEFT"

    model_config = ConfigDict(extra="forbid")


class PlanCondition(BaseModel):
    table: Optional[str] = None
    column: str
    operator: ConditionOperator = "="
    value: Any = None

    model_config = ConfigDict(extra="forbid")


class GroupByItem(BaseModel):
    table: Optional[str] = None
    column: str
    expression: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class OrderByItem(BaseModel):
    table: Optional[str] = None
    column: str
    direction: Literal["ASC", "DESC"] = "ASC"

    model_config = ConfigDict(extra="forbid")


class QueryPlan(BaseModel):
    """Engine-agnostic structured query.

    Created fresh for every request. Table references left as ``None`` mean
    the primary table. Expressions are written in sqlglot's neutral SQL
    dialect and transpiled when rendered.
    """
    primary_table: str
    columns: List[PlanColumn] = Field(default_factory=list)
    joins: List[PlanJoin] = Field(default_factory=list)
    conditions: List[PlanCondition] = Field(default_factory=list)
    group_by: List[GroupByItem] = Field(default_factory=list)
    order_by: List[OrderByItem] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=1)
    offset: Optional[int] = Field(default=None, ge=0)
    visualization: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @property
    def has_aggregation(self) -> bool:
        return any(column.aggregation for column in self.columns)

    @property
    def aliases(self) -> List[str]:
        return [column.alias for column in self.columns if column.alias]
