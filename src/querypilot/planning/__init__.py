"""Query plan model and the heuristic planner that produces it."""

from .models import (
    VALID_AGGREGATIONS,
    GroupByItem,
    JoinCondition,
    OrderByItem,
    PlanColumn,
    PlanCondition,
    PlanJoin,
    QueryPlan,
)
from .planner import QueryPlanner, timeframe_range

__all__ = [
    "VALID_AGGREGATIONS",
    "GroupByItem",
    "JoinCondition",
    "OrderByItem",
    "PlanColumn",
    "PlanCondition",
    "PlanJoin",
    "QueryPlan",
    "QueryPlanner",
    "timeframe_range",
]
