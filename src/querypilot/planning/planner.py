"""
Heuristic query planner.

Turns an analyzed question (intent + entities) into a `QueryPlan` over the
live schema. Table and column choices go through the metadata service, so
the planner never hardcodes physical names beyond role terms like
"amount" or "close date". The planner is allowed to guess: every plan it
emits is checked and corrected by the validator before rendering.
"""
from __future__ import annotations

import calendar
import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlglot import exp

from querypilot.analysis.analyzer import QueryEntities, QueryIntent
from querypilot.common.logger import get_logger
from querypilot.common.settings import settings
from querypilot.schema.metadata import SchemaMetadataService, normalize_term
from querypilot.schema.models import TEMPORAL_TYPES, DataType, DatabaseSchema
from .models import (
    GroupByItem,
    JoinCondition,
    OrderByItem,
    PlanColumn,
    PlanCondition,
    PlanJoin,
    QueryPlan,
)

logger = get_logger("query_planner")

TimeRange = Tuple[datetime, datetime, bool]

WON_STAGE_KEYWORDS = ("won", "signed")
LOST_STAGE_KEYWORDS = ("lost", "dead", "churn")

# metric term -> (aggregation, column role terms); no role terms means COUNT(*).
METRIC_AGGREGATIONS: Dict[str, Tuple[str, Optional[Tuple[str, ...]]]] = {
    "revenue": ("SUM", ("amount", "revenue")),
    "sales": ("SUM", ("amount", "sales")),
    "amount": ("SUM", ("amount",)),
    "pipeline": ("SUM", ("amount",)),
    "average deal size": ("AVG", ("amount",)),
    "deals": ("COUNT", None),
    "count": ("COUNT", None),
    "number of": ("COUNT", None),
    "accounts": ("COUNT", None),
    "contacts": ("COUNT", None),
}

# Quarter buckets fall back to months: there is no portable quarter format.
TIME_GRAINS = {
    "day": "%Y-%m-%d",
    "daily": "%Y-%m-%d",
    "month": "%Y-%m",
    "monthly": "%Y-%m",
    "quarter": "%Y-%m",
    "quarterly": "%Y-%m",
    "year": "%Y",
    "yearly": "%Y",
}

_SYSTEM_COLUMN = re.compile(r"(created|updated|deleted)", re.IGNORECASE)
_LISTING_SKIP_TYPES = {DataType.TEXT, DataType.BLOB, DataType.BINARY, DataType.JSON, DataType.ARRAY}


def _shift_months(moment: datetime, months: int) -> datetime:
    index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(index, 12)
    day = min(moment.day, calendar.monthrange(year, month + 1)[1])
    return moment.replace(year=year, month=month + 1, day=day)


def _month_start(moment: datetime, offset: int = 0) -> datetime:
    index = moment.year * 12 + (moment.month - 1) + offset
    year, month = divmod(index, 12)
    return datetime(year, month + 1, 1)


def _quarter_start(moment: datetime, offset: int = 0) -> datetime:
    first_month = 3 * ((moment.month - 1) // 3)
    index = moment.year * 12 + first_month + 3 * offset
    year, month = divmod(index, 12)
    return datetime(year, month + 1, 1)


def timeframe_range(timeframe: str, now: datetime) -> Optional[TimeRange]:
    """Translates a timeframe phrase into ``(start, end, end_inclusive)``.

    Ranges that run "until now" are inclusive of ``now``; closed calendar
    periods end exclusively at the start of the following period.
    """
    today = datetime(now.year, now.month, now.day)
    phrase = timeframe.lower().strip()

    if phrase == "today":
        return today, now, True
    if phrase == "yesterday":
        return today - timedelta(days=1), today, False
    if phrase == "this week":
        return today - timedelta(days=today.weekday()), now, True
    if phrase == "last week":
        start = today - timedelta(days=today.weekday() + 7)
        return start, start + timedelta(days=7), False
    if phrase in ("this month", "mtd"):
        return _month_start(now), now, True
    if phrase == "last month":
        return _month_start(now, -1), _month_start(now), False
    if phrase == "next month":
        return _month_start(now, 1), _month_start(now, 2), False
    if phrase in ("this quarter", "qtd"):
        return _quarter_start(now), now, True
    if phrase == "last quarter":
        return _quarter_start(now, -1), _quarter_start(now), False
    if phrase == "next quarter":
        return _quarter_start(now, 1), _quarter_start(now, 2), False
    if phrase in ("this year", "ytd", "year to date"):
        return datetime(now.year, 1, 1), now, True
    if phrase == "last year":
        return datetime(now.year - 1, 1, 1), datetime(now.year, 1, 1), False

    relative = re.match(r"^last (\d+) (day|week|month|quarter|year)s$", phrase)
    if relative:
        count, unit = int(relative.group(1)), relative.group(2)
        if unit == "day":
            start = now - timedelta(days=count)
        elif unit == "week":
            start = now - timedelta(weeks=count)
        else:
            start = _shift_months(now, -count * {"month": 1, "quarter": 3, "year": 12}[unit])
        return start, now, True
    return None


def bucket_expression(table: str, column: str, grain: str) -> str:
    """Neutral-dialect SQL formatting a date column to a period label."""
    node = exp.TimeToStr(
        this=exp.column(column, table=table, quoted=True),
        format=exp.Literal.string(TIME_GRAINS[grain]),
    )
    return node.sql()


def stage_outcome_expression(table: str, column: str) -> str:
    """CASE expression classifying free-form stage names as won, lost or open."""
    lowered = exp.Lower(this=exp.column(column, table=table, quoted=True))

    def matches(keywords: Sequence[str]) -> exp.Expression:
        return exp.or_(*[
            exp.Like(this=lowered.copy(), expression=exp.Literal.string(f"%{keyword}%"))
            for keyword in keywords
        ])

    case = (
        exp.Case()
        .when(matches(WON_STAGE_KEYWORDS), exp.Literal.string("won"))
        .when(matches(LOST_STAGE_KEYWORDS), exp.Literal.string("lost"))
        .else_(exp.Literal.string("open"))
    )
    return case.sql()


class QueryPlanner:
    """Maps (intent, entities, schema) to a `QueryPlan`.

    Args:
        metadata: Vocabulary used to resolve role terms to physical names.
        default_top_n: Row count for ranking questions that do not give one.
        clock: Returns "now" for timeframe ranges.
    """

    def __init__(
        self,
        metadata: SchemaMetadataService,
        default_top_n: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.metadata = metadata
        self.default_top_n = default_top_n or settings.default_top_n
        self.clock = clock
        self._handlers: Dict[QueryIntent, Callable[[QueryEntities, DatabaseSchema], QueryPlan]] = {
            QueryIntent.GET_TOP_DEALS: self._plan_top_deals,
            QueryIntent.GET_DEALS: self._plan_deals,
            QueryIntent.GET_LOST_DEALS: self._plan_lost_deals,
            QueryIntent.GET_PIPELINE: self._plan_pipeline,
            QueryIntent.ANALYZE_WIN_LOSS: self._plan_win_loss,
            QueryIntent.ANALYZE_PERFORMANCE: self._plan_performance,
            QueryIntent.ANALYZE_METRICS: self._plan_performance,
            QueryIntent.ANALYZE_TRENDS: self._plan_trends,
            QueryIntent.FORECAST_REVENUE: self._plan_forecast,
            QueryIntent.FORECAST_PIPELINE: self._plan_forecast,
            QueryIntent.GET_ACCOUNTS: self._plan_accounts,
            QueryIntent.GET_USERS: self._plan_users,
        }

    def plan(self, intent: QueryIntent, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        """Builds a plan for one analyzed question.

        Intents without a dedicated handler (recommendations, explanations,
        general questions) are planned from their metric and dimension
        entities alone.
        """
        handler = self._handlers.get(intent, self._plan_general)
        plan = handler(entities, schema)
        if plan.visualization is None:
            plan.visualization = entities.visualization
        logger.info(f"Planned {intent.value}: {self.explain(plan)}")
        return plan

    # -- name resolution -------------------------------------------------

    def _table(self, schema: DatabaseSchema, *terms: str) -> str:
        for term in terms:
            resolved = self.metadata.find_table_by_business_name(term, schema)
            if resolved:
                return resolved
        for term in terms:
            stem = normalize_term(term).rstrip("s")
            for name in schema.tables:
                if stem and stem in normalize_term(name):
                    return name
        # Unresolvable: the validator reports it.
        return terms[0]

    def _deals_table(self, schema: DatabaseSchema) -> str:
        return self._table(schema, "deals", "opportunities")

    def _column(self, table: str, schema: DatabaseSchema, *terms: str) -> Optional[str]:
        for term in terms:
            resolved = self.metadata.find_column_by_synonym(table, term, schema)
            if resolved:
                return resolved
        return None

    def _primary_key(self, table: str, schema: DatabaseSchema) -> Optional[str]:
        live = schema.get_table(table)
        if live is None:
            return None
        if live.primary_keys:
            return live.primary_keys[0]
        column = live.get_column("id")
        return column.name if column else None

    def _date_column(self, table: str, schema: DatabaseSchema) -> Optional[str]:
        resolved = self._column(table, schema, "close date")
        if resolved:
            return resolved
        live = schema.get_table(table)
        if live is None:
            return None
        temporal = [c for c in live.columns.values() if c.normalized_type in TEMPORAL_TYPES]
        for column in temporal:
            if not _SYSTEM_COLUMN.search(column.name):
                return column.name
        return temporal[0].name if temporal else None

    def _amount_column(self, table: str, schema: DatabaseSchema) -> Optional[str]:
        return self._column(table, schema, "amount", "value")

    def _stage_column(self, table: str, schema: DatabaseSchema) -> Optional[str]:
        return self._column(table, schema, "stage", "status")

    # -- shared pieces ---------------------------------------------------

    def _deal_columns(self, table: str, schema: DatabaseSchema) -> List[PlanColumn]:
        names = [
            self._primary_key(table, schema),
            self._column(table, schema, "name", "title"),
            self._amount_column(table, schema),
            self._stage_column(table, schema),
            self._date_column(table, schema),
        ]
        seen: List[str] = []
        for name in names:
            if name and name not in seen:
                seen.append(name)
        return [PlanColumn(table=table, column=name) for name in seen]

    def _listing_columns(self, table: str, schema: DatabaseSchema, limit: int = 6) -> List[PlanColumn]:
        live = schema.get_table(table)
        if live is None:
            return [PlanColumn(table=table, column="*")]
        tenant_column = self.metadata.tenant_column.lower()
        names = []
        for column in live.columns.values():
            if column.name.lower() == tenant_column or column.normalized_type in _LISTING_SKIP_TYPES:
                continue
            names.append(column.name)
        return [PlanColumn(table=table, column=name) for name in names[:limit]]

    def _date_value(self, table: str, column: str, schema: DatabaseSchema, moment: datetime):
        live = schema.get_table(table)
        live_column = live.get_column(column) if live else None
        if live_column is not None and live_column.normalized_type == DataType.DATE:
            return moment.date()
        return moment

    def _timeframe_conditions(
        self, table: str, schema: DatabaseSchema, timeframe: Optional[str]
    ) -> List[PlanCondition]:
        if not timeframe:
            return []
        date_column = self._date_column(table, schema)
        window = timeframe_range(timeframe, self.clock())
        if date_column is None or window is None:
            logger.debug(f"Ignoring timeframe '{timeframe}' for {table}")
            return []
        start, end, inclusive = window
        return [
            PlanCondition(table=table, column=date_column, operator=">=",
                          value=self._date_value(table, date_column, schema, start)),
            PlanCondition(table=table, column=date_column, operator="<=" if inclusive else "<",
                          value=self._date_value(table, date_column, schema, end)),
        ]

    def _filters(self, table: str, schema: DatabaseSchema, entities: QueryEntities) -> List[PlanCondition]:
        conditions = self._timeframe_conditions(table, schema, entities.timeframe)

        if entities.value_filters:
            amount = self._amount_column(table, schema)
            if amount:
                conditions.extend(
                    PlanCondition(table=table, column=amount, operator=f.operator, value=f.value)
                    for f in entities.value_filters
                )

        if entities.deal_stages:
            stage = self._stage_column(table, schema)
            if stage and len(entities.deal_stages) == 1:
                conditions.append(PlanCondition(
                    table=table, column=stage, operator="ILIKE", value=f"%{entities.deal_stages[0]}%",
                ))
            elif stage:
                conditions.append(PlanCondition(
                    table=table, column=stage, operator="IN",
                    value=[s.title() for s in entities.deal_stages],
                ))
        return conditions

    def _exclude_closed(self, table: str, schema: DatabaseSchema) -> List[PlanCondition]:
        stage = self._stage_column(table, schema)
        if stage is None:
            return []
        return [
            PlanCondition(table=table, column=stage, operator="NOT ILIKE", value=f"%{keyword}%")
            for keyword in (WON_STAGE_KEYWORDS[0], LOST_STAGE_KEYWORDS[0])
        ]

    def _measures(self, table: str, schema: DatabaseSchema, metrics: Sequence[str]) -> List[PlanColumn]:
        measures: List[PlanColumn] = []
        seen = set()
        for metric in metrics:
            spec = METRIC_AGGREGATIONS.get(metric)
            if spec is None:
                continue
            aggregation, roles = spec
            column = "*" if roles is None else self._column(table, schema, *roles)
            if column is None or (aggregation, column) in seen:
                continue
            seen.add((aggregation, column))
            alias = "count" if column == "*" else metric.replace(" ", "_")
            measures.append(PlanColumn(
                table=None if column == "*" else table,
                column=column,
                aggregation=aggregation,
                alias=alias,
            ))
        return measures

    def _dimension(
        self, table: str, schema: DatabaseSchema, phrase: str
    ) -> Optional[Tuple[PlanColumn, GroupByItem, Optional[PlanJoin]]]:
        words = phrase.split()
        grain = words[-1]
        if grain in TIME_GRAINS:
            date_column = self._date_column(table, schema)
            if date_column:
                expression = bucket_expression(table, date_column, grain)
                return (
                    PlanColumn(column=grain, alias=grain, expression=expression),
                    GroupByItem(column=grain, expression=expression),
                    None,
                )

        for term in dict.fromkeys((phrase, words[-1], words[0])):
            column = self.metadata.find_column_by_synonym(table, term, schema)
            if column:
                return PlanColumn(table=table, column=column), GroupByItem(table=table, column=column), None

        for rel in schema.relationships:
            if rel.source_table == table and rel.target_table != table:
                other = rel.target_table
                on = JoinCondition(left_table=table, left_column=rel.source_column,
                                   right_table=other, right_column=rel.target_column)
            elif rel.target_table == table and rel.source_table != table:
                other = rel.source_table
                on = JoinCondition(left_table=table, left_column=rel.target_column,
                                   right_table=other, right_column=rel.source_column)
            else:
                continue
            for term in dict.fromkeys((phrase, words[-1])):
                column = self.metadata.find_column_by_synonym(other, term, schema)
                if column:
                    return (
                        PlanColumn(table=other, column=column),
                        GroupByItem(table=other, column=column),
                        PlanJoin(table=other, on=on),
                    )
        logger.debug(f"No column found for dimension '{phrase}' on {table}")
        return None

    def _grouped(
        self, plan: QueryPlan, schema: DatabaseSchema, entities: QueryEntities
    ) -> Tuple[bool, bool]:
        """Adds dimension columns, group-by entries and joins. Returns (grouped, temporal)."""
        grouped = temporal = False
        position = 0
        for phrase in entities.dimensions:
            resolved = self._dimension(plan.primary_table, schema, phrase)
            if resolved is None:
                continue
            column, group, join = resolved
            if any(c.column == column.column and c.table == column.table for c in plan.columns):
                continue
            plan.columns.insert(position, column)
            position += 1
            plan.group_by.append(group)
            if join and all(j.table != join.table for j in plan.joins):
                plan.joins.append(join)
            grouped = True
            temporal = temporal or column.expression is not None
        return grouped, temporal

    # -- intent handlers -------------------------------------------------

    def _plan_top_deals(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        table = self._deals_table(schema)
        plan = QueryPlan(
            primary_table=table,
            columns=self._deal_columns(table, schema),
            conditions=self._filters(table, schema, entities),
            limit=entities.top_n or self.default_top_n,
            visualization="table",
        )
        amount = self._amount_column(table, schema) or "amount"
        plan.order_by.append(OrderByItem(
            table=table, column=amount, direction="ASC" if entities.rank_ascending else "DESC",
        ))
        return plan

    def _plan_deals(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        table = self._deals_table(schema)
        plan = QueryPlan(
            primary_table=table,
            columns=self._deal_columns(table, schema),
            conditions=self._filters(table, schema, entities),
            limit=entities.top_n,
            visualization="table",
        )
        date_column = self._date_column(table, schema)
        if date_column:
            plan.order_by.append(OrderByItem(table=table, column=date_column, direction="DESC"))
        return plan

    def _plan_lost_deals(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        plan = self._plan_deals(entities, schema)
        stage = self._stage_column(plan.primary_table, schema)
        if stage and not entities.deal_stages:
            plan.conditions.append(PlanCondition(
                table=plan.primary_table, column=stage, operator="ILIKE", value=f"%{LOST_STAGE_KEYWORDS[0]}%",
            ))
        return plan

    def _plan_pipeline(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        table = self._deals_table(schema)
        stage = self._stage_column(table, schema) or "stage"
        plan = QueryPlan(
            primary_table=table,
            columns=[PlanColumn(table=table, column=stage), PlanColumn(column="*", aggregation="COUNT", alias="deal_count")],
            conditions=self._filters(table, schema, entities) + self._exclude_closed(table, schema),
            group_by=[GroupByItem(table=table, column=stage)],
            visualization="bar",
        )
        amount = self._amount_column(table, schema)
        if amount:
            plan.columns.append(PlanColumn(table=table, column=amount, aggregation="SUM", alias="total_amount"))
            plan.order_by.append(OrderByItem(column="total_amount", direction="DESC"))
        return plan

    def _plan_win_loss(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        table = self._deals_table(schema)
        stage = self._stage_column(table, schema) or "stage"
        outcome = stage_outcome_expression(table, stage)
        plan = QueryPlan(
            primary_table=table,
            columns=[
                PlanColumn(column="outcome", alias="outcome", expression=outcome),
                PlanColumn(column="*", aggregation="COUNT", alias="deal_count"),
            ],
            conditions=self._filters(table, schema, entities),
            group_by=[GroupByItem(column="outcome", expression=outcome)],
            order_by=[OrderByItem(column="outcome", direction="ASC")],
            visualization="pie",
        )
        amount = self._amount_column(table, schema)
        if amount:
            plan.columns.append(PlanColumn(table=table, column=amount, aggregation="SUM", alias="total_amount"))
        return plan

    def _plan_performance(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        table = self._deals_table(schema)
        plan = QueryPlan(
            primary_table=table,
            columns=[PlanColumn(column="*", aggregation="COUNT", alias="deal_count")],
            conditions=self._filters(table, schema, entities),
        )
        amount = self._amount_column(table, schema)
        if amount:
            plan.columns.append(PlanColumn(table=table, column=amount, aggregation="SUM", alias="total_amount"))
            plan.columns.append(PlanColumn(table=table, column=amount, aggregation="AVG", alias="average_amount"))
        grouped, _ = self._grouped(plan, schema, entities)
        if grouped and amount:
            plan.order_by.append(OrderByItem(column="total_amount", direction="DESC"))
        return plan

    def _plan_trends(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        if not entities.timeframe:
            entities = entities.model_copy(update={"timeframe": "last 12 months"})
        return self._plan_time_series(entities, schema, open_only=False)

    def _plan_forecast(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        plan = self._plan_time_series(entities, schema, open_only=True)
        date_column = self._date_column(plan.primary_table, schema)
        if date_column and not entities.timeframe:
            start = _month_start(self.clock())
            plan.conditions.append(PlanCondition(
                table=plan.primary_table, column=date_column, operator=">=",
                value=self._date_value(plan.primary_table, date_column, schema, start),
            ))
        return plan

    def _plan_time_series(self, entities: QueryEntities, schema: DatabaseSchema, open_only: bool) -> QueryPlan:
        table = self._deals_table(schema)
        conditions = self._filters(table, schema, entities)
        if open_only:
            conditions += self._exclude_closed(table, schema)
        plan = QueryPlan(primary_table=table, conditions=conditions, visualization="line")

        grain = next((d.split()[-1] for d in entities.dimensions if d.split()[-1] in TIME_GRAINS), "month")
        date_column = self._date_column(table, schema)
        if date_column:
            expression = bucket_expression(table, date_column, grain)
            plan.columns.append(PlanColumn(column=grain, alias=grain, expression=expression))
            plan.group_by.append(GroupByItem(column=grain, expression=expression))
            plan.order_by.append(OrderByItem(column=grain, direction="ASC"))

        amount = self._amount_column(table, schema)
        if amount:
            plan.columns.append(PlanColumn(table=table, column=amount, aggregation="SUM", alias="total_amount"))
        plan.columns.append(PlanColumn(column="*", aggregation="COUNT", alias="deal_count"))
        return plan

    def _plan_entity_listing(self, table: str, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        plan = QueryPlan(primary_table=table, limit=entities.top_n)
        grouped, _ = self._grouped(plan, schema, entities)
        if grouped:
            plan.columns.append(PlanColumn(column="*", aggregation="COUNT", alias="count"))
            plan.order_by.append(OrderByItem(column="count", direction="DESC"))
            plan.visualization = "bar"
        else:
            plan.columns = self._listing_columns(table, schema)
            plan.visualization = "table"
        return plan

    def _plan_accounts(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        return self._plan_entity_listing(self._table(schema, "accounts", "customers"), entities, schema)

    def _plan_users(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        return self._plan_entity_listing(self._table(schema, "users", "team"), entities, schema)

    def _general_table(self, entities: QueryEntities, schema: DatabaseSchema) -> str:
        for metric in entities.metrics:
            term = self.metadata.resolve_business_term(metric)
            if term is not None and schema.get_table(term.table) is not None:
                return schema.get_table(term.table).name
        if entities.subject:
            # An unknown subject stays as named so validation rejects it.
            return self._table(schema, entities.subject)
        return self._deals_table(schema)

    def _plan_general(self, entities: QueryEntities, schema: DatabaseSchema) -> QueryPlan:
        table = self._general_table(entities, schema)
        measures = self._measures(table, schema, entities.metrics)
        plan = QueryPlan(
            primary_table=table,
            columns=list(measures),
            conditions=self._filters(table, schema, entities),
            limit=entities.top_n,
        )
        grouped, temporal = self._grouped(plan, schema, entities)

        if not measures and grouped:
            plan.columns.append(PlanColumn(column="*", aggregation="COUNT", alias="count"))
            measures = [plan.columns[-1]]
        if not plan.columns:
            plan.columns = self._listing_columns(table, schema)

        if temporal:
            time_column = next(c for c in plan.columns if c.expression is not None)
            plan.order_by.append(OrderByItem(column=time_column.alias or time_column.column, direction="ASC"))
        elif measures and (grouped or entities.top_n):
            plan.order_by.append(OrderByItem(
                column=measures[0].alias or measures[0].column,
                direction="ASC" if entities.rank_ascending else "DESC",
            ))
        return plan

    def explain(self, plan: QueryPlan) -> str:
        """One-line human-readable summary of a plan."""
        selected = []
        for column in plan.columns:
            if column.expression:
                text = column.alias or column.column
            elif column.aggregation:
                text = f"{column.aggregation}({column.column})"
            else:
                text = column.column
            if column.alias and column.alias != text:
                text += f" AS {column.alias}"
            selected.append(text)

        parts = [f"{', '.join(selected) or '*'} from {plan.primary_table}"]
        if plan.joins:
            parts.append("joined with " + ", ".join(j.table for j in plan.joins))
        if plan.conditions:
            parts.append("where " + " and ".join(f"{c.column} {c.operator}" for c in plan.conditions))
        if plan.group_by:
            parts.append("grouped by " + ", ".join(g.column for g in plan.group_by))
        if plan.order_by:
            parts.append("ordered by " + ", ".join(f"{o.column} {o.direction}" for o in plan.order_by))
        if plan.limit:
            parts.append(f"limit {plan.limit}")
        return " ".join(parts)
