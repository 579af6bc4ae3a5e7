from datetime import date, datetime

import pytest

from querypilot.analysis import QueryEntities, QueryIntent
from querypilot.planning.planner import QueryPlanner, timeframe_range


@pytest.fixture
def planner(metadata_service, fixed_now):
    return QueryPlanner(metadata_service, default_top_n=10, clock=lambda: fixed_now)


@pytest.mark.parametrize("phrase, expected", [
    ("this month", (datetime(2024, 5, 1), datetime(2024, 5, 15, 10, 30), True)),
    ("last month", (datetime(2024, 4, 1), datetime(2024, 5, 1), False)),
    ("this week", (datetime(2024, 5, 13), datetime(2024, 5, 15, 10, 30), True)),
    ("yesterday", (datetime(2024, 5, 14), datetime(2024, 5, 15), False)),
    ("last quarter", (datetime(2024, 1, 1), datetime(2024, 4, 1), False)),
    ("next quarter", (datetime(2024, 7, 1), datetime(2024, 10, 1), False)),
    ("ytd", (datetime(2024, 1, 1), datetime(2024, 5, 15, 10, 30), True)),
    ("last year", (datetime(2023, 1, 1), datetime(2024, 1, 1), False)),
    ("last 3 months", (datetime(2024, 2, 15, 10, 30), datetime(2024, 5, 15, 10, 30), True)),
    ("last 2 weeks", (datetime(2024, 5, 1, 10, 30), datetime(2024, 5, 15, 10, 30), True)),
])
def test_timeframe_range(fixed_now, phrase, expected):
    assert timeframe_range(phrase, fixed_now) == expected


def test_timeframe_range_wraps_year_boundary():
    assert timeframe_range("last quarter", datetime(2024, 1, 10)) == (
        datetime(2023, 10, 1), datetime(2024, 1, 1), False,
    )
    assert timeframe_range("last month", datetime(2024, 1, 31))[0] == datetime(2023, 12, 1)


def test_unknown_timeframe_is_ignored(fixed_now):
    assert timeframe_range("someday", fixed_now) is None


def test_top_deals_plan(planner, crm_schema):
    # Act
    plan = planner.plan(QueryIntent.GET_TOP_DEALS, QueryEntities(top_n=5), crm_schema)

    # Assert
    assert plan.primary_table == "deals"
    assert [c.column for c in plan.columns] == ["id", "name", "amount", "stage", "closeDate"]
    assert [(o.column, o.direction) for o in plan.order_by] == [("amount", "DESC")]
    assert plan.limit == 5
    assert plan.visualization == "table"
    assert plan.conditions == []


def test_top_deals_defaults_and_ascending(planner, crm_schema):
    plan = planner.plan(QueryIntent.GET_TOP_DEALS, QueryEntities(rank_ascending=True), crm_schema)

    assert plan.limit == 10
    assert plan.order_by[0].direction == "ASC"


def test_timeframe_becomes_date_conditions(planner, crm_schema):
    # Validates that DATE columns compare against dates, not datetimes.
    plan = planner.plan(QueryIntent.GET_DEALS, QueryEntities(timeframe="last month"), crm_schema)

    assert [(c.column, c.operator, c.value) for c in plan.conditions] == [
        ("closeDate", ">=", date(2024, 4, 1)),
        ("closeDate", "<", date(2024, 5, 1)),
    ]
    assert [(o.column, o.direction) for o in plan.order_by] == [("closeDate", "DESC")]


def test_revenue_by_month(planner, crm_schema):
    # Arrange
    entities = QueryEntities(metrics=["revenue"], dimensions=["month"])

    # Act
    plan = planner.plan(QueryIntent.GENERAL_QUERY, entities, crm_schema)

    # Assert
    month, revenue = plan.columns
    assert month.alias == "month"
    assert '"closeDate"' in month.expression and "'%Y-%m'" in month.expression
    assert (revenue.aggregation, revenue.column, revenue.alias) == ("SUM", "amount", "revenue")
    assert [g.expression for g in plan.group_by] == [month.expression]
    assert [(o.column, o.direction) for o in plan.order_by] == [("month", "ASC")]


def test_dimension_on_related_table_adds_join(planner, crm_schema):
    entities = QueryEntities(metrics=["revenue"], dimensions=["industry"])

    plan = planner.plan(QueryIntent.GENERAL_QUERY, entities, crm_schema)

    assert (plan.columns[0].table, plan.columns[0].column) == ("accounts", "industry")
    assert len(plan.joins) == 1
    on = plan.joins[0].on
    assert (on.left_table, on.left_column, on.right_table, on.right_column) == (
        "deals", "accountId", "accounts", "id",
    )
    assert [(g.table, g.column) for g in plan.group_by] == [("accounts", "industry")]
    assert [(o.column, o.direction) for o in plan.order_by] == [("revenue", "DESC")]


def test_pipeline_excludes_closed_deals(planner, crm_schema):
    plan = planner.plan(QueryIntent.GET_PIPELINE, QueryEntities(), crm_schema)

    assert [c.alias or c.column for c in plan.columns] == ["stage", "deal_count", "total_amount"]
    assert [(c.operator, c.value) for c in plan.conditions] == [
        ("NOT ILIKE", "%won%"),
        ("NOT ILIKE", "%lost%"),
    ]
    assert [g.column for g in plan.group_by] == ["stage"]
    assert plan.visualization == "bar"


def test_win_loss_groups_by_outcome(planner, crm_schema):
    plan = planner.plan(QueryIntent.ANALYZE_WIN_LOSS, QueryEntities(), crm_schema)

    outcome = plan.columns[0]
    assert "CASE" in outcome.expression and "'%won%'" in outcome.expression
    assert plan.group_by[0].expression == outcome.expression
    assert plan.visualization == "pie"


def test_lost_deals_filter_on_stage(planner, crm_schema):
    plan = planner.plan(QueryIntent.GET_LOST_DEALS, QueryEntities(), crm_schema)

    assert [(c.column, c.operator, c.value) for c in plan.conditions] == [("stage", "ILIKE", "%lost%")]


def test_forecast_covers_open_deals_from_current_month(planner, crm_schema):
    plan = planner.plan(QueryIntent.FORECAST_REVENUE, QueryEntities(), crm_schema)

    assert ("closeDate", ">=", date(2024, 5, 1)) in [(c.column, c.operator, c.value) for c in plan.conditions]
    assert ("stage", "NOT ILIKE", "%won%") in [(c.column, c.operator, c.value) for c in plan.conditions]
    assert plan.visualization == "line"


def test_trends_default_to_last_twelve_months(planner, crm_schema):
    plan = planner.plan(QueryIntent.ANALYZE_TRENDS, QueryEntities(metrics=["revenue"]), crm_schema)

    assert [(c.operator, c.value) for c in plan.conditions] == [
        (">=", date(2023, 5, 15)),
        ("<=", date(2024, 5, 15)),
    ]
    assert [o.column for o in plan.order_by] == ["month"]


def test_account_listing_skips_tenant_and_text_columns(planner, crm_schema):
    plan = planner.plan(QueryIntent.GET_ACCOUNTS, QueryEntities(), crm_schema)

    assert plan.primary_table == "accounts"
    assert [c.column for c in plan.columns] == ["id", "name", "industry", "annualRevenue", "createdAt"]


def test_users_by_department(planner, crm_schema):
    plan = planner.plan(QueryIntent.GET_USERS, QueryEntities(dimensions=["department"]), crm_schema)

    assert [(c.column, c.aggregation) for c in plan.columns] == [("department", None), ("*", "COUNT")]
    assert plan.visualization == "bar"


def test_explain(planner, crm_schema):
    plan = planner.plan(QueryIntent.GET_TOP_DEALS, QueryEntities(top_n=5), crm_schema)

    assert planner.explain(plan) == (
        "id, name, amount, stage, closeDate from deals ordered by amount DESC limit 5"
    )
