import pytest

from querypilot.analysis import QueryEntities, QueryIntent
from querypilot.planning.models import GroupByItem, OrderByItem, PlanColumn, PlanCondition, QueryPlan
from querypilot.planning.planner import QueryPlanner
from querypilot.validation import CorrectionType, QueryValidator


@pytest.fixture
def validator(metadata_service):
    return QueryValidator(metadata_service, tenant_column="tenantId", safety_limit=100)


def _kinds(result):
    return [c.type for c in result.corrections]


PLANNED_ENTITIES = [
    QueryEntities(top_n=5, timeframe="this year"),
    QueryEntities(
        metrics=["revenue", "count"], dimensions=["month", "industry"],
        timeframe="last quarter", deal_stages=["negotiation"],
    ),
]


@pytest.mark.parametrize("entities", PLANNED_ENTITIES, ids=["top_n", "grouped"])
@pytest.mark.parametrize("intent", list(QueryIntent), ids=lambda intent: intent.value)
def test_planner_output_validates_idempotently(validator, metadata_service, crm_schema, fixed_now, intent, entities):
    # Validates that corrected plans are stable, since callers may validate twice.
    # Arrange
    planner = QueryPlanner(metadata_service, clock=lambda: fixed_now)
    plan = planner.plan(intent, entities, crm_schema)

    # Act
    corrected, first = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")
    again, second = validator.validate_and_correct(corrected, crm_schema, tenant_id="t1")

    # Assert
    assert first.is_valid, first.errors
    assert second.corrections == []
    assert second.is_valid
    assert again == corrected


def test_top_deals_needs_only_the_tenant_filter(validator, metadata_service, crm_schema, fixed_now):
    planner = QueryPlanner(metadata_service, clock=lambda: fixed_now)
    plan = planner.plan(QueryIntent.GET_TOP_DEALS, QueryEntities(top_n=5, timeframe="this year"), crm_schema)

    _, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    assert _kinds(result) == [CorrectionType.ADD_TENANT_FILTER]


HAND_BUILT_PLANS = {
    "synonym_names": QueryPlan(
        primary_table="opportunities",
        columns=[
            PlanColumn(table="opportunities", column="phase"),
            PlanColumn(table="opportunities", column="reveneu", aggregation="sum", alias="revenue"),
        ],
    ),
    "auto_join": QueryPlan(
        primary_table="deals",
        columns=[
            PlanColumn(table="accounts", column="industry"),
            PlanColumn(table="deals", column="amount", aggregation="SUM", alias="revenue"),
        ],
    ),
    "conflicting_tenant": QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="name")],
        conditions=[
            PlanCondition(table="deals", column="tenantId", operator="=", value="t2"),
            PlanCondition(column="TENANTID", operator="IN", value=["t1", "t2"]),
        ],
    ),
    "limit_over_cap": QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="Name")],
        limit=5000,
    ),
    "lower_case_aggregations": QueryPlan(
        primary_table="deals",
        columns=[
            PlanColumn(table="deals", column="stage"),
            PlanColumn(table="deals", column="amount", aggregation="avg", alias="avg_amount"),
            PlanColumn(column="*", aggregation="count", alias="count"),
        ],
        order_by=[OrderByItem(column="count", direction="DESC")],
    ),
}


@pytest.mark.parametrize("plan", list(HAND_BUILT_PLANS.values()), ids=list(HAND_BUILT_PLANS))
def test_corrected_plans_need_no_further_corrections(validator, crm_schema, plan):
    # Act
    corrected, first = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")
    again, second = validator.validate_and_correct(corrected, crm_schema, tenant_id="t1")

    # Assert
    assert first.is_valid, first.errors
    assert first.corrections
    assert second.corrections == []
    assert again == corrected


def test_input_plan_is_not_mutated(validator, crm_schema):
    plan = QueryPlan(primary_table="deals", columns=[PlanColumn(table="deals", column="Amount")])

    validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    assert plan.columns[0].column == "Amount"
    assert plan.conditions == [] and plan.limit is None


def test_missing_group_by_is_added(validator, crm_schema):
    # Arrange
    plan = QueryPlan(
        primary_table="deals",
        columns=[
            PlanColumn(table="deals", column="stage"),
            PlanColumn(table="deals", column="amount", aggregation="SUM", alias="total"),
        ],
    )

    # Act
    corrected, result = validator.validate_and_correct(plan, crm_schema)

    # Assert
    assert [(g.table, g.column) for g in corrected.group_by] == [("deals", "stage")]
    assert _kinds(result) == [CorrectionType.ADD_GROUP_BY]
    assert corrected.limit is None


def test_group_by_alias_counts_as_covered(validator, crm_schema):
    expression = 'TIME_TO_STR("deals"."closeDate", \'%Y-%m\')'
    plan = QueryPlan(
        primary_table="deals",
        columns=[
            PlanColumn(column="month", alias="month", expression=expression),
            PlanColumn(column="*", aggregation="COUNT", alias="count"),
        ],
        group_by=[GroupByItem(column="month")],
    )

    corrected, result = validator.validate_and_correct(plan, crm_schema)

    assert len(corrected.group_by) == 1
    assert result.corrections == []


def test_tenant_filter_added_once(validator, crm_schema):
    plan = QueryPlan(primary_table="deals", columns=[PlanColumn(table="deals", column="name")])

    corrected, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    tenant = [c for c in corrected.conditions if c.column == "tenantId"]
    assert [(c.table, c.operator, c.value) for c in tenant] == [("deals", "=", "t1")]
    assert CorrectionType.ADD_TENANT_FILTER in _kinds(result)


def test_conflicting_tenant_conditions_are_replaced(validator, crm_schema):
    # Validates isolation: a plan may never widen or redirect the tenant scope.
    # Arrange
    plan = QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="name")],
        conditions=[
            PlanCondition(table="deals", column="tenantId", operator="=", value="t2"),
            PlanCondition(column="tenantid", operator="!=", value="t1"),
            PlanCondition(table="deals", column="stage", operator="=", value="Won"),
        ],
    )

    # Act
    corrected, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    # Assert
    tenant = [c for c in corrected.conditions if c.column.lower() == "tenantid"]
    assert [(c.column, c.operator, c.value) for c in tenant] == [("tenantId", "=", "t1")]
    assert [c.column for c in corrected.conditions] == ["stage", "tenantId"]
    assert _kinds(result)[:2] == [CorrectionType.FIX_TENANT_FILTER, CorrectionType.ADD_TENANT_FILTER]


def test_duplicate_tenant_condition_is_collapsed(validator, crm_schema):
    condition = PlanCondition(table="deals", column="tenantId", operator="=", value="t1")
    plan = QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="name")],
        conditions=[condition, condition.model_copy()],
        limit=5,
    )

    corrected, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    assert len(corrected.conditions) == 1
    assert _kinds(result) == [CorrectionType.FIX_TENANT_FILTER]


def test_safety_limit(validator, crm_schema):
    unlimited = QueryPlan(primary_table="deals", columns=[PlanColumn(table="deals", column="name")])
    oversized = unlimited.model_copy(update={"limit": 5000})

    first, first_result = validator.validate_and_correct(unlimited, crm_schema)
    second, _ = validator.validate_and_correct(oversized, crm_schema)

    assert first.limit == 100
    assert _kinds(first_result) == [CorrectionType.ADD_LIMIT]
    assert second.limit == 100


def test_unknown_table_is_invalid(validator, crm_schema):
    plan = QueryPlan(primary_table="invoices", columns=[PlanColumn(column="total")])

    _, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    assert result.is_valid is False
    assert "invoices" in result.errors[0]


def test_table_names_are_resolved(validator, crm_schema):
    plan = QueryPlan(primary_table="opportunities", columns=[PlanColumn(table="opportunities", column="name")])

    corrected, result = validator.validate_and_correct(plan, crm_schema)

    assert corrected.primary_table == "deals"
    assert corrected.columns[0].table == "deals"
    assert _kinds(result)[0] == CorrectionType.FIX_TABLE


def test_misspelled_column_resolves_through_synonyms(validator, crm_schema):
    plan = QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="reveneu", aggregation="SUM", alias="revenue")],
    )

    corrected, result = validator.validate_and_correct(plan, crm_schema)

    assert corrected.columns[0].column == "amount"
    assert _kinds(result) == [CorrectionType.FIX_COLUMN]
    assert "'amount'" in result.corrections[0].description


def test_unresolved_column_is_only_a_warning(validator, crm_schema):
    plan = QueryPlan(primary_table="deals", columns=[PlanColumn(table="deals", column="zzz")], limit=5)

    corrected, result = validator.validate_and_correct(plan, crm_schema)

    assert result.is_valid
    assert corrected.columns[0].column == "zzz"
    assert result.warnings == ["Column 'zzz' not found in table 'deals'"]


def test_reference_to_related_table_adds_join(validator, crm_schema):
    plan = QueryPlan(
        primary_table="deals",
        columns=[
            PlanColumn(table="accounts", column="industry"),
            PlanColumn(table="deals", column="amount", aggregation="SUM", alias="revenue"),
        ],
        group_by=[GroupByItem(table="accounts", column="industry")],
    )

    corrected, result = validator.validate_and_correct(plan, crm_schema)

    assert len(corrected.joins) == 1
    on = corrected.joins[0].on
    assert (on.left_table, on.left_column, on.right_table, on.right_column) == (
        "deals", "accountId", "accounts", "id",
    )
    assert _kinds(result) == [CorrectionType.ADD_JOIN]


def test_invalid_expression_is_an_error(validator, crm_schema):
    plan = QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(column="broken", alias="broken", expression="SUM(amount")],
    )

    _, result = validator.validate_and_correct(plan, crm_schema)

    assert result.is_valid is False
    assert result.errors[0].startswith("Invalid expression 'SUM(amount'")


def test_untokenizable_expression_is_an_error(validator, crm_schema):
    plan = QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(column="broken", alias="broken", expression="'unterminated")],
    )

    _, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    assert result.is_valid is False
    assert result.errors[0].startswith("Invalid expression ''unterminated'")


def _expression_plan(expression):
    return QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="name"), PlanColumn(column="y", alias="y", expression=expression)],
    )


@pytest.mark.parametrize("expression, error", [
    ('"deals"."no_such_column" * 2', "Column 'deals.no_such_column' in expression"),
    ("no_such_column", "Column 'deals.no_such_column' in expression"),
    ('"accounts"."annualRevenue"', "reads table 'accounts' which is not in the query"),
    ("(SELECT SUM(amount) FROM deals)", "must not contain a query or statement"),
    ('"deals"."amount" IN (SELECT "amount" FROM "deals")', "must not contain a query or statement"),
    ("DROP TABLE deals", "must not contain a query or statement"),
])
def test_expression_references_are_checked(validator, crm_schema, expression, error):
    # Validates expressions cannot read outside the tenant-filtered tables, since they are rendered verbatim.
    # Act
    _, result = validator.validate_and_correct(_expression_plan(expression), crm_schema, tenant_id="t1")

    # Assert
    assert result.is_valid is False
    assert error in result.errors[0]


def test_expression_over_plan_tables_is_accepted(validator, crm_schema):
    plan = _expression_plan('"deals"."amount" * "deals"."probability" / 100')

    _, result = validator.validate_and_correct(plan, crm_schema, tenant_id="t1")

    assert result.is_valid
    assert result.errors == []


def test_aggregation_checks(validator, crm_schema):
    plan = QueryPlan(
        primary_table="deals",
        columns=[
            PlanColumn(table="deals", column="amount", aggregation="sum", alias="total"),
            PlanColumn(table="deals", column="name", aggregation="AVG", alias="odd"),
        ],
    )

    corrected, result = validator.validate_and_correct(plan, crm_schema)

    assert corrected.columns[0].aggregation == "SUM"
    assert _kinds(result) == [CorrectionType.FIX_AGGREGATION]
    assert result.warnings == ["AVG applied to non-aggregatable column 'name'"]


def test_unknown_order_by_target_warns(validator, crm_schema):
    plan = QueryPlan(
        primary_table="deals",
        columns=[PlanColumn(table="deals", column="amount", aggregation="SUM", alias="total")],
        order_by=[OrderByItem(column="total"), OrderByItem(column="popularity", direction="DESC")],
    )

    _, result = validator.validate_and_correct(plan, crm_schema)

    assert result.warnings == ["ORDER BY target 'popularity' not found in schema or select aliases"]


def test_suggest_improvements(validator):
    plan = QueryPlan(primary_table="deals", columns=[PlanColumn(column="*")], limit=10)

    suggestions = validator.suggest_improvements(plan)

    assert "Add an ORDER BY so the limited rows are deterministic" in suggestions
    assert "Name the columns to select instead of using '*'" in suggestions
    assert len(suggestions) == 3
