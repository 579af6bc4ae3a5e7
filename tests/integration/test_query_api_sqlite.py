from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from querypilot import QueryPilot
from querypilot.common.errors import ErrorCode, SchemaUnavailableError

SEED_ROWS = [
    "INSERT INTO accounts (id, name, industry, \"tenantId\") VALUES (1, 'Acme', 'Manufacturing', 't1')",
    "INSERT INTO accounts (id, name, industry, \"tenantId\") VALUES (2, 'Globex', 'Energy', 't2')",
    "INSERT INTO deals (id, name, amount, stage, \"closeDate\", \"accountId\", \"tenantId\") "
    "VALUES (1, 'Renewal', 500, 'Closed Won', '2024-03-10', 1, 't1')",
    "INSERT INTO deals (id, name, amount, stage, \"closeDate\", \"accountId\", \"tenantId\") "
    "VALUES (2, 'Expansion', 1500, 'Negotiation', '2024-03-20', 1, 't1')",
    "INSERT INTO deals (id, name, amount, stage, \"closeDate\", \"accountId\", \"tenantId\") "
    "VALUES (3, 'Pilot', 9000, 'Closed Won', '2024-04-01', 2, 't2')",
]


@pytest.fixture
def pilot(crm_engine):
    with crm_engine.begin() as conn:
        for statement in SEED_ROWS:
            conn.exec_driver_sql(statement)
    instance = QueryPilot(engine=crm_engine)
    yield instance
    instance.close()


def _run(engine, sql):
    with engine.connect() as conn:
        return conn.exec_driver_sql(sql.text, tuple(sql.params)).fetchall()


def test_top_deals_end_to_end(pilot, crm_engine):
    # Validates the full pipeline because the SQL must be tenant scoped and runnable as emitted.
    # Act
    result = pilot.plan_and_validate_query("top 5 deals", tenant_id="t1")

    # Assert
    assert result.success is True
    assert result.intent == "get_top_deals"
    assert result.trace_id
    assert result.sql.dialect == "sqlite"
    assert result.sql.text == (
        'SELECT "deals"."id", "deals"."name", "deals"."amount", "deals"."stage", "deals"."closeDate" '
        'FROM "deals" WHERE "deals"."tenantId" = ? ORDER BY "deals"."amount" DESC LIMIT 5'
    )
    assert result.sql.params == ["t1"]
    assert [c.type.value for c in result.validation.corrections] == ["add_tenant_filter"]
    assert [row[0] for row in _run(crm_engine, result.sql)] == [2, 1]


def test_revenue_by_month_end_to_end(pilot, crm_engine):
    result = pilot.plan_and_validate_query("reveneu by month", tenant_id="t1")

    assert result.success is True
    assert "STRFTIME('%Y-%m', \"deals\".\"closeDate\")" in result.sql.text
    assert result.sql.params == ["t1"]
    assert _run(crm_engine, result.sql) == [("2024-03", 2000)]


def test_dimension_from_related_table(pilot, crm_engine):
    result = pilot.plan_and_validate_query("revenue by industry", tenant_id="t2")

    assert result.success is True
    assert 'LEFT JOIN "accounts" ON "deals"."accountId" = "accounts"."id"' in result.sql.text
    assert _run(crm_engine, result.sql) == [("Energy", 9000)]


def test_follow_up_question_uses_last_topic(pilot):
    result = pilot.plan_and_validate_query("why did that happen", tenant_id="t1", last_topic="win_rate")

    assert result.intent == "analyze_win_loss"
    assert "CASE WHEN" in result.sql.text
    assert result.visualization == "pie"


def test_empty_question_is_rejected(pilot):
    result = pilot.plan_and_validate_query("   ", tenant_id="t1")

    assert result.success is False
    assert result.errors[0].error_code == ErrorCode.MISSING_QUESTION
    assert result.sql is None


def test_missing_table_fails_validation():
    # Arrange
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    empty = QueryPilot(engine=engine)

    # Act
    result = empty.plan_and_validate_query("top 5 deals", tenant_id="t1")
    empty.close()

    # Assert
    assert result.success is False
    assert result.errors[0].error_code == ErrorCode.VALIDATION_FAILED
    assert result.error == "Table 'deals' not found in schema"
    assert result.sql is None


@pytest.mark.parametrize("question", [
    "show me all invoices",
    "list invoices",
    "count of invoices by status",
])
def test_unknown_table_in_question_blocks_sql(pilot, question):
    # Validates an unknown subject is reported because planning deals instead would answer a different question.
    # Act
    result = pilot.plan_and_validate_query(question, tenant_id="t1")

    # Assert
    assert result.success is False
    assert result.validation.is_valid is False
    assert result.error == "Table 'invoices' not found in schema"
    assert result.sql is None


def test_question_without_subject_lists_deals(pilot, crm_engine):
    result = pilot.plan_and_validate_query("show me everything", tenant_id="t2")

    assert result.success is True
    assert result.plan.primary_table == "deals"
    assert [row[0] for row in _run(crm_engine, result.sql)] == [3]


def test_schema_outage_returns_safe_message(pilot):
    with patch.object(pilot.context.schema_cache, "get_schema", side_effect=SchemaUnavailableError("driver exploded")):
        result = pilot.plan_and_validate_query("top 5 deals", tenant_id="t1")

    assert result.success is False
    assert result.errors[0].error_code == ErrorCode.SCHEMA_RETRIEVAL_FAILED
    assert result.error == "The database schema is currently unavailable."
    assert "driver exploded" not in result.error


def test_schema_api(pilot):
    # Act
    tables = pilot.schema.list_tables()
    serialized = pilot.schema.get_schema()
    description = pilot.schema.describe_schema(["deals"])

    # Assert
    assert tables == ["accounts", "deals", "users"]
    assert [name for name, _ in serialized["tables"]] == tables
    assert serialized["engine_type"] == "sqlite"
    assert description.startswith("Table deals (Sales Opportunities):")
    assert pilot.schema.get_table_schema("deals").columns["amount"].aggregatable
    assert pilot.schema.refresh_schema() is True
    assert pilot.schema.cache_info()["cached"] is True
