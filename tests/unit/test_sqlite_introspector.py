import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from querypilot.common.errors import IntrospectionError
from querypilot.introspection import AUTO_INCREMENT, SQLiteIntrospector
from querypilot.schema.models import DataType


def test_get_tables_lists_tables_in_name_order(crm_engine):
    tables = SQLiteIntrospector(crm_engine).get_tables()

    assert [t.name for t in tables] == ["accounts", "deals", "users"]
    assert all(t.kind == "table" for t in tables)


def test_get_schema_normalizes_column_types(raw_schema):
    # Arrange
    deals = raw_schema.tables["deals"]

    # Act
    types = {name: column.normalized_type for name, column in deals.columns.items()}

    # Assert
    assert types == {
        "id": DataType.INTEGER,
        "name": DataType.STRING,
        "amount": DataType.DECIMAL,
        "stage": DataType.STRING,
        "probability": DataType.INTEGER,
        "closeDate": DataType.DATE,
        "ownerId": DataType.INTEGER,
        "accountId": DataType.INTEGER,
        "tenantId": DataType.STRING,
        "isActive": DataType.BOOLEAN,
        "notes": DataType.TEXT,
    }


def test_columns_keep_order_keys_and_modifiers(raw_schema):
    deals = raw_schema.tables["deals"]

    assert list(deals.columns)[:3] == ["id", "name", "amount"]
    assert deals.primary_keys == ["id"]
    assert deals.columns["id"].is_primary_key
    assert deals.columns["id"].default_value == AUTO_INCREMENT
    assert deals.columns["name"].length == 200
    assert deals.columns["name"].nullable is False
    assert deals.columns["amount"].precision == 12
    assert deals.columns["amount"].scale == 2


def test_defaults_are_decoded(raw_schema):
    deals = raw_schema.tables["deals"]
    accounts = raw_schema.tables["accounts"]

    assert deals.columns["stage"].default_value == "Prospecting"
    assert deals.columns["amount"].default_value == 0
    assert deals.columns["isActive"].default_value == 1
    assert deals.columns["probability"].has_default is False
    assert accounts.columns["createdAt"].default_value == "CURRENT_TIMESTAMP"


def test_foreign_keys_and_relationships(raw_schema):
    # Arrange
    deals = raw_schema.tables["deals"]

    # Act
    fks = {fk.column_name: fk for fk in deals.foreign_keys}
    edges = {(r.source_table, r.source_column, r.target_table, r.target_column) for r in raw_schema.relationships}

    # Assert
    assert fks["accountId"].referenced_table == "accounts"
    assert fks["accountId"].referenced_column == "id"
    assert fks["accountId"].on_delete == "CASCADE"
    assert edges == {
        ("deals", "ownerId", "users", "id"),
        ("deals", "accountId", "accounts", "id"),
    }
    assert all(r.type == "many-to-one" for r in raw_schema.relationships)


def test_indexes_and_unique_columns(raw_schema):
    deals = raw_schema.tables["deals"]
    users = raw_schema.tables["users"]

    assert [(i.name, i.columns, i.unique) for i in deals.indexes] == [("idx_deals_stage", ["stage"], False)]
    assert users.columns["email"].is_unique
    assert not users.columns["department"].is_unique


def test_database_info(raw_schema):
    assert raw_schema.engine_type == "sqlite"
    assert raw_schema.metadata.source == "catalog"
    assert raw_schema.metadata.version
    assert [t.name for t in raw_schema.metadata.tables] == ["accounts", "deals", "users"]


def test_foreign_key_without_column_list_targets_parent_primary_key():
    # Arrange
    engine = create_engine("sqlite://", poolclass=StaticPool)
    with engine.begin() as conn:
        conn.exec_driver_sql("CREATE TABLE parent (code VARCHAR(10) PRIMARY KEY)")
        conn.exec_driver_sql("CREATE TABLE child (id INTEGER PRIMARY KEY, parent_code VARCHAR(10) REFERENCES parent)")

    # Act
    fks = SQLiteIntrospector(engine).get_foreign_keys("child")

    # Assert
    assert fks[0].referenced_column == "code"


def test_views_are_reported_as_views(crm_engine):
    with crm_engine.begin() as conn:
        conn.exec_driver_sql("CREATE VIEW open_deals AS SELECT id, name FROM deals")

    tables = {t.name: t.kind for t in SQLiteIntrospector(crm_engine).get_tables()}

    assert tables["open_deals"] == "view"


def test_driver_failures_become_introspection_errors(crm_engine):
    # Validates that catalog failures are typed so the cache can fall back.
    introspector = SQLiteIntrospector(crm_engine)

    with pytest.raises(IntrospectionError) as exc:
        introspector._query("SELECT * FROM no_such_table")

    assert exc.value.engine_type == "sqlite"
