from unittest.mock import MagicMock, patch

from querypilot.introspection import AUTO_INCREMENT, MySQLIntrospector
from querypilot.schema.models import DataType

COLUMN_ROWS = [
    {"column_name": "id", "data_type": "int", "column_type": "int(11)", "is_nullable": "NO",
     "column_default": None, "column_key": "PRI", "extra": "auto_increment",
     "character_maximum_length": None, "numeric_precision": 10, "numeric_scale": 0, "column_comment": ""},
    {"column_name": "is_won", "data_type": "tinyint", "column_type": "tinyint(1)", "is_nullable": "NO",
     "column_default": "0", "column_key": "", "extra": "",
     "character_maximum_length": None, "numeric_precision": 3, "numeric_scale": 0, "column_comment": ""},
    {"column_name": "stage", "data_type": "varchar", "column_type": "varchar(50)", "is_nullable": "YES",
     "column_default": "open", "column_key": "MUL", "extra": "",
     "character_maximum_length": 50, "numeric_precision": None, "numeric_scale": None, "column_comment": ""},
    {"column_name": "amount", "data_type": "decimal", "column_type": "decimal(12,2)", "is_nullable": "YES",
     "column_default": None, "column_key": "", "extra": "",
     "character_maximum_length": None, "numeric_precision": 12, "numeric_scale": 2,
     "column_comment": b"Deal value"},
    {"column_name": "external_ref", "data_type": "varchar", "column_type": "varchar(64)", "is_nullable": "YES",
     "column_default": None, "column_key": "UNI", "extra": "",
     "character_maximum_length": 64, "numeric_precision": None, "numeric_scale": None, "column_comment": ""},
]

STATISTICS_ROWS = [
    {"index_name": "idx_stage_amount", "column_name": "stage", "non_unique": 1, "index_type": "BTREE"},
    {"index_name": "idx_stage_amount", "column_name": "amount", "non_unique": 1, "index_type": "BTREE"},
    {"index_name": "uq_external_ref", "column_name": "external_ref", "non_unique": 0, "index_type": "BTREE"},
]


def test_columns_map_column_type_and_flags():
    # Arrange
    introspector = MySQLIntrospector(MagicMock(), schema_namespace="crm")
    introspector._query = MagicMock(return_value=COLUMN_ROWS)

    # Act
    columns = {c.name: c for c in introspector.get_columns("deals")}

    # Assert
    assert columns["id"].default_value == AUTO_INCREMENT
    assert columns["id"].is_primary_key
    assert columns["is_won"].normalized_type == DataType.BOOLEAN
    assert columns["is_won"].default_value is False
    assert columns["stage"].default_value == "open"
    assert columns["stage"].length == 50
    assert columns["amount"].comment == "Deal value"
    assert columns["external_ref"].is_unique
    assert not columns["stage"].is_unique


def test_query_defaults_schema_parameter():
    # Validates that an unset namespace reaches the SQL as NULL so COALESCE picks DATABASE().
    introspector = MySQLIntrospector(MagicMock())

    with patch("querypilot.introspection.mysql.fetch_rows", return_value=[]) as fetch:
        introspector.get_primary_keys("deals")

    _, engine_type, _, params = fetch.call_args.args
    assert engine_type == "mysql"
    assert params == {"table": "deals", "schema": None}


def test_indexes_are_grouped_by_name():
    introspector = MySQLIntrospector(MagicMock(), engine_type="mariadb")
    introspector._query = MagicMock(return_value=STATISTICS_ROWS)

    indexes = introspector.get_indexes("deals")

    assert [(i.name, i.columns, i.unique, i.type) for i in indexes] == [
        ("idx_stage_amount", ["stage", "amount"], False, "btree"),
        ("uq_external_ref", ["external_ref"], True, "btree"),
    ]
    assert introspector.engine_type == "mariadb"
