import pytest

from querypilot.introspection.base import AUTO_INCREMENT, parse_default, parse_type_modifiers
from querypilot.introspection.mysql import parse_mysql_default
from querypilot.introspection.postgres import parse_index_definition, parse_postgres_default
from querypilot.schema.models import DataType


@pytest.mark.parametrize("raw, data_type, expected", [
    (None, DataType.INTEGER, None),
    ("NULL", DataType.STRING, None),
    ("'Prospecting'", DataType.STRING, "Prospecting"),
    ("'it''s'", DataType.STRING, "it's"),
    ("0", DataType.DECIMAL, 0),
    ("(1)", DataType.INTEGER, 1),
    ("2.5", DataType.DOUBLE, 2.5),
    ("true", DataType.BOOLEAN, True),
    ("042", DataType.STRING, "042"),
    ("CURRENT_TIMESTAMP", DataType.DATETIME, "CURRENT_TIMESTAMP"),
])
def test_parse_default(raw, data_type, expected):
    assert parse_default(raw, data_type) == expected


def test_unparseable_default_is_passed_through():
    # Validates that odd defaults survive introspection instead of being dropped.
    assert parse_default("gen_random_uuid()", DataType.UUID) == "gen_random_uuid()"


@pytest.mark.parametrize("raw, data_type, expected", [
    ("nextval('deals_id_seq'::regclass)", DataType.INTEGER, AUTO_INCREMENT),
    ("'open'::character varying", DataType.STRING, "open"),
    ("'{}'::jsonb", DataType.JSON, "{}"),
    ("0", DataType.DECIMAL, 0),
    ("now()", DataType.TIMESTAMP, "now()"),
    (None, DataType.STRING, None),
])
def test_parse_postgres_default(raw, data_type, expected):
    assert parse_postgres_default(raw, data_type) == expected


@pytest.mark.parametrize("raw, extra, data_type, expected", [
    (None, "auto_increment", DataType.INTEGER, AUTO_INCREMENT),
    ("open", "", DataType.STRING, "open"),
    ("'open'", "", DataType.STRING, "open"),
    ("NULL", "", DataType.STRING, None),
    ("current_timestamp()", "DEFAULT_GENERATED", DataType.TIMESTAMP, "CURRENT_TIMESTAMP()"),
    ("1", "", DataType.BOOLEAN, True),
    ("0.00", "", DataType.DECIMAL, 0.0),
])
def test_parse_mysql_default(raw, extra, data_type, expected):
    assert parse_mysql_default(raw, extra, data_type) == expected


def test_parse_type_modifiers():
    assert parse_type_modifiers("VARCHAR(50)", DataType.STRING) == {"length": 50, "precision": None, "scale": None}
    assert parse_type_modifiers("decimal(12,2)", DataType.DECIMAL) == {"length": None, "precision": 12, "scale": 2}
    assert parse_type_modifiers("tinyint(1)", DataType.BOOLEAN) == {"length": None, "precision": None, "scale": None}


def test_parse_index_definition():
    # Arrange
    indexdef = (
        'CREATE UNIQUE INDEX deals_lower_name ON public.deals USING btree '
        '(lower((name)::text), "tenantId" DESC)'
    )

    # Act
    parsed = parse_index_definition(indexdef)

    # Assert
    assert parsed["unique"] is True
    assert parsed["type"] == "btree"
    assert parsed["columns"] == ["lower((name)::text)", "tenantId"]
