from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from querypilot.common.logger import get_logger
from querypilot.schema.models import (
    ColumnSchema,
    DataType,
    DatabaseSchema,
    ForeignKeyInfo,
    IndexInfo,
    RelationshipInfo,
    SchemaMetadata,
    TableInfo,
)
from .base import (
    AUTO_INCREMENT,
    as_text,
    assemble_schema,
    collect_relationships,
    compile_rules,
    fetch_rows,
    map_native_type,
    parse_default,
)

logger = get_logger("introspection.mysql")

# Matched against COLUMN_TYPE, which keeps display width and flags ("tinyint(1)", "int(11) unsigned").
MYSQL_TYPE_RULES = compile_rules([
    (r"^tinyint\(1\)", DataType.BOOLEAN),
    (r"^(bool|boolean)$", DataType.BOOLEAN),
    (r"^bit\(1\)$", DataType.BOOLEAN),
    (r"^(varchar|char|nvarchar|nchar)\b", DataType.STRING),
    (r"^(tinytext|text|mediumtext|longtext)\b", DataType.TEXT),
    (r"^(tinyint|smallint|mediumint|int|integer)\b", DataType.INTEGER),
    (r"^year\b", DataType.INTEGER),
    (r"^bigint\b", DataType.BIGINT),
    (r"^(decimal|numeric|dec|fixed)\b", DataType.DECIMAL),
    (r"^float\b", DataType.FLOAT),
    (r"^(double|real)\b", DataType.DOUBLE),
    (r"^date$", DataType.DATE),
    (r"^time\b", DataType.TIME),
    (r"^datetime\b", DataType.DATETIME),
    (r"^timestamp\b", DataType.TIMESTAMP),
    (r"^(binary|varbinary)\b", DataType.BINARY),
    (r"^(tinyblob|blob|mediumblob|longblob)\b", DataType.BLOB),
    (r"^json$", DataType.JSON),
    (r"^enum\b", DataType.ENUM),
])

# Engine-side keywords MySQL reports unquoted in COLUMN_DEFAULT.
_KEYWORD_DEFAULTS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NOW()"}


def map_mysql_type(column_type: Optional[str]) -> DataType:
    return map_native_type(column_type, MYSQL_TYPE_RULES)


def parse_mysql_default(raw: Optional[str], extra: Optional[str], data_type: DataType = DataType.UNKNOWN) -> Any:
    """Decodes a MySQL/MariaDB ``COLUMN_DEFAULT``.

    MySQL reports string defaults unquoted while MariaDB quotes them and
    spells a missing default as the ``NULL`` literal; both decode the same.
    ``auto_increment`` columns get the ``AUTO_INCREMENT`` marker.
    """
    if extra and "auto_increment" in extra.lower():
        return AUTO_INCREMENT
    if raw is None:
        return None
    value = raw.strip()
    upper = value.upper()
    if upper in _KEYWORD_DEFAULTS or upper.startswith("CURRENT_TIMESTAMP"):
        return upper
    if data_type == DataType.BOOLEAN and value in ("0", "1", "b'0'", "b'1'"):
        return value in ("1", "b'1'")
    return parse_default(value, data_type)


class MySQLIntrospector:
    """Reads ``information_schema`` of one MySQL or MariaDB database."""

    def __init__(self, engine: Engine, schema_namespace: Optional[str] = None, engine_type: str = "mysql"):
        self.engine = engine
        self.schema_namespace = schema_namespace
        self.engine_type = engine_type

    def _query(self, sql: str, **params: Any) -> List[Dict[str, Any]]:
        params.setdefault("schema", self.schema_namespace)
        return fetch_rows(self.engine, self.engine_type, sql, params)

    def get_schema(self) -> DatabaseSchema:
        logger.debug(f"Introspecting {self.engine_type} schema '{self.schema_namespace or 'DATABASE()'}'")
        return assemble_schema(self)

    def get_tables(self) -> List[TableInfo]:
        rows = self._query(
            """
            SELECT TABLE_NAME AS table_name, TABLE_TYPE AS table_type,
                   TABLE_ROWS AS table_rows, TABLE_COMMENT AS table_comment,
                   TABLE_SCHEMA AS table_schema
            FROM information_schema.TABLES
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE())
            ORDER BY TABLE_NAME
            """
        )
        return [
            TableInfo(
                name=as_text(row["table_name"]),
                schema_namespace=as_text(row.get("table_schema")),
                kind="view" if as_text(row.get("table_type")) == "VIEW" else "table",
                row_count=row.get("table_rows"),
                comment=as_text(row.get("table_comment")) or None,
            )
            for row in rows
        ]

    def get_primary_keys(self, table: str) -> List[str]:
        rows = self._query(
            """
            SELECT COLUMN_NAME AS column_name
            FROM information_schema.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE())
              AND TABLE_NAME = :table
              AND CONSTRAINT_NAME = 'PRIMARY'
            ORDER BY ORDINAL_POSITION
            """,
            table=table,
        )
        return [as_text(row["column_name"]) for row in rows]

    def get_columns(self, table: str) -> List[ColumnSchema]:
        rows = self._query(
            """
            SELECT COLUMN_NAME AS column_name, DATA_TYPE AS data_type, COLUMN_TYPE AS column_type,
                   IS_NULLABLE AS is_nullable, COLUMN_DEFAULT AS column_default,
                   COLUMN_KEY AS column_key, EXTRA AS extra,
                   CHARACTER_MAXIMUM_LENGTH AS character_maximum_length,
                   NUMERIC_PRECISION AS numeric_precision, NUMERIC_SCALE AS numeric_scale,
                   COLUMN_COMMENT AS column_comment
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE())
              AND TABLE_NAME = :table
            ORDER BY ORDINAL_POSITION
            """,
            table=table,
        )
        columns = []
        for row in rows:
            column_type = as_text(row.get("column_type")) or as_text(row.get("data_type")) or ""
            normalized = map_mysql_type(column_type)
            extra = as_text(row.get("extra")) or ""
            column_key = as_text(row.get("column_key")) or ""
            raw_default = as_text(row.get("column_default"))
            default_value = parse_mysql_default(raw_default, extra, normalized)
            is_numeric = normalized in (DataType.DECIMAL, DataType.FLOAT, DataType.DOUBLE)
            columns.append(ColumnSchema(
                name=as_text(row["column_name"]),
                native_type=column_type,
                normalized_type=normalized,
                nullable=as_text(row.get("is_nullable")) == "YES",
                default_value=default_value,
                has_default=raw_default is not None or default_value == AUTO_INCREMENT,
                is_generated="auto_increment" in extra.lower() or "generated" in extra.lower(),
                is_primary_key=column_key == "PRI",
                is_unique=column_key in ("PRI", "UNI"),
                length=row.get("character_maximum_length") if normalized in (DataType.STRING, DataType.TEXT, DataType.BINARY) else None,
                precision=row.get("numeric_precision") if is_numeric else None,
                scale=row.get("numeric_scale") if is_numeric else None,
                comment=as_text(row.get("column_comment")) or None,
            ))
        return columns

    def get_foreign_keys(self, table: str) -> List[ForeignKeyInfo]:
        rows = self._query(
            """
            SELECT k.CONSTRAINT_NAME AS constraint_name, k.COLUMN_NAME AS column_name,
                   k.REFERENCED_TABLE_NAME AS referenced_table,
                   k.REFERENCED_COLUMN_NAME AS referenced_column,
                   r.UPDATE_RULE AS update_rule, r.DELETE_RULE AS delete_rule
            FROM information_schema.KEY_COLUMN_USAGE k
            JOIN information_schema.REFERENTIAL_CONSTRAINTS r
              ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA
             AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME
            WHERE k.TABLE_SCHEMA = COALESCE(:schema, DATABASE())
              AND k.TABLE_NAME = :table
              AND k.REFERENCED_TABLE_NAME IS NOT NULL
            ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION
            """,
            table=table,
        )
        return [
            ForeignKeyInfo(
                name=as_text(row["constraint_name"]),
                column_name=as_text(row["column_name"]),
                referenced_table=as_text(row["referenced_table"]),
                referenced_column=as_text(row["referenced_column"]),
                on_update=as_text(row.get("update_rule")),
                on_delete=as_text(row.get("delete_rule")),
            )
            for row in rows
        ]

    def get_indexes(self, table: str) -> List[IndexInfo]:
        rows = self._query(
            """
            SELECT INDEX_NAME AS index_name, COLUMN_NAME AS column_name,
                   NON_UNIQUE AS non_unique, INDEX_TYPE AS index_type
            FROM information_schema.STATISTICS
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE())
              AND TABLE_NAME = :table
              AND INDEX_NAME <> 'PRIMARY'
            ORDER BY INDEX_NAME, SEQ_IN_INDEX
            """,
            table=table,
        )
        grouped: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            name = as_text(row["index_name"])
            entry = grouped.setdefault(name, {
                "columns": [],
                "unique": int(row.get("non_unique") or 0) == 0,
                "type": (as_text(row.get("index_type")) or "").lower() or None,
            })
            entry["columns"].append(as_text(row["column_name"]))
        return [IndexInfo(name=name, **entry) for name, entry in grouped.items()]

    def get_relationships(self) -> List[RelationshipInfo]:
        return collect_relationships(self)

    def get_database_info(self) -> SchemaMetadata:
        version_rows = self._query("SELECT VERSION() AS version")
        db_rows = self._query(
            """
            SELECT SCHEMA_NAME AS database_name,
                   DEFAULT_CHARACTER_SET_NAME AS charset,
                   DEFAULT_COLLATION_NAME AS collation
            FROM information_schema.SCHEMATA
            WHERE SCHEMA_NAME = COALESCE(:schema, DATABASE())
            """
        )
        db = db_rows[0] if db_rows else {}
        return SchemaMetadata(
            version=as_text(version_rows[0]["version"]) if version_rows else None,
            database_name=as_text(db.get("database_name")),
            charset=as_text(db.get("charset")),
            collation=as_text(db.get("collation")),
        )
