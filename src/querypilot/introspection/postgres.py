from __future__ import annotations

import re
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

logger = get_logger("introspection.postgres")

POSTGRES_TYPE_RULES = compile_rules([
    (r"^(character varying|varchar|character|char|bpchar|name|citext)\b", DataType.STRING),
    (r"^text$", DataType.TEXT),
    (r"^(smallint|int2|integer|int|int4|serial|serial4|smallserial|serial2)$", DataType.INTEGER),
    (r"^(bigint|int8|bigserial|serial8)$", DataType.BIGINT),
    (r"^(numeric|decimal|money)\b", DataType.DECIMAL),
    (r"^(real|float4)$", DataType.FLOAT),
    (r"^(double precision|float8)$", DataType.DOUBLE),
    (r"^date$", DataType.DATE),
    (r"^(time|timetz)( without time zone| with time zone)?$", DataType.TIME),
    (r"^(timestamp|timestamptz)\b", DataType.TIMESTAMP),
    (r"^(boolean|bool)$", DataType.BOOLEAN),
    (r"^bytea$", DataType.BINARY),
    (r"^jsonb?$", DataType.JSON),
    (r"^uuid$", DataType.UUID),
    (r"(^_|\[\]$|^array$)", DataType.ARRAY),
    (r"^user-defined$", DataType.ENUM),
])

_CAST_SUFFIX = re.compile(r"::[\w\s\[\]\".]+$")
_INDEX_METHOD = re.compile(r"\bUSING\s+(\w+)", re.IGNORECASE)


def map_postgres_type(udt_name: Optional[str], data_type: Optional[str] = None) -> DataType:
    """Maps a Postgres column type, preferring the udt name (``int4``, ``_text``)."""
    if data_type and data_type.upper() == "ARRAY":
        return DataType.ARRAY
    mapped = map_native_type(udt_name, POSTGRES_TYPE_RULES)
    if mapped == DataType.UNKNOWN and data_type:
        mapped = map_native_type(data_type, POSTGRES_TYPE_RULES)
    return mapped


def parse_postgres_default(raw: Optional[str], data_type: DataType = DataType.UNKNOWN) -> Any:
    """Decodes a Postgres ``column_default``.

    ``nextval(...)`` sequences become the ``AUTO_INCREMENT`` marker and
    ``::type`` casts are stripped before the literal is decoded.
    """
    if raw is None:
        return None
    value = raw.strip()
    if value.lower().startswith("nextval("):
        return AUTO_INCREMENT
    previous = None
    while previous != value:
        previous = value
        value = _CAST_SUFFIX.sub("", value).strip()
    return parse_default(value, data_type)


def _split_index_columns(indexdef: str, start: int) -> List[str]:
    """Splits the parenthesised column list at top-level commas."""
    parts: List[str] = []
    current = ""
    depth = 0
    for ch in indexdef[start:]:
        if ch == "(":
            depth += 1
            if depth == 1:
                continue
        elif ch == ")":
            depth -= 1
            if depth == 0:
                break
        elif ch == "," and depth == 1:
            parts.append(current)
            current = ""
            continue
        current += ch
    parts.append(current)

    columns = []
    for part in parts:
        part = part.strip()
        if not part:
            continue
        # Plain columns may carry ordering or opclass suffixes; expressions are kept whole.
        if "(" not in part:
            part = part.split()[0]
        columns.append(part.strip('"'))
    return columns


def parse_index_definition(indexdef: str) -> Dict[str, Any]:
    """Reads method and column list out of a ``pg_indexes.indexdef`` string."""
    method = _INDEX_METHOD.search(indexdef)
    start = indexdef.find("(", method.end() if method else 0)
    columns = _split_index_columns(indexdef, start) if start != -1 else []
    return {
        "unique": "UNIQUE INDEX" in indexdef.upper(),
        "type": method.group(1).lower() if method else None,
        "columns": columns,
    }


class PostgresIntrospector:
    """Reads ``information_schema`` and ``pg_catalog`` of one Postgres schema."""

    engine_type = "postgres"

    def __init__(self, engine: Engine, schema_namespace: str = "public"):
        self.engine = engine
        self.schema_namespace = schema_namespace

    def _query(self, sql: str, **params: Any) -> List[Dict[str, Any]]:
        return fetch_rows(self.engine, self.engine_type, sql, params)

    def get_schema(self) -> DatabaseSchema:
        logger.debug(f"Introspecting Postgres schema '{self.schema_namespace}'")
        return assemble_schema(self)

    def get_tables(self) -> List[TableInfo]:
        rows = self._query(
            """
            SELECT t.table_name, t.table_type,
                   obj_description(
                       (quote_ident(t.table_schema) || '.' || quote_ident(t.table_name))::regclass,
                       'pg_class'
                   ) AS table_comment
            FROM information_schema.tables t
            WHERE t.table_schema = :schema
              AND t.table_type IN ('BASE TABLE', 'VIEW')
            ORDER BY t.table_name
            """,
            schema=self.schema_namespace,
        )
        return [
            TableInfo(
                name=row["table_name"],
                schema_namespace=self.schema_namespace,
                kind="view" if row["table_type"] == "VIEW" else "table",
                comment=row.get("table_comment"),
            )
            for row in rows
        ]

    def get_primary_keys(self, table: str) -> List[str]:
        rows = self._query(
            """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
             AND tc.table_name = kcu.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema = :schema
              AND tc.table_name = :table
            ORDER BY kcu.ordinal_position
            """,
            schema=self.schema_namespace,
            table=table,
        )
        return [row["column_name"] for row in rows]

    def _unique_columns(self, table: str) -> set:
        rows = self._query(
            """
            SELECT tc.constraint_name, kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
             AND tc.table_name = kcu.table_name
            WHERE tc.constraint_type = 'UNIQUE'
              AND tc.table_schema = :schema
              AND tc.table_name = :table
            """,
            schema=self.schema_namespace,
            table=table,
        )
        by_constraint: Dict[str, List[str]] = {}
        for row in rows:
            by_constraint.setdefault(row["constraint_name"], []).append(row["column_name"])
        # Composite unique constraints do not make any single column unique.
        return {cols[0] for cols in by_constraint.values() if len(cols) == 1}

    def get_columns(self, table: str) -> List[ColumnSchema]:
        rows = self._query(
            """
            SELECT c.column_name, c.data_type, c.udt_name, c.is_nullable, c.column_default,
                   c.character_maximum_length, c.numeric_precision, c.numeric_scale,
                   c.is_identity, c.is_generated,
                   col_description(
                       (quote_ident(c.table_schema) || '.' || quote_ident(c.table_name))::regclass,
                       c.ordinal_position
                   ) AS column_comment
            FROM information_schema.columns c
            WHERE c.table_schema = :schema AND c.table_name = :table
            ORDER BY c.ordinal_position
            """,
            schema=self.schema_namespace,
            table=table,
        )
        primary_keys = set(self.get_primary_keys(table))
        unique_columns = self._unique_columns(table)

        columns = []
        for row in rows:
            normalized = map_postgres_type(row.get("udt_name"), row.get("data_type"))
            raw_default = as_text(row.get("column_default"))
            is_identity = as_text(row.get("is_identity")) == "YES"
            default_value = AUTO_INCREMENT if is_identity else parse_postgres_default(raw_default, normalized)
            is_numeric = normalized in (DataType.DECIMAL, DataType.FLOAT, DataType.DOUBLE)
            columns.append(ColumnSchema(
                name=row["column_name"],
                native_type=row.get("udt_name") or row.get("data_type") or "",
                normalized_type=normalized,
                nullable=row.get("is_nullable") == "YES",
                default_value=default_value,
                has_default=raw_default is not None or is_identity,
                is_generated=default_value == AUTO_INCREMENT or as_text(row.get("is_generated")) == "ALWAYS",
                is_primary_key=row["column_name"] in primary_keys,
                is_unique=row["column_name"] in unique_columns or row["column_name"] in primary_keys,
                length=row.get("character_maximum_length"),
                precision=row.get("numeric_precision") if is_numeric else None,
                scale=row.get("numeric_scale") if is_numeric else None,
                comment=row.get("column_comment"),
            ))
        return columns

    def get_foreign_keys(self, table: str) -> List[ForeignKeyInfo]:
        rows = self._query(
            """
            SELECT tc.constraint_name, kcu.column_name,
                   ccu.table_name AS referenced_table, ccu.column_name AS referenced_column,
                   rc.update_rule, rc.delete_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
              ON ccu.constraint_name = tc.constraint_name
             AND ccu.constraint_schema = tc.table_schema
            JOIN information_schema.referential_constraints rc
              ON rc.constraint_name = tc.constraint_name
             AND rc.constraint_schema = tc.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = :schema
              AND tc.table_name = :table
            """,
            schema=self.schema_namespace,
            table=table,
        )
        return [
            ForeignKeyInfo(
                name=row["constraint_name"],
                column_name=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                on_update=row.get("update_rule"),
                on_delete=row.get("delete_rule"),
            )
            for row in rows
        ]

    def get_indexes(self, table: str) -> List[IndexInfo]:
        rows = self._query(
            """
            SELECT indexname, indexdef
            FROM pg_indexes
            WHERE schemaname = :schema AND tablename = :table
            ORDER BY indexname
            """,
            schema=self.schema_namespace,
            table=table,
        )
        indexes = []
        for row in rows:
            # Primary key indexes are already described by primary_keys.
            if row["indexname"].endswith("_pkey"):
                continue
            parsed = parse_index_definition(row["indexdef"] or "")
            indexes.append(IndexInfo(name=row["indexname"], **parsed))
        return indexes

    def get_relationships(self) -> List[RelationshipInfo]:
        return collect_relationships(self)

    def get_database_info(self) -> SchemaMetadata:
        version_rows = self._query("SELECT version() AS version")
        db_rows = self._query(
            """
            SELECT current_database() AS database_name,
                   datcollate AS collation,
                   pg_encoding_to_char(encoding) AS charset
            FROM pg_database
            WHERE datname = current_database()
            """
        )
        db = db_rows[0] if db_rows else {}
        return SchemaMetadata(
            version=version_rows[0]["version"] if version_rows else None,
            database_name=db.get("database_name"),
            charset=db.get("charset"),
            collation=db.get("collation"),
        )
