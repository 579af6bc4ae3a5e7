from __future__ import annotations

from typing import Any, Dict, List

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
    assemble_schema,
    collect_relationships,
    compile_rules,
    fetch_rows,
    map_native_type,
    parse_default,
    parse_type_modifiers,
)

logger = get_logger("introspection.sqlite")

# SQLite keeps whatever type name the DDL used, so rules follow its affinity
# keywords. Every floating point affinity is an 8-byte IEEE value.
SQLITE_TYPE_RULES = compile_rules([
    (r"bool", DataType.BOOLEAN),
    (r"^(varchar|char|nvarchar|nchar|character|varying character|native character)\b", DataType.STRING),
    (r"(text|clob)", DataType.TEXT),
    (r"^(bigint|int8|unsigned big int)\b", DataType.BIGINT),
    (r"int", DataType.INTEGER),
    (r"(decimal|numeric)", DataType.DECIMAL),
    (r"(real|double|float)", DataType.DOUBLE),
    (r"^datetime", DataType.DATETIME),
    (r"^timestamp", DataType.TIMESTAMP),
    (r"^date", DataType.DATE),
    (r"^time", DataType.TIME),
    (r"^uuid", DataType.UUID),
    (r"^json", DataType.JSON),
    (r"blob", DataType.BLOB),
])


def map_sqlite_type(declared_type: str) -> DataType:
    return map_native_type(declared_type, SQLITE_TYPE_RULES)


def _quote(identifier: str) -> str:
    # PRAGMA arguments cannot be bound parameters.
    return '"' + identifier.replace('"', '""') + '"'


class SQLiteIntrospector:
    """Reads ``sqlite_master`` and the table/index PRAGMAs."""

    engine_type = "sqlite"

    def __init__(self, engine: Engine):
        self.engine = engine

    def _query(self, sql: str, **params: Any) -> List[Dict[str, Any]]:
        return fetch_rows(self.engine, self.engine_type, sql, params)

    def get_schema(self) -> DatabaseSchema:
        return assemble_schema(self)

    def get_tables(self) -> List[TableInfo]:
        rows = self._query(
            """
            SELECT name, type
            FROM sqlite_master
            WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        return [
            TableInfo(name=row["name"], kind="view" if row["type"] == "view" else "table")
            for row in rows
        ]

    def _table_info(self, table: str) -> List[Dict[str, Any]]:
        return self._query(f"PRAGMA table_info({_quote(table)})")

    def get_primary_keys(self, table: str) -> List[str]:
        rows = [row for row in self._table_info(table) if row["pk"]]
        return [row["name"] for row in sorted(rows, key=lambda row: row["pk"])]

    def _index_columns(self, index: str) -> List[str]:
        return [row["name"] for row in self._query(f"PRAGMA index_info({_quote(index)})")]

    def get_columns(self, table: str) -> List[ColumnSchema]:
        rows = self._table_info(table)
        pk_rows = [row for row in rows if row["pk"]]
        unique_columns = {
            index.columns[0] for index in self.get_indexes(table)
            if index.unique and len(index.columns) == 1
        }

        columns = []
        for row in rows:
            declared = row["type"] or ""
            normalized = map_sqlite_type(declared)
            is_pk = bool(row["pk"])
            # A lone "INTEGER PRIMARY KEY" aliases the rowid and auto-assigns.
            is_rowid = is_pk and len(pk_rows) == 1 and declared.strip().upper() == "INTEGER"
            raw_default = row["dflt_value"]
            columns.append(ColumnSchema(
                name=row["name"],
                native_type=declared,
                normalized_type=normalized,
                nullable=not row["notnull"] and not is_pk,
                default_value=AUTO_INCREMENT if is_rowid else parse_default(raw_default, normalized),
                has_default=raw_default is not None or is_rowid,
                is_generated=is_rowid,
                is_primary_key=is_pk,
                is_unique=row["name"] in unique_columns or (is_pk and len(pk_rows) == 1),
                **parse_type_modifiers(declared, normalized),
            ))
        return columns

    def get_foreign_keys(self, table: str) -> List[ForeignKeyInfo]:
        rows = self._query(f"PRAGMA foreign_key_list({_quote(table)})")
        foreign_keys = []
        for row in rows:
            referenced_column = row["to"]
            if referenced_column is None:
                # REFERENCES without a column list targets the parent's primary key.
                parent_keys = self.get_primary_keys(row["table"])
                referenced_column = parent_keys[row["seq"]] if len(parent_keys) > row["seq"] else "rowid"
            foreign_keys.append(ForeignKeyInfo(
                name=f"fk_{table}_{row['id']}",
                column_name=row["from"],
                referenced_table=row["table"],
                referenced_column=referenced_column,
                on_update=row.get("on_update"),
                on_delete=row.get("on_delete"),
            ))
        return foreign_keys

    def get_indexes(self, table: str) -> List[IndexInfo]:
        rows = self._query(f"PRAGMA index_list({_quote(table)})")
        indexes = []
        for row in rows:
            if row.get("origin") == "pk":
                continue
            indexes.append(IndexInfo(
                name=row["name"],
                columns=self._index_columns(row["name"]),
                unique=bool(row["unique"]),
                type="btree",
            ))
        return indexes

    def get_relationships(self) -> List[RelationshipInfo]:
        return collect_relationships(self)

    def get_database_info(self) -> SchemaMetadata:
        rows = self._query("SELECT sqlite_version() AS version")
        logger.debug(f"SQLite version {rows[0]['version'] if rows else 'unknown'}")
        return SchemaMetadata(
            version=rows[0]["version"] if rows else None,
            database_name="main",
            charset="UTF-8",
        )
