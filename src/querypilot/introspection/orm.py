"""Schema derived from already-loaded SQLAlchemy table metadata.

This path never touches the database, so it is the fallback when catalog
queries fail. It knows only what the mapped models declare: no comments
from the live catalog, no indexes created outside the models.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy.sql import sqltypes
from sqlalchemy.exc import CompileError
from sqlalchemy.schema import MetaData, Table

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
from .base import AUTO_INCREMENT, assemble_schema, collect_relationships, parse_default

logger = get_logger("introspection.orm")

# Ordered: subclasses (Text < String, Enum < String, BigInteger < Integer, Double < Float < Numeric) first.
ORM_TYPE_RULES = [
    (sqltypes.Boolean, DataType.BOOLEAN),
    (sqltypes.Enum, DataType.ENUM),
    (sqltypes.Text, DataType.TEXT),
    (sqltypes.Uuid, DataType.UUID),
    (sqltypes.String, DataType.STRING),
    (sqltypes.BigInteger, DataType.BIGINT),
    (sqltypes.Integer, DataType.INTEGER),
    (sqltypes.Double, DataType.DOUBLE),
    (sqltypes.Float, DataType.FLOAT),
    (sqltypes.Numeric, DataType.DECIMAL),
    (sqltypes.DateTime, DataType.DATETIME),
    (sqltypes.Date, DataType.DATE),
    (sqltypes.Time, DataType.TIME),
    (sqltypes.JSON, DataType.JSON),
    (sqltypes.ARRAY, DataType.ARRAY),
    (sqltypes.LargeBinary, DataType.BLOB),
    (sqltypes._Binary, DataType.BINARY),
]


def map_orm_type(column_type: sqltypes.TypeEngine) -> DataType:
    for type_class, data_type in ORM_TYPE_RULES:
        if isinstance(column_type, type_class):
            if data_type == DataType.DATETIME and getattr(column_type, "timezone", False):
                return DataType.TIMESTAMP
            return data_type
    return DataType.UNKNOWN


def _native_type_name(column_type: sqltypes.TypeEngine) -> str:
    try:
        return str(column_type)
    except CompileError:
        return type(column_type).__name__.upper()


class OrmMetadataIntrospector:
    """Builds a schema from a SQLAlchemy `MetaData` collection."""

    def __init__(self, metadata: Optional[MetaData], engine_type: str):
        self.metadata = metadata if metadata is not None else MetaData()
        self.engine_type = engine_type

    def _table(self, name: str) -> Table:
        return self.metadata.tables[name]

    def get_schema(self) -> DatabaseSchema:
        schema = assemble_schema(self)
        if not schema.tables:
            logger.warning("ORM metadata holds no tables; fallback schema is empty.")
        return schema

    def get_tables(self) -> List[TableInfo]:
        return [
            TableInfo(name=table.name, schema_namespace=table.schema, comment=table.comment)
            for table in self.metadata.sorted_tables
        ]

    def get_primary_keys(self, table: str) -> List[str]:
        return [column.name for column in self._table(table).primary_key.columns]

    def get_columns(self, table: str) -> List[ColumnSchema]:
        columns = []
        for column in self._table(table).columns:
            normalized = map_orm_type(column.type)
            default_value = None
            has_default = column.server_default is not None or column.default is not None
            if column.autoincrement is True or (
                column.primary_key and column.autoincrement == "auto"
                and normalized in (DataType.INTEGER, DataType.BIGINT)
                and len(column.table.primary_key.columns) == 1
            ):
                default_value = AUTO_INCREMENT
                has_default = True
            elif column.server_default is not None and hasattr(column.server_default, "arg"):
                arg = column.server_default.arg
                default_value = parse_default(arg if isinstance(arg, str) else str(arg), normalized)
            elif column.default is not None and getattr(column.default, "is_scalar", False):
                default_value = column.default.arg

            columns.append(ColumnSchema(
                name=column.name,
                native_type=_native_type_name(column.type),
                normalized_type=normalized,
                nullable=bool(column.nullable),
                default_value=default_value,
                has_default=has_default,
                is_generated=default_value == AUTO_INCREMENT or column.computed is not None,
                is_primary_key=column.primary_key,
                is_unique=bool(column.unique) or (column.primary_key and len(column.table.primary_key.columns) == 1),
                length=getattr(column.type, "length", None),
                precision=getattr(column.type, "precision", None) if normalized == DataType.DECIMAL else None,
                scale=getattr(column.type, "scale", None) if normalized == DataType.DECIMAL else None,
                comment=column.comment,
            ))
        return columns

    def get_foreign_keys(self, table: str) -> List[ForeignKeyInfo]:
        foreign_keys = []
        for fk in self._table(table).foreign_keys:
            foreign_keys.append(ForeignKeyInfo(
                name=fk.constraint.name if fk.constraint is not None else None,
                column_name=fk.parent.name,
                referenced_table=fk.column.table.name,
                referenced_column=fk.column.name,
                on_delete=fk.ondelete,
                on_update=fk.onupdate,
            ))
        return foreign_keys

    def get_indexes(self, table: str) -> List[IndexInfo]:
        return [
            IndexInfo(
                name=index.name or f"ix_{table}_{'_'.join(col.name for col in index.columns)}",
                columns=[col.name for col in index.columns],
                unique=bool(index.unique),
            )
            for index in self._table(table).indexes
        ]

    def get_relationships(self) -> List[RelationshipInfo]:
        return collect_relationships(self)

    def get_database_info(self) -> SchemaMetadata:
        return SchemaMetadata(source="orm")
