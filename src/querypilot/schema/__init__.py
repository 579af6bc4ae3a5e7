"""Normalized schema model, cache and business metadata."""

from .models import (
    ColumnSchema,
    DataCategory,
    DataType,
    DatabaseSchema,
    ForeignKeyInfo,
    IndexInfo,
    RelationshipInfo,
    SchemaMetadata,
    TableInfo,
    TableSchema,
)

__all__ = [
    "ColumnSchema",
    "DataCategory",
    "DataType",
    "DatabaseSchema",
    "ForeignKeyInfo",
    "IndexInfo",
    "RelationshipInfo",
    "SchemaMetadata",
    "TableInfo",
    "TableSchema",
]
