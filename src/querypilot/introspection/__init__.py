"""Per-engine catalog introspection into the normalized schema model."""

from .base import AUTO_INCREMENT, SchemaIntrospector, assemble_schema
from .factory import build_introspector, resolve_engine_type
from .mysql import MySQLIntrospector
from .orm import OrmMetadataIntrospector
from .postgres import PostgresIntrospector
from .sqlite import SQLiteIntrospector

__all__ = [
    "AUTO_INCREMENT",
    "SchemaIntrospector",
    "assemble_schema",
    "build_introspector",
    "resolve_engine_type",
    "MySQLIntrospector",
    "OrmMetadataIntrospector",
    "PostgresIntrospector",
    "SQLiteIntrospector",
]
