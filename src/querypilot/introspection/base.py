"""
Shared pieces of catalog introspection.

Each engine gets its own introspector class that satisfies the
`SchemaIntrospector` protocol directly. What the engines share (running a
read-only catalog query, mapping native type names through a rule table,
decoding default-value literals, assembling the final `DatabaseSchema`)
lives here as plain functions.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Pattern, Protocol, Sequence, Tuple, runtime_checkable

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from querypilot.common.errors import IntrospectionError
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
    TableSchema,
)

logger = get_logger("introspection")

AUTO_INCREMENT = "AUTO_INCREMENT"

TypeRules = Sequence[Tuple[Pattern[str], DataType]]

_NUMERIC_LITERAL = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_TYPE_MODIFIERS = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")

_STRING_LIKE = {DataType.STRING, DataType.TEXT, DataType.ENUM, DataType.UUID}


@runtime_checkable
class SchemaIntrospector(Protocol):
    """Reads one engine's catalog into the normalized schema model."""

    engine_type: str

    def get_schema(self) -> DatabaseSchema:
        ...

    def get_tables(self) -> List[TableInfo]:
        ...

    def get_columns(self, table: str) -> List[ColumnSchema]:
        ...

    def get_primary_keys(self, table: str) -> List[str]:
        ...

    def get_foreign_keys(self, table: str) -> List[ForeignKeyInfo]:
        ...

    def get_indexes(self, table: str) -> List[IndexInfo]:
        ...

    def get_relationships(self) -> List[RelationshipInfo]:
        ...

    def get_database_info(self) -> SchemaMetadata:
        ...


def compile_rules(rules: Iterable[Tuple[str, DataType]]) -> List[Tuple[Pattern[str], DataType]]:
    return [(re.compile(pattern, re.IGNORECASE), data_type) for pattern, data_type in rules]


def map_native_type(native_type: Optional[str], rules: TypeRules) -> DataType:
    """Maps a native type name through an ordered rule table.

    The first matching rule wins. Types no rule covers map to
    ``DataType.UNKNOWN`` so new or exotic native types never break
    introspection.
    """
    if not native_type:
        return DataType.UNKNOWN
    candidate = native_type.strip().lower()
    for pattern, data_type in rules:
        if pattern.search(candidate):
            return data_type
    return DataType.UNKNOWN


def parse_type_modifiers(native_type: str, data_type: DataType) -> Dict[str, Optional[int]]:
    """Extracts length or precision/scale from ``varchar(50)`` style type names."""
    match = _TYPE_MODIFIERS.search(native_type or "")
    if not match:
        return {"length": None, "precision": None, "scale": None}
    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) is not None else None
    if data_type in (DataType.DECIMAL, DataType.FLOAT, DataType.DOUBLE):
        return {"length": None, "precision": first, "scale": second}
    if data_type == DataType.BOOLEAN:
        return {"length": None, "precision": None, "scale": None}
    return {"length": first, "precision": None, "scale": None}


def parse_default(raw: Any, data_type: DataType = DataType.UNKNOWN) -> Any:
    """Decodes a catalog default-value literal.

    Handles quoted strings, the ``NULL`` literal, numeric and boolean
    literals. Anything else (function calls, engine keywords) is returned
    as the raw string.
    """
    if raw is None or not isinstance(raw, (str, bytes)):
        return raw
    value = raw.decode() if isinstance(raw, bytes) else raw
    value = value.strip()
    if value.upper() == "NULL":
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        quote = value[0]
        return value[1:-1].replace(quote * 2, quote)
    if data_type in _STRING_LIKE:
        return value
    while len(value) >= 2 and value.startswith("(") and value.endswith(")") and _NUMERIC_LITERAL.match(value[1:-1].strip()):
        value = value[1:-1].strip()
    if _NUMERIC_LITERAL.match(value):
        if re.match(r"^[+-]?\d+$", value):
            return int(value)
        return float(value)
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def as_text(value: Any) -> Optional[str]:
    """Some drivers hand information_schema text columns back as bytes."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def fetch_rows(engine: Engine, engine_type: str, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Runs one read-only catalog query and returns its rows as dicts.

    Raises:
        IntrospectionError: If the driver reports any failure.
    """
    try:
        with engine.connect() as conn:
            result = conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings()]
    except SQLAlchemyError as e:
        raise IntrospectionError(engine_type, f"Catalog query failed: {e}") from e


def relationship_from_foreign_key(table: str, fk: ForeignKeyInfo) -> RelationshipInfo:
    return RelationshipInfo(
        source_table=table,
        source_column=fk.column_name,
        target_table=fk.referenced_table,
        target_column=fk.referenced_column,
        constraint=fk.name,
    )


def derive_relationships(tables: Dict[str, TableSchema]) -> List[RelationshipInfo]:
    """One many-to-one relationship per foreign key, in table order."""
    return [
        relationship_from_foreign_key(table.name, fk)
        for table in tables.values()
        for fk in table.foreign_keys
    ]


def collect_relationships(introspector: SchemaIntrospector) -> List[RelationshipInfo]:
    """Relationships for every table, read without building the whole schema."""
    return [
        relationship_from_foreign_key(info.name, fk)
        for info in introspector.get_tables()
        for fk in introspector.get_foreign_keys(info.name)
    ]


def assemble_schema(introspector: SchemaIntrospector) -> DatabaseSchema:
    """Builds a complete `DatabaseSchema` from an introspector's granular calls."""
    table_infos = introspector.get_tables()
    tables: Dict[str, TableSchema] = {}

    for info in table_infos:
        columns = introspector.get_columns(info.name)
        primary_keys = introspector.get_primary_keys(info.name)
        try:
            foreign_keys = introspector.get_foreign_keys(info.name)
        except IntrospectionError as e:
            logger.warning(f"Failed to read foreign keys for {info.name}: {e}")
            foreign_keys = []
        try:
            indexes = introspector.get_indexes(info.name)
        except IntrospectionError as e:
            logger.warning(f"Failed to read indexes for {info.name}: {e}")
            indexes = []

        tables[info.name] = TableSchema(
            name=info.name,
            schema_namespace=info.schema_namespace,
            columns={column.name: column for column in columns},
            primary_keys=primary_keys,
            foreign_keys=foreign_keys,
            indexes=indexes,
            description=info.comment,
        )

    database_info = introspector.get_database_info()
    metadata = database_info.model_copy(update={"tables": table_infos})

    schema = DatabaseSchema(
        engine_type=introspector.engine_type,
        tables=tables,
        relationships=derive_relationships(tables),
        metadata=metadata,
    )
    logger.info(
        f"Introspected {len(tables)} tables and {len(schema.relationships)} relationships "
        f"from {introspector.engine_type}."
    )
    return schema
