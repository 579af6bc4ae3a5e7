from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class DataType(str, Enum):
    """Engine-independent column type every native type normalizes to."""
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    FLOAT = "float"
    DOUBLE = "double"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    BINARY = "binary"
    BLOB = "blob"
    JSON = "json"
    UUID = "uuid"
    ARRAY = "array"
    ENUM = "enum"
    UNKNOWN = "unknown"


NUMERIC_TYPES = frozenset({
    DataType.INTEGER, DataType.BIGINT, DataType.DECIMAL, DataType.FLOAT, DataType.DOUBLE,
})
TEMPORAL_TYPES = frozenset({
    DataType.DATE, DataType.DATETIME, DataType.TIMESTAMP,
})


class DataCategory(str, Enum):
    IDENTIFIER = "identifier"
    MEASURE = "measure"
    DIMENSION = "dimension"
    DATE = "date"
    TEXT = "text"
    SYSTEM = "system"


class ColumnSchema(BaseModel):
    name: str
    native_type: str
    normalized_type: DataType = DataType.UNKNOWN
    nullable: bool = True
    default_value: Any = None
    has_default: bool = False
    is_generated: bool = False
    is_primary_key: bool = False
    is_unique: bool = False
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    comment: Optional[str] = None

    business_name: Optional[str] = None
    description: Optional[str] = None
    data_category: Optional[DataCategory] = None
    aggregatable: bool = False
    groupable: bool = False
    synonyms: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", frozen=True)


class ForeignKeyInfo(BaseModel):
    name: Optional[str] = None
    column_name: str
    referenced_table: str
    referenced_column: str
    on_delete: Optional[str] = None
    on_update: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class RelationshipInfo(BaseModel):
    """Many-to-one edge derived from exactly one foreign key."""
    type: Literal["many-to-one"] = "many-to-one"
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    constraint: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class IndexInfo(BaseModel):
    name: str
    columns: List[str] = Field(default_factory=list)
    unique: bool = False
    type: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class TableInfo(BaseModel):
    name: str
    schema_namespace: Optional[str] = None
    kind: Literal["table", "view"] = "table"
    row_count: Optional[int] = None
    comment: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class TableSchema(BaseModel):
    name: str
    schema_namespace: Optional[str] = None
    columns: Dict[str, ColumnSchema] = Field(default_factory=dict)
    primary_keys: List[str] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyInfo] = Field(default_factory=list)
    indexes: List[IndexInfo] = Field(default_factory=list)
    business_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        """Looks a column up by exact name, then case-insensitively."""
        if name in self.columns:
            return self.columns[name]
        lowered = name.lower()
        for column_name, column in self.columns.items():
            if column_name.lower() == lowered:
                return column
        return None


class SchemaMetadata(BaseModel):
    """Facts about the database itself rather than any one table."""
    version: Optional[str] = None
    database_name: Optional[str] = None
    charset: Optional[str] = None
    collation: Optional[str] = None
    tables: List[TableInfo] = Field(default_factory=list)
    introspected_at: datetime = Field(default_factory=datetime.now)
    source: Literal["catalog", "orm"] = "catalog"

    model_config = ConfigDict(extra="ignore", frozen=True)


class DatabaseSchema(BaseModel):
    """Normalized schema of one database.

    Instances are never mutated after construction; a refresh replaces the
    whole object. Table and column maps preserve catalog order.
    """
    engine_type: str
    tables: Dict[str, TableSchema] = Field(default_factory=dict)
    relationships: List[RelationshipInfo] = Field(default_factory=list)
    metadata: SchemaMetadata = Field(default_factory=SchemaMetadata)

    model_config = ConfigDict(extra="ignore", frozen=True)

    def get_table(self, name: str) -> Optional[TableSchema]:
        """Looks a table up by exact name, then case-insensitively."""
        if name in self.tables:
            return self.tables[name]
        lowered = name.lower()
        for table_name, table in self.tables.items():
            if table_name.lower() == lowered:
                return table
        return None

    def relationships_between(self, source: str, target: str) -> List[RelationshipInfo]:
        """Returns relationships linking two tables in either direction."""
        return [
            rel for rel in self.relationships
            if {rel.source_table, rel.target_table} == {source, target}
        ]

    def to_serializable(self) -> Dict[str, Any]:
        """Dumps the schema with table and column maps as ordered [key, value] pairs."""
        tables = []
        for name, table in self.tables.items():
            table_data = table.model_dump(mode="json", exclude={"columns"})
            table_data["columns"] = [
                [column_name, column.model_dump(mode="json")]
                for column_name, column in table.columns.items()
            ]
            tables.append([name, table_data])
        return {
            "engine_type": self.engine_type,
            "tables": tables,
            "relationships": [rel.model_dump(mode="json") for rel in self.relationships],
            "metadata": self.metadata.model_dump(mode="json"),
        }
