"""
Business vocabulary layered onto the normalized schema.

Curated metadata (business names, synonyms, categories, business terms)
comes from a YAML catalog; columns the catalog does not cover get inferred
defaults from their normalized type and name. Nothing here reads live
data, so every lookup is deterministic for a given catalog and schema.
"""
from __future__ import annotations

import difflib
import pathlib
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from querypilot.common.logger import get_logger
from querypilot.common.settings import settings
from .models import (
    NUMERIC_TYPES,
    TEMPORAL_TYPES,
    ColumnSchema,
    DataCategory,
    DataType,
    DatabaseSchema,
)

logger = get_logger("schema_metadata")

BUNDLED_CATALOG_PATH = pathlib.Path(__file__).resolve().parent.parent / "configs" / "metadata.yaml"

_SYSTEM_COLUMNS = {"deletedat", "deleted_at"}
_UNGROUPABLE_TYPES = {DataType.TEXT, DataType.BLOB, DataType.BINARY, DataType.JSON, DataType.ARRAY}
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class ColumnMetadata(BaseModel):
    business_name: Optional[str] = None
    description: Optional[str] = None
    data_category: Optional[DataCategory] = None
    aggregatable: Optional[bool] = None
    groupable: Optional[bool] = None
    default_aggregation: Optional[str] = None
    synonyms: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class TableMetadata(BaseModel):
    business_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    synonyms: List[str] = Field(default_factory=list)
    common_queries: List[str] = Field(default_factory=list)
    related_tables: List[str] = Field(default_factory=list)
    columns: Dict[str, ColumnMetadata] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class BusinessTerm(BaseModel):
    """A business phrase pinned to a table, optionally to a column and aggregation."""
    term: str
    table: str
    column: Optional[str] = None
    aggregation: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class MetadataCatalog(BaseModel):
    """File-level schema for metadata.yaml."""
    version: int = Field(1, description="Schema version")
    tables: Dict[str, TableMetadata] = Field(default_factory=dict)
    business_terms: List[BusinessTerm] = Field(default_factory=list)


def load_catalog(path: Optional[Union[str, pathlib.Path]] = None) -> MetadataCatalog:
    """Loads the curated catalog.

    Uses ``path`` if given, else the configured ``METADATA_CONFIG`` path, and
    falls back to the bundled CRM catalog when the configured file is absent.

    Raises:
        ValueError: If the file exists but is not a valid catalog.
    """
    target = pathlib.Path(path) if path else pathlib.Path(settings.metadata_config_path)
    if not target.exists():
        if path:
            raise FileNotFoundError(f"Metadata catalog not found: {target}")
        logger.info(f"No metadata catalog at {target}; using bundled catalog.")
        target = BUNDLED_CATALOG_PATH

    with open(target, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    try:
        catalog = MetadataCatalog.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid metadata catalog {target}: {e}") from e

    logger.info(
        f"Loaded metadata catalog {target.name}: {len(catalog.tables)} tables, "
        f"{len(catalog.business_terms)} business terms."
    )
    return catalog


def normalize_term(value: str) -> str:
    """``closeDate``, ``close_date`` and ``Close Date`` all normalize to ``close date``."""
    spaced = _CAMEL_BOUNDARY.sub(" ", value or "")
    return " ".join(spaced.replace("_", " ").replace("-", " ").lower().split())


def humanize(name: str) -> str:
    return normalize_term(name).title()


def infer_column_metadata(column: ColumnSchema, tenant_column: str) -> ColumnMetadata:
    """Default business metadata for a column nobody has curated."""
    lowered = column.name.lower()
    data_type = column.normalized_type

    if lowered == tenant_column.lower() or lowered in _SYSTEM_COLUMNS:
        category, aggregatable, groupable = DataCategory.SYSTEM, False, False
    elif column.is_primary_key or lowered == "id" or column.name.endswith("Id") or lowered.endswith("_id"):
        category, aggregatable, groupable = DataCategory.IDENTIFIER, False, True
    elif data_type in NUMERIC_TYPES:
        category, aggregatable, groupable = DataCategory.MEASURE, True, False
    elif data_type in TEMPORAL_TYPES:
        category, aggregatable, groupable = DataCategory.DATE, False, True
    elif data_type in _UNGROUPABLE_TYPES:
        category, aggregatable, groupable = DataCategory.TEXT, False, False
    else:
        category, aggregatable, groupable = DataCategory.DIMENSION, False, True

    return ColumnMetadata(
        business_name=humanize(column.name),
        description=column.comment,
        data_category=category,
        aggregatable=aggregatable,
        groupable=groupable,
    )


def _merge(base: ColumnMetadata, override: Optional[ColumnMetadata]) -> ColumnMetadata:
    if override is None:
        return base
    updates = {
        key: value
        for key, value in override.model_dump().items()
        if value is not None and value != []
    }
    return base.model_copy(update=updates)


@dataclass
class _Candidate:
    target: str
    name: str
    business_name: Optional[str] = None
    synonyms: List[str] = field(default_factory=list)


class SchemaMetadataService:
    """Resolves natural-language terms to tables and columns.

    Matching is tiered and the first tier with a hit wins: exact identifier,
    exact business name, exact synonym, business-name substring, synonym
    substring, then a difflib close match for typos. Within a tier, catalog
    order decides.
    """

    def __init__(
        self,
        catalog: Optional[MetadataCatalog] = None,
        tenant_column: Optional[str] = None,
        match_cutoff: Optional[float] = None,
    ):
        self.catalog = catalog if catalog is not None else load_catalog(BUNDLED_CATALOG_PATH)
        self.tenant_column = tenant_column or settings.tenant_column
        self.match_cutoff = match_cutoff if match_cutoff is not None else settings.synonym_match_cutoff

    def _match(self, term: str, candidates: List[_Candidate]) -> Optional[str]:
        needle = normalize_term(term)
        if not needle or not candidates:
            return None

        for candidate in candidates:
            if needle == normalize_term(candidate.name):
                return candidate.target
        for candidate in candidates:
            if candidate.business_name and needle == normalize_term(candidate.business_name):
                return candidate.target
        for candidate in candidates:
            if needle in (normalize_term(s) for s in candidate.synonyms):
                return candidate.target

        if len(needle) >= 3:
            for candidate in candidates:
                business = normalize_term(candidate.business_name or "")
                if business and (needle in business or business in needle):
                    return candidate.target
            for candidate in candidates:
                for synonym in candidate.synonyms:
                    synonym = normalize_term(synonym)
                    if len(synonym) >= 3 and (needle in synonym or synonym in needle):
                        return candidate.target

        labels: Dict[str, str] = {}
        for candidate in candidates:
            for label in [candidate.name, candidate.business_name or "", *candidate.synonyms]:
                label = normalize_term(label)
                if label and label not in labels:
                    labels[label] = candidate.target
        close = difflib.get_close_matches(needle, list(labels), n=1, cutoff=self.match_cutoff)
        if close:
            logger.debug(f"Fuzzy matched '{term}' to '{close[0]}'")
            return labels[close[0]]
        return None

    def _catalog_table(self, table: str):
        if table in self.catalog.tables:
            return table, self.catalog.tables[table]
        lowered = table.lower()
        for name, meta in self.catalog.tables.items():
            if name.lower() == lowered:
                return name, meta
        return None, None

    def _table_candidates(self, schema: Optional[DatabaseSchema]) -> List[_Candidate]:
        candidates = []
        seen = set()
        for name, meta in self.catalog.tables.items():
            target = name
            if schema is not None:
                live = schema.get_table(name)
                if live is None:
                    continue
                target = live.name
            synonyms = list(meta.synonyms)
            synonyms.extend(t.term for t in self.catalog.business_terms if t.table == name)
            candidates.append(_Candidate(target, name, meta.business_name, synonyms))
            seen.add(target)
        if schema is not None:
            for table in schema.tables.values():
                if table.name not in seen:
                    candidates.append(_Candidate(table.name, table.name, table.business_name))
        return candidates

    def _column_candidates(self, table: str, schema: Optional[DatabaseSchema]) -> List[_Candidate]:
        _, table_meta = self._catalog_table(table)
        curated = table_meta.columns if table_meta else {}
        candidates = []

        live_table = schema.get_table(table) if schema is not None else None
        if live_table is not None:
            for column in live_table.columns.values():
                meta = curated.get(column.name)
                synonyms = list(column.synonyms)
                if meta:
                    synonyms.extend(s for s in meta.synonyms if s not in synonyms)
                business = (meta.business_name if meta and meta.business_name else column.business_name)
                candidates.append(_Candidate(column.name, column.name, business, synonyms))
        elif schema is None:
            for name, meta in curated.items():
                candidates.append(_Candidate(name, name, meta.business_name, list(meta.synonyms)))
        return candidates

    def find_table_by_business_name(self, term: str, schema: Optional[DatabaseSchema] = None) -> Optional[str]:
        """Resolves a business term ("customers", "sales") to a table name.

        Args:
            term: Free-text table reference.
            schema: When given, only tables present in it are returned.

        Returns:
            The table name, or None when nothing matches.
        """
        resolved = self._match(term, self._table_candidates(schema))
        if resolved:
            logger.debug(f"Resolved table term '{term}' -> {resolved}")
        return resolved

    def find_column_by_synonym(self, table: str, term: str, schema: Optional[DatabaseSchema] = None) -> Optional[str]:
        """Resolves a column term within one table ("revenue" -> ``amount``).

        Args:
            table: Table the column belongs to.
            term: Free-text column reference.
            schema: When given, only columns present in the live table are returned.

        Returns:
            The column name, or None when nothing matches.
        """
        resolved = self._match(term, self._column_candidates(table, schema))
        if resolved:
            logger.debug(f"Resolved column term '{table}.{term}' -> {resolved}")
        return resolved

    def get_table_metadata(self, table: str) -> Optional[TableMetadata]:
        return self._catalog_table(table)[1]

    def get_column_metadata(
        self, table: str, column: str, schema: Optional[DatabaseSchema] = None
    ) -> Optional[ColumnMetadata]:
        """Curated metadata for a column, layered over inferred defaults when the schema knows it."""
        _, table_meta = self._catalog_table(table)
        curated = None
        if table_meta:
            curated = table_meta.columns.get(column)
            if curated is None:
                curated = next(
                    (meta for name, meta in table_meta.columns.items() if name.lower() == column.lower()),
                    None,
                )

        live = None
        if schema is not None:
            live_table = schema.get_table(table)
            live = live_table.get_column(column) if live_table else None

        if live is None:
            return curated
        return _merge(infer_column_metadata(live, self.tenant_column), curated)

    def get_business_terms(self) -> List[BusinessTerm]:
        return list(self.catalog.business_terms)

    def resolve_business_term(self, term: str) -> Optional[BusinessTerm]:
        needle = normalize_term(term)
        terms = {normalize_term(t.term): t for t in self.catalog.business_terms}
        if needle in terms:
            return terms[needle]
        close = difflib.get_close_matches(needle, list(terms), n=1, cutoff=self.match_cutoff)
        return terms[close[0]] if close else None

    def get_aggregatable_columns(self, table: str, schema: DatabaseSchema) -> List[str]:
        live_table = schema.get_table(table)
        if live_table is None:
            return []
        return [
            name for name in live_table.columns
            if (self.get_column_metadata(live_table.name, name, schema) or ColumnMetadata()).aggregatable
        ]

    def get_groupable_columns(self, table: str, schema: DatabaseSchema) -> List[str]:
        live_table = schema.get_table(table)
        if live_table is None:
            return []
        return [
            name for name in live_table.columns
            if (self.get_column_metadata(live_table.name, name, schema) or ColumnMetadata()).groupable
        ]

    def enrich(self, schema: DatabaseSchema) -> DatabaseSchema:
        """Returns a copy of ``schema`` with business fields populated on every table and column."""
        tables = {}
        for name, table in schema.tables.items():
            _, table_meta = self._catalog_table(name)
            columns = {}
            for column_name, column in table.columns.items():
                meta = self.get_column_metadata(name, column_name, schema)
                columns[column_name] = column.model_copy(update={
                    "business_name": meta.business_name,
                    "description": meta.description or column.description,
                    "data_category": meta.data_category,
                    "aggregatable": bool(meta.aggregatable),
                    "groupable": bool(meta.groupable),
                    "synonyms": list(meta.synonyms),
                })
            tables[name] = table.model_copy(update={
                "columns": columns,
                "business_name": (table_meta.business_name if table_meta else None) or humanize(name),
                "description": (table_meta.description if table_meta else None) or table.description,
                "category": table_meta.category if table_meta else table.category,
            })
        return schema.model_copy(update={"tables": tables})
