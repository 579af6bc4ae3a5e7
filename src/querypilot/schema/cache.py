"""
Schema cache with single-flight refresh.

One `DatabaseSchema` is cached per service together with the time it was
loaded. Requests inside the TTL window are served from memory. When the
entry is stale or absent, exactly one refresh runs on a dedicated worker
thread; every caller that arrives meanwhile waits on the same future.

The cached schema is replaced, never mutated, so readers holding the old
object are unaffected by a refresh. A failed or timed-out refresh never
evicts a previously loaded schema.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pybreaker

from querypilot.common.errors import IntrospectionError, SchemaUnavailableError
from querypilot.common.logger import get_logger
from querypilot.common.resilience import introspection_breaker
from querypilot.common.settings import settings
from querypilot.introspection.base import SchemaIntrospector
from .models import DatabaseSchema, TableSchema

logger = get_logger("schema_cache")


@dataclass(frozen=True)
class CacheEntry:
    schema: DatabaseSchema
    loaded_at: float


class SchemaCacheService:
    """Owns the process-wide schema for one database connection.

    Args:
        introspector: Catalog introspector for the active engine.
        fallback: Degraded introspector (ORM metadata) used when the catalog fails.
        ttl_sec: Seconds a loaded schema stays fresh.
        refresh_timeout_sec: Seconds a caller waits for an in-flight refresh.
        breaker: Circuit breaker wrapping catalog introspection; defaults to the shared breaker for the engine type.
        enricher: Applied to every newly loaded schema (business metadata).
        clock: Monotonic time source.
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        fallback: Optional[SchemaIntrospector] = None,
        ttl_sec: Optional[float] = None,
        refresh_timeout_sec: Optional[float] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
        enricher: Optional[Callable[[DatabaseSchema], DatabaseSchema]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.introspector = introspector
        self.fallback = fallback
        self.ttl_sec = settings.schema_cache_ttl_sec if ttl_sec is None else ttl_sec
        self.refresh_timeout_sec = (
            settings.schema_refresh_timeout_sec if refresh_timeout_sec is None else refresh_timeout_sec
        )
        self.breaker = breaker or introspection_breaker(introspector.engine_type)
        self.enricher = enricher
        self.clock = clock

        self._entry: Optional[CacheEntry] = None
        self._inflight: Optional[Future] = None
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="schema-refresh")

    @property
    def engine_type(self) -> str:
        return self.introspector.engine_type

    def _is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and (self.clock() - entry.loaded_at) < self.ttl_sec

    def get_schema(self, force_refresh: bool = False) -> DatabaseSchema:
        """Returns the cached schema, refreshing it when stale, absent or forced.

        Raises:
            SchemaUnavailableError: If no schema could be produced at all.
        """
        entry = self._entry
        if not force_refresh and self._is_fresh(entry):
            logger.debug("Schema cache hit.")
            return entry.schema

        with self._lock:
            entry = self._entry
            # Another caller may have finished a refresh while we waited for the lock.
            if not force_refresh and self._is_fresh(entry):
                return entry.schema
            if self._inflight is None:
                logger.info(f"Refreshing {self.engine_type} schema (forced={force_refresh}).")
                self._inflight = self._pool.submit(self._refresh)
            future = self._inflight

        try:
            return future.result(timeout=self.refresh_timeout_sec)
        except FutureTimeout:
            current = self._entry or entry
            if current is not None:
                logger.warning(
                    f"Schema refresh exceeded {self.refresh_timeout_sec}s; serving cached schema."
                )
                return current.schema
            raise SchemaUnavailableError(
                f"Schema refresh exceeded {self.refresh_timeout_sec}s and nothing is cached"
            ) from None

    def refresh_schema(self) -> DatabaseSchema:
        """Forces a reload from the database."""
        return self.get_schema(force_refresh=True)

    def _store(self, schema: DatabaseSchema) -> None:
        with self._lock:
            self._entry = CacheEntry(schema=schema, loaded_at=self.clock())

    def _enrich(self, schema: DatabaseSchema) -> DatabaseSchema:
        return self.enricher(schema) if self.enricher else schema

    def _refresh(self) -> DatabaseSchema:
        try:
            return self._load()
        finally:
            with self._lock:
                self._inflight = None

    def _load(self) -> DatabaseSchema:
        started = time.perf_counter()
        try:
            schema = self._enrich(self.breaker.call(self.introspector.get_schema))
            self._store(schema)
            logger.info(
                f"Introspected {len(schema.tables)} tables from {self.engine_type} "
                f"in {time.perf_counter() - started:.3f}s."
            )
            return schema
        except (IntrospectionError, pybreaker.CircuitBreakerError) as e:
            logger.error(f"Schema introspection failed for {self.engine_type}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error introspecting {self.engine_type}: {e}")

        stale = self._entry
        if stale is not None and stale.schema.metadata.source == "catalog":
            logger.warning("Keeping previously introspected schema after refresh failure.")
            self._store(stale.schema)
            return stale.schema

        if self.fallback is not None:
            try:
                schema = self._enrich(self.fallback.get_schema())
                self._store(schema)
                logger.warning(f"Using ORM metadata fallback schema ({len(schema.tables)} tables).")
                return schema
            except Exception as e:
                logger.exception(f"ORM metadata fallback failed: {e}")

        if stale is not None:
            return stale.schema
        raise SchemaUnavailableError(f"No schema available for {self.engine_type}")

    def list_tables(self) -> List[str]:
        return list(self.get_schema().tables)

    def get_table_schema(self, name: str) -> Optional[TableSchema]:
        return self.get_schema().get_table(name)

    def describe_schema(self, tables: Optional[List[str]] = None) -> str:
        """Compact text rendering of tables, columns and relationships.

        Args:
            tables: Restrict the output to these tables.
        """
        schema = self.get_schema()
        lines = []
        for table in schema.tables.values():
            if tables and table.name not in tables:
                continue
            header = f"Table {table.name}"
            if table.business_name:
                header += f" ({table.business_name})"
            lines.append(header + ":")
            for column in table.columns.values():
                flags = []
                if column.is_primary_key:
                    flags.append("PK")
                if not column.nullable:
                    flags.append("NOT NULL")
                if column.data_category:
                    flags.append(column.data_category.value)
                suffix = f" [{', '.join(flags)}]" if flags else ""
                lines.append(f"  - {column.name}: {column.normalized_type.value}{suffix}")
        for rel in schema.relationships:
            if tables and rel.source_table not in tables and rel.target_table not in tables:
                continue
            lines.append(f"{rel.source_table}.{rel.source_column} -> {rel.target_table}.{rel.target_column}")
        return "\n".join(lines)

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None
        logger.info("Schema cache invalidated.")

    def cache_info(self) -> Dict[str, Any]:
        entry = self._entry
        info: Dict[str, Any] = {
            "engine_type": self.engine_type,
            "cached": entry is not None,
            "fresh": self._is_fresh(entry),
            "ttl_sec": self.ttl_sec,
            "refreshing": self._inflight is not None,
            "breaker_state": self.breaker.current_state,
        }
        if entry is not None:
            info.update(
                age_sec=round(self.clock() - entry.loaded_at, 3),
                table_count=len(entry.schema.tables),
                source=entry.schema.metadata.source,
            )
        return info

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)
