from __future__ import annotations

import pathlib
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine

from querypilot.analysis import QueryAnalyzer
from querypilot.common.logger import get_logger
from querypilot.common.resilience import introspection_breaker
from querypilot.common.settings import settings
from querypilot.introspection import OrmMetadataIntrospector, build_introspector
from querypilot.planning import QueryPlanner
from querypilot.schema.cache import SchemaCacheService
from querypilot.schema.metadata import SchemaMetadataService, load_catalog
from querypilot.sql import SqlBuilder
from querypilot.validation import QueryValidator

logger = get_logger("context")


class QueryPilotContext:
    """
    Wires the pipeline services for one database in dependency order.

    The metadata catalog is loaded first, then the introspector for the
    engine's dialect, the schema cache (with the ORM fallback and the
    metadata enricher) and finally the stateless pipeline stages.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        metadata_config_path: Optional[Union[str, pathlib.Path]] = None,
        engine: Optional[Engine] = None,
        orm_metadata: Optional[MetaData] = None,
        engine_type: Optional[str] = None,
        schema_namespace: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.engine = engine if engine is not None else create_engine(database_url or settings.database_url)

        self.metadata = SchemaMetadataService(catalog=load_catalog(metadata_config_path))

        introspector = build_introspector(self.engine, engine_type=engine_type, schema_namespace=schema_namespace)
        fallback = OrmMetadataIntrospector(orm_metadata, engine_type=introspector.engine_type)
        self.schema_cache = SchemaCacheService(
            introspector,
            fallback=fallback,
            breaker=introspection_breaker(self.engine.url.render_as_string(hide_password=True)),
            enricher=self.metadata.enrich,
        )

        self.analyzer = QueryAnalyzer()
        self.planner = QueryPlanner(self.metadata, clock=clock)
        self.validator = QueryValidator(self.metadata)
        self.builder = SqlBuilder()
        logger.info(f"Context ready for {introspector.engine_type} database.")

    def close(self) -> None:
        self.schema_cache.shutdown()
        self.engine.dispose()
