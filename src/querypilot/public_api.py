"""
Public API for QueryPilot

Stable entry point bundling the query and schema APIs over one context.
"""

from __future__ import annotations

import pathlib
from typing import Optional, Union

from sqlalchemy import MetaData
from sqlalchemy.engine import Engine

from querypilot.api.query_api import QueryAPI, QueryResult
from querypilot.api.schema_api import SchemaAPI
from querypilot.context import QueryPilotContext


class QueryPilot:
    """
    Public API for QueryPilot.

    Args:
        database_url: SQLAlchemy URL; defaults to DATABASE_URL.
        metadata_config_path: Curated vocabulary YAML; defaults to METADATA_CONFIG.
        engine: Pre-built SQLAlchemy engine, used instead of ``database_url``.
        orm_metadata: ORM table metadata for the degraded introspection path.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        metadata_config_path: Optional[Union[str, pathlib.Path]] = None,
        engine: Optional[Engine] = None,
        orm_metadata: Optional[MetaData] = None,
    ):
        self._ctx = QueryPilotContext(
            database_url=database_url,
            metadata_config_path=metadata_config_path,
            engine=engine,
            orm_metadata=orm_metadata,
        )
        self.query = QueryAPI(self._ctx)
        self.schema = SchemaAPI(self._ctx)

    @property
    def context(self) -> QueryPilotContext:
        """Access to the underlying context (internal use only)."""
        return self._ctx

    def plan_and_validate_query(
        self, question: str, tenant_id: Optional[str] = None, last_topic: Optional[str] = None
    ) -> QueryResult:
        return self.query.plan_and_validate_query(question, tenant_id=tenant_id, last_topic=last_topic)

    def close(self) -> None:
        self._ctx.close()
