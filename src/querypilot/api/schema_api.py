"""
Schema API for QueryPilot

Read-only diagnostics over the cached schema plus an explicit refresh.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from querypilot.common.errors import SchemaUnavailableError
from querypilot.common.logger import get_logger
from querypilot.context import QueryPilotContext
from querypilot.schema.models import TableSchema

logger = get_logger("schema_api")


class SchemaAPI:
    """
    API for inspecting and refreshing the introspected schema.
    """

    def __init__(self, ctx: QueryPilotContext):
        self._ctx = ctx

    def get_schema(self) -> Dict[str, Any]:
        """Full schema with table and column maps as ordered [key, value] pairs."""
        return self._ctx.schema_cache.get_schema().to_serializable()

    def list_tables(self) -> List[str]:
        return self._ctx.schema_cache.list_tables()

    def get_table_schema(self, name: str) -> Optional[TableSchema]:
        return self._ctx.schema_cache.get_table_schema(name)

    def describe_schema(self, tables: Optional[List[str]] = None) -> str:
        return self._ctx.schema_cache.describe_schema(tables)

    def cache_info(self) -> Dict[str, Any]:
        return self._ctx.schema_cache.cache_info()

    def refresh_schema(self) -> bool:
        """
        Forces a schema reload.

        Returns:
            True if a schema is available after the refresh.
        """
        try:
            self._ctx.schema_cache.refresh_schema()
            return True
        except SchemaUnavailableError as e:
            logger.error(f"Schema refresh failed: {e}")
            return False
