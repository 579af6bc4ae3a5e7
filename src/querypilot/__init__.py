"""Natural-language questions to tenant-scoped, parameterized SQL."""

from querypilot.public_api import QueryPilot
from querypilot.api.query_api import QueryResult

__all__ = ["QueryPilot", "QueryResult"]
