"""Intent classification and entity extraction for free-text questions."""

from .analyzer import INTENT_PATTERNS, QueryAnalysis, QueryAnalyzer, QueryEntities, QueryIntent, ValueFilter

__all__ = [
    "INTENT_PATTERNS",
    "QueryAnalysis",
    "QueryAnalyzer",
    "QueryEntities",
    "QueryIntent",
    "ValueFilter",
]
