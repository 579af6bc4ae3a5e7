from __future__ import annotations

import difflib
import re
from enum import Enum
from typing import List, Optional, Pattern, Sequence, Tuple

from pydantic import BaseModel, Field

from querypilot.common.logger import get_logger
from querypilot.common.settings import settings

logger = get_logger("query_analyzer")


class QueryIntent(str, Enum):
    # Analytics
    ANALYZE_METRICS = "analyze_metrics"
    ANALYZE_PERFORMANCE = "analyze_performance"
    ANALYZE_WIN_LOSS = "analyze_win_loss"
    ANALYZE_TRENDS = "analyze_trends"

    # Retrieval
    GET_USERS = "get_users"
    GET_DEALS = "get_deals"
    GET_TOP_DEALS = "get_top_deals"
    GET_ACCOUNTS = "get_accounts"
    GET_PIPELINE = "get_pipeline"
    GET_LOST_DEALS = "get_lost_deals"

    # Recommendations
    RECOMMEND_ACTIONS = "recommend_actions"
    RECOMMEND_IMPROVEMENTS = "recommend_improvements"
    RECOMMEND_FOCUS = "recommend_focus"

    # Forecasting
    FORECAST_REVENUE = "forecast_revenue"
    FORECAST_PIPELINE = "forecast_pipeline"

    # Questions
    EXPLAIN_WHY = "explain_why"
    EXPLAIN_HOW = "explain_how"
    EXPLAIN_WHAT = "explain_what"

    GENERAL_QUERY = "general_query"


def _patterns(*sources: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


# Scored in this order; on equal scores the earlier intent wins.
INTENT_PATTERNS: Sequence[Tuple[QueryIntent, Tuple[Pattern[str], ...]]] = (
    (QueryIntent.ANALYZE_WIN_LOSS, _patterns(
        r"win.*rate", r"loss.*rate", r"why.*los[et]", r"why.*won", r"win.*loss", r"conversion",
    )),
    (QueryIntent.ANALYZE_PERFORMANCE, _patterns(
        r"how.*doing", r"performance", r"metrics", r"kpi", r"dashboard",
        r"\b(team|sales|quota|target|rep)s?\s+status\b", r"\bstatus\s+(of|on)\s+(the\s+|our\s+)?(team|sales|quota|targets?|reps?)\b",
    )),
    (QueryIntent.GET_USERS, _patterns(
        r"who.*users", r"list.*users", r"show.*users", r"users.*organization", r"team.*members", r"employees",
    )),
    (QueryIntent.GET_DEALS, _patterns(
        r"show.*deals", r"list.*deals", r"opportunities", r"deals.*pipeline", r"major.*deals",
    )),
    (QueryIntent.GET_TOP_DEALS, _patterns(
        r"best.*earning", r"top.*earning", r"highest.*value", r"biggest.*deals", r"largest.*deals",
        r"top\s+\d+\s+deals", r"top.*deals", r"best.*deals", r"most.*valuable", r"highest.*revenue",
        r"top.*performers", r"show.*top.*deals",
    )),
    (QueryIntent.GET_LOST_DEALS, _patterns(
        r"lost.*deals", r"show.*lost", r"list.*lost", r"closed.*lost", r"failed.*deals", r"what.*lost",
    )),
    (QueryIntent.GET_ACCOUNTS, _patterns(
        r"list.*(accounts|customers|companies)", r"show.*(accounts|customers|companies)",
        r"(accounts|customers|companies).*by\b", r"which.*(accounts|customers|companies)",
    )),
    (QueryIntent.GET_PIPELINE, _patterns(
        r"pipeline", r"funnel", r"sales.*stages", r"opportunity.*stages",
    )),
    (QueryIntent.RECOMMEND_ACTIONS, _patterns(
        r"what.*should", r"how.*can.*i", r"how.*to.*improve", r"how.*fix", r"recommend", r"suggest", r"advice",
    )),
    (QueryIntent.RECOMMEND_FOCUS, _patterns(
        r"focus.*on", r"prioriti[sz]e", r"where.*focus",
    )),
    (QueryIntent.EXPLAIN_WHY, _patterns(
        r"why", r"reason", r"cause", r"because",
    )),
    (QueryIntent.EXPLAIN_HOW, _patterns(
        r"how.*to", r"how.*can", r"how.*should", r"how.*do",
    )),
    (QueryIntent.EXPLAIN_WHAT, _patterns(
        r"what\s+(is|are|does)\s+(a|an|the)?\s*\w+\s*(mean|definition)?\??$", r"define", r"meaning of",
    )),
    (QueryIntent.FORECAST_REVENUE, _patterns(
        r"forecast", r"predict", r"projection", r"future.*revenue", r"next.*quarter", r"next.*month",
    )),
    (QueryIntent.ANALYZE_TRENDS, _patterns(
        r"trend", r"pattern", r"over.*time", r"historical", r"growth", r"decline",
    )),
)

METRIC_TERMS = (
    "revenue", "sales", "pipeline", "deals", "accounts", "contacts",
    "win rate", "conversion", "velocity", "cycle time",
    "average deal size", "quota", "target", "amount", "count", "number of",
)
TIMEFRAME_TERMS = (
    "today", "yesterday", "this week", "last week",
    "this month", "last month", "next month", "this quarter", "last quarter", "next quarter",
    "this year", "last year", "ytd", "mtd", "qtd", "year to date",
)
DEAL_STAGE_TERMS = (
    "prospecting", "qualification", "proposal", "negotiation",
    "closed won", "closed lost", "demo", "discovery",
)
DEPARTMENT_TERMS = (
    "sales", "marketing", "engineering", "finance",
    "hr", "operations", "customer success", "executive",
)

COMPARISON_PATTERN = re.compile(r"compar|versus|vs\.|against|between", re.IGNORECASE)
CONTEXT_PATTERN = re.compile(r"\bit\b|\bthis\b|\bthat\b|\bthey\b|\bthem\b|\bthose\b|\bthese\b", re.IGNORECASE)

_RELATIVE_TIMEFRAME = re.compile(r"\b(?:last|past|previous)\s+(\d+)\s+(day|week|month|quarter|year)s?\b")
_TOP_N = re.compile(
    r"\b(top|bottom|first|best|worst|largest|biggest|smallest)\s+(\d+)\b"
    r"(?!\s*(?:day|week|month|quarter|year)s?\b)"
)
_DIMENSION = re.compile(r"\b(?:by|per|for each|grouped by|group by)\s+(?:the\s+|each\s+)?([a-z][a-z_]*(?:\s+[a-z][a-z_]*)?)")
_VALUE_FILTER = re.compile(
    r"\b(over|above|more than|greater than|at least|under|below|less than|at most)\s+\$?(\d[\d,]*(?:\.\d+)?)\s*(k|m)?\b"
)
_SUBJECT = re.compile(
    r"\b(?:show|list|get|find|display|give)\s+(?:me\s+)?(?:(?:all|the|my|our|every)\s+)*([a-z][a-z_]*)"
)
_SUBJECT_OF = re.compile(
    r"\b(?:count|number|total|list|breakdown)\s+of\s+(?:(?:all|the|my|our)\s+)*([a-z][a-z_]*)"
)
# Words the subject patterns catch that never name a table.
_NON_SUBJECT_WORDS = frozenset({
    "me", "us", "a", "an", "it", "this", "that", "these", "those", "them", "what", "how", "which", "who",
    "top", "bottom", "first", "best", "worst", "largest", "biggest", "smallest", "highest", "lowest", "most",
    "total", "number", "count", "sum", "average", "avg", "summary", "breakdown", "overview", "details",
    "data", "everything", "results", "records", "info", "information", "trend", "trends",
    "revenue", "sales", "pipeline", "amount", "conversion", "velocity", "quota", "target", "win",
})
_DIMENSION_STOPWORDS = {
    "as", "in", "for", "with", "this", "last", "next", "and", "over", "from", "on",
    "chart", "graph", "table", "where", "during", "since", "the", "a", "an", "to", "of",
}
_FILTER_OPERATORS = {
    "over": ">", "above": ">", "more than": ">", "greater than": ">", "at least": ">=",
    "under": "<", "below": "<", "less than": "<", "at most": "<=",
}
_ASCENDING_RANKS = {"bottom", "worst", "smallest"}


class ValueFilter(BaseModel):
    operator: str
    value: float


class QueryEntities(BaseModel):
    metrics: List[str] = Field(default_factory=list)
    timeframe: Optional[str] = None
    deal_stages: List[str] = Field(default_factory=list)
    departments: List[str] = Field(default_factory=list)
    comparison: bool = False
    top_n: Optional[int] = None
    rank_ascending: bool = False
    dimensions: List[str] = Field(default_factory=list)
    value_filters: List[ValueFilter] = Field(default_factory=list)
    visualization: Optional[str] = None
    subject: Optional[str] = None


class QueryAnalysis(BaseModel):
    question: str
    intent: QueryIntent
    entities: QueryEntities
    confidence: float
    keywords: List[str] = Field(default_factory=list)
    requires_context: bool = False


def extract_subject(lowered: str) -> Optional[str]:
    """The thing a listing or counting question is about ("invoices" in "count of invoices")."""
    for pattern in (_SUBJECT, _SUBJECT_OF):
        for match in pattern.finditer(lowered):
            if match.group(1) not in _NON_SUBJECT_WORDS:
                return match.group(1)
    return None


def detect_visualization(lowered: str) -> Optional[str]:
    """Chart type asked for explicitly, else implied by the question's shape."""
    if "pie chart" in lowered or "pie graph" in lowered:
        return "pie"
    if "bar chart" in lowered or "bar graph" in lowered:
        return "bar"
    if "line chart" in lowered or "line graph" in lowered:
        return "line"
    if "scatter" in lowered or "correlation" in lowered:
        return "scatter"
    if "table" in lowered or "list" in lowered:
        return "table"
    if "trend" in lowered or "over time" in lowered or "monthly" in lowered:
        return "line"
    if "distribution" in lowered or "breakdown" in lowered or "percentage" in lowered:
        return "pie"
    if "comparison" in lowered or re.search(r"\b(by|per)\b", lowered):
        return "bar"
    return None


class QueryAnalyzer:
    """Pattern-driven intent classifier and entity extractor."""

    def __init__(self, match_cutoff: Optional[float] = None):
        self.match_cutoff = match_cutoff if match_cutoff is not None else settings.synonym_match_cutoff

    def classify(self, lowered: str) -> Tuple[QueryIntent, int]:
        intent = QueryIntent.GENERAL_QUERY
        best = 0
        for candidate, patterns in INTENT_PATTERNS:
            score = sum(1 for pattern in patterns if pattern.search(lowered))
            if score > best:
                best = score
                intent = candidate
        return intent, best

    def _metrics(self, lowered: str, words: List[str]) -> List[str]:
        metrics = [metric for metric in METRIC_TERMS if re.search(rf"\b{re.escape(metric)}\b", lowered)]
        single_word = [metric for metric in METRIC_TERMS if " " not in metric]
        for word in words:
            if len(word) <= 3 or any(word in metric for metric in metrics):
                continue
            close = difflib.get_close_matches(word, single_word, n=1, cutoff=self.match_cutoff)
            if close and close[0] not in metrics:
                logger.debug(f"Treating '{word}' as metric '{close[0]}'")
                metrics.append(close[0])
        return metrics

    def _timeframe(self, lowered: str) -> Optional[str]:
        relative = _RELATIVE_TIMEFRAME.search(lowered)
        if relative:
            return f"last {relative.group(1)} {relative.group(2)}s"
        for timeframe in TIMEFRAME_TERMS:
            if re.search(rf"\b{re.escape(timeframe)}\b", lowered):
                return timeframe
        return None

    def _dimensions(self, lowered: str) -> List[str]:
        dimensions = []
        for match in _DIMENSION.finditer(lowered):
            words = []
            for word in match.group(1).split():
                if word in _DIMENSION_STOPWORDS:
                    break
                words.append(word)
            phrase = " ".join(words)
            if phrase and phrase not in dimensions:
                dimensions.append(phrase)
        return dimensions

    def _value_filters(self, lowered: str) -> List[ValueFilter]:
        filters = []
        for match in _VALUE_FILTER.finditer(lowered):
            value = float(match.group(2).replace(",", ""))
            if match.group(3) == "k":
                value *= 1_000
            elif match.group(3) == "m":
                value *= 1_000_000
            filters.append(ValueFilter(operator=_FILTER_OPERATORS[match.group(1)], value=value))
        return filters

    def extract_entities(self, lowered: str) -> QueryEntities:
        words = re.findall(r"[a-z][a-z_']*", lowered)
        top = _TOP_N.search(lowered)
        return QueryEntities(
            metrics=self._metrics(lowered, words),
            timeframe=self._timeframe(lowered),
            deal_stages=[stage for stage in DEAL_STAGE_TERMS if stage in lowered],
            departments=[dept for dept in DEPARTMENT_TERMS if re.search(rf"\b{re.escape(dept)}\b", lowered)],
            comparison=bool(COMPARISON_PATTERN.search(lowered)),
            top_n=int(top.group(2)) if top else None,
            rank_ascending=bool(top and top.group(1) in _ASCENDING_RANKS)
            or bool(re.search(r"\b(lowest|smallest|least)\b", lowered)),
            dimensions=self._dimensions(lowered),
            value_filters=self._value_filters(lowered),
            visualization=detect_visualization(lowered),
            subject=extract_subject(lowered),
        )

    def analyze(self, question: str) -> QueryAnalysis:
        """Classifies a question and extracts its entities.

        Args:
            question: Raw user question.

        Returns:
            QueryAnalysis: Intent, entities, confidence and context flags.
        """
        lowered = question.lower().strip()
        intent, score = self.classify(lowered)
        confidence = min(score / 3, 1.0) if score > 0 else 0.3

        analysis = QueryAnalysis(
            question=question,
            intent=intent,
            entities=self.extract_entities(lowered),
            confidence=confidence,
            keywords=[word for word in lowered.split() if len(word) > 3],
            requires_context=bool(CONTEXT_PATTERN.search(lowered)),
        )
        logger.info(f"Classified question as {intent.value} (confidence {confidence:.2f})")
        return analysis

    def refine_with_context(self, analysis: QueryAnalysis, last_topic: Optional[str]) -> QueryAnalysis:
        """Reclassifies context-dependent questions using the previous topic.

        Returns a new analysis; the input is left untouched.
        """
        if not analysis.requires_context or not last_topic:
            return analysis

        intent = analysis.intent
        if last_topic == "deals" and intent == QueryIntent.GENERAL_QUERY:
            intent = QueryIntent.GET_DEALS
        elif last_topic == "win_rate" and intent == QueryIntent.EXPLAIN_WHY:
            intent = QueryIntent.ANALYZE_WIN_LOSS
        elif last_topic == "pipeline" and intent in (QueryIntent.GENERAL_QUERY, QueryIntent.EXPLAIN_WHY):
            intent = QueryIntent.GET_PIPELINE

        if intent != analysis.intent:
            logger.info(f"Refined intent {analysis.intent.value} -> {intent.value} using topic '{last_topic}'")
            return analysis.model_copy(update={"intent": intent})
        return analysis
