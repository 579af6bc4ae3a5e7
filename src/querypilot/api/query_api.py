"""
Query API for QueryPilot

Turns a natural-language question into a validated, tenant-scoped,
parameterized SQL query. Execution is left to the caller.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from pydantic import BaseModel, Field

from querypilot.common.errors import ErrorCode, ErrorSeverity, PipelineError, SchemaUnavailableError
from querypilot.common.logger import get_logger, trace_context
from querypilot.common.settings import settings
from querypilot.context import QueryPilotContext
from querypilot.planning.models import QueryPlan
from querypilot.sql.builder import SqlBuildError, SqlQuery
from querypilot.validation.validator import ValidationResult

logger = get_logger("query_api")


class QueryResult(BaseModel):
    """Outcome of planning one question."""
    success: bool = False
    question: str = ""
    trace_id: str = ""
    intent: Optional[str] = None
    confidence: Optional[float] = None
    visualization: Optional[str] = None
    plan: Optional[QueryPlan] = None
    sql: Optional[SqlQuery] = None
    validation: ValidationResult = Field(default_factory=ValidationResult)
    suggestions: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    errors: List[PipelineError] = Field(default_factory=list)


class QueryAPI:
    """
    API for planning natural language questions against the database.
    """

    def __init__(self, ctx: QueryPilotContext):
        self._ctx = ctx

    def _fail(self, result: QueryResult, stage: str, code: ErrorCode, message: str, details=None) -> QueryResult:
        error = PipelineError(
            stage=stage, message=message, severity=ErrorSeverity.ERROR, error_code=code, details=details,
        )
        result.errors.append(error)
        result.error = error.get_safe_message()
        result.success = False
        logger.warning(f"{stage} failed [{code.value}]: {message}")
        return result

    def plan_and_validate_query(
        self,
        question: str,
        tenant_id: Optional[str] = None,
        last_topic: Optional[str] = None,
    ) -> QueryResult:
        """
        Runs analysis, planning, validation and SQL rendering for one question.

        Args:
            question: The natural language question.
            tenant_id: Tenant the query must be scoped to. Defaults to TENANT_ID.
            last_topic: Topic of the previous turn, used for follow-up questions.

        Returns:
            QueryResult with the corrected plan, SQL and validation details.
        """
        trace_id = str(uuid.uuid4())
        tenant_id = tenant_id or settings.default_tenant_id
        with trace_context(trace_id, tenant_id=tenant_id):
            result = QueryResult(question=question, trace_id=trace_id)
            if not question or not question.strip():
                return self._fail(result, "analyzer", ErrorCode.MISSING_QUESTION, "Question is empty.")
            if not tenant_id:
                logger.warning("No tenant id supplied; query will not be tenant scoped.")

            try:
                schema = self._ctx.schema_cache.get_schema()
            except SchemaUnavailableError as e:
                return self._fail(result, "schema", ErrorCode.SCHEMA_RETRIEVAL_FAILED, str(e))

            analysis = self._ctx.analyzer.analyze(question)
            analysis = self._ctx.analyzer.refine_with_context(analysis, last_topic)
            result.intent = analysis.intent.value
            result.confidence = analysis.confidence

            try:
                plan = self._ctx.planner.plan(analysis.intent, analysis.entities, schema)
            except Exception as e:
                logger.exception(f"Planner crashed: {e}")
                return self._fail(result, "planner", ErrorCode.PLANNING_FAILURE, str(e))

            corrected, validation = self._ctx.validator.validate_and_correct(plan, schema, tenant_id)
            result.plan = corrected
            result.validation = validation
            result.visualization = corrected.visualization
            if not validation.is_valid:
                return self._fail(
                    result, "validator", ErrorCode.VALIDATION_FAILED, "; ".join(validation.errors),
                    details={"errors": validation.errors},
                )
            result.suggestions = self._ctx.validator.suggest_improvements(corrected)

            try:
                result.sql = self._ctx.builder.build(corrected, schema.engine_type)
            except (SqlBuildError, ValueError) as e:
                return self._fail(result, "sql_builder", ErrorCode.SQL_GEN_FAILED, str(e))

            result.success = True
            logger.info(
                f"Planned '{question}' as {result.intent} with {len(validation.corrections)} correction(s)."
            )
            return result
