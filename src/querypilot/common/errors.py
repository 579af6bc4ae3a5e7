from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict


class ErrorSeverity(str, Enum):
    """Severity levels for pipeline errors."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCode(str, Enum):
    """Standardized error codes for the query pipeline."""
    MISSING_QUESTION = "MISSING_QUESTION"
    SCHEMA_RETRIEVAL_FAILED = "SCHEMA_RETRIEVAL_FAILED"
    INTROSPECTION_FAILED = "INTROSPECTION_FAILED"
    PLANNING_FAILURE = "PLANNING_FAILURE"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
    JOIN_TARGET_NOT_FOUND = "JOIN_TARGET_NOT_FOUND"
    INVALID_EXPRESSION = "INVALID_EXPRESSION"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SQL_GEN_FAILED = "SQL_GEN_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


SAFE_ERROR_MESSAGES = {
    ErrorCode.SCHEMA_RETRIEVAL_FAILED: "The database schema is currently unavailable.",
    ErrorCode.INTROSPECTION_FAILED: "The database schema is currently unavailable.",
    ErrorCode.SQL_GEN_FAILED: "The query could not be prepared for execution.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred while planning the query.",
}


class PipelineError(BaseModel):
    """Represents a structured error raised by one stage of the query pipeline.

    Attributes:
        stage (str): The stage where the error occurred (analyzer, planner, ...).
        message (str): A human-readable error message.
        severity (ErrorSeverity): The severity of the error.
        error_code (ErrorCode): The standardized error code.
        details (Optional[Any]): Additional context or metadata.
    """
    model_config = ConfigDict(extra="ignore")

    stage: str
    message: str
    severity: ErrorSeverity
    error_code: ErrorCode
    details: Optional[Any] = None

    def get_safe_message(self) -> str:
        """Returns a sanitized error message safe for exposure to end users.

        Internal failures (driver errors, crashed stages) are replaced by a
        generic message; validation errors describe the plan only and are
        returned as-is.

        Returns:
            str: The sanitized error message.
        """
        return SAFE_ERROR_MESSAGES.get(self.error_code, self.message)


class IntrospectionError(Exception):
    """A catalog query against the live database failed."""

    def __init__(self, engine_type: str, message: str):
        super().__init__(f"[{engine_type}] {message}")
        self.engine_type = engine_type


class SchemaUnavailableError(Exception):
    """Neither introspection, the ORM fallback, nor a cached copy produced a schema."""
