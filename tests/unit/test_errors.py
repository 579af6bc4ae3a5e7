from querypilot.common.errors import (
    ErrorCode,
    ErrorSeverity,
    IntrospectionError,
    PipelineError,
)


def test_safe_message_hides_internal_failures():
    # Validates that driver text never reaches end users.
    # Arrange
    error = PipelineError(
        stage="schema",
        message="psycopg2.OperationalError: password authentication failed for user admin",
        severity=ErrorSeverity.ERROR,
        error_code=ErrorCode.SCHEMA_RETRIEVAL_FAILED,
    )

    # Act
    safe = error.get_safe_message()

    # Assert
    assert "password" not in safe
    assert safe == "The database schema is currently unavailable."


def test_safe_message_keeps_validation_errors():
    # Arrange
    error = PipelineError(
        stage="validator",
        message="Table 'widgets' not found in schema",
        severity=ErrorSeverity.ERROR,
        error_code=ErrorCode.VALIDATION_FAILED,
    )

    # Act / Assert
    assert error.get_safe_message() == "Table 'widgets' not found in schema"


def test_introspection_error_carries_engine_type():
    error = IntrospectionError("mysql", "Catalog query failed")

    assert error.engine_type == "mysql"
    assert str(error) == "[mysql] Catalog query failed"
