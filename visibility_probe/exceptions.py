"""
Custom exceptions for Visibility Probe.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
VisibilityProbeError for consistent catching.

Exception Hierarchy:
    VisibilityProbeError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   ├── DatabaseQueryError
    │   ├── ReportNotFoundError
    │   └── ReportStateError
    ├── LLMProviderError
    │   ├── LLMTimeoutError
    │   └── LLMResponseError
    ├── ExtractionError
    │   ├── AnalysisSchemaError
    │   └── PromptGenerationError
    └── PipelineError

Usage:
    from visibility_probe.exceptions import ReportStateError

    try:
        complete_report(conn, report_id, summary, execution_time_ms)
    except ReportStateError as e:
        logger.warning(f"Report already finalized: {e}")
"""


class VisibilityProbeError(Exception):
    """
    Base exception for all Visibility Probe errors.

    All custom exceptions in this application inherit from this class,
    so callers can catch every application-specific error with one clause.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(VisibilityProbeError):
    """
    Base class for configuration-related errors.

    Raised when configuration loading, parsing, or validation fails.
    Always raised before any report is created. Results in exit code 1.
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Configuration file does not exist at the specified path."""

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (schema validation failed).

    Should include details about which field(s) failed validation.

    Example:
        raise ConfigValidationError("report_settings.runs_per_prompt: must be >= 1")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """
    Required API key environment variable is not set.

    Example:
        raise APIKeyMissingError("PERPLEXITY_API_KEY environment variable not set")
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(VisibilityProbeError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseInitError(DatabaseError):
    """Database could not be created, opened, or migrated."""

    pass


class DatabaseQueryError(DatabaseError):
    """
    Database query execution failed or violated an entity invariant.

    Example:
        raise DatabaseQueryError("Aggregate for prompt 12/gpt was already written")
    """

    pass


class ReportNotFoundError(DatabaseError):
    """
    Referenced report does not exist.

    Attributes:
        report_id: Identifier that was looked up
    """

    def __init__(self, message: str, report_id: int | None = None):
        super().__init__(message)
        self.report_id = report_id


class ReportStateError(DatabaseError):
    """
    Illegal report lifecycle transition.

    Reports move generating -> completed or generating -> failed exactly once.
    Any later attempt to complete or fail a report raises this error and leaves
    the stored row untouched.

    Attributes:
        report_id: Report whose transition was rejected
        current_status: Status the report already holds
        requested_status: Status the caller tried to set

    Example:
        raise ReportStateError(
            "Report 7 is already completed",
            report_id=7,
            current_status="completed",
            requested_status="completed",
        )
    """

    def __init__(
        self,
        message: str,
        report_id: int | None = None,
        current_status: str | None = None,
        requested_status: str | None = None,
    ):
        super().__init__(message)
        self.report_id = report_id
        self.current_status = current_status
        self.requested_status = requested_status


# ============================================================================
# LLM Provider Errors
# ============================================================================


class LLMProviderError(VisibilityProbeError):
    """
    Base class for LLM provider API errors.

    Inside a probe these are recovered locally; elsewhere (prompt generation)
    they abort the attempt.
    """

    pass


class LLMTimeoutError(LLMProviderError):
    """
    LLM provider call exceeded its time budget.

    Example:
        raise LLMTimeoutError("Answer generation timed out after 90s")
    """

    pass


class LLMResponseError(LLMProviderError):
    """
    LLM provider returned an invalid or malformed response.

    This includes missing required fields, invalid JSON, or empty answer text.
    """

    pass


# ============================================================================
# Extraction Errors
# ============================================================================


class ExtractionError(VisibilityProbeError):
    """
    Base class for errors turning raw model output into structured data.
    """

    pass


class AnalysisSchemaError(ExtractionError):
    """
    Answer analysis output did not match the versioned analysis schema.

    Treated as a probe failure: the run is recorded as a neutral result.

    Example:
        raise AnalysisSchemaError("business_mentioned: Input should be a valid boolean")
    """

    pass


class PromptGenerationError(ExtractionError):
    """
    Prompt generation returned no usable prompts.

    Example:
        raise PromptGenerationError("Model response did not contain a JSON array")
    """

    pass


# ============================================================================
# Pipeline Errors
# ============================================================================


class PipelineError(VisibilityProbeError):
    """
    Unrecoverable failure while generating a report.

    Raised after the report has been transitioned to 'failed'.

    Attributes:
        report_id: Report that was marked failed (None if it was never created)
    """

    def __init__(self, message: str, report_id: int | None = None):
        super().__init__(message)
        self.report_id = report_id
