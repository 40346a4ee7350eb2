"""
Custom exception hierarchy for the AI validation pipeline.

Provides a consistent error handling approach across all modules.
"""

from typing import Optional


class ValidationPipelineError(Exception):
    """
    Base exception for all pipeline errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: dict | None = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ==================== Configuration Errors ====================

class ConfigurationError(ValidationPipelineError):
    """
    Error in system configuration.

    Raised when credentials, endpoint or deployment are missing or rejected
    by the provider (401, 404, other non-recoverable 4xx). Never retried.
    """
    pass


class MissingAPIKeyError(ConfigurationError):
    """Raised when the Azure OpenAI key, endpoint or deployment is not configured."""
    pass


# ==================== Provider Errors ====================

class ProviderError(ValidationPipelineError):
    """
    Base error for LLM provider issues.

    Transient provider errors are retried by the transport; once exhausted
    they become per-batch failures.
    """
    pass


class APIConnectionError(ProviderError):
    """Raised when connection to the API fails (reset, DNS, refused)."""
    pass


class APITimeoutError(ProviderError):
    """Raised when an API call times out."""
    pass


class APIServerError(ProviderError):
    """Raised on 5xx responses."""

    def __init__(self, message: str, status_code: int, details: dict | None = None):
        super().__init__(message, details)
        self.status_code = status_code


class APIRateLimitError(ProviderError):
    """Raised on a single 429 response; carries the server's retry-after, if any."""

    def __init__(self, message: str, retry_after: Optional[float] = None, details: dict | None = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class RateLimitExceededError(ProviderError):
    """Raised when rate-limit retries are exhausted."""
    pass


class APIResponseError(ProviderError):
    """Raised when the API returns an unusable response."""
    pass


class ShrinkableError(ProviderError):
    """
    Failure that a smaller batch may avoid.

    The chunk scheduler retries the same items at a reduced batch size when
    it sees one of these.
    """
    pass


class PayloadTooLargeError(ShrinkableError):
    """Raised on 413 or when the prompt exceeds the model context."""
    pass


class EmptyContentError(ShrinkableError):
    """Raised when the provider returns no content, even without JSON mode."""
    pass


# ==================== Workbook Errors ====================

class WorkbookError(ValidationPipelineError):
    """
    Base error for spreadsheet issues.
    """
    pass


class InvalidWorkbookError(WorkbookError):
    """Raised when the input bytes are not a readable workbook."""
    pass


# ==================== Job Store Errors ====================

class JobStoreError(ValidationPipelineError):
    """
    Base error for job-tracking issues.
    """
    pass


class JobNotFoundError(JobStoreError):
    """Raised when a job id does not exist."""
    pass
