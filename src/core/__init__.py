"""
Core module for the AI validation pipeline.

Exports key models and exceptions for easy access.
"""

from core.models import (
    AnalyzableItem,
    AnalysisResult,
    ChatResult,
    ItemKind,
    JobRecord,
    JobStatus,
    ProgressEvent,
    ResultStatus,
    SheetKind,
    generate_id,
)

from core.exceptions import (
    ValidationPipelineError,
    ConfigurationError,
    MissingAPIKeyError,
    ProviderError,
    APIConnectionError,
    APITimeoutError,
    APIServerError,
    APIRateLimitError,
    RateLimitExceededError,
    APIResponseError,
    ShrinkableError,
    PayloadTooLargeError,
    EmptyContentError,
    WorkbookError,
    InvalidWorkbookError,
    JobStoreError,
    JobNotFoundError,
)

__all__ = [
    # Models
    'AnalyzableItem',
    'AnalysisResult',
    'ChatResult',
    'ItemKind',
    'JobRecord',
    'JobStatus',
    'ProgressEvent',
    'ResultStatus',
    'SheetKind',
    'generate_id',
    # Exceptions
    'ValidationPipelineError',
    'ConfigurationError',
    'MissingAPIKeyError',
    'ProviderError',
    'APIConnectionError',
    'APITimeoutError',
    'APIServerError',
    'APIRateLimitError',
    'RateLimitExceededError',
    'APIResponseError',
    'ShrinkableError',
    'PayloadTooLargeError',
    'EmptyContentError',
    'WorkbookError',
    'InvalidWorkbookError',
    'JobStoreError',
    'JobNotFoundError',
]
