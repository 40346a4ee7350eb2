"""
Configuration module for the AI validation pipeline.

Provides settings, constants and logging configuration. Prompt templates
live in config.prompts (imported directly, they depend on core.models).
"""

from config.settings import get_settings, reload_settings, Settings
from config.logging_config import (
    setup_structured_logging,
    get_logger,
    InterceptHandler,
)
from config.constants import (
    # Azure OpenAI
    DEFAULT_API_VERSION,
    DEFAULT_TIMEOUT_MS,
    # Batching
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_BATCH_SIZE,
    # Workbook
    CANONICAL_SHEETS,
    ERRORS_SHEET_NAME,
    # Storage
    DATA_DIR,
)

__all__ = [
    # Settings
    'get_settings',
    'reload_settings',
    'Settings',
    # Logging
    'setup_structured_logging',
    'get_logger',
    'InterceptHandler',
    # Constants
    'DEFAULT_API_VERSION',
    'DEFAULT_TIMEOUT_MS',
    'DEFAULT_BATCH_SIZE',
    'DEFAULT_CONCURRENCY',
    'DEFAULT_RETRY_BATCH_SIZE',
    'CANONICAL_SHEETS',
    'ERRORS_SHEET_NAME',
    'DATA_DIR',
]
