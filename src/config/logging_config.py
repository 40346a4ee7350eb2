"""
Centralized logging configuration for the AI validation pipeline.

Provides Loguru-based logging with optional JSON serialization for
production observability and a rotating file sink for local runs.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from loguru import logger


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records (utils, third-party) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.bind(module=record.name).opt(exception=record.exc_info).log(level, record.getMessage())


def setup_structured_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    serialize: bool = False,
    include_modules: Optional[list[str]] = None
) -> None:
    """
    Configure logging with Loguru.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file (always JSON, always DEBUG)
        serialize: Emit JSON records on stderr instead of text
        include_modules: Module names to enable even if disabled below
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        serialize=serialize,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[module]} | {message}",
        level=level.upper(),
        enqueue=True,    # Async logging (non-blocking)
        backtrace=True,
        diagnose=False
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            serialize=True,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            compression="zip"
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Suppress noisy third-party loggers
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if include_modules:
        for module in include_modules:
            logger.enable(module)


def get_logger(name: str):
    """
    Get a logger for a specific module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance with module binding
    """
    return logger.bind(module=name)


logger.configure(extra={"module": "ai_validation"})
