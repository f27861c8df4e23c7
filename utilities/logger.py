"""
Structured logging setup using structlog.
Provides JSON or console output and a run-scoped logger for schedule checks.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call-site information to every event
    """

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Configure structlog processors
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    # Add format-specific processors
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # Set up file logging if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def short_token(device_token: str) -> str:
    """Device tokens are never logged in full."""
    return f"{device_token[:10]}..."


class CheckLogger:
    """
    Logger for one schedule check run with bound run context.
    """

    def __init__(self, name: str = "schedule_check"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'CheckLogger':
        """
        Bind context variables to the logger.

        Args:
            **kwargs: Context variables to bind

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    def log_check_start(self, classes: int, year: int, week: int) -> None:
        """Log check run start."""
        self.logger.info(
            "Schedule check started",
            classes=classes,
            year=year,
            week=week,
            **self.context
        )

    def log_class_result(self, class_name: str, status: str, **details) -> None:
        """Log the outcome for a single class."""
        level = "warning" if status in ("error", "conflict") else "info"
        getattr(self.logger, level)(
            "Class checked",
            class_name=class_name,
            status=status,
            **details,
            **self.context
        )

    def log_check_complete(self, classes: int, notified: int, errors: int, duration_seconds: float) -> None:
        """Log check run completion."""
        self.logger.info(
            "Schedule check completed",
            classes=classes,
            notified=notified,
            errors=errors,
            duration_seconds=round(duration_seconds, 3),
            **self.context
        )

    def log_error(self, error: str, class_name: Optional[str] = None) -> None:
        """Log error with context."""
        self.logger.error(
            "Schedule check error",
            error=error,
            class_name=class_name,
            **self.context
        )

    def log_retry(self, url: str, attempt: int, max_attempts: int, delay: float) -> None:
        """Log retry attempt."""
        self.logger.warning(
            "Retrying request",
            url=url,
            attempt=attempt,
            max_attempts=max_attempts,
            delay_seconds=delay,
            **self.context
        )
