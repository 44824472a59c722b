"""Structured JSON logging configuration for the article dedup agent."""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import structlog
from structlog import processors, stdlib


def setup_logging(
    log_level: str | None = None,
    json_logging: bool | None = None,
    log_file: Path | None = None
) -> None:
    """Route structlog through stdlib logging.

    Arguments left as None come from :func:`get_settings`. JSON output keeps
    non-ASCII text readable so Cyrillic titles survive in log files.
    """
    if log_level is None or json_logging is None:
        from .config import get_settings
        settings = get_settings()
        log_level = log_level or settings.log_level
        json_logging = json_logging if json_logging is not None else settings.json_logging
        log_file = log_file or settings.log_file

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    processors_list = [
        stdlib.filter_by_level,
        stdlib.add_logger_name,
        stdlib.add_log_level,
        stdlib.PositionalArgumentsFormatter(),
        processors.TimeStamper(fmt="iso"),
        processors.StackInfoRenderer(),
        processors.format_exc_info,
    ]

    if json_logging:
        processors_list.append(
            processors.JSONRenderer(serializer=json.dumps, indent=None, ensure_ascii=False)
        )
    else:
        processors_list.extend([
            processors.CallsiteParameterAdder(
                parameters=[processors.CallsiteParameter.FILENAME,
                            processors.CallsiteParameter.LINENO]
            ),
            structlog.dev.ConsoleRenderer(colors=False),
        ])

    structlog.configure(
        processors=processors_list,
        wrapper_class=stdlib.BoundLogger,
        logger_factory=stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    # Third-party HTTP clients are noisy at INFO
    for noisy in ("httpx", "httpcore", "aiohttp", "trafilatura"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; call with ``__name__``."""
    return structlog.get_logger(name)


def log_error(
    error: Exception,
    context: str | None = None,
    **kwargs: Any
) -> dict[str, Any]:
    """Fields for a ``logger.error(...)`` call describing ``error``.

    Pipeline errors carry the stage that failed, which is added as ``stage``.
    """
    log_data: dict[str, Any] = {
        "error_type": error.__class__.__name__,
        "error_message": str(error),
        **kwargs
    }
    stage = getattr(error, "stage", None)
    if stage:
        log_data["stage"] = stage
    if context:
        log_data["context"] = context
    return log_data


class PerformanceLogger:
    """Times a block and logs completion or failure with its duration in seconds."""

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger, **context: Any):
        self.operation = operation
        self.logger = logger
        self.context = context
        self.start_time: float | None = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.monotonic()
        self.logger.debug("operation_started", operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        duration = time.monotonic() - self.start_time
        if exc_type is None:
            self.logger.info(
                "operation_completed",
                operation=self.operation,
                duration=round(duration, 3),
                **self.context
            )
        else:
            self.logger.error(
                "operation_failed",
                operation=self.operation,
                duration=round(duration, 3),
                error_type=exc_type.__name__,
                error_message=str(exc_val) if exc_val else None,
                **self.context
            )
