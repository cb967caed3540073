"""Structured logging for the billing ledger exporter.

Log output goes to stderr; stdout is reserved for report output such as
``opos`` listings and ``list-accounts`` without a file.
"""

import logging
import sys
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

import structlog

from billing_ledger.config.settings import get_settings


def stringify_amounts(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Render money and timestamps as text so the JSON renderer accepts them."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = f"{value:.2f}"
        elif isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Log level. Defaults to ``LOG_LEVEL``.
        format: ``json`` or ``console``. Defaults to ``LOG_FORMAT``.
    """
    settings = get_settings()
    log_level = level or settings.log_level
    log_format = format or settings.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
    )

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        stringify_amounts,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_run_context(command: str, **context: Any) -> None:
    """Attach the command and its arguments to every log line of this run."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        command=command,
        test_mode=get_settings().is_test_mode,
        **{key: value for key, value in context.items() if value is not None},
    )
