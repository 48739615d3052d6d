"""
Configures structured logging for the application using structlog.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, Dict, List

import structlog

if TYPE_CHECKING:
    from pageharvest.config.config import MonitoringConfig


def add_job_context(logger: logging.Logger, method_name: str, event_dict: Dict[Any, Any]) -> Dict[Any, Any]:
    """Copy the bound job identifiers onto the record, if a job is running."""
    ctx = structlog.contextvars.get_contextvars()
    for key in ("job_id", "category", "query"):
        if key in ctx and key not in event_dict:
            event_dict[key] = ctx[key]
    return event_dict


def bind_job_context(**values: Any) -> None:
    structlog.contextvars.bind_contextvars(**values)


def clear_job_context() -> None:
    structlog.contextvars.clear_contextvars()


def configure_logging(config: MonitoringConfig) -> None:
    """
    Sets up structlog to handle all logging for the application.

    JSON lines go to ``log_file`` (or stdout when ``json_logs`` is set);
    otherwise a readable console renderer is used.
    """
    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_job_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    log_renderer: Any
    handler: logging.Handler
    if config.log_file:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_renderer = structlog.processors.JSONRenderer()
    else:
        handler = logging.StreamHandler(sys.stdout)
        log_renderer = (
            structlog.processors.JSONRenderer() if config.json_logs else structlog.dev.ConsoleRenderer(colors=False)
        )

    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, log_renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(config.log_level.upper())

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("pageharvest.logging")
    logger.info("Logging configured", level=config.log_level, output=str(config.log_file or "console"))
