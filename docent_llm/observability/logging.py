"""
Logging configuration for the docent LLM service.

Every module logs through the standard library; records are rendered by a
structlog ProcessorFormatter on the root handler, so stdlib and structlog
loggers share one output format.
"""

import logging
import sys
from typing import Any

import structlog

from ..config import settings

# Third-party loggers and the level they are held at
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    # llama.cpp reports per-tensor load progress
    "llama_cpp": logging.WARNING,
}


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Route stdlib and structlog records through one structlog renderer.

    Args:
        level: Root log level (defaults to ``settings.log_level``)
        log_format: ``json`` or ``console`` (defaults to ``settings.log_format``)
    """
    level = level or settings.log_level
    log_format = log_format or settings.log_format

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_format == "console":
        render: list[Any] = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    else:
        render = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    logging.getLogger(__name__).info(f"Logging configured: level={level} format={log_format}")
