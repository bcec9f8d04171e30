"""Structured logging setup for Botyard.

All modules log through structlog with snake_case event names and
key-value context, e.g. ``log.info("bot_started", bot_id=bot_id)``.
Library loggers (discord.py, apscheduler, uvicorn) are routed through
the same renderer so a single stream carries everything.
"""

from __future__ import annotations

import logging
import sys

import structlog

_LIBRARY_LOGGERS = ("discord", "apscheduler", "uvicorn", "httpx")


def setup_logging(json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: Render JSON lines when True, colored console output otherwise.
        level: Minimum log level name.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    # discord.py is chatty at DEBUG; keep it one notch quieter than ours
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger.

    Args:
        name: Component name, shown as the ``logger`` key.

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger(name)
