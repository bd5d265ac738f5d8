"""Structured logging for kube-forward, built on structlog."""

import logging
import os
import sys

import structlog
from structlog.typing import Processor

from .exceptions import ConfigurationError

LOG_LEVEL_ENV = "KUBE_FORWARD_LOG_LEVEL"


def _shared_processors() -> list[Processor]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    level: str | None = None,
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure structured logging for the orchestrator and its helpers.

    Args:
        level: Logging level name. Falls back to ``KUBE_FORWARD_LOG_LEVEL``
            and then INFO.
        json_format: Render events as JSON instead of console output
        log_file: Optional path that receives a plain-text copy of every event

    Raises:
        ConfigurationError: If the level name is not a logging level
    """
    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        raise ConfigurationError(f"Unknown log level: {level_name}")

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    processors = _shared_processors()
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def connection_logger(
    logger: structlog.stdlib.BoundLogger, connection_id: str, name: str | None = None
) -> structlog.stdlib.BoundLogger:
    """Bind connection identity to every event emitted through ``logger``."""
    if name is None:
        return logger.bind(connection_id=connection_id)
    return logger.bind(connection_id=connection_id, connection=name)
