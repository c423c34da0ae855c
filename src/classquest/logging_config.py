"""Structured logging configuration with structlog."""

import logging

import structlog

from classquest.config import Settings

# Driver loggers that flood the output at INFO.
_SQL_LOGGERS = ("sqlalchemy.engine", "aiosqlite")


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output.

    Grant batches bind ``grant_batch`` through structlog contextvars, so every
    event logged while a batch runs carries it. SQL statement logging stays at
    WARNING unless ``log_sql`` is set.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)
    # basicConfig is a no-op once the host has installed handlers
    logging.getLogger().setLevel(level)

    sql_level = logging.INFO if settings.log_sql else logging.WARNING
    for name in _SQL_LOGGERS:
        logging.getLogger(name).setLevel(sql_level)
