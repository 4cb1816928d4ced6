"""structlog wiring for the service.

``setup_logging`` runs once from the app lifespan; modules grab a logger with
``get_logger(__name__)`` and pass event context as keyword arguments.
"""

import logging
import sys

import structlog

# Libraries that are chatty at INFO; they only surface warnings and up.
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "asyncio", "httpx", "httpcore")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer(as_json: bool):
    if as_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(settings) -> None:
    """Route structlog events through stdlib logging at ``settings.log_level``."""
    level = _resolve_level(settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _renderer(settings.log_json),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str):
    return structlog.get_logger(name)
