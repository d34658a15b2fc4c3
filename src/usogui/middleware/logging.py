"""structlog setup for the reader.

Every event carries the reader version and environment, plus the request id
bound by ``RequestIdMiddleware`` when it is emitted inside a request.
"""

import logging

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from usogui.config import Settings

# httpx logs every outbound request at INFO; the client logs its own failures
NOISY_LOGGERS = ("httpx", "httpcore")


def _app_context(settings: Settings) -> Processor:
    def add_app_context(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_version", settings.app_version)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return add_app_context


def setup_logging(settings: Settings) -> None:
    """Configure structlog, rendering JSON in deployments and colour in a terminal."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _app_context(settings),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.log_format == "json":
        tail: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        tail = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[*shared, structlog.processors.StackInfoRenderer(), *tail],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
