from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Literal, Protocol

import structlog
from structlog.typing import EventDict, Processor

if TYPE_CHECKING:
    from marketiq_core.settings import CoreSettings

_LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Event fields whose values are credentials and must not reach log sinks.
_REDACTED_FIELDS = frozenset({"api_key", "authorization", "token", "kv_api_token", "secret"})
_REDACTED = "***"

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Logger protocol for structured event logging with keyword fields."""

    def info(self, event: str, **kwargs: object) -> None:
        """Log an informational event."""

    def warning(self, event: str, **kwargs: object) -> None:
        """Log a warning event."""

    def error(self, event: str, **kwargs: object) -> None:
        """Log an error event."""

    def exception(self, event: str, **kwargs: object) -> None:
        """Log an exception event."""


AnyLogger = StructuredLogger | _StdlibLogger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.stdlib.get_logger(name)


def get_log_level_value(level: str) -> int:
    """Return stdlib log level constant for a normalized level string."""
    try:
        return _LOG_LEVELS[level.strip().upper()]
    except KeyError as error:
        raise ValueError(f"log_level must be one of: {', '.join(sorted(_LOG_LEVELS))}") from error


@contextmanager
def bind_log_context(**fields: object) -> Iterator[None]:
    """Attach ``fields`` to every event logged in the current context."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def redact_credentials(_: object, __: str, event_dict: EventDict) -> EventDict:
    """Mask credential-bearing fields before rendering."""
    for name in _REDACTED_FIELDS.intersection(event_dict):
        if event_dict[name]:
            event_dict[name] = _REDACTED
    return event_dict


def _service_stamper(service: str | None) -> Processor:
    def _stamp(_: object, __: str, event_dict: EventDict) -> EventDict:
        if service:
            event_dict.setdefault("service", service)
        return event_dict

    return _stamp


def _log(
    logger: AnyLogger,
    level: Literal["info", "warning", "error", "exception"],
    event: str,
    **fields: object,
) -> None:
    """Log one event across structlog and stdlib logger implementations."""
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        method(event, extra=fields)
    else:
        method(event, **fields)


def log_info(logger: AnyLogger, event: str, **fields: object) -> None:
    _log(logger, "info", event, **fields)


def log_warning(logger: AnyLogger, event: str, **fields: object) -> None:
    _log(logger, "warning", event, **fields)


def log_error(logger: AnyLogger, event: str, **fields: object) -> None:
    _log(logger, "error", event, **fields)


def log_exception(logger: AnyLogger, event: str, **fields: object) -> None:
    """Log an error event with the active exception's traceback."""
    _log(logger, "exception", event, **fields)


def configure_structlog(
    *,
    log_level: str,
    service: str | None = "marketiq",
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib logging through one stderr handler.

    Output is JSON unless stderr is a terminal. Calling this again replaces
    the previous configuration, so it is safe in tests and on reload.
    """
    level_value = get_log_level_value(log_level)
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _service_stamper(service),
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
    ]
    renderer: Processor = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(format="%(message)s", handlers=[handler], level=level_value, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *pre_chain,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger()


def configure_from_settings(
    settings: CoreSettings,
    *,
    service: str | None = "marketiq",
) -> structlog.stdlib.BoundLogger:
    """Configure logging at ``settings.log_level``."""
    return configure_structlog(log_level=settings.log_level, service=service)
