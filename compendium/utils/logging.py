"""
Structured logging for Compendium.

structlog renders every event as one JSON line (or a colored console line
for interactive runs). Scoped key/value context, such as the query variant
an aggregator child is working on, is carried through contextvars so it
follows each asyncio task independently.
"""

import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from compendium.utils.config import get_project_root, get_settings

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("asyncio", "aiohttp.access", "urllib3")


def _add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat().replace("+00:00", "Z")
    return event_dict


def _add_log_level(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = method_name.upper()
    return event_dict


def _default_log_file() -> Path:
    log_dir = get_project_root() / get_settings().general.logs_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"compendium_{datetime.now().strftime('%Y%m%d')}.log"


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool = True,
) -> None:
    """Configure structlog and the stdlib handlers it writes through.

    Calling it again replaces the previous configuration.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR (default: general.log_level).
        log_file: Log file path (default: a dated file under general.logs_dir).
        json_format: JSON lines (True) or console rendering (False).
    """
    level_name = (log_level or get_settings().general.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file or _default_log_file(), encoding="utf-8"),
        ],
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        _add_timestamp,
        _add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, usually with ``__name__``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind key/values to every later log call in the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove keys bound with bind_context."""
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Scoped logging context.

    Values bound on entry are restored to their previous state on exit, so
    nested scopes may rebind the same key.

    Example:
        with LogContext(variant="datasheet", query="ESP32 official datasheet"):
            logger.info("Variant search failed")  # carries variant and query
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self.context))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}
