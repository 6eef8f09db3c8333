"""Handlers for the ``polaris`` logger hierarchy.

Modules log through ``logging.getLogger(__name__)``; nothing is printed until
the application attaches handlers, either explicitly or from settings::

    from polaris.logging import configure_from_settings, setup_logging

    setup_logging(level="DEBUG")
    configure_from_settings(Settings())  # POLARIS_LOG_LEVEL, POLARIS_LOG_FILE, ...
"""

import logging
import sys
from typing import Iterable, Optional

from polaris.config import Settings

LIBRARY_LOGGER_NAME = "polaris"

# Client libraries that emit one line per request or command
NOISY_LOGGERS = ("httpx", "httpcore", "redis", "openai")

RECORD_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def level_number(name: Optional[str], default: int = logging.INFO) -> int:
    """``"debug"`` -> ``logging.DEBUG``. Unknown or empty names give *default*."""
    resolved = logging.getLevelName(name.upper()) if name else None
    return resolved if isinstance(resolved, int) else default


def quiet_transport_loggers(
    level: str = "WARNING", names: Iterable[str] = NOISY_LOGGERS
) -> None:
    """Raise the threshold of HTTP/Redis client loggers to *level*."""
    threshold = level_number(level, logging.WARNING)
    for name in names:
        logging.getLogger(name).setLevel(threshold)


def _attach(logger: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console_level: Optional[str] = None,
    fmt: Optional[str] = None,
    date_fmt: Optional[str] = None,
    quiet_transports: bool = True,
) -> logging.Logger:
    """Attach a stderr handler (and optionally a file handler) to ``polaris``.

    Calling it again swaps the handlers rather than adding more. The
    ``polaris`` logger stops propagating to root, so host applications that
    also configure root logging do not see every record twice.

    Args:
        level: Logger and file handler level. Unknown names mean INFO.
        log_file: Path for a UTF-8 ``FileHandler``.
        console_level: stderr handler level, *level* when omitted.
        fmt: Record format, ``RECORD_FORMAT`` when omitted.
        date_fmt: ``asctime`` format, ``TIME_FORMAT`` when omitted.
        quiet_transports: Hold ``NOISY_LOGGERS`` at WARNING so cache and
            fallback events stay readable at DEBUG.
    """
    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    threshold = level_number(level)
    logger.setLevel(threshold)

    while logger.handlers:
        stale = logger.handlers[0]
        logger.removeHandler(stale)
        stale.close()

    formatter = logging.Formatter(fmt or RECORD_FORMAT, date_fmt or TIME_FORMAT)
    _attach(logger, logging.StreamHandler(sys.stderr), level_number(console_level, threshold), formatter)
    if log_file:
        _attach(logger, logging.FileHandler(log_file, encoding="utf-8"), threshold, formatter)

    logger.propagate = False
    if quiet_transports:
        quiet_transport_loggers()
    return logger


def configure_from_settings(settings: Settings | None = None) -> logging.Logger:
    """``setup_logging`` driven by the ``POLARIS_LOG_*`` settings."""
    settings = settings or Settings()
    return setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        console_level=settings.log_console_level,
        quiet_transports=settings.log_quiet_transports,
    )
