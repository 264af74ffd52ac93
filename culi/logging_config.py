"""
Logging configuration for the Culi client.

This module configures Python's warning system and logging so chat output in
the terminal is not drowned by per-request lines from the HTTP stack, and so
bearer tokens never reach a log handler.
"""

import logging
import re
import warnings

from .config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_BEARER_PATTERN = re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*")


class BearerTokenFilter(logging.Filter):
    """Mask bearer tokens in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if "Bearer" in msg:
            record.msg = _BEARER_PATTERN.sub("Bearer ***", msg)
            record.args = None
        return True


def configure_warnings() -> None:
    """Configure warning filters to suppress harmless third-party warnings."""
    # pydantic-settings warns when .env is absent in some versions
    warnings.filterwarnings(
        "ignore",
        message=".*env_file.*does not exist.*",
        category=UserWarning,
    )


def configure_logging(level: str | int | None = None) -> None:
    """
    Configure root logging for the client.

    Args:
        level: Log level name or number. Defaults to ``settings.log_level``.
    """
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)

    token_filter = BearerTokenFilter()
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.addFilter(token_filter)

    # httpx logs every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def initialize_logging(level: str | int | None = None) -> None:
    """
    Initialize all logging and warning configurations.

    Should be called once during startup, before any other code that might
    generate warnings or logs.
    """
    configure_warnings()
    configure_logging(level)
