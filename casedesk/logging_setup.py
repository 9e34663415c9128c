"""
Logging setup for the casedesk service.

Call ``configure_logging`` once at process startup (the API lifespan does
this); every other module only does ``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
from typing import Optional

DEFAULT_LOGGER_NAME = "casedesk"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _parse_level(value: Optional[str]) -> int:
    """Map 'debug', 'INFO', ... to a logging constant; INFO if unknown."""
    if not value:
        return logging.INFO
    level = getattr(logging, value.strip().upper(), None)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None, *, force: bool = False) -> logging.Logger:
    """
    Install a stream handler on the root logger and return the service logger.

    Existing handlers are left alone unless ``force`` is set, so running
    under uvicorn or pytest keeps their own log capture.
    """
    root = logging.getLogger()
    if force or not root.handlers:
        logging.basicConfig(level=_parse_level(level), format=LOG_FORMAT, force=force)

    logger = logging.getLogger(DEFAULT_LOGGER_NAME)
    logger.setLevel(_parse_level(level))
    return logger
