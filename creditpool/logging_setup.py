"""
logging_setup.py - Process-wide logging configuration

Library modules only create loggers (logging.getLogger(__name__)); an
embedding application or script calls configure_logging once at startup.
"""

from __future__ import annotations
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        level: Level name ("DEBUG", "INFO", ...). Unknown names fall back to INFO.
    """
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT, force=True)
    logging.getLogger().setLevel(resolved)
