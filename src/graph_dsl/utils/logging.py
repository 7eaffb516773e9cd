"""
Package logger. Handlers are left to the application.
"""

from __future__ import annotations

import logging

from .config import config

logger = logging.getLogger("graph_dsl")
logger.addHandler(logging.NullHandler())
if config.debug:
    logger.setLevel(logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    """Child logger of the package logger for module ``name``."""
    if name.startswith("graph_dsl."):
        name = name[len("graph_dsl."):]
    return logger.getChild(name)
