"""
Miscellaneous utilities shared across graph-dsl.
"""

from .logging import get_logger, logger
from .config import BuildOptions, GraphDSLConfig, config

__all__ = ["logger", "get_logger", "config", "GraphDSLConfig", "BuildOptions"]
