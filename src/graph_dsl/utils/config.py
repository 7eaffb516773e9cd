"""
Global configuration flags and graph build options.
"""

import enum
import os
from dataclasses import dataclass
from typing import Optional


class BuildOptions(enum.Flag):
    """Optional plumbing added to a graph at build time."""

    NONE = 0
    # Assignment operations so Variables can be loaded from saved data
    LOAD_ASSIGNS = enum.auto()
    # Assignment operations so Variables can be reset to their initial values
    RESET_ASSIGNS = enum.auto()
    VARIABLE_ASSIGNS = LOAD_ASSIGNS | RESET_ASSIGNS


def _env_flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class GraphDSLConfig:
    debug: bool = False
    device: str = "cpu"
    # Ceiling on outstanding asynchronous submissions during bulk runs
    max_in_flight: int = 2
    default_learning_rate: float = 0.05
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "GraphDSLConfig":
        seed = os.getenv("GRAPH_DSL_SEED")
        return cls(
            debug=_env_flag(os.getenv("GRAPH_DSL_DEBUG")),
            device=os.getenv("GRAPH_DSL_DEVICE", "cpu"),
            max_in_flight=int(os.getenv("GRAPH_DSL_MAX_IN_FLIGHT", "2")),
            seed=int(seed) if seed is not None else None,
        )


config = GraphDSLConfig.from_env()
