"""
Runtime support for executing built graphs.

This layer is responsible for:
- Routing a mode to its targets, feeds and learning operations.
- Hiding the batch dimension for single-sample runs.
- Bounding outstanding submissions during bulk training and testing.
- Encoding saved variable data.
"""

from .batching import BatchAdapter
from .executor import GraphExecutor, Submission
from .profiling import Profiler, RunStats
from .scheduler import BulkScheduler
from .storage import VariableStore

__all__ = [
    "BatchAdapter",
    "GraphExecutor",
    "Submission",
    "BulkScheduler",
    "VariableStore",
    "Profiler",
    "RunStats",
]
