"""
Compute backends the graph builder and executor talk to.
"""

from .base import ComputeBackend, OperationHandle, Results, Shape, TensorHandle
from .torch_backend import TorchBackend

__all__ = ["ComputeBackend", "OperationHandle", "Results", "Shape", "TensorHandle", "TorchBackend"]
