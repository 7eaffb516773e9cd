"""
Data collaborators: host tensors and sample sets.
"""

from .tensor import DataType, ParameterRange, Tensor
from .dataset import DataSample, DataSet

__all__ = ["DataType", "ParameterRange", "Tensor", "DataSample", "DataSet"]
