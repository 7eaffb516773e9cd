"""
graph-dsl

Declarative computation graphs: declare nodes, build once, then run,
train and test by mode.
"""

from .graph import Graph, SubGraph, SubGraphDefinition, SubGraphPlaceHolder
from .data import DataSample, DataSet, DataType, ParameterRange, Tensor
from .utils import BuildOptions
from .backend import ComputeBackend, TorchBackend
from . import errors, nodes

__all__ = [
    "Graph",
    "SubGraph",
    "SubGraphDefinition",
    "SubGraphPlaceHolder",
    "DataSample",
    "DataSet",
    "DataType",
    "ParameterRange",
    "Tensor",
    "BuildOptions",
    "ComputeBackend",
    "TorchBackend",
    "errors",
    "nodes",
]
