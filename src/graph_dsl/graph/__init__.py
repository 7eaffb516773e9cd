"""
Graph declaration and construction.

- `Node` base classes for declarations (see `node.py`)
- `NameTable` for scoped name resolution (see `scope.py`)
- `GraphBuilder` and the `BuiltGraph` it produces (see `builder.py`, `ir.py`)
- `SubGraph` composition and the user-facing `Graph`.
"""

from .node import BinaryNode, Node, TernaryNode, UnaryNode
from .ir import BuiltGraph, FeedSlot, LearnableVariable, LoadResetAssign, ResolvedNode, TargetEntry
from .scope import NameTable
from .builder import GraphBuilder
from .subgraph import SubGraph, SubGraphDefinition, SubGraphPlaceHolder
from .graph import Graph

__all__ = [
    "Node",
    "UnaryNode",
    "BinaryNode",
    "TernaryNode",
    "BuiltGraph",
    "FeedSlot",
    "LearnableVariable",
    "LoadResetAssign",
    "ResolvedNode",
    "TargetEntry",
    "NameTable",
    "GraphBuilder",
    "SubGraph",
    "SubGraphDefinition",
    "SubGraphPlaceHolder",
    "Graph",
]
