"""
Declarative node descriptors.

A graph is declared as an ordered list of ``Node`` objects. Each node knows
how to emit itself through a ``GraphBuilder``; inputs are referenced by name,
and an omitted input means "the previously emitted node".
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Iterable, List, Optional

from graph_dsl.backend.base import TensorHandle
from graph_dsl.errors import TargetNodesMustBeNamedError, UnreferencedNodeError

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


class Node(abc.ABC):
    """Abstract node declaration."""

    op = "node"
    registers_outputs = True
    exempt_from_reference_check = False

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name
        self.target_modes: List[str] = []
        self.is_target = False
        self.referenced = False
        self.build_error: Optional[Exception] = None

    def target_for_modes(self, modes: Iterable[str]) -> "Node":
        """Retain this node's output when any of ``modes`` is run."""
        if self.name is None:
            self.build_error = TargetNodesMustBeNamedError()
        self.is_target = True
        self.target_modes = list(modes)
        return self

    @abc.abstractmethod
    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        """Emit backend operations, returning one handle per output."""

    def suffixes(self) -> List[str]:
        return [""]

    def target_indices(self) -> Optional[List[int]]:
        """Indices of emitted handles that become targets; ``None`` means all."""
        return None

    def check_referenced(self) -> None:
        if self.exempt_from_reference_check:
            return
        if not self.referenced and not self.is_target:
            raise UnreferencedNodeError(self.describe())

    def clear_referenced(self) -> None:
        self.referenced = False

    def describe(self) -> str:
        if self.name is not None:
            return f"{type(self).__name__} `{self.name}`"
        return f"unnamed {type(self).__name__}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class UnaryNode(Node):
    def __init__(self, input: Optional[str] = None, name: Optional[str] = None) -> None:
        super().__init__(name)
        self.input_name = input


class BinaryNode(Node):
    def __init__(
        self,
        first_input: Optional[str] = None,
        second_input: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        self.first_input = first_input
        self.second_input = second_input


class TernaryNode(Node):
    def __init__(
        self,
        first_input: Optional[str] = None,
        second_input: Optional[str] = None,
        third_input: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        self.first_input = first_input
        self.second_input = second_input
        self.third_input = third_input
