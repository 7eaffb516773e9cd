"""
Reusable blocks of node declarations instantiated under a name prefix.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Mapping, Optional

from graph_dsl.backend.base import TensorHandle
from graph_dsl.data.tensor import Tensor
from graph_dsl.errors import NodeCannotBeTargetError, SubGraphPlaceHolderNotInInputMapError
from graph_dsl.graph.node import Node

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


class SubGraphDefinition:
    """An ordered node list that can be instantiated any number of times."""

    def __init__(self, nodes: Iterable[Node]) -> None:
        self.nodes: List[Node] = list(nodes)


class SubGraph(Node):
    """
    Instance of a ``SubGraphDefinition``.

    Every node inside is registered as ``<name>_<local name>``. ``input_map``
    maps the definition's ``SubGraphPlaceHolder`` names to names visible in
    the enclosing scope (``None`` means the previously emitted node).
    """

    op = "subgraph"
    registers_outputs = False

    def __init__(
        self,
        definition: SubGraphDefinition,
        name: str,
        input_map: Optional[Mapping[str, Optional[str]]] = None,
        data_tensor_map: Optional[Mapping[str, Tensor]] = None,
    ) -> None:
        super().__init__(name)
        self.definition = definition
        self.input_map = dict(input_map or {})
        self.data_tensor_map = dict(data_tensor_map or {})

    def target_for_modes(self, modes: Iterable[str]) -> "Node":
        self.build_error = NodeCannotBeTargetError("subgraph instance")
        return self

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        assert self.name is not None
        builder.names.push_scope(self.name, self.input_map, self.data_tensor_map)
        try:
            builder.walk(self.definition.nodes)
        finally:
            builder.names.pop_scope()
        return []

    def check_referenced(self) -> None:
        for node in self.definition.nodes:
            node.check_referenced()

    def clear_referenced(self) -> None:
        super().clear_referenced()
        for node in self.definition.nodes:
            node.clear_referenced()


class SubGraphPlaceHolder(Node):
    """Input of a subgraph, bound through the instance's input map."""

    op = "subgraphPlaceHolder"
    exempt_from_reference_check = True

    def __init__(self, name: str) -> None:
        super().__init__(name)

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        if self.name not in builder.input_map:
            raise SubGraphPlaceHolderNotInInputMapError(self.name)
        return [builder.input_from_enclosing_scope(builder.input_map[self.name])]
