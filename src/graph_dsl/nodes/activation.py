"""
Activation function nodes.
"""

from __future__ import annotations

import enum
from functools import partial
from typing import TYPE_CHECKING, Callable, List, Optional

import torch

from graph_dsl.backend.base import TensorHandle
from graph_dsl.graph.node import UnaryNode
from graph_dsl.nodes.arithmetic import UnaryOperation

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


class ActivationFunction(enum.Enum):
    NONE = "none"
    RELU = "relu"
    TANH = "tanh"
    SIGMOID = "sigmoid"

    @property
    def fn(self) -> Optional[Callable[[torch.Tensor], torch.Tensor]]:
        return _ACTIVATIONS.get(self)


_ACTIVATIONS = {
    ActivationFunction.RELU: torch.relu,
    ActivationFunction.TANH: torch.tanh,
    ActivationFunction.SIGMOID: torch.sigmoid,
}


class ReLU(UnaryOperation):
    op = "reLU"
    fn = staticmethod(torch.relu)


class Sigmoid(UnaryOperation):
    op = "sigmoid"
    fn = staticmethod(torch.sigmoid)


class Tanh(UnaryOperation):
    op = "tanh"
    fn = staticmethod(torch.tanh)


class SoftMax(UnaryNode):
    op = "softMax"

    def __init__(self, input: Optional[str] = None, axis: int = -1, name: Optional[str] = None) -> None:
        super().__init__(input, name)
        self.axis = axis

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        operand = builder.input(self.input_name)
        fn = partial(torch.softmax, dim=self.axis)
        return [builder.backend.emit(self.op, [operand], fn, name=builder.full_name(self.name))]
