"""
Elementwise and matrix arithmetic nodes. The math itself is torch's.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

import numpy as np
import torch

from graph_dsl.backend.base import TensorHandle
from graph_dsl.errors import InputShapeError
from graph_dsl.graph.node import BinaryNode, TernaryNode, UnaryNode

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


class UnaryOperation(UnaryNode):
    """Base for single-input nodes defined by a torch function."""

    fn: Callable[[torch.Tensor], torch.Tensor]

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        operand = builder.input(self.input_name)
        return [builder.backend.emit(self.op, [operand], type(self).fn, name=builder.full_name(self.name))]


class Absolute(UnaryOperation):
    op = "absolute"
    fn = staticmethod(torch.abs)


class Negative(UnaryOperation):
    op = "negative"
    fn = staticmethod(torch.neg)


class Square(UnaryOperation):
    op = "square"
    fn = staticmethod(torch.square)


class SquareRoot(UnaryOperation):
    op = "squareRoot"
    fn = staticmethod(torch.sqrt)


class Exponent(UnaryOperation):
    op = "exponent"
    fn = staticmethod(torch.exp)


class Logarithm(UnaryOperation):
    op = "logarithm"
    fn = staticmethod(torch.log)


class Reshape(UnaryNode):
    """Reshape to ``shape``; a leading batch dimension on the input is kept."""

    op = "reshape"

    def __init__(self, input: Optional[str] = None, shape: Sequence[int] = (), name: Optional[str] = None) -> None:
        super().__init__(input, name)
        self.shape = tuple(int(d) for d in shape)

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        operand = builder.input(self.input_name)
        shape = self.shape
        in_shape = operand.shape or ()
        if builder.adapter.is_active and in_shape[:1] == (builder.batch_size,):
            shape = (builder.batch_size,) + shape
        if in_shape and int(np.prod(in_shape)) != int(np.prod(shape)):
            raise InputShapeError(f"Cannot reshape {in_shape} to {shape}.")
        return [
            builder.backend.emit(
                self.op, [operand], lambda x: x.reshape(shape), name=builder.full_name(self.name)
            )
        ]


class BinaryOperation(BinaryNode):
    """Base for broadcasting two-input nodes."""

    fn: Callable[[torch.Tensor, torch.Tensor], torch.Tensor]

    def check_shapes(self, first: Sequence[int], second: Sequence[int]) -> None:
        try:
            np.broadcast_shapes(tuple(first), tuple(second))
        except ValueError as exc:
            raise InputShapeError(
                f"{type(self).__name__}: shapes {tuple(first)} and {tuple(second)} do not broadcast."
            ) from exc

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        first = builder.input(self.first_input)
        second = builder.input(self.second_input)
        if first.shape is not None and second.shape is not None:
            self.check_shapes(first.shape, second.shape)
        return [
            builder.backend.emit(self.op, [first, second], type(self).fn, name=builder.full_name(self.name))
        ]


class Addition(BinaryOperation):
    op = "addition"
    fn = staticmethod(torch.add)


class Subtraction(BinaryOperation):
    op = "subtraction"
    fn = staticmethod(torch.sub)


class Multiplication(BinaryOperation):
    op = "multiplication"
    fn = staticmethod(torch.mul)


class Division(BinaryOperation):
    op = "division"
    fn = staticmethod(torch.div)


class MatrixMultiplication(BinaryOperation):
    op = "matrixMultiplication"
    fn = staticmethod(torch.matmul)

    def check_shapes(self, first: Sequence[int], second: Sequence[int]) -> None:
        if len(first) < 1 or len(second) < 1:
            raise InputShapeError("Matrix multiplication needs at least one dimension per operand.")
        inner_first = first[-1]
        inner_second = second[-2] if len(second) > 1 else second[0]
        if inner_first != inner_second:
            raise InputShapeError(
                f"Matrix multiplication inner dimensions differ: {tuple(first)} @ {tuple(second)}."
            )


def _select(condition: torch.Tensor, when_true: torch.Tensor, when_false: torch.Tensor) -> torch.Tensor:
    return torch.where(condition != 0, when_true, when_false)


class Select(TernaryNode):
    """Elementwise ``true_value`` where ``condition`` is non-zero, else ``false_value``."""

    op = "select"

    def __init__(
        self,
        condition: Optional[str] = None,
        true_value: Optional[str] = None,
        false_value: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(condition, true_value, false_value, name)

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        operands = [
            builder.input(self.first_input),
            builder.input(self.second_input),
            builder.input(self.third_input),
        ]
        shapes = [h.shape for h in operands]
        if all(s is not None for s in shapes):
            try:
                np.broadcast_shapes(*shapes)
            except ValueError as exc:
                raise InputShapeError(f"Select: shapes {shapes} do not broadcast.") from exc
        return [builder.backend.emit(self.op, operands, _select, name=builder.full_name(self.name))]
