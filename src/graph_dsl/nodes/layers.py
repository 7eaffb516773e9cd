"""
Composite neural network layers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

import torch

from graph_dsl.backend.base import TensorHandle
from graph_dsl.data.tensor import DataType, ParameterRange, shape_size
from graph_dsl.errors import GraphBuildError, UnknownShapeError
from graph_dsl.graph.node import UnaryNode
from graph_dsl.nodes.activation import ActivationFunction
from graph_dsl.nodes.leaf import Variable

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


class FullyConnectedLayer(UnaryNode):
    """
    Dense layer: ``activation(flatten(input) @ weights + biases)``.

    Intermediate tensors are registered as ``<name>_inputReshape``,
    ``<name>_weights``, ``<name>_biases``, ``<name>_matrixMult``,
    ``<name>_outputReshape`` and ``<name>_biasAdded`` when present; the final
    tensor carries the layer's own name and is the only targetable output.
    """

    op = "fullyConnectedLayer"

    def __init__(
        self,
        input: Optional[str] = None,
        output_shape: Sequence[int] = (1,),
        activation: ActivationFunction = ActivationFunction.NONE,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(input, name)
        self.output_shape = tuple(int(d) for d in output_shape)
        self.activation = activation
        self.use_bias = True
        self.weight_initial_range = ParameterRange(-0.5, 0.5)
        self.bias_initial_range = ParameterRange(-0.5, 0.5)
        self.loss: Optional[str] = None
        self._suffixes: List[str] = []
        self._target_indices: List[int] = []

    # -- modifiers --------------------------------------------------------

    def without_bias(self) -> "FullyConnectedLayer":
        self.use_bias = False
        return self

    def weight_range(self, minimum: float, maximum: float) -> "FullyConnectedLayer":
        self.weight_initial_range = ParameterRange(minimum, maximum)
        return self

    def bias_range(self, minimum: float, maximum: float) -> "FullyConnectedLayer":
        self.bias_initial_range = ParameterRange(minimum, maximum)
        return self

    def learn_with_respect_to(self, loss: str) -> "FullyConnectedLayer":
        self.loss = loss
        return self

    # -- emission ---------------------------------------------------------

    def suffixes(self) -> List[str]:
        return list(self._suffixes)

    def target_indices(self) -> Optional[List[int]]:
        return list(self._target_indices)

    def _add(self, outputs: List[Optional[TensorHandle]], handle: TensorHandle, suffix: str) -> TensorHandle:
        if suffix == "":
            self._target_indices.append(len(outputs))
        self._suffixes.append(suffix)
        outputs.append(handle)
        return handle

    def _variable(
        self,
        builder: "GraphBuilder",
        shape: Sequence[int],
        value_range: ParameterRange,
        full_name: str,
    ) -> TensorHandle:
        spec = Variable(shape=shape, dtype=DataType.FLOAT32, random_range=value_range, name=full_name)
        initial = spec.initial_tensor()
        assert initial is not None
        handle = builder.backend.variable(initial.array, name=full_name)
        builder.add_variable(full_name, spec, handle, loss=self.loss)
        return handle

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        if self.name is None:
            raise GraphBuildError("FullyConnectedLayer nodes must be named.")
        self._suffixes = []
        self._target_indices = []
        outputs: List[Optional[TensorHandle]] = []
        backend = builder.backend
        full_name = builder.full_name(self.name)
        assert full_name is not None

        source = builder.input(self.input_name)
        if source.shape is None:
            raise UnknownShapeError(self.op)

        in_shape = tuple(source.shape)
        rows = 1
        if builder.adapter.is_active and in_shape[:1] == (builder.batch_size,):
            rows = builder.batch_size
        features = shape_size(in_shape) // rows
        flat = source
        if in_shape != (rows, features):
            flat = self._add(
                outputs,
                backend.emit("reshape", [source], lambda x: x.reshape(rows, features),
                             name=full_name + "_inputReshape"),
                "_inputReshape",
            )

        out_size = shape_size(self.output_shape)
        weights = self._variable(builder, (features, out_size), self.weight_initial_range, full_name + "_weights")
        self._add(outputs, weights, "_weights")
        biases = None
        if self.use_bias:
            biases = self._variable(builder, self.output_shape, self.bias_initial_range, full_name + "_biases")
            self._add(outputs, biases, "_biases")

        activation = self.activation.fn
        has_downstream = self.use_bias or activation is not None
        result = self._add(
            outputs,
            backend.emit("matrixMultiplication", [flat, weights], torch.matmul, name=full_name),
            "_matrixMult" if has_downstream else "",
        )

        final_shape = self.output_shape if rows == 1 else (rows,) + self.output_shape
        if result.shape != final_shape:
            if not has_downstream:
                # The matrix product is not final; rename it.
                self._suffixes[-1] = "_matrixMult"
                self._target_indices.pop()
            result = self._add(
                outputs,
                backend.emit("reshape", [result], lambda x: x.reshape(final_shape),
                             name=full_name + "_outputReshape"),
                "_outputReshape" if has_downstream else "",
            )

        if biases is not None:
            result = self._add(
                outputs,
                backend.emit("addition", [result, biases], torch.add, name=full_name),
                "_biasAdded" if activation is not None else "",
            )

        if activation is not None:
            self._add(outputs, backend.emit(self.activation.value, [result], activation, name=full_name), "")

        return outputs
