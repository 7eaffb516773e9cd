"""
Leaf nodes: graph inputs, constants, variables and the learning configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

import numpy as np

from graph_dsl.backend.base import TensorHandle
from graph_dsl.data.tensor import DataType, ParameterRange, Tensor
from graph_dsl.errors import (
    GraphBuildError,
    MoreThanOneLearningNodeError,
    ReferencedDataTensorNotFoundError,
    TensorError,
    VariableLearningNodeMustBeNamedError,
)
from graph_dsl.graph.node import Node

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


class PlaceHolder(Node):
    """
    External input fed on every run.

    ``modes`` restricts the modes that require this input; an empty list means
    all modes. The declared shape excludes any batch dimension.
    """

    op = "placeholder"

    def __init__(
        self,
        shape: Sequence[int],
        modes: Iterable[str] = (),
        name: Optional[str] = None,
        dtype: DataType = DataType.FLOAT32,
    ) -> None:
        super().__init__(name)
        self.shape = tuple(int(d) for d in shape)
        self.modes = list(modes)
        self.dtype = dtype
        self.is_batch_exempt = False

    def batch_exempt(self) -> "PlaceHolder":
        """Do not prepend the graph batch dimension to this input."""
        self.is_batch_exempt = True
        return self

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        if self.name is None:
            raise GraphBuildError("PlaceHolder nodes must be named.")
        full_name = builder.full_name(self.name)
        shape = builder.adapter.expand_shape(self.shape, self.is_batch_exempt)
        handle = builder.backend.placeholder(shape, self.dtype, name=full_name)
        builder.add_feed(full_name, handle, self.modes, self.is_batch_exempt)
        return [handle]


def _referenced_tensor(builder: "GraphBuilder", reference: str) -> Tensor:
    tensor = builder.data_tensors.get(reference)
    if tensor is None:
        raise ReferencedDataTensorNotFoundError(reference)
    return tensor


class Constant(Node):
    """Fixed tensor, from a fill value, explicit values or a referenced data tensor."""

    op = "constant"

    def __init__(
        self,
        shape: Optional[Sequence[int]] = None,
        value: Optional[float] = None,
        values: Optional[Tensor] = None,
        tensor_reference: Optional[str] = None,
        dtype: DataType = DataType.FLOAT32,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        sources = [value is not None, values is not None, tensor_reference is not None]
        if sum(sources) != 1:
            raise TensorError("Constant needs exactly one of value, values or tensor_reference.")
        if value is not None and shape is None:
            raise TensorError("Constant with a fill value needs a shape.")
        self.shape = tuple(shape) if shape is not None else None
        self.value = value
        self.values = values
        self.tensor_reference = tensor_reference
        self.dtype = dtype

    def tensor(self, builder: "GraphBuilder") -> Tensor:
        if self.tensor_reference is not None:
            return _referenced_tensor(builder, self.tensor_reference)
        if self.values is not None:
            return self.values
        assert self.shape is not None and self.value is not None
        return Tensor.constant(self.shape, self.value, self.dtype)

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        tensor = self.tensor(builder)
        return [builder.backend.constant(tensor.array, name=builder.full_name(self.name))]


class Variable(Node):
    """
    Mutable graph state.

    Exactly one initial value source is given: explicit ``values``, a
    ``tensor_reference`` into the subgraph data tensors, a ``random_range``
    or ``random_mean``/``random_std`` draw, a constant ``initial_value``, or
    the value of another node via ``input_tensor``.
    """

    op = "variable"

    def __init__(
        self,
        values: Optional[Tensor] = None,
        tensor_reference: Optional[str] = None,
        shape: Optional[Sequence[int]] = None,
        dtype: DataType = DataType.FLOAT32,
        random_range: Optional[ParameterRange] = None,
        random_mean: Optional[float] = None,
        random_std: float = 1.0,
        initial_value: Optional[float] = None,
        input_tensor: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        sources = [
            values is not None,
            tensor_reference is not None,
            random_range is not None,
            random_mean is not None,
            initial_value is not None,
            input_tensor is not None,
        ]
        if sum(sources) != 1:
            raise TensorError("Variable needs exactly one initial value source.")
        generated = random_range is not None or random_mean is not None or initial_value is not None
        if generated and shape is None:
            raise TensorError("Variable with a generated initial value needs a shape.")
        self.values = values
        self.tensor_reference = tensor_reference
        self.shape = tuple(shape) if shape is not None else None
        self.dtype = dtype
        self.random_range = random_range
        self.random_mean = random_mean
        self.random_std = random_std
        self.initial_value = initial_value
        self.input_tensor = input_tensor
        self.loss: Optional[str] = None
        self._referenced_data: Optional[Tensor] = None

    def learn_with_respect_to(self, loss: str) -> "Variable":
        """Update this variable by gradient descent on the named loss."""
        self.loss = loss
        return self

    def initial_tensor(self, rng: Optional[np.random.Generator] = None) -> Optional[Tensor]:
        """
        A fresh initial value. Random sources draw new values on every call;
        variables initialised from another node return ``None``.
        """
        if self.values is not None:
            return self.values
        if self.tensor_reference is not None:
            return self._referenced_data
        assert self.shape is not None or self.input_tensor is not None
        if self.random_range is not None:
            return Tensor.random_uniform(self.shape, self.random_range, self.dtype, rng)
        if self.random_mean is not None:
            return Tensor.random_normal(self.shape, self.random_mean, self.random_std, self.dtype, rng)
        if self.initial_value is not None:
            return Tensor.constant(self.shape, self.initial_value, self.dtype)
        return None

    def reset_tensor(self, rng: Optional[np.random.Generator] = None) -> Optional[Tensor]:
        return self.initial_tensor(rng)

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        full_name = builder.full_name(self.name)
        source: Optional[TensorHandle] = None
        if self.input_tensor is not None:
            source = builder.input(self.input_tensor)
            handle = builder.backend.variable_from(source, name=full_name)
        else:
            if self.tensor_reference is not None:
                self._referenced_data = _referenced_tensor(builder, self.tensor_reference)
            tensor = self.initial_tensor()
            assert tensor is not None
            handle = builder.backend.variable(tensor.array, name=full_name)
        builder.add_variable(full_name or "", self, handle, loss=self.loss, source=source)
        return [handle]


class Learning(Node):
    """
    Learning-rate configuration; at most one per graph.

    With ``constant=False`` the rate is a runtime input that can be changed
    on each run, and the node must be named.
    """

    op = "learning"
    exempt_from_reference_check = True

    def __init__(
        self,
        constant: bool = True,
        learning_rate: float = 0.05,
        learning_modes: Iterable[str] = (),
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        self.constant = constant
        self.learning_rate = learning_rate
        self.learning_modes = list(learning_modes)

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        if builder.seen_learning:
            raise MoreThanOneLearningNodeError()
        full_name = builder.full_name(self.name)
        if self.constant:
            value = np.asarray([self.learning_rate], dtype=np.float32)
            handle = builder.backend.constant(value, name=full_name)
        else:
            if self.name is None:
                raise VariableLearningNodeMustBeNamedError()
            handle = builder.backend.placeholder((1,), DataType.FLOAT32, name=full_name)
        builder.set_learning(handle, self.learning_rate, self.constant, self.learning_modes)
        return [handle]
