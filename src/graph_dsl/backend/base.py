"""
Narrow interface between the graph layer and a compute backend.

The graph builder only ever talks to a backend through ``ComputeBackend``:
it asks for placeholders, constants, variables and operations, reads back
their shapes, requests gradients and assignment operations, and submits
feeds/targets for execution. Handles are opaque tokens compared by identity.
"""

from __future__ import annotations

import abc
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from graph_dsl.data.tensor import DataType

Shape = Tuple[int, ...]
Results = Dict["TensorHandle", np.ndarray]


@dataclass(eq=False)
class TensorHandle:
    """A value produced inside the backend graph."""

    kind: str  # "placeholder", "constant", "variable", "op", "gradient"
    op: str
    inputs: Tuple["TensorHandle", ...] = ()
    shape: Optional[Shape] = None
    dtype: DataType = DataType.FLOAT32
    name: Optional[str] = None
    attrs: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(eq=False)
class OperationHandle:
    """A side-effecting operation (variable assignment) with no tensor result."""

    op: str
    variable: TensorHandle
    value: TensorHandle
    name: Optional[str] = None


class ComputeBackend(abc.ABC):
    """Abstract compute backend called by the builder and the executor."""

    def acquire(self) -> None:
        """Obtain device/queue resources. Called lazily before the first run."""

    @property
    def is_acquired(self) -> bool:
        return True

    # -- graph construction -----------------------------------------------

    @abc.abstractmethod
    def placeholder(
        self, shape: Sequence[int], dtype: DataType = DataType.FLOAT32, name: Optional[str] = None
    ) -> TensorHandle:
        ...

    @abc.abstractmethod
    def constant(self, value: np.ndarray, name: Optional[str] = None) -> TensorHandle:
        ...

    @abc.abstractmethod
    def variable(self, initial: np.ndarray, name: Optional[str] = None) -> TensorHandle:
        ...

    @abc.abstractmethod
    def variable_from(self, source: TensorHandle, name: Optional[str] = None) -> TensorHandle:
        """Variable initialised from another handle's value on first use."""

    @abc.abstractmethod
    def emit(
        self,
        op: str,
        inputs: Sequence[TensorHandle],
        fn: Callable[..., Any],
        name: Optional[str] = None,
    ) -> TensorHandle:
        ...

    @abc.abstractmethod
    def report_shape(self, handle: TensorHandle) -> Optional[Shape]:
        ...

    @abc.abstractmethod
    def gradients(
        self, loss: TensorHandle, wrt: Sequence[TensorHandle]
    ) -> Dict[TensorHandle, TensorHandle]:
        ...

    @abc.abstractmethod
    def sgd_update(
        self, variable: TensorHandle, gradient: TensorHandle, learning_rate: TensorHandle
    ) -> TensorHandle:
        ...

    @abc.abstractmethod
    def assign(
        self, variable: TensorHandle, value: TensorHandle, name: Optional[str] = None
    ) -> OperationHandle:
        ...

    # -- execution --------------------------------------------------------

    @abc.abstractmethod
    def submit_async(
        self,
        feeds: Mapping[TensorHandle, np.ndarray],
        targets: Sequence[TensorHandle],
        operations: Optional[Sequence[OperationHandle]] = None,
        completion: Optional[Callable[[Results], Any]] = None,
    ) -> "Future[Any]":
        """
        Queue an execution; the future resolves to ``{target: array}``.

        When given, ``completion`` is applied to the results on the queue
        thread and the future resolves to its return value instead.
        """

    def submit(
        self,
        feeds: Mapping[TensorHandle, np.ndarray],
        targets: Sequence[TensorHandle],
        operations: Optional[Sequence[OperationHandle]] = None,
    ) -> Results:
        return self.submit_async(feeds, targets, operations).result()

    def release(self, handles: Sequence[TensorHandle]) -> None:
        """Forget state held for variables of a discarded build."""

    def shutdown(self) -> None:
        """Release device/queue resources."""
