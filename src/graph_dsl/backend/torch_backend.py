"""
Reference compute backend built on PyTorch.

Handles form a lazily evaluated DAG. Shapes are inferred at emit time by
running each operation on ``meta`` tensors. Submissions execute in order on a
single queue thread, so variable state is only ever mutated from that thread.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import torch

from graph_dsl.backend.base import ComputeBackend, OperationHandle, Results, Shape, TensorHandle
from graph_dsl.data.tensor import DataType
from graph_dsl.errors import FeedShapeMismatchError, InputShapeError, PlaceHolderInputNotFoundError
from graph_dsl.utils import config, get_logger

log = get_logger(__name__)

_TORCH_DTYPES: Dict[DataType, torch.dtype] = {
    DataType.UINT8: torch.uint8,
    DataType.FLOAT32: torch.float32,
    DataType.FLOAT64: torch.float64,
}
_DATA_TYPES = {v: k for k, v in _TORCH_DTYPES.items()}


def _data_type(dtype: torch.dtype) -> DataType:
    return _DATA_TYPES.get(dtype, DataType.FLOAT32)


class _GradientGroup:
    """Gradients of one loss with respect to several variables, computed together."""

    def __init__(self, loss: TensorHandle, wrt: Sequence[TensorHandle]) -> None:
        self.loss = loss
        self.wrt = list(wrt)
        self.handles: List[TensorHandle] = []


class _Evaluation:
    """Values computed for a single submission."""

    def __init__(
        self,
        backend: "TorchBackend",
        feeds: Mapping[TensorHandle, torch.Tensor],
        track_grad: bool,
    ) -> None:
        self.backend = backend
        self.feeds = feeds
        self.track_grad = track_grad
        self.values: Dict[TensorHandle, torch.Tensor] = {}

    def value(self, handle: TensorHandle) -> torch.Tensor:
        cached = self.values.get(handle)
        if cached is not None:
            return cached

        if handle.kind == "placeholder":
            if handle not in self.feeds:
                raise PlaceHolderInputNotFoundError(handle.name)
            result = self.feeds[handle]
        elif handle.kind == "constant":
            result = handle.attrs["value"]
        elif handle.kind == "variable":
            result = self._variable(handle)
        elif handle.kind == "op":
            args = [self.value(arg) for arg in handle.inputs]
            result = handle.attrs["fn"](*args)
        elif handle.kind == "gradient":
            self._gradients(handle.attrs["group"])
            return self.values[handle]
        else:
            raise ValueError(f"Unknown handle kind: {handle.kind}")

        self.values[handle] = result
        return result

    def _variable(self, handle: TensorHandle) -> torch.Tensor:
        state = self.backend._state.get(handle)
        if state is None:
            source = handle.attrs["source"]
            state = self.value(source).detach().clone()
            self.backend._state[handle] = state
        leaf = state.detach()
        if self.track_grad and leaf.is_floating_point():
            leaf.requires_grad_(True)
        return leaf

    def _gradients(self, group: _GradientGroup) -> None:
        loss = self.value(group.loss)
        wrt_values = [self.value(v) for v in group.wrt]
        if loss.requires_grad:
            grads = torch.autograd.grad(
                loss.sum(), wrt_values, retain_graph=True, allow_unused=True
            )
        else:
            grads = tuple(None for _ in wrt_values)
        for handle, grad, var_value in zip(group.handles, grads, wrt_values):
            self.values[handle] = torch.zeros_like(var_value) if grad is None else grad


class TorchBackend(ComputeBackend):
    def __init__(self, device: Optional[str] = None) -> None:
        self.device = torch.device(device or config.device)
        self._state: Dict[TensorHandle, Optional[torch.Tensor]] = {}
        self._queue: Optional[ThreadPoolExecutor] = None
        self._queue_lock = threading.Lock()

    # -- resources --------------------------------------------------------

    def acquire(self) -> None:
        with self._queue_lock:
            if self._queue is not None:
                return
            if self.device.type == "cuda" and not torch.cuda.is_available():
                raise RuntimeError("CUDA device requested but not available.")
            self._queue = ThreadPoolExecutor(max_workers=1, thread_name_prefix="graph-dsl-queue")
            log.debug("Acquired command queue on device %s", self.device)

    @property
    def is_acquired(self) -> bool:
        return self._queue is not None

    def release(self, handles: Sequence[TensorHandle]) -> None:
        handles = list(handles)

        def _drop() -> None:
            for handle in handles:
                self._state.pop(handle, None)

        # Runs behind queued work so no pending submission re-adds a handle.
        with self._queue_lock:
            queue = self._queue
        if queue is None:
            _drop()
        else:
            queue.submit(_drop).result()

    def shutdown(self) -> None:
        with self._queue_lock:
            if self._queue is not None:
                self._queue.shutdown(wait=True)
                self._queue = None

    # -- graph construction -----------------------------------------------

    def placeholder(
        self, shape: Sequence[int], dtype: DataType = DataType.FLOAT32, name: Optional[str] = None
    ) -> TensorHandle:
        return TensorHandle(
            kind="placeholder", op="placeholder", shape=tuple(shape), dtype=dtype, name=name
        )

    def constant(self, value: np.ndarray, name: Optional[str] = None) -> TensorHandle:
        value = np.asarray(value)
        tensor = torch.as_tensor(value.copy(), device=self.device)
        return TensorHandle(
            kind="constant",
            op="constant",
            shape=tuple(tensor.shape),
            dtype=_data_type(tensor.dtype),
            name=name,
            attrs={"value": tensor},
        )

    def variable(self, initial: np.ndarray, name: Optional[str] = None) -> TensorHandle:
        tensor = torch.as_tensor(np.asarray(initial).copy(), device=self.device)
        handle = TensorHandle(
            kind="variable",
            op="variable",
            shape=tuple(tensor.shape),
            dtype=_data_type(tensor.dtype),
            name=name,
        )
        self._state[handle] = tensor
        return handle

    def variable_from(self, source: TensorHandle, name: Optional[str] = None) -> TensorHandle:
        handle = TensorHandle(
            kind="variable",
            op="variable",
            inputs=(source,),
            shape=source.shape,
            dtype=source.dtype,
            name=name,
            attrs={"source": source},
        )
        self._state[handle] = None
        return handle

    def emit(
        self,
        op: str,
        inputs: Sequence[TensorHandle],
        fn: Callable[..., Any],
        name: Optional[str] = None,
    ) -> TensorHandle:
        shape, dtype = self._infer(op, inputs, fn)
        return TensorHandle(
            kind="op",
            op=op,
            inputs=tuple(inputs),
            shape=shape,
            dtype=dtype,
            name=name,
            attrs={"fn": fn},
        )

    def _infer(
        self, op: str, inputs: Sequence[TensorHandle], fn: Callable[..., Any]
    ) -> Tuple[Optional[Shape], DataType]:
        if any(h.shape is None for h in inputs):
            return None, DataType.FLOAT32
        meta = [
            torch.empty(h.shape, dtype=_TORCH_DTYPES[h.dtype], device="meta") for h in inputs
        ]
        try:
            out = fn(*meta)
        except NotImplementedError:
            return None, DataType.FLOAT32
        except (RuntimeError, ValueError, TypeError, IndexError) as exc:
            raise InputShapeError(f"{op}: {exc}") from exc
        if not isinstance(out, torch.Tensor):
            return None, DataType.FLOAT32
        return tuple(int(d) for d in out.shape), _data_type(out.dtype)

    def report_shape(self, handle: TensorHandle) -> Optional[Shape]:
        return handle.shape

    def gradients(
        self, loss: TensorHandle, wrt: Sequence[TensorHandle]
    ) -> Dict[TensorHandle, TensorHandle]:
        group = _GradientGroup(loss, wrt)
        result: Dict[TensorHandle, TensorHandle] = {}
        for var in wrt:
            grad = TensorHandle(
                kind="gradient",
                op="gradient",
                inputs=(loss, var),
                shape=var.shape,
                dtype=var.dtype,
                attrs={"group": group},
            )
            group.handles.append(grad)
            result[var] = grad
        return result

    def sgd_update(
        self, variable: TensorHandle, gradient: TensorHandle, learning_rate: TensorHandle
    ) -> TensorHandle:
        return self.emit(
            "sgd_update",
            [variable, gradient, learning_rate],
            lambda value, grad, rate: value - rate * grad,
        )

    def assign(
        self, variable: TensorHandle, value: TensorHandle, name: Optional[str] = None
    ) -> OperationHandle:
        return OperationHandle(op="assign", variable=variable, value=value, name=name)

    # -- execution --------------------------------------------------------

    def submit_async(
        self,
        feeds: Mapping[TensorHandle, np.ndarray],
        targets: Sequence[TensorHandle],
        operations: Optional[Sequence[OperationHandle]] = None,
        completion: Optional[Callable[[Results], Any]] = None,
    ) -> "Future[Any]":
        self.acquire()
        assert self._queue is not None
        return self._queue.submit(
            self._execute, dict(feeds), list(targets), list(operations or []), completion
        )

    def _execute(
        self,
        feeds: Dict[TensorHandle, np.ndarray],
        targets: List[TensorHandle],
        operations: List[OperationHandle],
        completion: Optional[Callable[[Results], Any]] = None,
    ) -> Any:
        torch_feeds: Dict[TensorHandle, torch.Tensor] = {}
        for handle, array in feeds.items():
            array = np.asarray(array)
            if handle.shape is not None and tuple(array.shape) != handle.shape:
                raise FeedShapeMismatchError(handle.name, handle.shape, tuple(array.shape))
            torch_feeds[handle] = torch.as_tensor(
                array.copy(), dtype=_TORCH_DTYPES[handle.dtype], device=self.device
            )

        track_grad = bool(operations)
        evaluation = _Evaluation(self, torch_feeds, track_grad)
        with torch.set_grad_enabled(track_grad):
            outputs = {handle: evaluation.value(handle) for handle in targets}
            pending = [
                (op.variable, evaluation.value(op.value).detach().clone()) for op in operations
            ]

        with torch.no_grad():
            for variable, value in pending:
                value = value.to(_TORCH_DTYPES[variable.dtype])
                if variable.shape is not None:
                    value = value.reshape(variable.shape)
                self._state[variable] = value

        results = {handle: _to_numpy(tensor) for handle, tensor in outputs.items()}
        return completion(results) if completion is not None else results


def _to_numpy(tensor: torch.Tensor) -> np.ndarray:
    tensor = tensor.detach().to("cpu")
    if tensor.dtype not in _DATA_TYPES:
        tensor = tensor.to(torch.float32)
    return tensor.numpy().copy()
