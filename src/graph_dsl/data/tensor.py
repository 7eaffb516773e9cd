"""
Host-side tensors exchanged with a graph: inputs, results and dataset samples.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from graph_dsl.errors import NotABatchTensorError, SampleDoesntMatchBatchShapeError, TensorError

Shape = Tuple[int, ...]


class DataType(enum.Enum):
    UINT8 = "uint8"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @classmethod
    def from_numpy(cls, dtype: np.dtype) -> "DataType":
        try:
            return cls(np.dtype(dtype).name)
        except ValueError as exc:
            raise TensorError(f"Unsupported tensor element type: {dtype}") from exc


@dataclass(frozen=True)
class ParameterRange:
    """Closed range used for random initialisation."""

    minimum: float
    maximum: float

    def __post_init__(self) -> None:
        if not self.minimum < self.maximum:
            raise TensorError(
                f"Range minimum {self.minimum} must be below maximum {self.maximum}."
            )


def shape_size(shape: Sequence[int]) -> int:
    return int(math.prod(shape))


class Tensor:
    """
    Dense n-dimensional array with element, batch and byte-level access.

    The leading dimension of a batch tensor is the batch index.
    """

    def __init__(self, array: np.ndarray, dtype: Optional[DataType] = None) -> None:
        array = np.asarray(array)
        if dtype is None:
            dtype = DataType.from_numpy(array.dtype)
        self._array = np.array(array, dtype=dtype.numpy_dtype, copy=True, order="C")
        self.dtype = dtype

    # -- construction -----------------------------------------------------

    @classmethod
    def constant(
        cls, shape: Sequence[int], value: float = 0.0, dtype: DataType = DataType.FLOAT32
    ) -> "Tensor":
        return cls(np.full(tuple(shape), value, dtype=dtype.numpy_dtype), dtype)

    @classmethod
    def from_values(
        cls,
        shape: Sequence[int],
        values: Iterable[float],
        dtype: DataType = DataType.FLOAT32,
    ) -> "Tensor":
        flat = np.asarray(list(values), dtype=dtype.numpy_dtype)
        if flat.size != shape_size(shape):
            raise TensorError(
                f"{flat.size} values supplied for a tensor of shape {tuple(shape)}."
            )
        return cls(flat.reshape(tuple(shape)), dtype)

    @classmethod
    def random_uniform(
        cls,
        shape: Sequence[int],
        value_range: ParameterRange,
        dtype: DataType = DataType.FLOAT32,
        rng: Optional[np.random.Generator] = None,
    ) -> "Tensor":
        rng = rng or np.random.default_rng()
        values = rng.uniform(value_range.minimum, value_range.maximum, size=tuple(shape))
        return cls(values, dtype)

    @classmethod
    def random_normal(
        cls,
        shape: Sequence[int],
        mean: float = 0.0,
        standard_deviation: float = 1.0,
        dtype: DataType = DataType.FLOAT32,
        rng: Optional[np.random.Generator] = None,
    ) -> "Tensor":
        rng = rng or np.random.default_rng()
        values = rng.normal(mean, standard_deviation, size=tuple(shape))
        return cls(values, dtype)

    # -- properties -------------------------------------------------------

    @property
    def shape(self) -> Shape:
        return tuple(int(d) for d in self._array.shape)

    @property
    def size(self) -> int:
        return int(self._array.size)

    @property
    def array(self) -> np.ndarray:
        return self._array

    def __repr__(self) -> str:
        return f"Tensor(shape={self.shape}, dtype={self.dtype.value})"

    # -- element access ---------------------------------------------------

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.size:
            raise TensorError(f"Index {index} outside tensor of size {self.size}.")

    def _check_location(self, location: Sequence[int]) -> Tuple[int, ...]:
        if len(location) != self._array.ndim:
            raise TensorError(f"Location {tuple(location)} does not match shape {self.shape}.")
        for pos, dim in zip(location, self.shape):
            if pos < 0 or pos >= dim:
                raise TensorError(f"Location {tuple(location)} outside shape {self.shape}.")
        return tuple(location)

    def element(self, index: int) -> float:
        self._check_index(index)
        return float(self._array.reshape(-1)[index])

    def element_at(self, location: Sequence[int]) -> float:
        return float(self._array[self._check_location(location)])

    def elements(self) -> List[float]:
        return [float(v) for v in self._array.reshape(-1)]

    def set_element(self, index: int, value: float) -> None:
        self._check_index(index)
        self._array.reshape(-1)[index] = value

    def set_element_at(self, location: Sequence[int], value: float) -> None:
        self._array[self._check_location(location)] = value

    def set_elements(self, start_index: int, values: Sequence[float]) -> None:
        if start_index < 0 or start_index + len(values) > self.size:
            raise TensorError("Values do not fit in the tensor from the start index.")
        self._array.reshape(-1)[start_index:start_index + len(values)] = values

    def set_one_hot(self, hot: int) -> None:
        if self.size == 1:
            self._array.reshape(-1)[0] = hot
            return
        self._check_index(hot)
        self._array.fill(0)
        self._array.reshape(-1)[hot] = 1

    def classification(self) -> int:
        """Index of the largest element (first one on ties)."""
        return int(np.argmax(self._array.reshape(-1)))

    # -- batch access -----------------------------------------------------

    def _batch_start(self, batch_index: int) -> Tuple[int, int]:
        if self._array.ndim < 2:
            raise NotABatchTensorError()
        if batch_index < 0 or batch_index >= self.shape[0]:
            raise TensorError(f"Batch index {batch_index} outside batch of {self.shape[0]}.")
        sample_size = shape_size(self.shape[1:])
        return batch_index * sample_size, sample_size

    def set_batch_sample(self, tensor: "Tensor", batch_index: int) -> None:
        if self._array.ndim < 2:
            raise NotABatchTensorError()
        if tensor.shape != self.shape[1:]:
            raise SampleDoesntMatchBatchShapeError()
        if tensor.dtype != self.dtype:
            raise TensorError("Sample element type does not match the batch tensor.")
        self._batch_start(batch_index)
        self._array[batch_index] = tensor.array

    def values_for_batch(self, batch_index: int) -> List[float]:
        start, size = self._batch_start(batch_index)
        return [float(v) for v in self._array.reshape(-1)[start:start + size]]

    def classification_for_batch(self, batch_index: int) -> int:
        start, size = self._batch_start(batch_index)
        return int(np.argmax(self._array.reshape(-1)[start:start + size]))

    def tensor_for_batch(self, batch_index: int) -> "Tensor":
        self._batch_start(batch_index)
        return Tensor(self._array[batch_index], self.dtype)

    # -- persistence ------------------------------------------------------

    def to_bytes(self) -> bytes:
        return self._array.astype(self.dtype.numpy_dtype.newbyteorder("<"), copy=False).tobytes()

    @classmethod
    def from_bytes(cls, data: bytes, shape: Sequence[int], dtype: DataType) -> "Tensor":
        expected = shape_size(shape) * dtype.numpy_dtype.itemsize
        if len(data) != expected:
            raise TensorError(f"Expected {expected} bytes for shape {tuple(shape)}, got {len(data)}.")
        flat = np.frombuffer(data, dtype=dtype.numpy_dtype.newbyteorder("<"))
        return cls(flat.reshape(tuple(shape)), dtype)

    # -- comparison -------------------------------------------------------

    def total_difference(self, other: "Tensor") -> float:
        """Sum of absolute element differences; ``inf`` when shapes differ."""
        if self.shape != other.shape:
            return math.inf
        diff = self._array.astype(np.float64) - other.array.astype(np.float64)
        return float(np.abs(diff).sum())

    def compare(self, other: "Tensor", max_difference: float) -> bool:
        if self.shape != other.shape:
            return False
        diff = np.abs(self._array.astype(np.float64) - other.array.astype(np.float64))
        return bool((diff <= max_difference).all())
