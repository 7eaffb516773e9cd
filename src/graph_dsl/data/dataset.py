"""
In-memory sample collections used by the bulk training and testing runs.
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from graph_dsl.data.tensor import DataType, Shape, Tensor
from graph_dsl.errors import (
    DataSetError,
    DataSetLockedError,
    SampleShapeMismatchError,
    SampleTypeMismatchError,
)


@dataclass
class DataSample:
    inputs: Tensor
    outputs: Tensor
    output_class: int = 0


class DataSet:
    """
    Ordered samples sharing one input and one output shape/type.

    Bulk operations call ``lock()`` for their whole duration; a second bulk
    operation on the same set fails with ``DataSetLockedError`` instead of
    interleaving with the first.
    """

    def __init__(
        self,
        input_shape: Sequence[int],
        input_type: DataType,
        output_shape: Sequence[int],
        output_type: DataType,
    ) -> None:
        self.input_shape: Shape = tuple(input_shape)
        self.input_type = input_type
        self.output_shape: Shape = tuple(output_shape)
        self.output_type = output_type
        self.samples: List[DataSample] = []
        self.labels: Optional[List[str]] = None
        self._lock_guard = threading.Lock()
        self._locked = False

    @property
    def num_samples(self) -> int:
        return len(self.samples)

    def __len__(self) -> int:
        return len(self.samples)

    # -- exclusive bulk access --------------------------------------------

    def lock(self) -> None:
        with self._lock_guard:
            if self._locked:
                raise DataSetLockedError()
            self._locked = True

    def unlock(self) -> None:
        with self._lock_guard:
            self._locked = False

    @property
    def is_locked(self) -> bool:
        return self._locked

    # -- labels -----------------------------------------------------------

    def label_index(self, label: str) -> int:
        """Index of ``label`` (case-insensitive), appending it when new."""
        if self.labels is None:
            self.labels = []
        for index, existing in enumerate(self.labels):
            if existing.casefold() == label.casefold():
                return index
        self.labels.append(label)
        return len(self.labels) - 1

    def label(self, label_index: int) -> Optional[str]:
        if self.labels is None or not 0 <= label_index < len(self.labels):
            return None
        return self.labels[label_index]

    # -- samples ----------------------------------------------------------

    def append_sample(self, sample: DataSample) -> None:
        if sample.inputs.shape != self.input_shape:
            raise SampleShapeMismatchError(
                f"Sample input shape {sample.inputs.shape} != {self.input_shape}"
            )
        if sample.outputs.shape != self.output_shape:
            raise SampleShapeMismatchError(
                f"Sample output shape {sample.outputs.shape} != {self.output_shape}"
            )
        if sample.inputs.dtype != self.input_type:
            raise SampleTypeMismatchError("Sample input type does not match the DataSet.")
        if sample.outputs.dtype != self.output_type:
            raise SampleTypeMismatchError("Sample output type does not match the DataSet.")
        self.samples.append(sample)

    def sample(self, sample_index: int) -> DataSample:
        if not 0 <= sample_index < len(self.samples):
            raise DataSetError(f"Sample index {sample_index} out of range.")
        return self.samples[sample_index]

    def batch(self, sample_indices: Sequence[int]) -> Tuple[Tensor, Tensor]:
        """Pack the indexed samples into one (inputs, outputs) batch tensor pair."""
        batch_size = len(sample_indices)
        inputs = Tensor.constant((batch_size,) + self.input_shape, 0.0, self.input_type)
        outputs = Tensor.constant((batch_size,) + self.output_shape, 0.0, self.output_type)
        for batch_index, sample_index in enumerate(sample_indices):
            sample = self.sample(sample_index)
            inputs.set_batch_sample(sample.inputs, batch_index)
            outputs.set_batch_sample(sample.outputs, batch_index)
        return inputs, outputs

    def split_randomly(
        self, second_set_count: int, rng: Optional[random.Random] = None
    ) -> Tuple["DataSet", "DataSet"]:
        """Shuffle into two sets, the second holding ``second_set_count`` samples."""
        if second_set_count >= self.num_samples:
            raise DataSetError("Second set must be smaller than the DataSet.")
        rng = rng or random.Random()
        order = list(range(self.num_samples))
        rng.shuffle(order)

        first = DataSet(self.input_shape, self.input_type, self.output_shape, self.output_type)
        second = DataSet(self.input_shape, self.input_type, self.output_shape, self.output_type)
        for position, sample_index in enumerate(order):
            target = second if position < second_set_count else first
            target.append_sample(self.samples[sample_index])
        first.labels = list(self.labels) if self.labels is not None else None
        second.labels = list(self.labels) if self.labels is not None else None
        return first, second
