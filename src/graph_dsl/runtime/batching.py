"""
Batch dimension handling for graphs built with a fixed batch size.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Sequence, Tuple

import numpy as np

from graph_dsl.data.tensor import Tensor
from graph_dsl.errors import BatchInputMismatchError


class BatchAdapter:
    """
    Adds a leading batch dimension to input slots at build time and hides it
    again at run time for single-sample calls.
    """

    def __init__(self, batch_size: int = 1) -> None:
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}.")
        self.batch_size = batch_size

    @property
    def is_active(self) -> bool:
        return self.batch_size > 1

    def expand_shape(self, shape: Sequence[int], exempt: bool = False) -> Tuple[int, ...]:
        shape = tuple(int(d) for d in shape)
        if not self.is_active or exempt:
            return shape
        return (self.batch_size,) + shape

    def is_batched(self, tensor: Tensor, sample_shape: Sequence[int]) -> bool:
        return tensor.shape == (self.batch_size,) + tuple(sample_shape)

    def replicate(self, tensor: Tensor) -> Tensor:
        """Copy ``tensor`` into every index of a new batch tensor."""
        array = np.broadcast_to(tensor.array, (self.batch_size,) + tensor.shape)
        return Tensor(array, tensor.dtype)

    def prepare_inputs(
        self,
        inputs: Mapping[str, Tensor],
        slots: Iterable[Tuple[str, Sequence[int]]],
    ) -> Tuple[Dict[str, Tensor], bool]:
        """
        Normalise caller inputs for the non-exempt ``slots``.

        ``slots`` pairs each batchable slot name with its batched shape.
        Returns the inputs to submit and whether single samples were expanded
        (in which case results should be collapsed).
        """
        prepared = dict(inputs)
        if not self.is_active:
            return prepared, False

        batched = []
        unbatched = []
        for name, slot_shape in slots:
            if name not in inputs:
                continue
            sample_shape = tuple(slot_shape)[1:]
            if self.is_batched(inputs[name], sample_shape):
                batched.append(name)
            else:
                unbatched.append(name)

        if batched and unbatched:
            raise BatchInputMismatchError(
                "Inputs must either all carry the batch dimension or none of them: "
                f"batched={sorted(batched)}, unbatched={sorted(unbatched)}"
            )
        if not unbatched:
            return prepared, False

        for name in unbatched:
            prepared[name] = self.replicate(inputs[name])
        return prepared, True

    def collapse_results(self, results: Mapping[str, Tensor]) -> Dict[str, Tensor]:
        collapsed: Dict[str, Tensor] = {}
        for name, tensor in results.items():
            if len(tensor.shape) > 0 and tensor.shape[0] == self.batch_size:
                collapsed[name] = Tensor(tensor.array[0], tensor.dtype)
            else:
                collapsed[name] = tensor
        return collapsed
