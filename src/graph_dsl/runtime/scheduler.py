"""
Bulk training and testing over a DataSet with a bounded number of
outstanding submissions.
"""

from __future__ import annotations

import random
import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from graph_dsl.data.dataset import DataSet
from graph_dsl.data.tensor import Tensor
from graph_dsl.errors import ResultTensorNotFoundError, SampleCountNotBatchMultipleError
from graph_dsl.runtime.executor import GraphExecutor, ResultMap
from graph_dsl.utils import config, get_logger

log = get_logger(__name__)

Fold = Callable[[ResultMap, Sequence[int]], None]


class _Accumulator:
    """Commutative totals folded in from completion callbacks."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.total = 0.0
        self.correct = 0
        self.count = 0


def _result(results: ResultMap, name: str) -> Tensor:
    tensor = results.get(name)
    if tensor is None:
        raise ResultTensorNotFoundError(name)
    return tensor


class BulkScheduler:
    """
    Drives a whole DataSet through asynchronous submissions.

    At most ``max_in_flight`` submissions are outstanding at once. Completion
    callbacks fold their statistic into a lock-protected accumulator from
    whichever thread resolves the submission. Every bulk call drains all
    outstanding work before returning; an error raised inside a completion
    callback is re-raised to the caller after the drain.
    """

    def __init__(
        self,
        executor: GraphExecutor,
        batch_size: int = 1,
        max_in_flight: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.executor = executor
        self.batch_size = batch_size
        self.max_in_flight = max_in_flight or config.max_in_flight
        if self.max_in_flight < 1:
            raise ValueError(f"max_in_flight must be positive, got {self.max_in_flight}.")
        self.rng = rng or random.Random(config.seed)

    # -- public operations ------------------------------------------------

    def run_training(
        self,
        mode: str,
        dataset: DataSet,
        input_name: str,
        expected_name: str,
        epoch_size: Optional[int] = None,
        loss_name: Optional[str] = None,
    ) -> Optional[float]:
        """
        One pass of learning submissions.

        Returns the average of the named loss over all submissions, or
        ``None`` when no ``loss_name`` is given.
        """
        acc = _Accumulator()

        def fold(results: ResultMap, indices: Sequence[int]) -> None:
            if loss_name is None:
                return
            loss = float(np.sum(_result(results, loss_name).array, dtype=np.float64))
            with acc.lock:
                acc.total += loss
                acc.count += 1

        self._drive(mode, dataset, {input_name: "inputs", expected_name: "outputs"}, epoch_size, fold)
        if loss_name is None or acc.count == 0:
            return None
        return acc.total / acc.count

    def run_classifier_test(
        self,
        mode: str,
        dataset: DataSet,
        input_name: str,
        result_name: str,
    ) -> Tuple[float, int]:
        """Fraction and number of samples whose argmax class matches the sample's class."""
        acc = _Accumulator()

        def fold(results: ResultMap, indices: Sequence[int]) -> None:
            tensor = _result(results, result_name)
            correct = 0
            for batch_index, sample_index in enumerate(indices):
                if len(indices) > 1:
                    predicted = tensor.classification_for_batch(batch_index)
                else:
                    predicted = tensor.classification()
                if predicted == dataset.sample(sample_index).output_class:
                    correct += 1
            with acc.lock:
                acc.correct += correct
                acc.count += len(indices)

        self._drive(mode, dataset, {input_name: "inputs"}, None, fold)
        if acc.count == 0:
            return 0.0, 0
        return acc.correct / acc.count, acc.correct

    def run_regression_test(
        self,
        mode: str,
        dataset: DataSet,
        input_name: str,
        result_name: str,
    ) -> float:
        """Sum over samples of the absolute element differences from the expected output."""
        acc = _Accumulator()

        def fold(results: ResultMap, indices: Sequence[int]) -> None:
            tensor = _result(results, result_name)
            error = 0.0
            for batch_index, sample_index in enumerate(indices):
                predicted = tensor.tensor_for_batch(batch_index) if len(indices) > 1 else tensor
                expected = dataset.sample(sample_index).outputs
                if predicted.size == expected.size:
                    predicted = Tensor(predicted.array.reshape(expected.shape), predicted.dtype)
                error += predicted.total_difference(expected)
            with acc.lock:
                acc.total += error
                acc.count += len(indices)

        self._drive(mode, dataset, {input_name: "inputs"}, None, fold)
        return acc.total

    # -- scheduling -------------------------------------------------------

    def sample_order(self, dataset: DataSet, epoch_size: Optional[int] = None) -> List[int]:
        count = dataset.num_samples if epoch_size is None else epoch_size
        if count % self.batch_size != 0:
            raise SampleCountNotBatchMultipleError(count, self.batch_size)
        if epoch_size is None:
            return list(range(count))
        return [self.rng.randrange(dataset.num_samples) for _ in range(count)]

    def _feeds(
        self, dataset: DataSet, indices: Sequence[int], fields: Dict[str, str]
    ) -> Dict[str, Tensor]:
        if self.batch_size > 1:
            inputs, outputs = dataset.batch(indices)
            packed = {"inputs": inputs, "outputs": outputs}
            return {name: packed[field] for name, field in fields.items()}
        sample = dataset.sample(indices[0])
        return {name: getattr(sample, field) for name, field in fields.items()}

    def _drive(
        self,
        mode: str,
        dataset: DataSet,
        fields: Dict[str, str],
        epoch_size: Optional[int],
        fold: Fold,
    ) -> None:
        order = self.sample_order(dataset, epoch_size)
        permits = threading.BoundedSemaphore(self.max_in_flight)
        errors: List[BaseException] = []
        errors_lock = threading.Lock()

        def complete(indices: Sequence[int], done: "Future[ResultMap]") -> None:
            try:
                fold(done.result(), indices)
            except Exception as exc:
                with errors_lock:
                    if errors:
                        log.warning("Additional bulk run failure for mode %r: %s", mode, exc)
                    errors.append(exc)
            finally:
                permits.release()

        dataset.lock()
        submitted = 0
        try:
            for start in range(0, len(order), self.batch_size):
                indices = order[start:start + self.batch_size]
                permits.acquire()
                try:
                    feeds = self._feeds(dataset, indices, fields)
                    future = self.executor.submit(mode, feeds, samples=len(indices))
                except BaseException:
                    permits.release()
                    raise
                submitted += 1
                future.add_done_callback(lambda done, indices=indices: complete(indices, done))
        finally:
            for _ in range(self.max_in_flight):
                permits.acquire()
            for _ in range(self.max_in_flight):
                permits.release()
            dataset.unlock()

        log.debug("Bulk run for mode %r: %d submissions, %d samples", mode, submitted, len(order))
        if errors:
            raise errors[0]
