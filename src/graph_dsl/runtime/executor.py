from __future__ import annotations

import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

import numpy as np

from graph_dsl.backend.base import ComputeBackend, OperationHandle, Results, TensorHandle
from graph_dsl.data.tensor import Tensor
from graph_dsl.errors import NoTargetsForModeError, PlaceHolderInputNotFoundError
from graph_dsl.graph.ir import BuiltGraph
from graph_dsl.runtime.batching import BatchAdapter
from graph_dsl.runtime.profiling import Profiler
from graph_dsl.utils import get_logger

log = get_logger(__name__)

ResultMap = Dict[str, Tensor]


@dataclass
class Submission:
    """Everything needed to hand one run to the backend."""

    mode: str
    feeds: Dict[TensorHandle, np.ndarray]
    targets: List[TensorHandle]
    operations: List[OperationHandle]
    collapse: bool = False


class GraphExecutor:
    """
    Runs a built graph for one mode at a time.

    ``run_one`` blocks until results are available. ``submit`` and
    ``encode_one`` queue the work and return immediately; side effects such
    as learning updates are applied in submission order by the backend.
    """

    def __init__(
        self,
        backend: ComputeBackend,
        built: BuiltGraph,
        adapter: Optional[BatchAdapter] = None,
        profiler: Optional[Profiler] = None,
    ) -> None:
        self.backend = backend
        self.built = built
        self.adapter = adapter or BatchAdapter(built.batch_size)
        self.profiler = profiler or Profiler()
        self.learning_rate = built.learning_rate

    # -- preparation ------------------------------------------------------

    def prepare(
        self,
        mode: str,
        inputs: Mapping[str, Tensor],
        new_learning_rate: Optional[float] = None,
    ) -> Submission:
        if new_learning_rate is not None:
            self.learning_rate = new_learning_rate

        required = self.built.required_inputs_for(mode)
        for slot in required:
            if slot.name not in inputs:
                raise PlaceHolderInputNotFoundError(slot.name)

        # Inputs for slots this mode does not need are dropped unchecked.
        known = [slot for slot in required if slot.name in inputs]
        batchable = [(slot.name, slot.shape) for slot in known if not slot.batch_exempt]
        prepared, collapse = self.adapter.prepare_inputs(inputs, batchable)
        feeds = {slot.handle: prepared[slot.name].array for slot in known}

        if not self.built.learning_rate_constant and self.built.learning_rate_slot is not None:
            feeds[self.built.learning_rate_slot] = np.asarray([self.learning_rate], dtype=np.float32)

        targets = self.built.outputs_for(mode)
        if not targets:
            raise NoTargetsForModeError(mode)

        operations: List[OperationHandle] = []
        if self.built.is_learning_mode(mode):
            operations = list(self.built.learning_ops)
        return Submission(mode, feeds, targets, operations, collapse)

    def package(self, results: Results, collapse: bool = False) -> ResultMap:
        named: ResultMap = {}
        for handle, array in results.items():
            name = self.built.name_for_handle(handle)
            if name is not None:
                named[name] = Tensor(array)
        if collapse:
            named = self.adapter.collapse_results(named)
        return named

    # -- execution --------------------------------------------------------

    def run_one(
        self,
        mode: str,
        inputs: Mapping[str, Tensor],
        new_learning_rate: Optional[float] = None,
    ) -> ResultMap:
        submission = self.prepare(mode, inputs, new_learning_rate)
        start = time.perf_counter()
        self.profiler.record_submission()
        try:
            results = self.backend.submit(submission.feeds, submission.targets, submission.operations)
        except Exception:
            self.profiler.record_completion(failed=True)
            raise
        self.profiler.record_completion()
        self.profiler.record_event("run_one", (time.perf_counter() - start) * 1000.0)
        return self.package(results, submission.collapse)

    def submit(
        self,
        mode: str,
        inputs: Mapping[str, Tensor],
        new_learning_rate: Optional[float] = None,
        samples: int = 1,
        callback: Optional[Callable[[ResultMap], None]] = None,
    ) -> "Future[ResultMap]":
        """
        Queue one run; the returned future resolves to the named result map.

        ``callback`` receives the result map on the backend's queue thread
        before the future resolves. An exception it raises fails the future.
        """
        submission = self.prepare(mode, inputs, new_learning_rate)

        def _complete(results: Results) -> ResultMap:
            packaged = self.package(results, submission.collapse)
            if callback is not None:
                callback(packaged)
            return packaged

        self.profiler.record_submission(samples)
        try:
            future = self.backend.submit_async(
                submission.feeds, submission.targets, submission.operations, _complete
            )
        except Exception:
            self.profiler.record_completion(failed=True)
            raise
        future.add_done_callback(
            lambda done: self.profiler.record_completion(failed=done.exception() is not None)
        )
        return future

    def encode_one(
        self,
        mode: str,
        inputs: Mapping[str, Tensor],
        wait_for_results: bool = True,
        new_learning_rate: Optional[float] = None,
        callback: Optional[Callable[[ResultMap], None]] = None,
    ) -> ResultMap:
        """
        Queue one run without blocking the queue for other work.

        With ``wait_for_results=False`` an empty map is returned at once and
        failures are only logged. The optional ``callback`` receives the
        result map on the backend's queue thread.
        """
        future = self.submit(mode, inputs, new_learning_rate, callback=callback)
        if not wait_for_results:

            def _report(done: "Future[ResultMap]") -> None:
                if done.exception() is not None:
                    log.warning("Encoded run for mode %r failed: %s", mode, done.exception())

            future.add_done_callback(_report)
            return {}
        return future.result()
