"""
User-facing graph object: declare nodes, then build, run, train and persist.
"""

from __future__ import annotations

import random
import threading
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from graph_dsl.backend.base import ComputeBackend
from graph_dsl.data.dataset import DataSet
from graph_dsl.data.tensor import Tensor
from graph_dsl.errors import (
    GraphNotBuiltForOperationError,
    NoLearningVariablesInGraphError,
    SavedCountMismatchError,
    SavedVariableNotFoundInLoadListError,
    TensorError,
    UnexpectedDataReadError,
)
from graph_dsl.graph.builder import GraphBuilder
from graph_dsl.graph.ir import BuiltGraph, LoadResetAssign
from graph_dsl.graph.node import Node
from graph_dsl.runtime import storage
from graph_dsl.runtime.executor import GraphExecutor, ResultMap
from graph_dsl.runtime.scheduler import BulkScheduler
from graph_dsl.utils import BuildOptions, config, get_logger

log = get_logger(__name__)


def _default_backend() -> ComputeBackend:
    from graph_dsl.backend.torch_backend import TorchBackend

    return TorchBackend(config.device)


class Graph:
    """
    A declared node list plus its most recent build.

    The graph is built lazily on first use. ``build_graph`` can be called
    again after editing ``nodes``; a failed build leaves no built state.
    """

    def __init__(
        self,
        nodes: Iterable[Node],
        batch_size: int = 1,
        build_options: BuildOptions = BuildOptions.NONE,
        backend: Optional[ComputeBackend] = None,
        max_in_flight: Optional[int] = None,
    ) -> None:
        self.nodes: List[Node] = list(nodes)
        self.batch_size = batch_size
        self.build_options = build_options
        self.backend = backend or _default_backend()
        self.max_in_flight = max_in_flight
        self.built: Optional[BuiltGraph] = None
        self.executor: Optional[GraphExecutor] = None
        self._rng = np.random.default_rng(config.seed)
        # One sampling stream across bulk calls.
        self._sample_rng = random.Random(config.seed)
        self._build_lock = threading.Lock()

    # -- building ---------------------------------------------------------

    def build_graph(self) -> BuiltGraph:
        with self._build_lock:
            if self.built is not None:
                self.backend.release(self.built.variables)
            self.built = None
            self.executor = None
            builder = GraphBuilder(self.backend, self.batch_size, self.build_options)
            try:
                built = builder.build(self.nodes)
            except Exception:
                self.backend.release(builder.built.variables)
                raise
            self.executor = GraphExecutor(self.backend, built, builder.adapter)
            self.built = built
            log.info(
                "Built graph with %d outputs, %d targets, %d learnable variables",
                len(built.nodes),
                len(built.targets),
                len(built.learnable),
            )
            return built

    def _ready(self) -> GraphExecutor:
        if self.executor is None:
            self.build_graph()
        assert self.executor is not None
        if not self.backend.is_acquired:
            self.backend.acquire()
        return self.executor

    @property
    def is_built(self) -> bool:
        return self.built is not None

    def shape_list(self) -> List[Tuple[Tuple[int, ...], Optional[str]]]:
        if self.built is None:
            self.build_graph()
        assert self.built is not None
        return self.built.shape_list()

    # -- single runs ------------------------------------------------------

    def run_one(
        self,
        mode: str,
        inputs: Optional[Mapping[str, Tensor]] = None,
        new_learning_rate: Optional[float] = None,
    ) -> ResultMap:
        return self._ready().run_one(mode, inputs or {}, new_learning_rate)

    def encode_one(
        self,
        mode: str,
        inputs: Optional[Mapping[str, Tensor]] = None,
        wait_for_results: bool = True,
        new_learning_rate: Optional[float] = None,
        callback: Optional[Callable[[ResultMap], None]] = None,
    ) -> ResultMap:
        return self._ready().encode_one(
            mode, inputs or {}, wait_for_results, new_learning_rate, callback
        )

    # -- bulk runs --------------------------------------------------------

    def scheduler(self) -> BulkScheduler:
        return BulkScheduler(self._ready(), self.batch_size, self.max_in_flight, self._sample_rng)

    def run_training(
        self,
        mode: str,
        dataset: DataSet,
        input_name: str,
        expected_name: str,
        epoch_size: Optional[int] = None,
        loss_name: Optional[str] = None,
    ) -> Optional[float]:
        return self.scheduler().run_training(
            mode, dataset, input_name, expected_name, epoch_size, loss_name
        )

    def run_classifier_test(
        self, mode: str, dataset: DataSet, input_name: str, result_name: str
    ) -> Tuple[float, int]:
        return self.scheduler().run_classifier_test(mode, dataset, input_name, result_name)

    def run_regression_test(
        self, mode: str, dataset: DataSet, input_name: str, result_name: str
    ) -> float:
        return self.scheduler().run_regression_test(mode, dataset, input_name, result_name)

    # -- variable persistence ---------------------------------------------

    def get_variable_data(self) -> bytes:
        """Encode the current value of every learnable variable."""
        self._ready()
        assert self.built is not None
        if not self.built.learnable:
            raise NoLearningVariablesInGraphError()
        handles = [variable.handle for variable in self.built.learnable]
        results = self.backend.submit({}, handles)
        store = storage.VariableStore()
        for variable in self.built.learnable:
            value = Tensor(results[variable.handle])
            store.put(variable.name, value.to_bytes())
        return store.to_bytes()

    def load_variables(self, data: bytes) -> None:
        self._ready()
        assert self.built is not None
        if not self.build_options & BuildOptions.LOAD_ASSIGNS:
            raise GraphNotBuiltForOperationError("Load Variables")

        entries = storage.decode(data)
        if len(entries) != len(self.built.learnable):
            raise SavedCountMismatchError(len(entries), len(self.built.learnable))

        roster: Dict[str, LoadResetAssign] = {entry.name: entry for entry in self.built.load_reset}
        feeds = {}
        operations = []
        for name, payload in entries:
            entry = roster.get(name)
            if entry is None:
                raise SavedVariableNotFoundInLoadListError(name)
            assert entry.placeholder is not None and entry.load_op is not None
            shape = entry.handle.shape or ()
            try:
                value = Tensor.from_bytes(payload, shape, entry.handle.dtype)
            except TensorError as exc:
                raise UnexpectedDataReadError(str(exc)) from exc
            feeds[entry.placeholder] = value.array
            operations.append(entry.load_op)
        self.backend.submit(feeds, [], operations)
        log.debug("Loaded %d variables", len(operations))

    def reset_variables(self, inputs: Optional[Mapping[str, Tensor]] = None) -> None:
        """
        Restore every variable to its initial value; random initialisers draw
        a fresh sample. Variables initialised from a graph input are reset
        from that input, which must then be supplied in ``inputs``.
        """
        self._ready()
        assert self.built is not None
        if not self.build_options & BuildOptions.RESET_ASSIGNS:
            raise GraphNotBuiltForOperationError("Variable Reset")

        feeds = {}
        for slot in self.built.feeds:
            if inputs and slot.name in inputs:
                feeds[slot.handle] = inputs[slot.name].array
        operations = []
        for entry in self.built.load_reset:
            assert entry.reset_op is not None
            if entry.source is None:
                value = entry.node.reset_tensor(self._rng)
                if value is None:
                    continue
                feeds[entry.placeholder] = value.array
            operations.append(entry.reset_op)
        self.backend.submit(feeds, [], operations)

    def close(self) -> None:
        self.backend.shutdown()
