"""
Single-pass builder turning a declared node list into a ``BuiltGraph``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import numpy as np

from graph_dsl.backend.base import ComputeBackend, TensorHandle
from graph_dsl.errors import (
    LossNotTargetError,
    MoreThanOneLearningNodeError,
    NamedTensorNotFoundError,
    NoConfiguredTargetTensorsError,
    NoTargetsInGraphError,
    UnknownShapeError,
    VariableMustBeNamedError,
)
from graph_dsl.graph.ir import BuiltGraph, FeedSlot, LearnableVariable, LoadResetAssign, ResolvedNode, TargetEntry
from graph_dsl.graph.scope import NameTable
from graph_dsl.runtime.batching import BatchAdapter
from graph_dsl.utils import BuildOptions, config, get_logger

if TYPE_CHECKING:
    from graph_dsl.graph.node import Node

log = get_logger(__name__)

LOAD_PLACEHOLDER_SUFFIX = "_loadAssignPlaceHolder"


class GraphBuilder:
    """
    Walks a node list once, emitting backend operations in declaration order.

    Nodes call back into the builder to resolve their inputs and to record
    feeds, learnable variables and the learning-rate configuration.
    """

    def __init__(
        self,
        backend: ComputeBackend,
        batch_size: int = 1,
        build_options: BuildOptions = BuildOptions.NONE,
    ) -> None:
        self.backend = backend
        self.adapter = BatchAdapter(batch_size)
        self.build_options = build_options
        self.names = NameTable()
        self.built = BuiltGraph(batch_size=batch_size)
        self.seen_learning = False

    @property
    def batch_size(self) -> int:
        return self.adapter.batch_size

    @property
    def wants_variable_assigns(self) -> bool:
        return bool(self.build_options & BuildOptions.VARIABLE_ASSIGNS)

    # -- entry point ------------------------------------------------------

    def build(self, nodes: Sequence["Node"]) -> BuiltGraph:
        for node in nodes:
            node.clear_referenced()
        self.built.learning_rate = config.default_learning_rate

        self.walk(nodes)

        if not self.built.targets:
            raise NoTargetsInGraphError()
        for node in nodes:
            node.check_referenced()

        if self.built.learnable:
            self._add_learning_ops()
        if self.wants_variable_assigns:
            self._add_variable_assigns()

        log.debug("Built graph: %s", self.built.summary())
        return self.built

    def walk(self, nodes: Sequence["Node"]) -> None:
        for node in nodes:
            self.add_node(node)

    def add_node(self, node: "Node") -> None:
        handles = node.emit(self)
        if node.build_error is not None:
            raise node.build_error
        if not node.registers_outputs:
            return

        suffixes = node.suffixes()
        qualified = self.names.qualify(node.name)
        for handle, suffix in zip(handles, suffixes):
            if handle is None:
                continue
            shape = self.backend.report_shape(handle)
            if shape is None:
                raise UnknownShapeError(node.op)
            full_name = qualified + suffix if qualified is not None else None
            resolved = ResolvedNode(full_name, node.op, node, handle, tuple(shape))
            self.names.register(resolved)
            self.built.add_node(resolved)

        if node.is_target:
            indices = node.target_indices()
            if indices is None:
                chosen = [h for h in handles if h is not None]
            else:
                chosen = [handles[i] for i in indices if handles[i] is not None]
            if not chosen:
                raise NoConfiguredTargetTensorsError(node.name)
            for handle in chosen:
                self.built.targets.append(TargetEntry(tuple(node.target_modes), handle))

    # -- services for nodes -----------------------------------------------

    def full_name(self, name: Optional[str]) -> Optional[str]:
        return self.names.qualify(name)

    def input(self, name: Optional[str] = None) -> TensorHandle:
        return self.names.resolve(name).handle

    def input_from_enclosing_scope(self, name: Optional[str]) -> TensorHandle:
        return self.names.resolve(name, frame_index=self.names.depth - 1).handle

    def input_shape(self, name: Optional[str] = None) -> tuple:
        resolved = self.names.resolve(name)
        return resolved.shape

    @property
    def input_map(self) -> Dict[str, Optional[str]]:
        return self.names.current.input_map

    @property
    def data_tensors(self) -> Dict[str, Any]:
        return self.names.current.data_tensors

    def add_feed(
        self,
        name: str,
        handle: TensorHandle,
        modes: Sequence[str] = (),
        batch_exempt: bool = False,
    ) -> None:
        shape = handle.shape if handle.shape is not None else ()
        self.built.feeds.append(FeedSlot(name, handle, list(modes), batch_exempt, shape))

    def add_variable(
        self,
        name: str,
        node: Any,
        handle: TensorHandle,
        loss: Optional[str] = None,
        source: Optional[TensorHandle] = None,
    ) -> None:
        """Record a variable for learning and for load/reset plumbing."""
        self.built.variables.append(handle)
        if not name and (loss is not None or self.wants_variable_assigns):
            raise VariableMustBeNamedError()
        if self.wants_variable_assigns:
            self.built.load_reset.append(LoadResetAssign(name, node, handle, source))
        if loss is not None:
            self.built.learnable.append(LearnableVariable(name, node, handle, loss))

    def set_learning(
        self,
        handle: TensorHandle,
        learning_rate: float,
        constant: bool,
        learning_modes: Sequence[str],
    ) -> None:
        if self.seen_learning:
            raise MoreThanOneLearningNodeError()
        self.seen_learning = True
        self.built.learning_rate = learning_rate
        self.built.learning_rate_constant = constant
        self.built.learning_modes = list(learning_modes)
        self.built.learning_rate_slot = handle

    # -- learning and variable plumbing ------------------------------------

    def _learning_rate_handle(self) -> TensorHandle:
        if self.built.learning_rate_slot is None:
            value = np.asarray([self.built.learning_rate], dtype=np.float32)
            self.built.learning_rate_slot = self.backend.constant(value, name="learningRate")
        return self.built.learning_rate_slot

    def _add_learning_ops(self) -> None:
        loss_names: List[str] = []
        for variable in self.built.learnable:
            if variable.loss not in loss_names:
                loss_names.append(variable.loss)

        rate = self._learning_rate_handle()
        for loss_name in loss_names:
            loss = self.names.lookup(loss_name)
            if loss is None:
                raise NamedTensorNotFoundError(loss_name)
            if not any(target.handle is loss.handle for target in self.built.targets):
                raise LossNotTargetError(loss_name)
            group = [v for v in self.built.learnable if v.loss == loss_name]
            gradients = self.backend.gradients(loss.handle, [v.handle for v in group])
            for variable in group:
                update = self.backend.sgd_update(variable.handle, gradients[variable.handle], rate)
                self.built.learning_ops.append(
                    self.backend.assign(variable.handle, update, name=variable.name + "_learn")
                )
        log.debug(
            "Added %d learning operations for %d loss(es)",
            len(self.built.learning_ops),
            len(loss_names),
        )

    def _add_variable_assigns(self) -> None:
        for entry in self.built.load_reset:
            shape = entry.handle.shape if entry.handle.shape is not None else ()
            entry.placeholder = self.backend.placeholder(
                shape, entry.handle.dtype, name=entry.name + LOAD_PLACEHOLDER_SUFFIX
            )
            entry.load_op = self.backend.assign(entry.handle, entry.placeholder, name=entry.name + "_load")
            reset_value = entry.source if entry.source is not None else entry.placeholder
            entry.reset_op = self.backend.assign(entry.handle, reset_value, name=entry.name + "_reset")
