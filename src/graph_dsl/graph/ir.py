from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from graph_dsl.backend.base import OperationHandle, Shape, TensorHandle
from graph_dsl.errors import NameNotUniqueError
from graph_dsl.utils import get_logger

if TYPE_CHECKING:
    from graph_dsl.graph.node import Node

log = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedNode:
    """Build-time materialisation of one emitted node output."""

    name: Optional[str]
    op: str
    node: "Node"
    handle: TensorHandle
    shape: Shape


@dataclass
class FeedSlot:
    """
    A declared external input.

    An empty ``modes`` list means the slot is required for every mode.
    """

    name: str
    handle: TensorHandle
    modes: List[str] = field(default_factory=list)
    batch_exempt: bool = False
    shape: Shape = ()

    def needed_for_mode(self, mode: str) -> bool:
        return not self.modes or mode in self.modes


@dataclass
class TargetEntry:
    modes: Tuple[str, ...]
    handle: TensorHandle


@dataclass
class LearnableVariable:
    name: str
    node: Any
    handle: TensorHandle
    loss: str


@dataclass
class LoadResetAssign:
    """Load and reset plumbing for one variable."""

    name: str
    node: Any
    handle: TensorHandle
    source: Optional[TensorHandle] = None
    placeholder: Optional[TensorHandle] = None
    load_op: Optional[OperationHandle] = None
    reset_op: Optional[OperationHandle] = None


@dataclass
class BuiltGraph:
    """
    Everything produced by one build: resolved outputs, feed slots, targets,
    learning operations and variable load/reset plumbing.
    """

    nodes: List[ResolvedNode] = field(default_factory=list)
    feeds: List[FeedSlot] = field(default_factory=list)
    targets: List[TargetEntry] = field(default_factory=list)
    variables: List[TensorHandle] = field(default_factory=list)
    learnable: List[LearnableVariable] = field(default_factory=list)
    load_reset: List[LoadResetAssign] = field(default_factory=list)
    learning_ops: List[OperationHandle] = field(default_factory=list)
    learning_modes: List[str] = field(default_factory=list)
    learning_rate: float = 0.05
    learning_rate_constant: bool = True
    learning_rate_slot: Optional[TensorHandle] = None
    batch_size: int = 1
    _by_name: Dict[str, ResolvedNode] = field(default_factory=dict, repr=False)
    _by_handle: Dict[TensorHandle, ResolvedNode] = field(default_factory=dict, repr=False)

    def add_node(self, resolved: ResolvedNode) -> None:
        if resolved.name is not None:
            if resolved.name in self._by_name:
                raise NameNotUniqueError(resolved.name)
            self._by_name[resolved.name] = resolved
            self._by_handle.setdefault(resolved.handle, resolved)
        self.nodes.append(resolved)

    def get_node(self, name: str) -> ResolvedNode:
        return self._by_name[name]

    def has_node(self, name: str) -> bool:
        return name in self._by_name

    def name_for_handle(self, handle: TensorHandle) -> Optional[str]:
        resolved = self._by_handle.get(handle)
        return resolved.name if resolved is not None else None

    # -- mode routing -----------------------------------------------------

    def outputs_for(self, mode: str) -> List[TensorHandle]:
        handles: List[TensorHandle] = []
        for entry in self.targets:
            if mode in entry.modes and entry.handle not in handles:
                handles.append(entry.handle)
        return handles

    def required_inputs_for(self, mode: str) -> List[FeedSlot]:
        return [slot for slot in self.feeds if slot.needed_for_mode(mode)]

    def is_learning_mode(self, mode: str) -> bool:
        return bool(self.learning_ops) and mode in self.learning_modes

    def find_feed(self, name: str) -> Optional[FeedSlot]:
        for slot in self.feeds:
            if slot.name == name:
                return slot
        return None

    # -- introspection ----------------------------------------------------

    def shape_list(self) -> List[Tuple[Shape, Optional[str]]]:
        """Shape and name of every emitted output, in declaration order."""
        entries = [(resolved.shape, resolved.name) for resolved in self.nodes]
        for shape, name in entries:
            log.debug("%s - %s", list(shape), name if name is not None else "* Unnamed *")
        return entries

    def summary(self) -> Dict[str, int]:
        return {
            "nodes": len(self.nodes),
            "feeds": len(self.feeds),
            "targets": len(self.targets),
            "learnable": len(self.learnable),
            "learning_ops": len(self.learning_ops),
            "load_reset": len(self.load_reset),
        }
