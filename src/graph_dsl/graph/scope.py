"""
Scoped name resolution used while a graph is being built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from graph_dsl.backend.base import TensorHandle
from graph_dsl.data.tensor import Tensor
from graph_dsl.errors import NamedTensorNotFoundError, NameNotUniqueError, NoPreviousNodeError
from graph_dsl.graph.ir import ResolvedNode

SCOPE_SEPARATOR = "_"


@dataclass
class ScopeFrame:
    prefix: str = ""
    input_map: Dict[str, Optional[str]] = field(default_factory=dict)
    data_tensors: Dict[str, Tensor] = field(default_factory=dict)


class NameTable:
    """
    Symbol table from qualified names to resolved outputs.

    Frames form a stack; lookups search the innermost frame's prefix first
    and then each enclosing prefix out to the root.
    """

    def __init__(self) -> None:
        self._frames: List[ScopeFrame] = [ScopeFrame()]
        self._entries: Dict[str, ResolvedNode] = {}
        self._ordered: List[ResolvedNode] = []
        self.last: Optional[ResolvedNode] = None

    @property
    def current(self) -> ScopeFrame:
        return self._frames[-1]

    @property
    def prefix(self) -> str:
        return self.current.prefix

    @property
    def depth(self) -> int:
        return len(self._frames) - 1

    def qualify(self, name: Optional[str]) -> Optional[str]:
        if name is None:
            return None
        return self.prefix + name

    def push_scope(
        self,
        instance_name: str,
        input_map: Optional[Mapping[str, Optional[str]]] = None,
        data_tensors: Optional[Mapping[str, Tensor]] = None,
    ) -> ScopeFrame:
        # Innermost instance name leads: "inner_outer_".
        frame = ScopeFrame(
            prefix=instance_name + SCOPE_SEPARATOR + self.prefix,
            input_map=dict(input_map or {}),
            data_tensors=dict(data_tensors or {}),
        )
        self._frames.append(frame)
        return frame

    def pop_scope(self) -> ScopeFrame:
        if len(self._frames) == 1:
            raise RuntimeError("Cannot pop the root scope.")
        return self._frames.pop()

    def register(self, resolved: ResolvedNode) -> None:
        if resolved.name is not None:
            if resolved.name in self._entries:
                raise NameNotUniqueError(resolved.name)
            self._entries[resolved.name] = resolved
        self._ordered.append(resolved)
        self.last = resolved

    def lookup(self, name: str, frame_index: Optional[int] = None) -> Optional[ResolvedNode]:
        """Innermost-first search without marking anything referenced."""
        frames = self._frames if frame_index is None else self._frames[: frame_index + 1]
        for frame in reversed(frames):
            found = self._entries.get(frame.prefix + name)
            if found is not None:
                return found
        return None

    def resolve(self, name: Optional[str] = None, frame_index: Optional[int] = None) -> ResolvedNode:
        if name is None:
            if self.last is None:
                raise NoPreviousNodeError()
            found = self.last
        else:
            found = self.lookup(name, frame_index)
            if found is None:
                raise NamedTensorNotFoundError(name)
        found.node.referenced = True
        return found

    def find_by_handle(self, handle: TensorHandle) -> Optional[ResolvedNode]:
        for entry in self._ordered:
            if entry.handle is handle and entry.name is not None:
                return entry
        return None

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._ordered)
