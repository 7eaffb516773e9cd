"""
Byte layout for saved variable values.

Little endian: an int64 variable count, then per variable an int64 name
length, the UTF-8 name, an int64 payload length and the raw payload.
"""

from __future__ import annotations

import struct
from typing import Dict, Iterable, List, Tuple

from graph_dsl.errors import UnexpectedDataReadError

_INT64 = struct.Struct("<q")


class VariableStore:
    """Ordered name -> raw bytes mapping with the saved-variable encoding."""

    def __init__(self) -> None:
        self._store: Dict[str, bytes] = {}

    def put(self, name: str, payload: bytes) -> None:
        self._store[name] = bytes(payload)

    def get(self, name: str) -> bytes:
        return self._store[name]

    def has(self, name: str) -> bool:
        return name in self._store

    def clear(self) -> None:
        self._store.clear()

    def items(self) -> Iterable[Tuple[str, bytes]]:
        return self._store.items()

    def __len__(self) -> int:
        return len(self._store)

    def to_bytes(self) -> bytes:
        return encode(self._store.items())

    @classmethod
    def from_bytes(cls, data: bytes) -> "VariableStore":
        store = cls()
        for name, payload in decode(data):
            store.put(name, payload)
        return store


def encode(named_payloads: Iterable[Tuple[str, bytes]]) -> bytes:
    entries = list(named_payloads)
    parts = [_INT64.pack(len(entries))]
    for name, payload in entries:
        encoded_name = name.encode("utf-8")
        parts.append(_INT64.pack(len(encoded_name)))
        parts.append(encoded_name)
        parts.append(_INT64.pack(len(payload)))
        parts.append(bytes(payload))
    return b"".join(parts)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = memoryview(data)
        self.offset = 0

    def take(self, size: int, what: str) -> bytes:
        if size < 0 or self.offset + size > len(self.data):
            raise UnexpectedDataReadError(f"Truncated while reading {what} at offset {self.offset}.")
        chunk = self.data[self.offset:self.offset + size].tobytes()
        self.offset += size
        return chunk

    def int64(self, what: str) -> int:
        return _INT64.unpack(self.take(_INT64.size, what))[0]


def decode(data: bytes) -> List[Tuple[str, bytes]]:
    reader = _Reader(data)
    count = reader.int64("variable count")
    if count < 0:
        raise UnexpectedDataReadError(f"Negative variable count {count}.")
    entries: List[Tuple[str, bytes]] = []
    for _ in range(count):
        name_length = reader.int64("name length")
        try:
            name = reader.take(name_length, "name").decode("utf-8")
        except UnicodeDecodeError as exc:
            raise UnexpectedDataReadError("Variable name is not valid UTF-8.") from exc
        payload_length = reader.int64(f"payload length of `{name}`")
        entries.append((name, reader.take(payload_length, f"payload of `{name}`")))
    return entries
