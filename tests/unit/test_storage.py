from __future__ import annotations

import struct

import pytest

from graph_dsl.errors import UnexpectedDataReadError
from graph_dsl.runtime.storage import VariableStore, decode, encode


def test_variable_store_put_get_has_clear() -> None:
    store = VariableStore()
    store.put("w", b"\x01\x02")
    assert store.get("w") == b"\x01\x02"
    assert store.has("w")

    store.put("w", b"\x03")
    assert store.get("w") == b"\x03"
    store.clear()
    assert not store.has("w")
    with pytest.raises(KeyError):
        store.get("w")


def test_encoding_layout() -> None:
    data = encode([("ab", b"\x00\x01\x02")])
    expected = (
        struct.pack("<q", 1)
        + struct.pack("<q", 2)
        + b"ab"
        + struct.pack("<q", 3)
        + b"\x00\x01\x02"
    )
    assert data == expected


def test_store_bytes_keep_order() -> None:
    store = VariableStore()
    store.put("layer_weights", bytes(range(8)))
    store.put("layer_biases", b"\xff" * 4)

    restored = VariableStore.from_bytes(store.to_bytes())
    assert [name for name, _ in restored.items()] == ["layer_weights", "layer_biases"]
    assert restored.get("layer_biases") == b"\xff" * 4


def test_decode_rejects_truncated_data() -> None:
    data = encode([("v", b"\x00" * 8)])
    with pytest.raises(UnexpectedDataReadError):
        decode(data[:-1])
    with pytest.raises(UnexpectedDataReadError):
        decode(data[:4])
    with pytest.raises(UnexpectedDataReadError):
        decode(struct.pack("<q", -1))
