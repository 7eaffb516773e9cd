from __future__ import annotations

import math

import numpy as np
import pytest

from graph_dsl.data.tensor import DataType, ParameterRange, Tensor
from graph_dsl.errors import NotABatchTensorError, SampleDoesntMatchBatchShapeError, TensorError


def test_tensor_constant_and_element_access() -> None:
    tensor = Tensor.constant((2, 3), 1.5)
    assert tensor.shape == (2, 3)
    assert tensor.dtype is DataType.FLOAT32
    assert tensor.element(4) == 1.5

    tensor.set_element(4, 7.0)
    assert tensor.element_at((1, 1)) == 7.0
    tensor.set_element_at((0, 2), -1.0)
    assert tensor.elements() == [1.5, 1.5, -1.0, 1.5, 7.0, 1.5]


def test_tensor_rejects_out_of_range_access() -> None:
    tensor = Tensor.constant((2, 2))
    with pytest.raises(TensorError):
        tensor.element(4)
    with pytest.raises(TensorError):
        tensor.element_at((2, 0))
    with pytest.raises(TensorError):
        tensor.element_at((0,))
    with pytest.raises(TensorError):
        tensor.set_elements(3, [1.0, 2.0])


def test_tensor_from_values_requires_matching_count() -> None:
    tensor = Tensor.from_values((2, 2), [1, 2, 3, 4])
    assert tensor.element_at((1, 0)) == 3.0
    with pytest.raises(TensorError):
        Tensor.from_values((2, 2), [1, 2, 3])


def test_one_hot_and_classification() -> None:
    tensor = Tensor.constant((4,))
    tensor.set_one_hot(2)
    assert tensor.elements() == [0.0, 0.0, 1.0, 0.0]
    assert tensor.classification() == 2

    single = Tensor.constant((1,))
    single.set_one_hot(3)
    assert single.element(0) == 3.0


def test_batch_sample_access() -> None:
    batch = Tensor.constant((3, 2))
    batch.set_batch_sample(Tensor.from_values((2,), [0.1, 0.9]), 1)
    batch.set_batch_sample(Tensor.from_values((2,), [0.8, 0.2]), 2)

    assert batch.classification_for_batch(1) == 1
    assert batch.classification_for_batch(2) == 0
    assert batch.values_for_batch(0) == [0.0, 0.0]
    assert batch.tensor_for_batch(2).shape == (2,)

    with pytest.raises(SampleDoesntMatchBatchShapeError):
        batch.set_batch_sample(Tensor.constant((3,)), 0)
    with pytest.raises(TensorError):
        batch.values_for_batch(3)
    with pytest.raises(NotABatchTensorError):
        Tensor.constant((3,)).values_for_batch(0)


def test_byte_round_trip_preserves_values() -> None:
    tensor = Tensor(np.arange(6, dtype=np.float32).reshape(2, 3))
    data = tensor.to_bytes()
    assert len(data) == 6 * 4

    restored = Tensor.from_bytes(data, (2, 3), DataType.FLOAT32)
    assert np.array_equal(restored.array, tensor.array)
    with pytest.raises(TensorError):
        Tensor.from_bytes(data[:-1], (2, 3), DataType.FLOAT32)


def test_total_difference_and_compare() -> None:
    first = Tensor.from_values((3,), [1.0, 2.0, 3.0])
    second = Tensor.from_values((3,), [1.5, 2.0, 2.0])

    assert first.total_difference(second) == pytest.approx(1.5)
    assert math.isinf(first.total_difference(Tensor.constant((2,))))
    assert first.compare(second, 1.0)
    assert not first.compare(second, 0.75)


def test_random_initialisers_respect_range() -> None:
    rng = np.random.default_rng(3)
    tensor = Tensor.random_uniform((50,), ParameterRange(-0.25, 0.25), rng=rng)
    assert tensor.array.min() >= -0.25
    assert tensor.array.max() <= 0.25

    normal = Tensor.random_normal((10,), mean=4.0, standard_deviation=0.01, rng=rng)
    assert abs(float(normal.array.mean()) - 4.0) < 0.1

    with pytest.raises(TensorError):
        ParameterRange(1.0, 1.0)


def test_unsupported_numpy_type_is_rejected() -> None:
    with pytest.raises(TensorError):
        Tensor(np.zeros(2, dtype=np.complex64))
