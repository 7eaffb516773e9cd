from __future__ import annotations

import numpy as np
import pytest

from graph_dsl import Graph, ParameterRange, Tensor
from graph_dsl.errors import InputShapeError, NoConfiguredTargetTensorsError
from graph_dsl.nodes import (
    ActivationFunction,
    Constant,
    FullyConnectedLayer,
    MatrixMultiplication,
    MeanAbsoluteErrorLoss,
    MeanSquaredErrorLoss,
    PlaceHolder,
    Reshape,
    Select,
    SoftMax,
    SoftMaxCrossEntropyLoss,
    Subtraction,
    Variable,
)


def _names(graph: Graph):
    built = graph.build_graph()
    return [node.name for node in built.nodes]


def test_fully_connected_layer_registers_intermediate_outputs() -> None:
    graph = Graph(
        [
            PlaceHolder((2, 2), name="x"),
            FullyConnectedLayer(output_shape=(3,), activation=ActivationFunction.RELU, name="fc")
            .target_for_modes(["m"]),
        ]
    )
    assert _names(graph) == [
        "x",
        "fc_inputReshape",
        "fc_weights",
        "fc_biases",
        "fc_matrixMult",
        "fc_outputReshape",
        "fc_biasAdded",
        "fc",
    ]
    built = graph.built
    assert built is not None
    assert built.outputs_for("m") == [built.get_node("fc").handle]
    assert built.get_node("fc_weights").shape == (4, 3)


def test_fully_connected_layer_without_bias_or_activation() -> None:
    graph = Graph(
        [
            PlaceHolder((1, 2), name="x"),
            FullyConnectedLayer(output_shape=(1, 3), name="fc").without_bias().target_for_modes(["m"]),
        ]
    )
    assert _names(graph) == ["x", "fc_weights", "fc"]

    results = graph.run_one("m", {"x": Tensor.constant((1, 2), 0.0)})
    assert results["fc"].shape == (1, 3)
    assert results["fc"].elements() == [0.0, 0.0, 0.0]


def test_fully_connected_layer_respects_weight_range() -> None:
    graph = Graph(
        [
            PlaceHolder((2,), name="x"),
            FullyConnectedLayer(output_shape=(4,), name="fc")
            .weight_range(1.0, 1.0001)
            .bias_range(0.5, 0.5001)
            .target_for_modes(["m"]),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.from_values((2,), [1.0, 2.0])})
    assert results["fc"].elements() == pytest.approx([3.5] * 4, abs=1e-2)


def test_reshape_and_matrix_multiplication() -> None:
    graph = Graph(
        [
            PlaceHolder((6,), name="x"),
            Reshape(shape=(2, 3), name="grid"),
            Constant(values=Tensor(np.ones((3, 1), dtype=np.float32)), name="ones"),
            MatrixMultiplication(first_input="grid", second_input="ones", name="rows").target_for_modes(["m"]),
        ]
    )
    x = Tensor(np.arange(6, dtype=np.float32))
    results = graph.run_one("m", {"x": x})
    assert results["rows"].shape == (2, 1)
    assert results["rows"].elements() == [3.0, 12.0]

    with pytest.raises(InputShapeError):
        Graph(
            [
                PlaceHolder((6,), name="x"),
                Reshape(shape=(4,), name="bad").target_for_modes(["m"]),
            ]
        ).build_graph()


def test_select_picks_elementwise() -> None:
    graph = Graph(
        [
            PlaceHolder((3,), name="cond"),
            Constant(shape=(3,), value=1.0, name="yes"),
            Constant(shape=(3,), value=-1.0, name="no"),
            Select(condition="cond", true_value="yes", false_value="no", name="picked").target_for_modes(["m"]),
        ]
    )
    results = graph.run_one("m", {"cond": Tensor.from_values((3,), [1.0, 0.0, 2.0])})
    assert results["picked"].elements() == [1.0, -1.0, 1.0]


def test_loss_values() -> None:
    graph = Graph(
        [
            PlaceHolder((2,), name="actual"),
            PlaceHolder((2,), name="predicted"),
            MeanSquaredErrorLoss(actual="actual", predicted="predicted", name="mse").target_for_modes(["m"]),
            MeanAbsoluteErrorLoss(actual="actual", predicted="predicted", name="mae").target_for_modes(["m"]),
        ]
    )
    results = graph.run_one(
        "m",
        {
            "actual": Tensor.from_values((2,), [1.0, 2.0]),
            "predicted": Tensor.from_values((2,), [3.0, 1.0]),
        },
    )
    assert results["mse"].elements() == pytest.approx([2.5])
    assert results["mae"].elements() == pytest.approx([1.5])

    with pytest.raises(InputShapeError):
        Graph(
            [
                PlaceHolder((2,), name="a"),
                PlaceHolder((3,), name="p"),
                MeanSquaredErrorLoss(actual="a", predicted="p", name="loss").target_for_modes(["m"]),
            ]
        ).build_graph()


def test_softmax_and_cross_entropy() -> None:
    graph = Graph(
        [
            PlaceHolder((3,), name="labels"),
            PlaceHolder((3,), name="logits"),
            SoftMax(input="logits", name="probabilities").target_for_modes(["m"]),
            SoftMaxCrossEntropyLoss(actual="labels", predicted="logits", name="loss").target_for_modes(["m"]),
        ]
    )
    results = graph.run_one(
        "m",
        {
            "labels": Tensor.from_values((3,), [0.0, 1.0, 0.0]),
            "logits": Tensor.from_values((3,), [0.0, 0.0, 0.0]),
        },
    )
    assert results["probabilities"].elements() == pytest.approx([1 / 3] * 3)
    assert results["loss"].elements() == pytest.approx([np.log(3.0)], rel=1e-5)


def test_variable_initial_value_sources() -> None:
    variable = Variable(random_range=ParameterRange(-1.0, 1.0), shape=(50,), name="v")
    first = variable.initial_tensor(np.random.default_rng(0))
    second = variable.initial_tensor(np.random.default_rng(1))
    assert first is not None and second is not None
    assert np.all(np.abs(first.array) <= 1.0)
    assert not np.array_equal(first.array, second.array)

    copied = Variable(input_tensor="x", name="copy")
    assert copied.initial_tensor() is None

    graph = Graph(
        [
            PlaceHolder((2,), name="x"),
            Variable(input_tensor="x", name="copy"),
            Subtraction(first_input="copy", second_input="x", name="diff").target_for_modes(["m"]),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.from_values((2,), [1.0, 2.0])})
    assert results["diff"].elements() == [0.0, 0.0]
    # The copy keeps its first value.
    results = graph.run_one("m", {"x": Tensor.from_values((2,), [3.0, 3.0])})
    assert results["diff"].elements() == [-2.0, -1.0]


def test_layer_with_only_intermediate_targets_is_rejected() -> None:
    class _NoFinal(FullyConnectedLayer):
        def target_indices(self):
            return []

    graph = Graph(
        [
            PlaceHolder((2,), name="x"),
            _NoFinal(output_shape=(1,), name="fc").target_for_modes(["m"]),
        ]
    )
    with pytest.raises(NoConfiguredTargetTensorsError):
        graph.build_graph()
