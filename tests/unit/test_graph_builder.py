from __future__ import annotations

import pytest

from graph_dsl import BuildOptions, Graph, Tensor, TorchBackend
from graph_dsl.errors import (
    GraphBuildError,
    InputShapeError,
    LossNotTargetError,
    MoreThanOneLearningNodeError,
    NamedTensorNotFoundError,
    NameNotUniqueError,
    NoPreviousNodeError,
    NoTargetsInGraphError,
    TargetNodesMustBeNamedError,
    UnreferencedNodeError,
    VariableLearningNodeMustBeNamedError,
    VariableMustBeNamedError,
)
from graph_dsl.graph.builder import LOAD_PLACEHOLDER_SUFFIX, GraphBuilder
from graph_dsl.nodes import (
    Addition,
    Constant,
    FullyConnectedLayer,
    Learning,
    MeanSquaredErrorLoss,
    Multiplication,
    PlaceHolder,
    Square,
    Variable,
)


def _build(nodes, **kwargs):
    builder = GraphBuilder(TorchBackend("cpu"), **kwargs)
    return builder.build(nodes)


def test_previous_node_chaining_and_shapes() -> None:
    built = _build(
        [
            PlaceHolder((3, 4), name="x"),
            Square(name="sq"),
            Addition(second_input="x", name="sum").target_for_modes(["m"]),
        ]
    )
    assert [(r.name, r.shape) for r in built.nodes] == [
        ("x", (3, 4)),
        ("sq", (3, 4)),
        ("sum", (3, 4)),
    ]
    assert built.outputs_for("m") == [built.get_node("sum").handle]
    assert built.outputs_for("other") == []
    assert [slot.name for slot in built.required_inputs_for("m")] == ["x"]


def test_no_previous_node() -> None:
    with pytest.raises(NoPreviousNodeError):
        _build([Square(name="sq").target_for_modes(["m"])])


def test_unknown_input_name() -> None:
    with pytest.raises(NamedTensorNotFoundError):
        _build([PlaceHolder((1,), name="x"), Square(input="y", name="sq").target_for_modes(["m"])])


def test_duplicate_names() -> None:
    with pytest.raises(NameNotUniqueError):
        _build(
            [
                PlaceHolder((1,), name="x"),
                Square(name="x").target_for_modes(["m"]),
            ]
        )


def test_graph_without_targets_fails() -> None:
    with pytest.raises(NoTargetsInGraphError):
        _build([PlaceHolder((1,), name="x"), Square(name="sq")])


@pytest.mark.parametrize("dead_position", [0, 1, 3])
def test_unreferenced_node_fails_wherever_it_appears(dead_position: int) -> None:
    nodes = [
        PlaceHolder((2,), name="x"),
        Square(input="x", name="sq"),
        Addition(first_input="sq", second_input="x", name="out").target_for_modes(["m"]),
    ]
    nodes.insert(dead_position, Constant(shape=(2,), value=1.0, name="dead"))
    with pytest.raises(UnreferencedNodeError) as excinfo:
        _build(nodes)
    assert "dead" in str(excinfo.value)


def test_unnamed_target_is_rejected() -> None:
    with pytest.raises(TargetNodesMustBeNamedError):
        _build([PlaceHolder((1,), name="x"), Square().target_for_modes(["m"])])


def test_only_one_learning_node() -> None:
    with pytest.raises(MoreThanOneLearningNodeError):
        _build(
            [
                PlaceHolder((1,), name="x"),
                Square(input="x", name="sq").target_for_modes(["m"]),
                Learning(learning_modes=["m"]),
                Learning(learning_modes=["m"]),
            ]
        )


def test_runtime_learning_rate_needs_a_name() -> None:
    with pytest.raises(VariableLearningNodeMustBeNamedError):
        _build(
            [
                PlaceHolder((1,), name="x"),
                Square(input="x", name="sq").target_for_modes(["m"]),
                Learning(constant=False, learning_modes=["m"]),
            ]
        )


def test_learnable_variable_with_unknown_loss() -> None:
    with pytest.raises(NamedTensorNotFoundError):
        _build(
            [
                Variable(initial_value=1.0, shape=(1,), name="v").learn_with_respect_to("nope"),
                Square(name="sq").target_for_modes(["m"]),
            ]
        )


def test_loss_must_be_a_target() -> None:
    with pytest.raises(LossNotTargetError) as excinfo:
        _build(
            [
                PlaceHolder((1,), name="expected"),
                Variable(initial_value=1.0, shape=(1,), name="v").learn_with_respect_to("loss"),
                MeanSquaredErrorLoss(actual="expected", predicted="v", name="loss"),
                Square(input="loss", name="sq").target_for_modes(["learn"]),
                Learning(learning_modes=["learn"]),
            ]
        )
    assert excinfo.value.name == "loss"


def test_unnamed_learnable_variables_are_rejected() -> None:
    with pytest.raises(VariableMustBeNamedError):
        _build(
            [
                PlaceHolder((1,), modes=["learn"], name="expected"),
                Variable(initial_value=1.0, shape=(1,)).learn_with_respect_to("loss"),
                Variable(initial_value=2.0, shape=(1,)).learn_with_respect_to("loss"),
                Addition(name="sum").target_for_modes(["infer"]),
                MeanSquaredErrorLoss(actual="expected", predicted="sum", name="loss").target_for_modes(["learn"]),
                Learning(learning_modes=["learn"]),
            ]
        )


def test_unnamed_variables_are_rejected_with_variable_assigns() -> None:
    nodes = [
        PlaceHolder((1,), name="x"),
        Variable(initial_value=1.0, shape=(1,)),
        Addition(first_input="x", name="sum").target_for_modes(["m"]),
    ]
    assert [target.modes for target in _build(nodes).targets] == [("m",)]
    with pytest.raises(VariableMustBeNamedError):
        _build(nodes, build_options=BuildOptions.RESET_ASSIGNS)


def test_incompatible_shapes_are_build_errors() -> None:
    with pytest.raises(InputShapeError):
        _build(
            [
                PlaceHolder((2, 3), name="a"),
                PlaceHolder((4,), name="b"),
                Multiplication(first_input="a", second_input="b", name="p").target_for_modes(["m"]),
            ]
        )
    assert issubclass(InputShapeError, GraphBuildError)


def test_learning_ops_grouped_per_variable() -> None:
    built = _build(
        [
            PlaceHolder((1,), modes=["learn"], name="expected"),
            Constant(shape=(1,), value=3.0, name="c"),
            Variable(initial_value=2.0, shape=(1,), name="v").learn_with_respect_to("loss"),
            Variable(initial_value=1.0, shape=(1,), name="b").learn_with_respect_to("loss"),
            Multiplication(first_input="c", second_input="v", name="mul"),
            Addition(second_input="b", name="result").target_for_modes(["infer"]),
            MeanSquaredErrorLoss(actual="expected", predicted="result", name="loss").target_for_modes(["learn"]),
            Learning(learning_modes=["learn"]),
        ]
    )
    assert [v.name for v in built.learnable] == ["v", "b"]
    assert len(built.learning_ops) == 2
    assert built.is_learning_mode("learn")
    assert not built.is_learning_mode("infer")
    assert built.required_inputs_for("infer") == []


def test_variable_assigns_cover_every_variable() -> None:
    built = _build(
        [
            PlaceHolder((2,), name="x"),
            FullyConnectedLayer(output_shape=(3,), name="fc").target_for_modes(["m"]),
            Variable(initial_value=0.0, shape=(3,), name="frozen"),
            Addition(first_input="fc", second_input="frozen", name="out").target_for_modes(["m"]),
        ],
        build_options=BuildOptions.VARIABLE_ASSIGNS,
    )
    names = [entry.name for entry in built.load_reset]
    assert names == ["fc_weights", "fc_biases", "frozen"]
    for entry in built.load_reset:
        assert entry.placeholder is not None
        assert entry.placeholder.name == entry.name + LOAD_PLACEHOLDER_SUFFIX
        assert entry.load_op is not None and entry.reset_op is not None


def test_failed_rebuild_leaves_no_built_state() -> None:
    nodes = [PlaceHolder((1,), name="x"), Square(name="sq").target_for_modes(["m"])]
    graph = Graph(nodes)
    graph.build_graph()
    assert graph.is_built

    graph.nodes.append(Constant(shape=(1,), value=0.0, name="dead"))
    with pytest.raises(UnreferencedNodeError):
        graph.build_graph()
    assert not graph.is_built
    assert graph.executor is None


def test_rebuilds_release_variable_state() -> None:
    backend = TorchBackend("cpu")
    graph = Graph(
        [
            PlaceHolder((2,), name="x"),
            FullyConnectedLayer(output_shape=(3,), name="fc"),
            Variable(initial_value=0.0, shape=(3,), name="frozen"),
            Addition(first_input="fc", second_input="frozen", name="out").target_for_modes(["m"]),
        ],
        backend=backend,
    )
    for _ in range(3):
        built = graph.build_graph()
        graph.run_one("m", {"x": Tensor.from_values((2,), [1.0, 2.0])})
        assert len(built.variables) == 3
        assert set(backend._state) == set(built.variables)

    graph.nodes.append(Constant(shape=(1,), value=0.0, name="dead"))
    with pytest.raises(UnreferencedNodeError):
        graph.build_graph()
    assert backend._state == {}
    backend.shutdown()


def test_shape_list_reports_every_output() -> None:
    graph = Graph(
        [
            PlaceHolder((2, 2), name="x"),
            Square().target_for_modes([]),
            Square(name="named").target_for_modes(["m"]),
        ]
    )
    with pytest.raises(TargetNodesMustBeNamedError):
        graph.shape_list()

    graph.nodes[1] = Square()
    graph.nodes[2] = Square(name="named").target_for_modes(["m"])
    assert graph.shape_list() == [((2, 2), "x"), ((2, 2), None), ((2, 2), "named")]
