from __future__ import annotations

import pytest

from graph_dsl import Graph, SubGraph, SubGraphDefinition, SubGraphPlaceHolder, Tensor
from graph_dsl.errors import (
    NodeCannotBeTargetError,
    ReferencedDataTensorNotFoundError,
    SubGraphPlaceHolderNotInInputMapError,
)
from graph_dsl.nodes import Addition, Constant, Multiplication, PlaceHolder


def _doubler() -> SubGraphDefinition:
    return SubGraphDefinition(
        [
            SubGraphPlaceHolder("in"),
            Constant(shape=(1,), value=2.0, name="two"),
            Multiplication(first_input="in", second_input="two", name="c").target_for_modes(["m"]),
        ]
    )


def test_subgraph_outputs_are_prefixed() -> None:
    graph = Graph(
        [
            PlaceHolder((1,), name="x"),
            SubGraph(_doubler(), name="sg", input_map={"in": "x"}),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.constant((1,), 3.0)})
    assert list(results) == ["sg_c"]
    assert results["sg_c"].elements() == [6.0]


def test_same_definition_instantiated_twice() -> None:
    definition = _doubler()
    graph = Graph(
        [
            PlaceHolder((1,), name="x"),
            SubGraph(definition, name="first", input_map={"in": "x"}),
            SubGraph(definition, name="second", input_map={"in": "first_c"}),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.constant((1,), 1.5)})
    assert results["first_c"].elements() == [3.0]
    assert results["second_c"].elements() == [6.0]


def test_unmapped_input_uses_previous_node() -> None:
    graph = Graph(
        [
            PlaceHolder((1,), name="x"),
            Constant(shape=(1,), value=1.0, name="one"),
            Addition(first_input="x", second_input="one", name="plus"),
            SubGraph(_doubler(), name="sg", input_map={"in": None}),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.constant((1,), 4.0)})
    assert results["sg_c"].elements() == [10.0]


def test_nested_subgraphs_put_innermost_name_first() -> None:
    outer = SubGraphDefinition(
        [
            SubGraphPlaceHolder("value"),
            SubGraph(_doubler(), name="inner", input_map={"in": "value"}),
        ]
    )
    graph = Graph(
        [
            PlaceHolder((1,), name="x"),
            SubGraph(outer, name="outer", input_map={"value": "x"}),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.constant((1,), 2.0)})
    assert results["inner_outer_c"].elements() == [4.0]


def test_missing_input_map_entry() -> None:
    graph = Graph(
        [
            PlaceHolder((1,), name="x"),
            SubGraph(_doubler(), name="sg", input_map={"other": "x"}),
        ]
    )
    with pytest.raises(SubGraphPlaceHolderNotInInputMapError) as excinfo:
        graph.build_graph()
    assert excinfo.value.name == "in"


def test_subgraph_instance_cannot_be_a_target() -> None:
    graph = Graph(
        [
            PlaceHolder((1,), name="x"),
            SubGraph(_doubler(), name="sg", input_map={"in": "x"}).target_for_modes(["m"]),
        ]
    )
    with pytest.raises(NodeCannotBeTargetError):
        graph.build_graph()


def test_constants_from_instance_data_tensors() -> None:
    definition = SubGraphDefinition(
        [
            SubGraphPlaceHolder("in"),
            Constant(tensor_reference="scale", name="scale"),
            Multiplication(first_input="in", second_input="scale", name="scaled").target_for_modes(["m"]),
        ]
    )
    scale = Tensor.from_values((2,), [2.0, 3.0])
    graph = Graph(
        [
            PlaceHolder((2,), name="x"),
            SubGraph(definition, name="sg", input_map={"in": "x"}, data_tensor_map={"scale": scale}),
        ]
    )
    results = graph.run_one("m", {"x": Tensor.from_values((2,), [1.0, 1.0])})
    assert results["sg_scaled"].elements() == [2.0, 3.0]

    missing = Graph(
        [
            PlaceHolder((2,), name="x"),
            SubGraph(definition, name="sg", input_map={"in": "x"}),
        ]
    )
    with pytest.raises(ReferencedDataTensorNotFoundError):
        missing.build_graph()
