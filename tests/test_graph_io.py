import json

import pytest

from Param_Flow.errors import GraphFormatError
from Param_Flow.graph.io import deserialize, load_graph, new_graph, save_graph, serialize
from Param_Flow.graph.model import EdgeInstance, GraphDocument, NodeInstance
from Param_Flow.graph.types import NodeStatus


def _document():
    return GraphDocument(
        nodes=[
            NodeInstance(
                id="box",
                type="Solid::Box",
                position=(1.0, 2.0),
                params={"width": 10.0, "origin": (0.0, 0.0, 5.0), "centered": True},
            ),
            NodeInstance(
                id="fillet",
                type="Features::Fillet",
                params={"radius": 1.5},
                status=NodeStatus.ERROR,
                error_message="radius too large",
            ),
        ],
        edges=[EdgeInstance("e1", "box", "shape", "fillet", "shape")],
        metadata={"author": "test"},
    )


def test_serialize_is_indented_json():
    text = serialize(_document())
    data = json.loads(text)
    assert text.startswith("{\n  ")
    assert data["nodes"][0]["params"]["origin"] == [0.0, 0.0, 5.0]
    assert data["nodes"][1]["errorMessage"] == "radius too large"
    assert data["edges"][0]["sourceHandle"] == "shape"


def test_deserialize_restores_document():
    doc = _document()
    restored = deserialize(serialize(doc))
    assert restored == doc


def test_save_and_load(tmp_path):
    path = tmp_path / "part.json"
    save_graph(str(path), _document())
    assert load_graph(str(path)) == _document()


def test_new_graph_uses_configured_defaults():
    doc = new_graph()
    assert doc.nodes == [] and doc.edges == []
    assert doc.units == "mm"
    assert doc.tolerance == pytest.approx(0.001)


@pytest.mark.parametrize(
    "payload",
    [
        "[]",
        "{}",
        json.dumps({"nodes": {}, "edges": []}),
        json.dumps({"nodes": [{"type": "X"}], "edges": []}),
        json.dumps({"nodes": [{"id": "a", "type": "X", "params": []}], "edges": []}),
        json.dumps({"nodes": [], "edges": [{"source": "a"}]}),
        json.dumps({"nodes": [], "edges": [], "tolerance": "fine"}),
        json.dumps({"nodes": [{"id": "a", "type": "X", "status": "exploded"}], "edges": []}),
        json.dumps({"nodes": [{"id": "a", "type": "X", "position": [1, 2]}], "edges": []}),
        json.dumps({"nodes": [{"id": "a", "type": "X", "position": {"x": "left"}}], "edges": []}),
        "{broken",
    ],
)
def test_deserialize_rejects_malformed_input(payload):
    with pytest.raises(GraphFormatError):
        deserialize(payload)


def test_missing_optional_fields_get_defaults():
    doc = deserialize(json.dumps({"nodes": [{"id": "a", "type": "X"}], "edges": []}))
    node = doc.nodes[0]
    assert node.position == (0.0, 0.0)
    assert node.params == {}
    assert node.dirty
    assert node.status is NodeStatus.IDLE


def test_empty_list_param_survives_round_trip():
    doc = GraphDocument(nodes=[NodeInstance(id="a", type="X", params={"tags": []})])
    restored = deserialize(serialize(doc))
    assert restored.nodes[0].params == {"tags": []}
