from Param_Flow.graph.model import EdgeInstance, GraphDocument, NodeInstance
from Param_Flow.graph.types import NodeStatus
from Param_Flow.view import (
    DEFAULT_KIND,
    INPUT_KIND,
    OUTPUT_KIND,
    ViewEdge,
    ViewNode,
    from_view,
    node_kind,
    node_label,
    to_view,
)


def _document():
    return GraphDocument(
        nodes=[
            NodeInstance(
                id="box",
                type="Solid::Box",
                position=(10.0, 20.0),
                params={"width": 100.0, "height": 50.0, "depth": 25.5},
                outputs={"shape": "box-ref"},
            ),
            NodeInstance(
                id="fillet",
                type="Features::Fillet",
                position=(200.0, 20.0),
                params={"radius": 2.0},
                inputs={"shape": "box-ref"},
                status=NodeStatus.EVALUATING,
            ),
            NodeInstance(id="step", type="IO::ExportSTEP", position=(400.0, 20.0)),
        ],
        edges=[
            EdgeInstance("e1", "box", "shape", "fillet", "shape"),
            EdgeInstance("e2", "fillet", "shape", "step", "shape"),
        ],
    )


def test_projection_round_trip_preserves_authoritative_fields():
    doc = _document()
    projection = to_view(doc, selection={"box"}, errors={"fillet": "bad"})
    restored = from_view(projection.nodes, projection.edges)
    assert restored.authoritative() == doc.authoritative()


def test_round_trip_through_renderer_payload():
    doc = _document()
    payload = to_view(doc).to_dict()
    nodes = [ViewNode.from_dict(n) for n in payload["nodes"]]
    edges = [ViewEdge.from_dict(e) for e in payload["edges"]]
    assert from_view(nodes, edges).authoritative() == doc.authoritative()


def test_node_kind_buckets():
    assert node_kind("IO::ImportSTEP") == INPUT_KIND
    assert node_kind("IO::ExportSTL") == OUTPUT_KIND
    assert node_kind("Solid::Box") == DEFAULT_KIND


def test_labels_summarise_known_params():
    doc = _document()
    labels = [node_label(n) for n in doc.nodes]
    assert labels == ["Box (100×50×25.5)", "Fillet (R2)", "ExportSTEP"]


def test_label_without_params_uses_type_suffix():
    assert node_label(NodeInstance(id="b", type="Solid::Box")) == "Box"
    assert node_label(NodeInstance(id="x", type="")) == "Unknown"


def test_ui_flags():
    projection = to_view(_document(), selection=["box"], errors={"fillet": "boom"})
    by_id = {n.id: n for n in projection.nodes}
    assert by_id["box"].is_selected
    assert not by_id["fillet"].is_selected
    assert by_id["fillet"].has_error
    assert by_id["fillet"].is_executing
    assert not by_id["box"].is_executing


def test_edges_carry_presentational_style():
    edge = to_view(_document()).edges[0].to_dict()
    assert edge["type"] == "smoothstep"
    assert edge["animated"] is True
    assert edge["style"]["strokeWidth"] == 2
    assert edge["markerEnd"]["type"] == "arrow"


def test_from_view_fills_missing_fields():
    doc = from_view(
        [ViewNode(id="n1", kind="input"), ViewNode(id="n2", node_type="Solid::Box")],
        [ViewEdge(id="e", source="n1", target="n2")],
    )
    assert doc.nodes[0].type == "input"
    assert doc.nodes[0].params == {}
    assert doc.nodes[1].type == "Solid::Box"
    assert doc.edges[0].source_handle == ""
    assert doc.edges[0].target_handle == ""


def test_to_view_does_not_alias_document_maps():
    doc = _document()
    projection = to_view(doc)
    projection.nodes[0].params["width"] = 1.0
    assert doc.nodes[0].params["width"] == 100.0
