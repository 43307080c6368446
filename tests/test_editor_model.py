import asyncio

import pytest

pytest.importorskip("PySide6")

from Param_Flow.engine.handle import EngineHandle
from Param_Flow.gui.editor_model import EditorModel
from Param_Flow.orchestrator import GraphOrchestrator

from conftest import FakeEngine


def _model():
    return EditorModel(GraphOrchestrator(EngineHandle(engine=FakeEngine())))


def test_canvas_events_drive_orchestrator():
    model = _model()
    views = []
    model.viewChanged.connect(views.append)

    a = model.addNode("Solid::Box", 0.0, 0.0)
    b = model.addNode("Features::Fillet", 100.0, 0.0)
    edge = model.connectNodes(a, "shape", b, "shape")
    model.moveNode(a, 5.0, 6.0)
    model.setParam(a, "width", 12.0)

    assert edge
    assert views[-1]["nodes"][0]["position"] == {"x": 5.0, "y": 6.0}
    assert views[-1]["nodes"][0]["data"]["params"] == {"width": 12.0}
    assert model.canUndo

    model.deleteNode(b)
    assert model.view()["edges"] == []
    model.undo()
    assert len(model.view()["edges"]) == 1


def test_delete_selection_is_one_undo_step():
    model = _model()
    a = model.addNode("Solid::Box", 0.0, 0.0)
    b = model.addNode("Solid::Box", 50.0, 0.0)
    model.selectNode(a)
    model.deleteSelection()
    assert [n["id"] for n in model.view()["nodes"]] == [b]
    model.undo()
    assert len(model.view()["nodes"]) == 2


def test_rejected_connection_reports_status():
    model = _model()
    statuses = []
    model.statusChanged.connect(statuses.append)
    a = model.addNode("Solid::Box", 0.0, 0.0)

    assert model.connectNodes(a, "shape", a, "shape") == ""
    assert statuses[-1] == "self-loops are not allowed"
    assert model.status == "self-loops are not allowed"


def test_evaluate_reports_engine_state():
    model = _model()
    statuses = []
    model.statusChanged.connect(statuses.append)
    model.addNode("Solid::Box", 0.0, 0.0)

    async def scenario():
        await model._evaluate()
        await model.orchestrator.initialize_engine()
        return await model._evaluate()

    asyncio.run(scenario())
    assert statuses[0].startswith("Geometry engine is not ready")
    assert "Geometry engine ready" in statuses
    assert statuses[-1] == "Evaluation completed"


def test_load_and_new_graph_reset_history():
    model = _model()
    model.addNode("Solid::Box", 0.0, 0.0)
    text = model.saveGraph()
    model.newGraph()
    assert model.view()["nodes"] == []
    assert model.loadGraph(text)
    assert not model.canUndo
    assert not model.loadGraph("{oops")
