import json

from Param_Flow.graph.io import save_graph
from Param_Flow.graph.model import EdgeInstance, GraphDocument, NodeInstance
from Param_Flow.main import main


def _write(tmp_path, doc):
    path = tmp_path / "graph.json"
    save_graph(str(path), doc)
    return str(path)


def _doc(edges=()):
    return GraphDocument(
        nodes=[
            NodeInstance(id="a", type="Solid::Box"),
            NodeInstance(id="b", type="Features::Fillet"),
        ],
        edges=list(edges),
    )


def test_info_prints_summary(tmp_path, capsys):
    path = _write(tmp_path, _doc([EdgeInstance("e", "a", "o", "b", "i")]))
    assert main(["info", path]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["nodes"] == 2
    assert summary["edges"] == 1
    assert summary["types"] == {"Features::Fillet": 1, "Solid::Box": 1}


def test_validate_reports_cycles(tmp_path, capsys):
    path = _write(
        tmp_path,
        _doc([EdgeInstance("ab", "a", "o", "b", "i"), EdgeInstance("ba", "b", "o", "a", "i")]),
    )
    assert main(["validate", path]) == 1
    assert "Graph contains cycles" in capsys.readouterr().out


def test_validate_clean_graph(tmp_path, capsys):
    assert main(["validate", _write(tmp_path, _doc())]) == 0
    assert capsys.readouterr().out.strip() == "ok"


def test_malformed_graph_exits_with_error(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text("{nope")
    assert main(["info", str(path)]) == 2
    assert "invalid JSON" in capsys.readouterr().err


def test_evaluate_without_engine_reports_not_ready(tmp_path, capsys):
    path = _write(tmp_path, _doc())
    assert main(["evaluate", path]) == 1
    out = capsys.readouterr()
    assert out.out.strip() == "not_ready"
    assert "no engine URL configured" in out.err


def test_evaluate_refuses_graph_with_dangling_edge(tmp_path, capsys):
    path = _write(tmp_path, _doc([EdgeInstance("e", "a", "o", "ghost", "i")]))
    assert main(["evaluate", path]) == 1
    assert "Edge e: Missing node ghost" in capsys.readouterr().err
