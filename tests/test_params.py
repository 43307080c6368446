import math

import pytest

from Param_Flow.errors import ParamValidationError
from Param_Flow.graph.params import NodeSchema, ParamKind, ParamSpec, SchemaRegistry


@pytest.fixture
def registry():
    return SchemaRegistry(
        [
            NodeSchema.of(
                "Features::Fillet",
                [
                    ParamSpec("radius", ParamKind.NUMBER, minimum=0.0, required=True),
                    ParamSpec("segments", ParamKind.INTEGER, default=8, minimum=1),
                    ParamSpec("mode", ParamKind.ENUM, default="round", choices=("round", "chamfer")),
                    ParamSpec("axis", ParamKind.VECTOR, length=3),
                    ParamSpec("label", ParamKind.STRING),
                    ParamSpec("preview", ParamKind.BOOL, default=False),
                ],
            )
        ]
    )


def test_validate_normalises_values(registry):
    out = registry.validate(
        "Features::Fillet",
        {"radius": 2, "segments": 4.0, "axis": [0, 0, 1], "label": "edge", "preview": True},
    )
    assert out == {
        "radius": 2.0,
        "segments": 4,
        "axis": (0.0, 0.0, 1.0),
        "label": "edge",
        "preview": True,
    }
    assert isinstance(out["radius"], float)
    assert isinstance(out["segments"], int)


@pytest.mark.parametrize(
    "params, name",
    [
        ({"radius": -1}, "radius"),
        ({"radius": "big"}, "radius"),
        ({"radius": True}, "radius"),
        ({"radius": math.inf}, "radius"),
        ({"radius": 1, "segments": 2.5}, "segments"),
        ({"radius": 1, "mode": "sharp"}, "mode"),
        ({"radius": 1, "axis": [0, 1]}, "axis"),
        ({"radius": 1, "axis": [0, "y", 1]}, "axis"),
        ({"radius": 1, "label": 3}, "label"),
        ({"radius": 1, "preview": "yes"}, "preview"),
        ({"radius": 1, "colour": "red"}, "colour"),
        ({}, "radius"),
    ],
)
def test_validate_names_offending_parameter(registry, params, name):
    with pytest.raises(ParamValidationError) as info:
        registry.validate("Features::Fillet", params)
    assert info.value.param == name


def test_partial_validation_skips_required(registry):
    assert registry.validate("Features::Fillet", {"segments": 3}, partial=True) == {"segments": 3}


def test_unknown_type_passes_through(registry):
    params = {"anything": object()}
    assert registry.validate("Custom::Thing", params) == params
    assert "Custom::Thing" not in registry
    assert "Features::Fillet" in registry


def test_schema_defaults(registry):
    schema = registry.get("Features::Fillet")
    assert schema.defaults() == {"segments": 8, "mode": "round", "preview": False}
