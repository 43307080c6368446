"""Declared parameter schemas for node types.

Parameters are a closed set of value kinds. A :class:`SchemaRegistry` maps a
namespaced node type to its :class:`NodeSchema`; validating a parameter map
normalises each value to its canonical Python type so that snapshots taken
by update commands only ever contain declared, typed fields.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from ..errors import ParamValidationError
from .types import ParamValue


class ParamKind(Enum):
    NUMBER = "number"
    INTEGER = "integer"
    STRING = "string"
    BOOL = "bool"
    VECTOR = "vector"
    ENUM = "enum"


@dataclass(frozen=True)
class ParamSpec:
    """Declaration of a single node parameter."""

    name: str
    kind: ParamKind
    default: Optional[ParamValue] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Tuple[str, ...] = ()
    length: Optional[int] = None
    required: bool = False

    def coerce(self, value: Any) -> ParamValue:
        """Return ``value`` normalised for this parameter or raise."""

        if self.kind is ParamKind.BOOL:
            if not isinstance(value, bool):
                raise ParamValidationError(self.name, "must be a boolean")
            return value
        if self.kind is ParamKind.STRING:
            if not isinstance(value, str):
                raise ParamValidationError(self.name, "must be a string")
            return value
        if self.kind is ParamKind.ENUM:
            if value not in self.choices:
                raise ParamValidationError(
                    self.name, f"must be one of {', '.join(self.choices)}"
                )
            return value
        if self.kind is ParamKind.VECTOR:
            return self._coerce_vector(value)
        return self._coerce_number(value)

    def _coerce_number(self, value: Any) -> float | int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParamValidationError(self.name, "must be a valid number")
        if not math.isfinite(value):
            raise ParamValidationError(self.name, "must be a finite number")
        if self.kind is ParamKind.INTEGER:
            if float(value) != int(value):
                raise ParamValidationError(self.name, "must be a whole number")
            value = int(value)
        else:
            value = float(value)
        if self.minimum is not None and value < self.minimum:
            raise ParamValidationError(self.name, f"must be at least {self.minimum}")
        if self.maximum is not None and value > self.maximum:
            raise ParamValidationError(self.name, f"must be at most {self.maximum}")
        return value

    def _coerce_vector(self, value: Any) -> Tuple[float, ...]:
        if not isinstance(value, (list, tuple)):
            raise ParamValidationError(self.name, "must be a vector")
        if self.length is not None and len(value) != self.length:
            raise ParamValidationError(
                self.name, f"must have {self.length} components"
            )
        out = []
        for item in value:
            if isinstance(item, bool) or not isinstance(item, (int, float)):
                raise ParamValidationError(self.name, "components must be numbers")
            if not math.isfinite(item):
                raise ParamValidationError(self.name, "components must be finite")
            out.append(float(item))
        return tuple(out)


@dataclass(frozen=True)
class NodeSchema:
    """Parameter declarations for one node type."""

    type: str
    params: Dict[str, ParamSpec] = field(default_factory=dict)

    @classmethod
    def of(cls, node_type: str, specs: Sequence[ParamSpec]) -> "NodeSchema":
        return cls(node_type, {spec.name: spec for spec in specs})

    def defaults(self) -> Dict[str, ParamValue]:
        """Return default values for every parameter that declares one."""
        return {
            name: spec.default
            for name, spec in self.params.items()
            if spec.default is not None
        }


class SchemaRegistry:
    """Lookup table of :class:`NodeSchema` keyed by node type."""

    def __init__(self, schemas: Iterable[NodeSchema] = ()) -> None:
        self._schemas: Dict[str, NodeSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: NodeSchema) -> None:
        self._schemas[schema.type] = schema

    def get(self, node_type: str) -> NodeSchema | None:
        return self._schemas.get(node_type)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._schemas

    def validate(
        self, node_type: str, params: Dict[str, Any], *, partial: bool = False
    ) -> Dict[str, Any]:
        """Return ``params`` normalised against the schema of ``node_type``.

        Unknown node types pass through unchanged. ``partial`` skips the
        required-parameter check, for patches that touch only some fields.
        """

        schema = self.get(node_type)
        if schema is None:
            return dict(params)
        out: Dict[str, Any] = {}
        for name, value in params.items():
            spec = schema.params.get(name)
            if spec is None:
                raise ParamValidationError(name, f"is not declared by {node_type}")
            out[name] = spec.coerce(value)
        if not partial:
            for name, spec in schema.params.items():
                if spec.required and name not in out:
                    raise ParamValidationError(name, "is required")
        return out
