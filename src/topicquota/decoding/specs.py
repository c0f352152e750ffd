"""Message specification primitives and registry typing.

Defines lightweight dataclasses to describe how to normalize envelopes:
- `MessageSpec`: one envelope rule (canonical tag, accepted wire types, projection)
- `MessageRegistry`: mapping from wire ``type`` value → MessageSpec
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


# ---- Projection mapping ----
# Keys: canonical content keys (e.g., "question", "usageQuota")
# Values: references into the raw envelope
#   - ProjectionRefs.PathRef(paths=("a.b", "c"))  → first dotted path that resolves
#   - ProjectionRefs.Constant(value=...)           → output a constant
class ProjectionRefs:
    @dataclass(kw_only=True)
    class PathRef:
        paths: tuple[str, ...]

    @dataclass(kw_only=True)
    class Constant:
        value: Any


ProjectionRef = ProjectionRefs.PathRef | ProjectionRefs.Constant | None

Projection = Mapping[str, ProjectionRef]

_MISSING = object()


def lookup_path(content: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted path through nested mappings; return `_MISSING` if absent."""
    node: Any = content
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _MISSING
        node = node[part]
    return node


def resolve_projection_ref(ref: ProjectionRef, content: Mapping[str, Any]) -> Any:
    """Resolve a projection reference (None when nothing matches)"""
    if ref is None:
        return None
    match ref:
        case ProjectionRefs.PathRef():
            for path in ref.paths:
                value = lookup_path(content, path)
                if value is not _MISSING and value is not None:
                    return value
            return None
        case ProjectionRefs.Constant():
            return ref.value
    raise RuntimeError("Unsupported ProjectionRef type")


@dataclass(frozen=True)
class MessageSpec:
    """One envelope normalization rule."""

    tag: str  # canonical type written by this system
    wire_types: tuple[str, ...] = ()  # additional accepted ``type`` values
    projection: Projection = field(default_factory=dict)
    # keys whose projected value should be coerced to int when possible
    int_fields: tuple[str, ...] = ()

    def all_wire_types(self) -> tuple[str, ...]:
        return (self.tag, *(t for t in self.wire_types if t != self.tag))


MessageRegistry = dict[str, MessageSpec]
