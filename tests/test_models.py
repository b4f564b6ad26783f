"""Tests for the intermediate representation."""

from __future__ import annotations

import json

from skillc.models import (
    Group,
    IntermediateRepr,
    Operation,
    ProjectStructure,
    SpecSource,
    SpecWarning,
    TypeDef,
)


def _fragment(prefix: str, **metadata: str) -> IntermediateRepr:
    return IntermediateRepr(
        operations=[Operation(id=f"{prefix}-op")],
        types=[TypeDef(name=f"{prefix}-type")],
        groups=[Group(name=prefix, operations=[f"{prefix}-op"])],
        metadata=dict(metadata),
    )


def test_merge_preserves_source_order() -> None:
    merged = IntermediateRepr()
    for prefix in ("a", "b", "c"):
        merged.merge(_fragment(prefix))

    assert [op.id for op in merged.operations] == ["a-op", "b-op", "c-op"]
    assert [t.name for t in merged.types] == ["a-type", "b-type", "c-type"]
    assert [g.name for g in merged.groups] == ["a", "b", "c"]


def test_merge_overlays_metadata_last_source_wins() -> None:
    merged = IntermediateRepr()
    merged.merge(_fragment("a", title="first", type="openapi"))
    merged.merge(_fragment("b", title="second"))

    assert merged.metadata == {"title": "second", "type": "openapi"}


def test_merge_replaces_structure_only_when_fragment_has_one() -> None:
    first = ProjectStructure()
    merged = IntermediateRepr()
    merged.merge(IntermediateRepr(structure=first))
    merged.merge(_fragment("x"))
    assert merged.structure is first

    second = ProjectStructure()
    merged.merge(IntermediateRepr(structure=second))
    assert merged.structure is second


def test_to_json_is_independent_of_metadata_insertion_order() -> None:
    one = IntermediateRepr(metadata={"title": "Pets", "version": "1", "description": "d"})
    two = IntermediateRepr(metadata={"description": "d", "version": "1", "title": "Pets"})

    assert one.to_json() == two.to_json()


def test_to_json_omits_empty_fields() -> None:
    ir = IntermediateRepr(operations=[Operation(id="ping", method="GET")])

    payload = json.loads(ir.to_json())

    assert payload == {"operations": [{"id": "ping", "method": "GET"}]}


def test_spec_source_label_prefers_type_and_location() -> None:
    assert SpecSource(type="cli", binary="kubectl").label == "cli:kubectl"
    assert SpecSource(path="/tmp/api.yaml").label == "/tmp/api.yaml"
    assert SpecSource().label == "<empty source>"


def test_spec_warning_str_includes_path() -> None:
    assert str(SpecWarning(message="missing", path="api.yaml")) == "api.yaml: missing"
    assert str(SpecWarning(message="missing")) == "missing"
