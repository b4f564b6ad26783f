"""Tests for the OpenAPI spec plugin."""

from __future__ import annotations

import copy
import io
import json
from urllib.error import URLError

import pytest

from skillc.errors import SourceResolutionError, SpecParseError
from skillc.models import SpecSource
from skillc.plugins import openapi as openapi_module
from skillc.plugins.openapi import OpenAPIPlugin
from tests._fixtures.project_builder import PETSTORE, ProjectBuilder


def _parse(document=None):
    plugin = OpenAPIPlugin()
    raw = json.dumps(document if document is not None else PETSTORE).encode("utf-8")
    return plugin.parse(raw, SpecSource(path="openapi.json"))


def test_detect_by_type_or_extension() -> None:
    plugin = OpenAPIPlugin()

    assert plugin.detect(SpecSource(path="api.yaml"))
    assert plugin.detect(SpecSource(path="api.YML"))
    assert plugin.detect(SpecSource(path="api.json"))
    assert plugin.detect(SpecSource(type="openapi", url="https://example.com/spec"))
    assert not plugin.detect(SpecSource(path="api.txt"))
    assert not plugin.detect(SpecSource(url="https://example.com/spec.yaml"))
    assert not plugin.detect(SpecSource(type="codebase", path="package.json"))


def test_parse_orders_operations_by_path_then_method() -> None:
    ir = _parse()

    assert [op.id for op in ir.operations] == ["listPets", "post_pets", "showPetById", "getInventory"]
    assert [op.method for op in ir.operations] == ["GET", "POST", "GET", "GET"]


def test_parse_merges_path_level_parameters() -> None:
    ir = _parse()
    show = next(op for op in ir.operations if op.id == "showPetById")

    assert len(show.parameters) == 1
    param = show.parameters[0]
    assert (param.name, param.location, param.required, param.type) == ("petId", "path", True, "string")


def test_parse_records_bodies_and_auth() -> None:
    ir = _parse()
    by_id = {op.id: op for op in ir.operations}

    create = by_id["post_pets"]
    assert create.request_body is not None
    assert create.request_body.type_name == "Pet"
    assert create.request_body.content_type == "application/json"
    assert create.auth == ["apiKey"]

    listing = by_id["listPets"]
    assert listing.parameters[0].type == "integer(int32)"
    assert listing.responses[0].status_code == "200"
    assert listing.responses[0].body is not None
    assert listing.responses[0].body.type_name == "[]Pet"
    assert listing.auth == []


def test_parse_extracts_types_auth_and_groups() -> None:
    ir = _parse()

    assert [t.name for t in ir.types] == ["Owner", "Pet", "Status"]
    pet = next(t for t in ir.types if t.name == "Pet")
    assert [(f.name, f.type, f.required) for f in pet.fields] == [
        ("id", "integer(int64)", True),
        ("name", "string", True),
        ("owner", "Owner", False),
    ]
    owner = next(t for t in ir.types if t.name == "Owner")
    assert owner.fields[0].type == "[]Pet"
    status = next(t for t in ir.types if t.name == "Status")
    assert status.enum == ["available", "sold"]

    assert [(a.id, a.type, a.location) for a in ir.auth] == [("apiKey", "apiKey", "header")]
    assert [(g.name, g.operations) for g in ir.groups] == [
        ("pets", ["listPets", "post_pets", "showPetById"]),
        ("store", ["getInventory"]),
    ]
    assert ir.metadata == {"title": "Petstore", "description": "Manage pets.", "version": "1.2.0"}


def test_parse_is_independent_of_document_key_order() -> None:
    reordered = copy.deepcopy(PETSTORE)
    reordered["paths"] = dict(reversed(list(reordered["paths"].items())))
    reordered["components"]["schemas"] = dict(reversed(list(reordered["components"]["schemas"].items())))

    assert _parse(reordered).to_json() == _parse().to_json()


def test_parse_applies_global_security() -> None:
    document = copy.deepcopy(PETSTORE)
    document["security"] = [{"apiKey": []}]

    ir = _parse(document)

    assert all(op.auth == ["apiKey"] for op in ir.operations)


def test_parse_rejects_swagger_2() -> None:
    with pytest.raises(SpecParseError, match="only 3.x"):
        _parse({"swagger": "2.0", "paths": {}})


def test_parse_rejects_invalid_yaml() -> None:
    with pytest.raises(SpecParseError):
        OpenAPIPlugin().parse(b"openapi: [unclosed", SpecSource(path="api.yaml"))


def test_cyclic_refs_resolve_to_empty() -> None:
    document = {
        "openapi": "3.1.0",
        "paths": {
            "/loop": {
                "get": {
                    "operationId": "loop",
                    "summary": "Loop",
                    "parameters": [{"$ref": "#/components/parameters/A"}],
                }
            }
        },
        "components": {"parameters": {"A": {"$ref": "#/components/parameters/A"}}},
    }

    ir = _parse(document)

    assert ir.operations[0].parameters == []


def test_validate_warns_about_missing_descriptions() -> None:
    document = {
        "openapi": "3.0.0",
        "paths": {
            "/things": {
                "get": {
                    "operationId": "listThings",
                    "parameters": [{"name": "q", "in": "query"}],
                }
            }
        },
    }
    plugin = OpenAPIPlugin()

    warnings = plugin.validate(_parse(document))

    assert [w.message for w in warnings] == [
        "operation listThings has no description or summary",
        "parameter q in GET /things has no description",
    ]
    assert plugin.validate(_parse()) == []


def test_fetch_reads_yaml_file(project: ProjectBuilder) -> None:
    path = project.write_openapi("specs/api.yaml")
    plugin = OpenAPIPlugin()
    source = SpecSource(path=str(path))

    ir = plugin.parse(plugin.fetch(source), source)

    assert len(ir.operations) == 4


def test_fetch_url_uses_urlopen(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_urlopen(request, timeout):
        captured["url"] = request.full_url
        captured["timeout"] = timeout
        return io.BytesIO(b"openapi: 3.0.0\n")

    monkeypatch.setattr(openapi_module, "urlopen", fake_urlopen)

    raw = OpenAPIPlugin().fetch(SpecSource(type="openapi", url="https://example.com/spec.yaml"))

    assert raw == b"openapi: 3.0.0\n"
    assert captured == {"url": "https://example.com/spec.yaml", "timeout": 30.0}


def test_fetch_url_wraps_network_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_urlopen(request, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(openapi_module, "urlopen", failing_urlopen)

    with pytest.raises(SourceResolutionError, match="connection refused"):
        OpenAPIPlugin().fetch(SpecSource(type="openapi", url="https://example.com/spec.yaml"))


def test_fetch_command_captures_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    class Completed:
        stdout = b"openapi: 3.0.0\n"

    def fake_run(args, check, capture_output):
        calls.append(args)
        return Completed()

    monkeypatch.setattr(openapi_module.subprocess, "run", fake_run)

    raw = OpenAPIPlugin().fetch(SpecSource(type="openapi", command="petctl spec --format 'yaml'"))

    assert raw == b"openapi: 3.0.0\n"
    assert calls == [["petctl", "spec", "--format", "yaml"]]


def test_fetch_requires_a_location() -> None:
    with pytest.raises(SourceResolutionError, match="path, url, or command"):
        OpenAPIPlugin().fetch(SpecSource(type="openapi"))


def test_fetch_command_with_unbalanced_quotes_is_a_resolution_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_run(*args, **kwargs):
        raise AssertionError("command must not run")

    monkeypatch.setattr(openapi_module.subprocess, "run", fail_run)

    with pytest.raises(SourceResolutionError, match="No closing quotation"):
        OpenAPIPlugin().fetch(SpecSource(type="openapi", command='cat "unterminated'))
