"""OpenAPI 3.x spec plugin."""

from __future__ import annotations

import shlex
import subprocess
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import yaml

from ..errors import SourceResolutionError, SpecParseError
from ..models import (
    AuthScheme,
    Group,
    IntermediateRepr,
    Operation,
    Parameter,
    Response,
    SpecSource,
    SpecWarning,
    TypeDef,
    TypeField,
    TypeRef,
)
from .base import SpecPlugin

_SPEC_SUFFIXES = {".yaml", ".yml", ".json"}
_HTTP_METHODS = ("delete", "get", "head", "options", "patch", "post", "put", "trace")


class OpenAPIPlugin(SpecPlugin):
    """Reads OpenAPI documents from a file, URL or command output."""

    name = "openapi"
    fetch_timeout = 30.0

    def detect(self, source: SpecSource) -> bool:
        if source.type == "openapi":
            return True
        if source.type:
            return False
        if source.path:
            return Path(source.path).suffix.lower() in _SPEC_SUFFIXES
        return False

    def fetch(self, source: SpecSource) -> bytes:
        if source.path:
            return Path(source.path).read_bytes()
        if source.url:
            return self._fetch_url(source.url)
        if source.command:
            return self._run_command(source.command)
        raise SourceResolutionError("openapi source needs a path, url, or command")

    def parse(self, raw: bytes, source: SpecSource) -> IntermediateRepr:
        try:
            doc = yaml.safe_load(raw.decode("utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as exc:
            raise SpecParseError(f"parsing OpenAPI document: {exc}") from exc
        if not isinstance(doc, dict):
            raise SpecParseError("OpenAPI document must be a mapping")

        version = str(doc.get("openapi", ""))
        if not version.startswith("3."):
            raise SpecParseError(f"unsupported OpenAPI version: {version!r} (only 3.x supported)")

        info = _as_dict(doc.get("info"))
        result = IntermediateRepr(
            metadata={
                "title": str(info.get("title", "") or ""),
                "description": str(info.get("description", "") or ""),
                "version": str(info.get("version", "") or ""),
            }
        )

        group_ops: Dict[str, List[str]] = defaultdict(list)
        paths = _as_dict(doc.get("paths"))
        for path in sorted(paths):
            path_item = _as_dict(_deref(paths[path], doc))
            shared_params = _as_list(path_item.get("parameters"))
            for method in sorted(key for key in path_item if key.lower() in _HTTP_METHODS):
                op = _as_dict(path_item[method])
                operation = self._build_operation(path, method, op, shared_params, doc)
                result.operations.append(operation)
                for tag in operation.tags:
                    group_ops[tag].append(operation.id)

        components = _as_dict(doc.get("components"))
        schemas = _as_dict(components.get("schemas"))
        for name in sorted(schemas):
            result.types.append(_build_type(name, _as_dict(_deref(schemas[name], doc)), doc))

        schemes = _as_dict(components.get("securitySchemes"))
        for name in sorted(schemes):
            scheme = _as_dict(_deref(schemes[name], doc))
            result.auth.append(
                AuthScheme(
                    id=name,
                    type=str(scheme.get("type", "") or ""),
                    name=str(scheme.get("name", "") or ""),
                    location=str(scheme.get("in", "") or ""),
                    scheme=str(scheme.get("scheme", "") or ""),
                    description=str(scheme.get("description", "") or ""),
                )
            )

        for name in sorted(group_ops):
            result.groups.append(Group(name=name, operations=group_ops[name]))
        return result

    def validate(self, ir: IntermediateRepr) -> List[SpecWarning]:
        warnings: List[SpecWarning] = []
        for op in ir.operations:
            if not op.description and not op.name:
                warnings.append(SpecWarning(message=f"operation {op.id} has no description or summary"))
            for param in op.parameters:
                if not param.description:
                    warnings.append(
                        SpecWarning(
                            message=f"parameter {param.name} in {op.method} {op.path} has no description"
                        )
                    )
        return warnings

    def _build_operation(
        self,
        path: str,
        method: str,
        op: Dict[str, Any],
        shared_params: List[Any],
        doc: Dict[str, Any],
    ) -> Operation:
        op_id = str(op.get("operationId") or "")
        if not op_id:
            op_id = method.lower() + "_" + path.strip("/").replace("/", "_")
        summary = str(op.get("summary", "") or "")
        operation = Operation(
            id=op_id,
            name=summary,
            description=str(op.get("description", "") or "") or summary,
            method=method.upper(),
            path=path,
            tags=[str(tag) for tag in _as_list(op.get("tags"))],
            deprecated=bool(op.get("deprecated", False)),
        )

        for raw_param in shared_params + _as_list(op.get("parameters")):
            param = _as_dict(_deref(raw_param, doc))
            if not param.get("name"):
                continue
            operation.parameters.append(
                Parameter(
                    name=str(param["name"]),
                    location=str(param.get("in", "") or ""),
                    description=str(param.get("description", "") or ""),
                    required=bool(param.get("required", False)),
                    type=_schema_type(param.get("schema"), doc),
                )
            )

        body = _as_dict(_deref(op.get("requestBody"), doc))
        content = _as_dict(body.get("content"))
        if content:
            content_type = sorted(content)[0]
            schema = _as_dict(content[content_type]).get("schema")
            operation.request_body = TypeRef(
                type_name=_schema_type(schema, doc),
                description=str(body.get("description", "") or ""),
                content_type=content_type,
            )

        responses = _as_dict(op.get("responses"))
        for code in sorted(responses, key=str):
            resp = _as_dict(_deref(responses[code], doc))
            response = Response(
                status_code=str(code),
                description=str(resp.get("description", "") or ""),
            )
            resp_content = _as_dict(resp.get("content"))
            if resp_content:
                content_type = sorted(resp_content)[0]
                schema = _as_dict(resp_content[content_type]).get("schema")
                response.body = TypeRef(type_name=_schema_type(schema, doc), content_type=content_type)
            operation.responses.append(response)

        for requirement in _as_list(op.get("security", doc.get("security"))):
            for scheme_name in sorted(_as_dict(requirement)):
                operation.auth.append(str(scheme_name))
        return operation

    def _fetch_url(self, url: str) -> bytes:
        request = Request(url, headers={"Accept": "application/json, application/yaml"})
        try:
            with urlopen(request, timeout=self.fetch_timeout) as response:  # type: ignore[arg-type]
                return response.read()
        except HTTPError as exc:
            raise SourceResolutionError(f"fetching URL {url}: HTTP {exc.code}") from exc
        except URLError as exc:
            raise SourceResolutionError(f"fetching URL {url}: {exc.reason}") from exc

    @staticmethod
    def _run_command(command: str) -> bytes:
        try:
            args = shlex.split(command)
        except ValueError as exc:
            raise SourceResolutionError(f"running command {command!r}: {exc}") from exc
        try:
            completed = subprocess.run(
                args,
                check=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise SourceResolutionError(f"running command {command!r}: {exc}") from exc
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.decode("utf-8", errors="ignore").strip()
            raise SourceResolutionError(
                f"running command {command!r}: exit code {exc.returncode}: {stderr}"
            ) from exc
        return completed.stdout


def _build_type(name: str, schema: Dict[str, Any], doc: Dict[str, Any]) -> TypeDef:
    required = {str(item) for item in _as_list(schema.get("required"))}
    properties = _as_dict(schema.get("properties"))
    type_def = TypeDef(
        name=name,
        description=str(schema.get("description", "") or ""),
        enum=[str(item) for item in _as_list(schema.get("enum"))],
    )
    for field_name in sorted(properties):
        field_schema = _as_dict(properties[field_name])
        resolved = _as_dict(_deref(field_schema, doc))
        type_def.fields.append(
            TypeField(
                name=str(field_name),
                type=_schema_type(field_schema, doc),
                description=str(resolved.get("description", "") or ""),
                required=field_name in required,
            )
        )
    return type_def


def _deref(node: Any, doc: Dict[str, Any], _seen: Optional[set[str]] = None) -> Any:
    """Follow local ``#/...`` references; unknown or cyclic refs resolve to {}."""
    if not isinstance(node, dict) or "$ref" not in node:
        return node
    ref = node["$ref"]
    if not isinstance(ref, str) or not ref.startswith("#/"):
        return {}
    seen = _seen or set()
    if ref in seen:
        return {}
    current: Any = doc
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if not isinstance(current, dict) or part not in current:
            return {}
        current = current[part]
    return _deref(current, doc, seen | {ref})


def _schema_type(schema: Any, doc: Dict[str, Any]) -> str:
    if not isinstance(schema, dict):
        return ""
    if "$ref" in schema:
        return _ref_name(schema)
    schema_type = str(schema.get("type", "") or "")
    if schema_type == "array" and isinstance(schema.get("items"), dict):
        return "[]" + _schema_type(schema["items"], doc)
    if schema.get("format"):
        return f"{schema_type}({schema['format']})"
    return schema_type


def _ref_name(schema: Any) -> str:
    if isinstance(schema, dict) and isinstance(schema.get("$ref"), str):
        return schema["$ref"].rsplit("/", 1)[-1]
    return ""


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


__all__ = ["OpenAPIPlugin"]
