"""Builds `OperationDescriptor`s from an already-parsed API document.

Supports OpenAPI 3.x and Swagger 2.0 documents given as plain mappings
(loading YAML/JSON from disk is the caller's job). Schema components end up
in one `SchemaRegistry` shared by every operation of the document; parameter,
request-body and response `$ref`s are inlined here.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from apiprobe.core.domain.contract import (
    OperationDescriptor,
    Parameter,
    ParameterLocation,
    ResponseSpec,
)
from apiprobe.core.domain.schema import SchemaRegistry, parse_schema

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

_PREFERRED_MEDIA = "application/json"


def _is_swagger2(document: Mapping[str, Any]) -> bool:
    version = document.get("swagger")
    if isinstance(version, str):
        return version.startswith("2.")
    openapi = document.get("openapi")
    if isinstance(openapi, str):
        return False
    # Heuristic fallback
    return "definitions" in document and "paths" in document


def _follow(document: Mapping[str, Any], node: Any, *, limit: int = 16) -> Any:
    """Inline a local `$ref` (`#/a/b/c`) for non-schema objects."""

    hops = 0
    while isinstance(node, Mapping) and isinstance(node.get("$ref"), str) and hops < limit:
        ref = node["$ref"]
        if not ref.startswith("#/"):
            logger.debug("external reference %s left unresolved", ref)
            return {}
        target: Any = document
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(target, Mapping) or part not in target:
                logger.debug("dangling reference %s", ref)
                return {}
            target = target[part]
        node = target
        hops += 1
    return node


def build_registry(document: Mapping[str, Any]) -> SchemaRegistry:
    registry = SchemaRegistry()
    components = document.get("components") or {}
    schemas = components.get("schemas") if isinstance(components, Mapping) else None
    for source in (schemas, document.get("definitions")):
        if isinstance(source, Mapping):
            for name, raw in source.items():
                registry.register(str(name), parse_schema(raw))
    return registry


def _parameters(
    document: Mapping[str, Any],
    *layers: Iterable[Any] | None,
) -> list[Mapping[str, Any]]:
    """Merge path-level and operation-level parameters; later layers win."""

    merged: dict[tuple[str, str], Mapping[str, Any]] = {}
    for layer in layers:
        for raw in layer or []:
            param = _follow(document, raw)
            if not isinstance(param, Mapping) or "name" not in param:
                continue
            merged[(str(param["name"]), str(param.get("in", "")))] = param
    return list(merged.values())


def _parameter(raw: Mapping[str, Any], location: ParameterLocation) -> Parameter:
    schema_raw = raw.get("schema")
    if schema_raw is None:
        # Swagger 2 keeps type keywords on the parameter itself.
        schema_raw = {k: v for k, v in raw.items() if k in ("type", "format", "enum", "minimum", "maximum", "items", "default")}
    return Parameter(
        name=str(raw["name"]),
        location=location,
        schema=parse_schema(schema_raw),
        required=bool(raw.get("required", location is ParameterLocation.PATH)),
        example=raw.get("example"),
    )


def _pick_media(content: Mapping[str, Any]) -> tuple[str, Mapping[str, Any]] | None:
    if not content:
        return None
    if _PREFERRED_MEDIA in content:
        return _PREFERRED_MEDIA, content[_PREFERRED_MEDIA] or {}
    for media_type, media in content.items():
        if media_type.endswith("+json"):
            return media_type, media or {}
    media_type = next(iter(content))
    return media_type, content[media_type] or {}


def _media_example(media: Mapping[str, Any]) -> Any:
    if "example" in media:
        return media["example"]
    examples = media.get("examples")
    if isinstance(examples, Mapping):
        for example in examples.values():
            if isinstance(example, Mapping) and "value" in example:
                return example["value"]
    return None


def _responses(
    document: Mapping[str, Any],
    raw: Mapping[str, Any],
    produces: list[str],
) -> dict[str, ResponseSpec]:
    out: dict[str, ResponseSpec] = {}
    for status, entry in (raw or {}).items():
        key = str(status)
        response = _follow(document, entry)
        if not isinstance(response, Mapping):
            continue
        content: dict[str, Any] = {}
        if isinstance(response.get("content"), Mapping):
            for media_type, media in response["content"].items():
                schema = (media or {}).get("schema")
                content[str(media_type)] = parse_schema(schema) if schema is not None else None
        elif "schema" in response:
            schema = parse_schema(response["schema"])
            for media_type in produces or [_PREFERRED_MEDIA]:
                content[media_type] = schema
        out[key] = ResponseSpec(
            status_pattern=key,
            content=content,
            description=str(response.get("description") or ""),
        )
    return out


def operations_from_document(document: Mapping[str, Any]) -> list[OperationDescriptor]:
    """Every operation of the document, in declaration order."""

    swagger2 = _is_swagger2(document)
    registry = build_registry(document)
    global_produces = list(document.get("produces") or [])
    global_consumes = list(document.get("consumes") or [])

    operations: list[OperationDescriptor] = []
    for path, raw_item in (document.get("paths") or {}).items():
        item = _follow(document, raw_item)
        if not isinstance(item, Mapping):
            continue
        for method in HTTP_METHODS:
            op = item.get(method)
            if not isinstance(op, Mapping):
                continue

            grouped: dict[ParameterLocation, list[Parameter]] = {loc: [] for loc in ParameterLocation}
            body_schema = None
            body_example = None
            consumes = list(op.get("consumes") or global_consumes)
            body_media = consumes[0] if consumes else _PREFERRED_MEDIA

            for raw in _parameters(document, item.get("parameters"), op.get("parameters")):
                where = raw.get("in")
                if swagger2 and where == "body":
                    body_schema = parse_schema(raw.get("schema"))
                    continue
                try:
                    location = ParameterLocation(where)
                except ValueError:
                    continue
                grouped[location].append(_parameter(raw, location))

            request_body = _follow(document, op.get("requestBody"))
            if isinstance(request_body, Mapping):
                picked = _pick_media(request_body.get("content") or {})
                if picked is not None:
                    body_media, media = picked
                    if media.get("schema") is not None:
                        body_schema = parse_schema(media["schema"])
                    body_example = _media_example(media)

            produces = list(op.get("produces") or global_produces)
            tags = op.get("tags") or []
            operations.append(
                OperationDescriptor(
                    method=method,
                    path_template=str(path),
                    path_params=tuple(grouped[ParameterLocation.PATH]),
                    query_params=tuple(grouped[ParameterLocation.QUERY]),
                    header_params=tuple(grouped[ParameterLocation.HEADER]),
                    body_schema=body_schema,
                    body_media_type=body_media,
                    body_example=body_example,
                    responses=_responses(document, op.get("responses") or {}, produces),
                    operation_id=op.get("operationId"),
                    tags=tuple(str(t) for t in tags),
                    summary=str(op.get("summary") or ""),
                    registry=registry,
                )
            )

    logger.debug("loaded %d operation(s), %d schema component(s)", len(operations), len(registry))
    return operations
