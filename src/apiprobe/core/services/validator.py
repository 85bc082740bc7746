"""Checks a transported response against the operation's declared responses.

Status rule: exact status, then a `NXX` range, then `default`; with none of
those the status is invalid. An operation declaring no responses at all
passes without checks.

Body checks render the schema nodes as one draft 4 document (registry
components under `definitions`) and run it through `jsonschema`, collecting
every violation with a `$.a.b[0]` style path instead of stopping at the
first.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable, Mapping

from jsonschema import Draft4Validator, Draft6Validator, Draft202012Validator, validators
from jsonschema.exceptions import ValidationError

from apiprobe.core.domain.contract import OperationDescriptor
from apiprobe.core.domain.models import Attempt, HttpResponse, ValidationReport
from apiprobe.core.domain.schema import (
    ArraySchema,
    NumericSchema,
    ObjectSchema,
    RefSchema,
    SchemaKind,
    SchemaNode,
    SchemaRegistry,
    StringSchema,
)
from apiprobe.core.services.planner import is_json_media_type

logger = logging.getLogger(__name__)

_UNRESOLVED = "x-apiprobe-unresolved"

# Draft 4 rejects 1.0 as an integer; JSON itself has no such distinction.
ContractValidator = validators.extend(
    Draft4Validator,
    type_checker=Draft4Validator.TYPE_CHECKER.redefine(
        "integer",
        lambda checker, instance: Draft6Validator.TYPE_CHECKER.is_type(instance, "integer"),
    ),
)

FORMAT_CHECKER = Draft202012Validator.FORMAT_CHECKER


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def strip_media_params(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def match_media_type(actual: str, declared: Mapping[str, Any]) -> str | None:
    """Return the declared media type key that covers `actual`, if any."""

    by_base = {strip_media_params(k): k for k in declared}
    if actual in by_base:
        return by_base[actual]
    if actual.endswith("+json") and "application/json" in by_base:
        return by_base["application/json"]
    major = actual.split("/", 1)[0]
    if f"{major}/*" in by_base:
        return by_base[f"{major}/*"]
    if "*/*" in by_base:
        return by_base["*/*"]
    return None


def _definition_pointer(name: str) -> str:
    return "#/definitions/" + name.replace("~", "~0").replace("/", "~1")


class _DraftRenderer:
    """Renders schema nodes as draft 4 JSON Schema.

    References become `#/definitions/<name>` pointers; only the components
    actually reached are rendered, each once, so recursive components stay
    finite.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self.definitions: dict[str, Any] = {}
        self._pending: list[RefSchema] = []
        self._typed: dict[SchemaKind, Callable[[Any, dict[str, Any]], None]] = {
            SchemaKind.OBJECT: self._object,
            SchemaKind.ARRAY: self._array,
            SchemaKind.STRING: self._string,
            SchemaKind.INTEGER: self._numeric,
            SchemaKind.NUMBER: self._numeric,
            SchemaKind.BOOLEAN: lambda node, out: None,
        }

    def document(self, node: SchemaNode) -> dict[str, Any]:
        root = self.render(node)
        while self._pending:
            ref = self._pending.pop()
            if ref.name in self.definitions:
                continue
            self.definitions[ref.name] = {}
            target = self.registry.resolve(ref)
            if target is None:
                self.definitions[ref.name] = {"not": {}, _UNRESOLVED: ref.ref}
            else:
                self.definitions[ref.name] = self.render(target)
        return {"definitions": self.definitions, "allOf": [root]}

    def render(self, node: SchemaNode) -> dict[str, Any]:
        out: dict[str, Any]
        if node.kind is SchemaKind.REF:
            self._pending.append(node)
            out = {"$ref": _definition_pointer(node.name)}
            if node.enum:
                out = {"allOf": [out]}
        elif node.kind is SchemaKind.COMPOSITION:
            out = {node.mode.value: [self.render(branch) for branch in node.branches]}
        elif node.kind is SchemaKind.ANY:
            out = {}
        else:
            out = {"type": [node.kind.value, "null"] if node.nullable else node.kind.value}
            self._typed[node.kind](node, out)

        if node.enum:
            enum = list(node.enum)
            if node.nullable and None not in enum:
                enum.append(None)
            out["enum"] = enum
        if node.nullable and node.kind in (SchemaKind.REF, SchemaKind.COMPOSITION):
            out = {"anyOf": [out, {"type": "null"}]}
        return out

    def _object(self, node: ObjectSchema, out: dict[str, Any]) -> None:
        if node.required:
            out["required"] = list(node.required)
        if node.properties:
            out["properties"] = {name: self.render(sub) for name, sub in node.properties.items()}
        if node.additional_properties is False:
            out["additionalProperties"] = False
        elif not isinstance(node.additional_properties, bool):
            out["additionalProperties"] = self.render(node.additional_properties)

    def _array(self, node: ArraySchema, out: dict[str, Any]) -> None:
        if node.items is not None:
            out["items"] = self.render(node.items)
        if node.min_items is not None:
            out["minItems"] = node.min_items
        if node.max_items is not None:
            out["maxItems"] = node.max_items
        if node.unique_items:
            out["uniqueItems"] = True

    def _string(self, node: StringSchema, out: dict[str, Any]) -> None:
        if node.min_length is not None:
            out["minLength"] = node.min_length
        if node.max_length is not None:
            out["maxLength"] = node.max_length
        if node.pattern is not None:
            try:
                re.compile(node.pattern)
            except re.error:
                logger.debug("ignoring invalid pattern %r", node.pattern)
            else:
                out["pattern"] = node.pattern
        if node.format:
            out["format"] = node.format

    def _numeric(self, node: NumericSchema, out: dict[str, Any]) -> None:
        if node.minimum is not None:
            out["minimum"] = node.minimum
            if node.exclusive_minimum:
                out["exclusiveMinimum"] = True
        if node.maximum is not None:
            out["maximum"] = node.maximum
            if node.exclusive_maximum:
                out["exclusiveMaximum"] = True
        if node.multiple_of:
            out["multipleOf"] = node.multiple_of


def _json_path(parts: Iterable[Any]) -> str:
    path = "$"
    for part in parts:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path


def _describe(error: ValidationError, validator: Any) -> list[str]:
    path = _json_path(error.absolute_path)
    keyword = error.validator
    if keyword == "type":
        expected = error.validator_value
        if isinstance(expected, list):
            expected = next((t for t in expected if t != "null"), "null")
        return [f"{path}: expected {expected}, got {_type_name(error.instance)}"]
    if keyword == "required":
        name = error.message.removesuffix(" is a required property")
        return [f"{path}: missing required property {name}"]
    if keyword == "additionalProperties":
        declared = error.schema.get("properties", {})
        return [f"{path}: unexpected property {name!r}" for name in error.instance if name not in declared]
    if keyword == "format":
        return [f"{path}: {error.instance!r} is not a valid {error.validator_value}"]
    if keyword == "anyOf":
        return [f"{path}: does not match any anyOf branch"]
    if keyword == "oneOf":
        matches = sum(
            1 for branch in error.validator_value if validator.evolve(schema=branch).is_valid(error.instance)
        )
        return [f"{path}: matches {matches} oneOf branches, expected exactly 1"]
    if keyword == "not" and _UNRESOLVED in error.schema:
        return [f"{path}: unresolved reference {error.schema[_UNRESOLVED]}"]
    return [f"{path}: {error.message}"]


class ResponseValidator:
    def validate(self, attempt: Attempt, operation: OperationDescriptor) -> ValidationReport | None:
        """Validate a transported attempt; None for a transport failure."""

        if attempt.response is None:
            return None
        return self.validate_response(attempt.response, operation)

    def validate_response(self, response: HttpResponse, operation: OperationDescriptor) -> ValidationReport:
        if not operation.responses:
            return ValidationReport()

        declared = operation.response_for(response.status)
        if declared is None:
            return ValidationReport(
                status_valid=False,
                schema_errors=[f"status {response.status} not defined in spec"],
            )

        errors: list[str] = []
        content_type_valid = True
        if declared.content:
            raw_type = response.content_type
            actual = strip_media_params(raw_type) or "application/json"
            media_key = match_media_type(actual, declared.content)
            if media_key is None:
                content_type_valid = False
                errors.append(f"content-type '{raw_type}' not defined in spec")
            else:
                schema = declared.content[media_key]
                if schema is not None and is_json_media_type(actual):
                    errors.extend(self.validate_body(response.body, schema, operation.registry))

        return ValidationReport(
            status_valid=True,
            content_type_valid=content_type_valid,
            schema_errors=errors,
            matched_status=declared.status_pattern,
        )

    def validate_body(self, body: bytes, schema: SchemaNode, registry: SchemaRegistry) -> list[str]:
        if not body.strip():
            return ["$: response body is empty"]
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            return [f"$: response body is not valid JSON ({exc})"]
        return self.validate_value(payload, schema, registry)

    def validate_value(self, value: Any, schema: SchemaNode, registry: SchemaRegistry) -> list[str]:
        document = _DraftRenderer(registry).document(schema)
        validator = ContractValidator(document, format_checker=FORMAT_CHECKER)
        errors: list[str] = []
        for error in validator.iter_errors(value):
            errors.extend(_describe(error, validator))
        return errors
