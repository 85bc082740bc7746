"""Schema grammar shared by the sampler and the validator.

Schemas arrive as untyped mappings (OpenAPI / JSON Schema). They are parsed
once into a closed set of node kinds so the services can dispatch on
`SchemaNode.kind` instead of probing dictionaries.

Notes:
- `$ref` is kept as a `RefSchema` and resolved lazily through a
  `SchemaRegistry`; parsing never follows references, so recursive
  components parse in finite time.
- Nodes are frozen: an `OperationDescriptor` can be shared across
  concurrent plans without copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union


class SchemaKind(str, Enum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    COMPOSITION = "composition"
    REF = "ref"
    ANY = "any"


class CompositionMode(str, Enum):
    ONE_OF = "oneOf"
    ANY_OF = "anyOf"
    ALL_OF = "allOf"


_MISSING: Any = object()


@dataclass(frozen=True)
class _Annotations:
    """Keywords every schema kind may carry."""

    example: Any = _MISSING
    default: Any = _MISSING
    enum: tuple[Any, ...] | None = None
    nullable: bool = False

    @property
    def has_example(self) -> bool:
        return self.example is not _MISSING

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


@dataclass(frozen=True)
class ObjectSchema(_Annotations):
    properties: Mapping[str, "SchemaNode"] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    additional_properties: Union[bool, "SchemaNode"] = True
    kind: SchemaKind = SchemaKind.OBJECT


@dataclass(frozen=True)
class ArraySchema(_Annotations):
    items: "SchemaNode | None" = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False
    kind: SchemaKind = SchemaKind.ARRAY


@dataclass(frozen=True)
class StringSchema(_Annotations):
    format: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    kind: SchemaKind = SchemaKind.STRING


@dataclass(frozen=True)
class NumericSchema(_Annotations):
    """Covers both `integer` and `number`; `kind` tells them apart."""

    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    multiple_of: float | None = None
    format: str | None = None
    kind: SchemaKind = SchemaKind.NUMBER


@dataclass(frozen=True)
class BooleanSchema(_Annotations):
    kind: SchemaKind = SchemaKind.BOOLEAN


@dataclass(frozen=True)
class CompositionSchema(_Annotations):
    mode: CompositionMode = CompositionMode.ONE_OF
    branches: tuple["SchemaNode", ...] = ()
    kind: SchemaKind = SchemaKind.COMPOSITION


@dataclass(frozen=True)
class RefSchema(_Annotations):
    ref: str = ""
    kind: SchemaKind = SchemaKind.REF

    @property
    def name(self) -> str:
        return self.ref.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class AnySchema(_Annotations):
    kind: SchemaKind = SchemaKind.ANY


SchemaNode = Union[
    ObjectSchema,
    ArraySchema,
    StringSchema,
    NumericSchema,
    BooleanSchema,
    CompositionSchema,
    RefSchema,
    AnySchema,
]


class SchemaRegistry:
    """Named schema components (`#/components/schemas/<name>`)."""

    def __init__(self, schemas: Mapping[str, SchemaNode] | None = None) -> None:
        self._schemas: dict[str, SchemaNode] = dict(schemas or {})

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def register(self, name: str, schema: SchemaNode) -> None:
        self._schemas[name] = schema

    def resolve(self, node: RefSchema) -> SchemaNode | None:
        return self._schemas.get(node.name)


EMPTY_REGISTRY = SchemaRegistry()


def _annotations(raw: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if "example" in raw:
        out["example"] = raw["example"]
    elif isinstance(raw.get("examples"), list) and raw["examples"]:
        # JSON Schema 2020-12 style (OpenAPI 3.1)
        out["example"] = raw["examples"][0]
    if "default" in raw:
        out["default"] = raw["default"]
    if isinstance(raw.get("enum"), list):
        out["enum"] = tuple(raw["enum"])
    if raw.get("nullable") is True:
        out["nullable"] = True
    return out


def _declared_type(raw: Mapping[str, Any]) -> tuple[str | None, bool]:
    """Return (type, nullable) honouring the 3.1 `type: [x, "null"]` form."""

    value = raw.get("type")
    if isinstance(value, list):
        types = [t for t in value if t != "null"]
        return (types[0] if types else None), "null" in value
    if isinstance(value, str):
        return value, False
    return None, False


def _opt_int(value: Any) -> int | None:
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def _opt_float(value: Any) -> float | None:
    return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def parse_schema(raw: Any) -> SchemaNode:
    """Parse a raw schema mapping into a `SchemaNode`.

    Unknown or missing types yield `AnySchema`; a structurally broken node
    (not a mapping) does too.
    """

    if not isinstance(raw, Mapping):
        return AnySchema()

    notes = _annotations(raw)

    ref = raw.get("$ref")
    if isinstance(ref, str):
        return RefSchema(ref=ref, **notes)

    for mode in CompositionMode:
        branches = raw.get(mode.value)
        if isinstance(branches, list) and branches:
            return CompositionSchema(
                mode=mode,
                branches=tuple(parse_schema(b) for b in branches),
                **notes,
            )

    type_name, null_in_type = _declared_type(raw)
    if null_in_type:
        notes["nullable"] = True

    if type_name is None:
        # Untyped but shaped like an object / array.
        if isinstance(raw.get("properties"), Mapping):
            type_name = "object"
        elif "items" in raw:
            type_name = "array"

    if type_name == "object":
        props_raw = raw.get("properties") or {}
        properties = {
            str(name): parse_schema(sub)
            for name, sub in props_raw.items()
        } if isinstance(props_raw, Mapping) else {}
        required = raw.get("required") or []
        additional = raw.get("additionalProperties", True)
        if isinstance(additional, Mapping):
            additional = parse_schema(additional)
        elif not isinstance(additional, bool):
            additional = True
        return ObjectSchema(
            properties=properties,
            required=tuple(str(r) for r in required if isinstance(r, str)),
            additional_properties=additional,
            **notes,
        )

    if type_name == "array":
        items = raw.get("items")
        return ArraySchema(
            items=parse_schema(items) if isinstance(items, Mapping) else None,
            min_items=_opt_int(raw.get("minItems")),
            max_items=_opt_int(raw.get("maxItems")),
            unique_items=bool(raw.get("uniqueItems", False)),
            **notes,
        )

    if type_name == "string":
        pattern = raw.get("pattern")
        fmt = raw.get("format")
        return StringSchema(
            format=fmt if isinstance(fmt, str) else None,
            min_length=_opt_int(raw.get("minLength")),
            max_length=_opt_int(raw.get("maxLength")),
            pattern=pattern if isinstance(pattern, str) else None,
            **notes,
        )

    if type_name in ("integer", "number"):
        minimum = _opt_float(raw.get("minimum"))
        maximum = _opt_float(raw.get("maximum"))
        exclusive_min = raw.get("exclusiveMinimum", False)
        exclusive_max = raw.get("exclusiveMaximum", False)
        # 3.1 uses numeric exclusive bounds instead of booleans.
        if _opt_float(exclusive_min) is not None:
            minimum, exclusive_min = _opt_float(exclusive_min), True
        if _opt_float(exclusive_max) is not None:
            maximum, exclusive_max = _opt_float(exclusive_max), True
        fmt = raw.get("format")
        return NumericSchema(
            minimum=minimum,
            maximum=maximum,
            exclusive_minimum=exclusive_min is True,
            exclusive_maximum=exclusive_max is True,
            multiple_of=_opt_float(raw.get("multipleOf")),
            format=fmt if isinstance(fmt, str) else None,
            kind=SchemaKind.INTEGER if type_name == "integer" else SchemaKind.NUMBER,
            **notes,
        )

    if type_name == "boolean":
        return BooleanSchema(**notes)

    return AnySchema(**notes)
