"""Example synthesis from schema nodes.

`SchemaSampler.sample` is a pure function of the node: inclusion of
optional properties is drawn from a `random.Random` reseeded on every
call, so the same node always yields the same value.

Priority per node: example, default, enum, then the kind-specific rule.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Any, Callable

from apiprobe.core.domain.schema import (
    EMPTY_REGISTRY,
    ArraySchema,
    CompositionMode,
    CompositionSchema,
    NumericSchema,
    ObjectSchema,
    RefSchema,
    SchemaKind,
    SchemaNode,
    SchemaRegistry,
    StringSchema,
)
from apiprobe.core.errors import SynthesisError

logger = logging.getLogger(__name__)

DEFAULT_INTEGER = 1
DEFAULT_NUMBER = 1.0
PLACEHOLDER_STRING = "sample"

FORMAT_SAMPLES: dict[str, str] = {
    "email": "user@example.com",
    "uri": "https://example.com",
    "url": "https://example.com",
    "uri-reference": "https://example.com",
    "hostname": "example.com",
    "date": "2024-01-01",
    "date-time": "2024-01-01T00:00:00Z",
    "time": "00:00:00Z",
    "uuid": "123e4567-e89b-12d3-a456-426614174000",
    "ipv4": "192.0.2.1",
    "ipv6": "2001:db8::1",
    "byte": "c2FtcGxl",
    "password": "Passw0rd!",
}


@dataclass
class _Walk:
    rng: random.Random
    registry: SchemaRegistry
    depth: int = 0


class SchemaSampler:
    """Produces a representative value for a schema node."""

    def __init__(
        self,
        *,
        optional_probability: float = 0.5,
        array_length: int = 2,
        max_depth: int = 5,
        seed: int = 0,
    ) -> None:
        self.optional_probability = optional_probability
        self.array_length = array_length
        self.max_depth = max_depth
        self.seed = seed
        self._dispatch: dict[SchemaKind, Callable[[Any, _Walk], Any]] = {
            SchemaKind.OBJECT: self._sample_object,
            SchemaKind.ARRAY: self._sample_array,
            SchemaKind.STRING: self._sample_string,
            SchemaKind.INTEGER: self._sample_integer,
            SchemaKind.NUMBER: self._sample_number,
            SchemaKind.BOOLEAN: lambda node, walk: True,
            SchemaKind.COMPOSITION: self._sample_composition,
            SchemaKind.REF: self._sample_ref,
            SchemaKind.ANY: lambda node, walk: None,
        }

    @classmethod
    def from_settings(cls, settings) -> "SchemaSampler":
        return cls(
            optional_probability=settings.optional_property_probability,
            array_length=settings.array_length,
            max_depth=settings.max_schema_depth,
            seed=settings.sampler_seed,
        )

    def sample(self, schema: SchemaNode | None, registry: SchemaRegistry | None = None) -> Any:
        if schema is None:
            return None
        walk = _Walk(rng=random.Random(self.seed), registry=registry or EMPTY_REGISTRY)
        try:
            return self._visit(schema, walk)
        except SynthesisError as exc:
            logger.debug("sampling gave up: %s", exc)
            return None

    # ------------------------------------------------------------------

    def _visit(self, node: SchemaNode, walk: _Walk) -> Any:
        if node.has_example:
            return node.example
        if node.has_default:
            return node.default
        if node.enum:
            return node.enum[0]
        return self._dispatch[node.kind](node, walk)

    def _descend(self, node: SchemaNode, walk: _Walk) -> Any:
        if walk.depth >= self.max_depth:
            raise SynthesisError(f"depth limit {self.max_depth} reached at {node.kind.value}")
        walk.depth += 1
        try:
            return self._visit(node, walk)
        finally:
            walk.depth -= 1

    def _sample_object(self, node: ObjectSchema, walk: _Walk) -> dict[str, Any]:
        out: dict[str, Any] = {}
        required = set(node.required)
        for name, prop in node.properties.items():
            if name not in required and walk.rng.random() >= self.optional_probability:
                continue
            try:
                out[name] = self._descend(prop, walk)
            except SynthesisError:
                if name in required:
                    out[name] = None
        return out

    def _sample_array(self, node: ArraySchema, walk: _Walk) -> list[Any]:
        if node.items is None:
            return []
        count = self.array_length
        if node.min_items is not None:
            count = max(count, node.min_items)
        if node.max_items is not None:
            count = min(count, node.max_items)
        items: list[Any] = []
        for _ in range(count):
            try:
                items.append(self._descend(node.items, walk))
            except SynthesisError:
                return []
        return items

    def _sample_string(self, node: StringSchema, walk: _Walk) -> str:
        if node.format in FORMAT_SAMPLES:
            return FORMAT_SAMPLES[node.format]
        value = PLACEHOLDER_STRING
        if node.min_length is not None and len(value) < node.min_length:
            value = value + "x" * (node.min_length - len(value))
        if node.max_length is not None and len(value) > node.max_length:
            value = value[: node.max_length]
        return value

    def _sample_integer(self, node: NumericSchema, walk: _Walk) -> int:
        low = None
        high = None
        if node.minimum is not None:
            low = math.ceil(node.minimum)
            if node.exclusive_minimum and low == node.minimum:
                low += 1
        if node.maximum is not None:
            high = math.floor(node.maximum)
            if node.exclusive_maximum and high == node.maximum:
                high -= 1

        if low is not None and high is not None:
            value = (low + high) // 2
        elif low is not None:
            value = low
        elif high is not None:
            value = min(DEFAULT_INTEGER, high)
        else:
            value = DEFAULT_INTEGER

        step = node.multiple_of
        if step and float(step).is_integer() and step > 0:
            step = int(step)
            up = math.ceil(value / step) * step
            down = math.floor(value / step) * step
            if high is None or up <= high:
                value = up
            elif low is None or down >= low:
                value = down
        return int(value)

    def _sample_number(self, node: NumericSchema, walk: _Walk) -> float:
        if node.minimum is not None and node.maximum is not None:
            return (node.minimum + node.maximum) / 2
        if node.minimum is not None:
            return node.minimum + 1.0 if node.exclusive_minimum else node.minimum
        if node.maximum is not None:
            ceiling = node.maximum - 1.0 if node.exclusive_maximum else node.maximum
            return min(DEFAULT_NUMBER, ceiling)
        return DEFAULT_NUMBER

    def _sample_composition(self, node: CompositionSchema, walk: _Walk) -> Any:
        if node.mode is CompositionMode.ALL_OF:
            merged = self.merge_all_of(node, walk.registry)
            if merged is not None:
                return self._descend(merged, walk)
        return self._descend(node.branches[0], walk)

    def _sample_ref(self, node: RefSchema, walk: _Walk) -> Any:
        target = walk.registry.resolve(node)
        if target is None:
            raise SynthesisError(f"unresolved reference {node.ref}")
        return self._descend(target, walk)

    def merge_all_of(
        self,
        node: CompositionSchema,
        registry: SchemaRegistry,
    ) -> ObjectSchema | None:
        """Fold the object branches of an `allOf` into one object schema.

        Returns None when no branch is an object.
        """

        properties: dict[str, SchemaNode] = {}
        required: list[str] = []
        found = False
        pending = list(node.branches)
        seen_refs: set[str] = set()
        while pending:
            branch = pending.pop(0)
            if isinstance(branch, RefSchema):
                if branch.ref in seen_refs:
                    continue
                seen_refs.add(branch.ref)
                target = registry.resolve(branch)
                if target is not None:
                    pending.insert(0, target)
                continue
            if isinstance(branch, CompositionSchema) and branch.mode is CompositionMode.ALL_OF:
                pending[:0] = list(branch.branches)
                continue
            if isinstance(branch, ObjectSchema):
                found = True
                properties.update(branch.properties)
                required.extend(r for r in branch.required if r not in required)
        if not found:
            return None
        return ObjectSchema(properties=properties, required=tuple(required))
