"""Contract model: what an operation declares.

Built once by the contract loader and then only read: the planner samples
from it and the validator checks responses against it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from apiprobe.core.domain.schema import (
    EMPTY_REGISTRY,
    AnySchema,
    SchemaNode,
    SchemaRegistry,
)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

DEFAULT_RESPONSE = "default"


class ParameterLocation(str, Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"


@dataclass(frozen=True)
class Parameter:
    name: str
    location: ParameterLocation
    schema: SchemaNode = field(default_factory=AnySchema)
    required: bool = False
    example: Any = None


@dataclass(frozen=True)
class ResponseSpec:
    """One entry of an operation's `responses` block.

    `content` maps media types to their (optional) body schema; an empty
    mapping means the response declares no body.
    """

    status_pattern: str
    content: Mapping[str, SchemaNode | None] = field(default_factory=dict)
    description: str = ""


@dataclass(frozen=True)
class OperationDescriptor:
    method: str
    path_template: str
    path_params: tuple[Parameter, ...] = ()
    query_params: tuple[Parameter, ...] = ()
    header_params: tuple[Parameter, ...] = ()
    body_schema: SchemaNode | None = None
    body_media_type: str = "application/json"
    body_example: Any = None
    responses: Mapping[str, ResponseSpec] = field(default_factory=dict)
    operation_id: str | None = None
    tags: tuple[str, ...] = ()
    summary: str = ""
    registry: SchemaRegistry = EMPTY_REGISTRY

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())

    @property
    def carries_body(self) -> bool:
        return self.method in BODY_METHODS

    @property
    def key(self) -> tuple[str, str]:
        return (self.method, self.path_template)

    def response_for(self, status: int) -> ResponseSpec | None:
        """Exact status, then a `5XX`-style range, then `default`, else None."""

        exact = self.responses.get(str(status))
        if exact is not None:
            return exact
        for pattern in (f"{status // 100}XX", f"{status // 100}xx"):
            ranged = self.responses.get(pattern)
            if ranged is not None:
                return ranged
        return self.responses.get(DEFAULT_RESPONSE)
