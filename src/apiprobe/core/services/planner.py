"""Turns an operation into an `ExecutionPlan`.

- Path tokens `{name}` are replaced by sampled, URL-quoted literals.
- Declared query parameters become `name=value` pairs.
- POST/PUT/PATCH get a body: the declared example if any, otherwise a
  sample serialized for the declared media type.
- Header precedence: planner defaults < declared header params < caller
  headers; the request decorator (auth) runs last.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping
from urllib.parse import quote, urlencode

from apiprobe.core.domain.contract import OperationDescriptor, Parameter
from apiprobe.core.domain.models import ExecutionPlan
from apiprobe.core.interfaces.transport import RequestDecorator
from apiprobe.core.services.sampler import SchemaSampler

logger = logging.getLogger(__name__)

_PATH_TOKEN = re.compile(r"\{([^{}]+)\}")

FALLBACK_PATH_VALUE = "1"

DEFAULT_HEADERS: dict[str, str] = {"Accept": "application/json"}


def render_scalar(value: Any) -> str:
    """Literal form of a sampled value inside a URL."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(render_scalar(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def is_json_media_type(media_type: str) -> bool:
    base = media_type.split(";", 1)[0].strip().lower()
    return base == "application/json" or base.endswith("+json")


def serialize_body(value: Any, media_type: str) -> bytes:
    base = media_type.split(";", 1)[0].strip().lower()
    if isinstance(value, bytes):
        return value
    if is_json_media_type(base):
        return json.dumps(value).encode("utf-8")
    if base == "application/x-www-form-urlencoded":
        if isinstance(value, Mapping):
            return urlencode({k: render_scalar(v) for k, v in value.items()}).encode("utf-8")
        return render_scalar(value).encode("utf-8")
    if isinstance(value, str):
        return value.encode("utf-8")
    # Unknown media types: JSON is the most useful guess.
    return json.dumps(value).encode("utf-8")


def merge_headers(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """Merge header mappings left to right, case-insensitively.

    A later layer replaces an earlier key even when the case differs; the
    later spelling is kept.
    """

    merged: dict[str, str] = {}
    index: dict[str, str] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            previous = index.get(key.lower())
            if previous is not None:
                merged.pop(previous, None)
            merged[key] = value
            index[key.lower()] = key
    return merged


class RequestPlanner:
    def __init__(
        self,
        base_url: str,
        *,
        sampler: SchemaSampler | None = None,
        headers: Mapping[str, str] | None = None,
        decorator: RequestDecorator | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.sampler = sampler or SchemaSampler()
        self.headers = dict(headers or {})
        self.decorator = decorator

    def _sample_param(self, param: Parameter, operation: OperationDescriptor) -> Any:
        if param.example is not None:
            return param.example
        return self.sampler.sample(param.schema, operation.registry)

    def resolve_path(self, operation: OperationDescriptor) -> tuple[str, set[str]]:
        """Substitute every `{name}` token; return the path and consumed names."""

        declared = {p.name: p for p in operation.path_params}
        consumed: set[str] = set()

        def substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            consumed.add(name)
            param = declared.get(name)
            if param is None:
                return FALLBACK_PATH_VALUE
            literal = render_scalar(self._sample_param(param, operation))
            return quote(literal or FALLBACK_PATH_VALUE, safe="")

        path = _PATH_TOKEN.sub(substitute, operation.path_template)
        return path, consumed

    def build_query(self, operation: OperationDescriptor, consumed: set[str]) -> str:
        pairs: list[str] = []
        for param in operation.query_params:
            if param.name in consumed:
                continue
            value = render_scalar(self._sample_param(param, operation))
            pairs.append(f"{quote(param.name, safe='')}={quote(value, safe='')}")
        return "?" + "&".join(pairs) if pairs else ""

    def build_body(self, operation: OperationDescriptor) -> bytes | None:
        if not operation.carries_body:
            return None
        if operation.body_example is not None:
            value = operation.body_example
        elif operation.body_schema is not None:
            value = self.sampler.sample(operation.body_schema, operation.registry)
        else:
            return None
        return serialize_body(value, operation.body_media_type)

    def plan(self, operation: OperationDescriptor, index: int = 0) -> ExecutionPlan:
        path, consumed = self.resolve_path(operation)
        if path and not path.startswith("/"):
            path = "/" + path
        url = f"{self.base_url}{path}{self.build_query(operation, consumed)}"

        body = self.build_body(operation)
        defaults = dict(DEFAULT_HEADERS)
        if body is not None:
            defaults["Content-Type"] = operation.body_media_type

        declared = {
            p.name: render_scalar(self._sample_param(p, operation))
            for p in operation.header_params
        }
        headers = merge_headers(defaults, declared, self.headers)

        plan = ExecutionPlan(
            method=operation.method,
            url=url,
            endpoint=operation.path_template,
            headers=headers,
            body=body,
            index=index,
        )
        if self.decorator is not None:
            plan = self.decorator.apply(plan)
        logger.debug("planned %s %s", plan.method, plan.url)
        return plan
