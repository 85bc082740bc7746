"""Request decorators for the three supported auth schemes.

Each one implements `RequestDecorator.apply` and returns a new plan; the
original plan is never mutated.
"""

from __future__ import annotations

import base64
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from apiprobe.core.domain.models import AuthConfig, AuthType, ExecutionPlan
from apiprobe.core.services.planner import merge_headers


class BearerAuth:
    def __init__(self, token: str) -> None:
        self.token = token

    def apply(self, plan: ExecutionPlan) -> ExecutionPlan:
        if not self.token:
            return plan
        headers = merge_headers(plan.headers, {"Authorization": f"Bearer {self.token}"})
        return plan.model_copy(update={"headers": headers})


class ApiKeyAuth:
    def __init__(self, name: str, value: str, *, location: str = "header") -> None:
        if location not in ("header", "query"):
            raise ValueError(f"api key location must be 'header' or 'query', got {location!r}")
        self.name = name
        self.value = value
        self.location = location

    def apply(self, plan: ExecutionPlan) -> ExecutionPlan:
        if not (self.name and self.value):
            return plan
        if self.location == "header":
            headers = merge_headers(plan.headers, {self.name: self.value})
            return plan.model_copy(update={"headers": headers})

        parts = urlsplit(plan.url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != self.name]
        query.append((self.name, self.value))
        url = urlunsplit(parts._replace(query=urlencode(query)))
        return plan.model_copy(update={"url": url})


class BasicAuth:
    def __init__(self, username: str, password: str = "") -> None:
        self.username = username
        self.password = password

    def apply(self, plan: ExecutionPlan) -> ExecutionPlan:
        if not self.username:
            return plan
        raw = f"{self.username}:{self.password}".encode("utf-8")
        token = base64.b64encode(raw).decode("ascii")
        headers = merge_headers(plan.headers, {"Authorization": f"Basic {token}"})
        return plan.model_copy(update={"headers": headers})


def auth_from_config(config: AuthConfig | None) -> BearerAuth | ApiKeyAuth | BasicAuth | None:
    """Build the decorator matching an `AuthConfig`; None for no auth."""

    if config is None or config.auth_type is AuthType.NONE:
        return None
    if config.auth_type is AuthType.BEARER:
        return BearerAuth(config.token or "")
    if config.auth_type is AuthType.API_KEY:
        return ApiKeyAuth(config.api_key_name or "", config.token or "", location=config.api_key_in)
    return BasicAuth(config.username or "", config.password or "")
