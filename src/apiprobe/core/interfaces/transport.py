"""Contracts the engine depends on.

Protocols instead of base classes: the engine only needs the shape, so a
fake transport in tests and the httpx adapter are interchangeable.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from apiprobe.core.domain.models import ExecutionPlan, HttpResponse


@runtime_checkable
class Transport(Protocol):
    """Sends one HTTP request.

    Rules:
    - Returns an `HttpResponse` for *any* HTTP status.
    - Raises `apiprobe.core.errors.TransportError` when no status was
      obtained (refused, reset, DNS, timeout...).
    - Honours `timeout` per request; never retries on its own.
    """

    async def send(self, plan: ExecutionPlan, *, timeout: float) -> HttpResponse:
        ...


@runtime_checkable
class RequestDecorator(Protocol):
    """Decorates a plan before it is sent (auth, custom headers)."""

    def apply(self, plan: ExecutionPlan) -> ExecutionPlan:
        ...
