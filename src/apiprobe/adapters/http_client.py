"""httpx implementation of the `Transport` contract.

- `build_async_client` centralizes timeouts, TLS verification and default
  headers so every probe request behaves the same.
- `HttpxTransport.send` returns any HTTP status as a response and turns
  httpx transport exceptions into `TransportError` with a classified kind.
"""

from __future__ import annotations

import logging

import httpx

from apiprobe.core.config import ProbeSettings
from apiprobe.core.domain.models import (
    ExecutionPlan,
    HttpResponse,
    TransportErrorKind,
    TransportFailure,
)
from apiprobe.core.errors import TransportError

logger = logging.getLogger(__name__)


_KIND_HINTS: tuple[tuple[TransportErrorKind, tuple[str, ...]], ...] = (
    (TransportErrorKind.CONNECTION_REFUSED, ("connection refused", "econnrefused", "errno 111")),
    (TransportErrorKind.CONNECTION_RESET, ("connection reset", "econnreset", "broken pipe", "errno 104")),
    (
        TransportErrorKind.DNS_FAILURE,
        (
            "name or service not known",
            "nodename nor servname",
            "no such host",
            "getaddrinfo",
            "temporary failure in name resolution",
            "name resolution",
        ),
    ),
    (TransportErrorKind.NETWORK_UNREACHABLE, ("network is unreachable", "no route to host", "enetunreach")),
    (TransportErrorKind.TIMEOUT, ("timed out", "timeout", "deadline exceeded")),
    (
        TransportErrorKind.CERTIFICATE_REJECTED,
        (
            "certificate_verify_failed",
            "certificate verify failed",
            "self signed certificate",
            "self-signed certificate",
            "certificate has expired",
            "hostname mismatch",
        ),
    ),
    (TransportErrorKind.TLS_ERROR, ("ssl", "tls", "certificate")),
    (TransportErrorKind.PROTOCOL_ERROR, ("eof", "server disconnected", "incomplete")),
)

_TITLES: dict[TransportErrorKind, tuple[str, list[str]]] = {
    TransportErrorKind.CONNECTION_REFUSED: (
        "Connection Refused",
        [
            "Check if the server is running",
            "Verify the URL and port are correct",
            "Check firewall settings",
        ],
    ),
    TransportErrorKind.CONNECTION_RESET: (
        "Connection Reset",
        [
            "The server closed the connection; it may be restarting or overloaded",
            "Try again later",
        ],
    ),
    TransportErrorKind.TIMEOUT: (
        "Request Timeout",
        [
            "Check your internet connection",
            "The server might be overloaded - try again later",
            "Raise the per-request timeout",
        ],
    ),
    TransportErrorKind.DNS_FAILURE: (
        "DNS Resolution Failed",
        [
            "Check if the URL is spelled correctly",
            "Verify your DNS settings",
            "Try using the IP address directly",
        ],
    ),
    TransportErrorKind.NETWORK_UNREACHABLE: (
        "Network Unreachable",
        [
            "Check your network connection",
            "Verify the host is reachable from this machine",
        ],
    ),
    TransportErrorKind.TLS_ERROR: (
        "TLS/SSL Error",
        [
            "The server's SSL certificate might be invalid",
            "Check if the URL should use 'http' instead of 'https'",
        ],
    ),
    TransportErrorKind.CERTIFICATE_REJECTED: (
        "TLS Certificate Rejected",
        [
            "The server's certificate failed verification; retrying will not help",
            "Install the issuing CA or point the target at a trusted certificate",
            "Disable certificate verification only for test servers you control",
        ],
    ),
    TransportErrorKind.PROTOCOL_ERROR: (
        "Protocol Error",
        ["The server sent an incomplete or malformed response"],
    ),
    TransportErrorKind.UNKNOWN: ("Request Failed", []),
}


def _kind_from_text(text: str, fallback: TransportErrorKind) -> TransportErrorKind:
    low = text.lower()
    for kind, hints in _KIND_HINTS:
        if any(h in low for h in hints):
            return kind
    return fallback


def classify_transport_error(exc: BaseException, url: str = "") -> TransportFailure:
    """Map an httpx/OS exception to a `TransportFailure`."""

    text = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        kind = TransportErrorKind.TIMEOUT
    elif isinstance(exc, httpx.ConnectError):
        kind = _kind_from_text(text, TransportErrorKind.NETWORK_UNREACHABLE)
    elif isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        kind = _kind_from_text(text, TransportErrorKind.PROTOCOL_ERROR)
    elif isinstance(exc, (httpx.UnsupportedProtocol, httpx.LocalProtocolError, httpx.InvalidURL)):
        kind = TransportErrorKind.UNKNOWN
    else:
        kind = _kind_from_text(text, TransportErrorKind.UNKNOWN)

    title, suggestions = _TITLES[kind]
    message = f"{title}: {text}"
    if url:
        message = f"{title}: {url}: {text}"
    return TransportFailure(kind=kind, message=message, title=title, suggestions=list(suggestions))


def build_async_client(
    settings: ProbeSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` with the engine's defaults."""

    settings = settings or ProbeSettings()
    headers: dict[str, str] = {"User-Agent": settings.user_agent}
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        verify=settings.verify_tls,
        transport=transport,
    )


class HttpxTransport:
    """Sends execution plans through an `httpx.AsyncClient`."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        settings: ProbeSettings | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or build_async_client(settings)

    async def send(self, plan: ExecutionPlan, *, timeout: float) -> HttpResponse:
        try:
            response = await self._client.request(
                plan.method,
                plan.url,
                headers=plan.headers,
                content=plan.body,
                timeout=timeout,
            )
        except (httpx.TransportError, httpx.InvalidURL) as exc:
            failure = classify_transport_error(exc, plan.url)
            logger.debug("%s %s failed: %s", plan.method, plan.url, failure.kind.value)
            raise TransportError(failure) from exc

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
