"""Run models (Pydantic v2).

These describe *what* a probe run produces: plans, attempts, validation
reports, outcomes and the run summary. They carry no I/O.

Notes:
- Plans, attempts and outcomes are frozen; an outcome never references
  another outcome, so concurrent plans share nothing mutable.
- The contract side (operations, schemas) lives in `contract`/`schema`
  as plain frozen dataclasses.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict

from apiprobe.core.errors import ContractViolation

ERR_STATUS = "ERR"

_LOG_BODY_LIMIT = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransportErrorKind(str, Enum):
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_RESET = "connection_reset"
    TIMEOUT = "timeout"
    DNS_FAILURE = "dns_failure"
    NETWORK_UNREACHABLE = "network_unreachable"
    TLS_ERROR = "tls_error"
    CERTIFICATE_REJECTED = "certificate_rejected"
    PROTOCOL_ERROR = "protocol_error"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        TransportErrorKind.CONNECTION_REFUSED,
        TransportErrorKind.CONNECTION_RESET,
        TransportErrorKind.TIMEOUT,
        TransportErrorKind.DNS_FAILURE,
        TransportErrorKind.NETWORK_UNREACHABLE,
        TransportErrorKind.TLS_ERROR,
        TransportErrorKind.PROTOCOL_ERROR,
    }
)


class ExecutionPlan(BaseModel):
    """A fully resolved request, ready to send exactly once per run."""

    model_config = ConfigDict(frozen=True)

    method: str = Field(..., min_length=1, description="HTTP method, upper case.")
    url: str = Field(..., min_length=1, description="Absolute URL including query string.")
    endpoint: str = Field(
        default="",
        description="Path template of the originating operation (display key).",
    )
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes | None = Field(default=None, description="Serialized request body.")
    index: int = Field(
        default=0,
        ge=0,
        description="Submission index; lets callers restore plan order.",
    )


class HttpResponse(BaseModel):
    """A transport success: any HTTP status, 4xx/5xx included."""

    model_config = ConfigDict(frozen=True)

    status: int = Field(..., ge=100, le=599)
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""


class TransportFailure(BaseModel):
    """Why a request produced no HTTP status at all."""

    model_config = ConfigDict(frozen=True)

    kind: TransportErrorKind = TransportErrorKind.UNKNOWN
    message: str = Field(..., min_length=1)
    title: str = ""
    suggestions: list[str] = Field(default_factory=list)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class RequestLog(BaseModel):
    """Request/response capture kept only in verbose mode."""

    model_config = ConfigDict(frozen=True)

    request_url: str
    request_headers: dict[str, str] = Field(default_factory=dict)
    request_body: str = ""
    response_headers: dict[str, str] = Field(default_factory=dict)
    response_body: str = ""
    duration: float = Field(default=0.0, ge=0.0, description="Seconds.")
    timestamp: datetime = Field(default_factory=_utcnow)

    @staticmethod
    def truncate(text: str, limit: int = _LOG_BODY_LIMIT) -> str:
        if len(text) <= limit:
            return text
        return text[:limit] + "... (truncated)"


class Attempt(BaseModel):
    """One try of a plan: either a response or a transport failure."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(..., ge=1)
    start_time: float = Field(..., description="Monotonic clock, seconds.")
    end_time: float = Field(..., description="Monotonic clock, seconds.")
    response: HttpResponse | None = None
    error: TransportFailure | None = None
    log: RequestLog | None = None

    @model_validator(mode="after")
    def _one_outcome(self) -> "Attempt":
        if (self.response is None) == (self.error is None):
            raise ValueError("an attempt carries exactly one of response/error")
        if self.end_time < self.start_time:
            raise ValueError("attempt ends before it starts")
        return self

    @property
    def succeeded(self) -> bool:
        """True when the transport produced an HTTP status."""

        return self.response is not None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class ValidationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_valid: bool = True
    content_type_valid: bool = True
    schema_errors: list[str] = Field(default_factory=list)
    matched_status: str | None = Field(
        default=None,
        description="Declared status key that matched ('200', '2XX', 'default').",
    )

    @property
    def passed(self) -> bool:
        return self.status_valid and self.content_type_valid and not self.schema_errors

    def raise_for_violations(self) -> None:
        """Raise `ContractViolation` unless the report passed."""

        if not self.passed:
            raise ContractViolation(list(self.schema_errors))


class TestOutcome(BaseModel):
    """Final result of one plan, after all attempts."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    index: int = Field(default=0, ge=0)
    method: str
    endpoint: str
    final_status: int | Literal["ERR"] = ERR_STATUS
    attempts: list[Attempt] = Field(default_factory=list)
    retry_count: int = Field(default=0, ge=0)
    duration: float = Field(default=0.0, ge=0.0, description="Seconds, all attempts and waits.")
    validation: ValidationReport | None = None
    message: str = ""

    @model_validator(mode="after")
    def _retry_count_matches(self) -> "TestOutcome":
        if self.attempts and self.retry_count != len(self.attempts) - 1:
            raise ValueError("retry_count must equal len(attempts) - 1")
        return self

    @property
    def is_transport_error(self) -> bool:
        return self.final_status == ERR_STATUS

    @property
    def passed(self) -> bool:
        if not isinstance(self.final_status, int):
            return False
        if not 200 <= self.final_status < 300:
            return False
        return self.validation is None or self.validation.passed

    @property
    def last_attempt(self) -> Attempt | None:
        return self.attempts[-1] if self.attempts else None


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    passed: int = 0
    failed: int = 0
    retried: int = Field(default=0, description="Outcomes that needed at least one retry.")
    total_duration: float = 0.0
    average_duration: float = 0.0
    min_duration: float = 0.0
    max_duration: float = 0.0
    per_outcome: list[TestOutcome] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        return self.passed / self.total if self.total else 0.0


class AuthType(str, Enum):
    NONE = "none"
    BEARER = "bearer"
    API_KEY = "apiKey"
    BASIC = "basic"


class AuthConfig(BaseModel):
    """Credentials as a front end collects them."""

    auth_type: AuthType = AuthType.NONE
    token: str | None = None
    api_key_name: str | None = None
    api_key_in: Literal["header", "query"] = "header"
    username: str | None = None
    password: str | None = None


class ProbePolicy(BaseModel):
    """Knobs of one run. Checked by `validate_policy` before dispatch."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    concurrency_limit: int = Field(default=1, description="0 or 1 runs sequentially.")
    max_retries: int = 3
    base_delay: float = Field(default=1.0, description="Seconds before the first retry.")
    max_delay: float = 30.0
    request_timeout: float = 10.0
    validate_responses: bool = True
    verbose: bool = False
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Caller headers; override planner defaults.",
    )
    auth: Any = Field(
        default=None,
        description="Optional RequestDecorator (bearer, api key, basic).",
    )

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "ProbePolicy":
        values: dict[str, Any] = {
            "concurrency_limit": settings.effective_concurrency(),
            "max_retries": settings.max_retries,
            "base_delay": settings.retry_base_delay_seconds,
            "max_delay": settings.retry_max_delay_seconds,
            "request_timeout": settings.http_timeout_seconds,
            "validate_responses": settings.validate_responses,
            "verbose": settings.verbose,
        }
        values.update(overrides)
        return cls(**values)
