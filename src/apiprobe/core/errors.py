"""Error taxonomy of the probe engine.

- `SynthesisError`: a schema could not be sampled (recursion past the depth
  cap, dangling `$ref`). Recovered inside the sampler.
- `TransportError`: the request never produced an HTTP status. Retryable.
- `ContractViolation`: a response disagrees with the contract. Recorded in
  the validation report; never escapes a run.
- `ConfigurationError`: the run policy is unusable. Raised before any plan
  is dispatched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from apiprobe.core.domain.models import TransportFailure


class ProbeError(Exception):
    """Base class for every error raised by apiprobe."""


class SynthesisError(ProbeError):
    """Raised when a schema node cannot produce a sample value."""


class TransportError(ProbeError):
    """Raised by a transport when no HTTP response was obtained."""

    def __init__(self, failure: "TransportFailure") -> None:
        super().__init__(failure.message)
        self.failure = failure

    @property
    def kind(self):
        return self.failure.kind


class ContractViolation(ProbeError):
    """A response does not conform to the declared contract."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors) or "response does not match contract")
        self.errors = list(errors)


class ConfigurationError(ProbeError, ValueError):
    """Invalid concurrency, retry or timeout parameters."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("invalid probe policy: " + "; ".join(problems))
        self.problems = list(problems)
