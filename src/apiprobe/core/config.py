"""Engine settings.

- Centralizes environment variables (pydantic-settings) for the engine and
  its default transport.
- Front ends merge their own flags/config files on top and hand the engine
  a `ProbePolicy`; this module only knows about the environment and `.env`.
- Only `load_settings` reads them. `probe` without explicit settings runs
  on `default_settings`.
"""

from __future__ import annotations

import os

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from apiprobe.core.errors import ConfigurationError

AUTO_CONCURRENCY_CAP = 10
MAX_RETRIES_CAP = 10


class ProbeSettings(BaseSettings):
    """Central configuration of the probe engine."""

    model_config = SettingsConfigDict(
        env_prefix="APIPROBE_",
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout (seconds).",
    )
    user_agent: str = Field(
        default="apiprobe/0.1",
        min_length=1,
        description="User-Agent sent with every probe request.",
    )
    verify_tls: bool = Field(
        default=True,
        description="Verify TLS certificates of the target.",
    )

    max_concurrency: int = Field(
        default=0,
        ge=0,
        le=500,
        description="Plans in flight at once (0 = auto, 1 = sequential).",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=MAX_RETRIES_CAP,
        description="Extra attempts after a transport failure.",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Wait before the first retry; doubles on each further retry.",
    )
    retry_max_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for a single backoff wait.",
    )

    validate_responses: bool = Field(
        default=True,
        description="Check status, content type and body against the contract.",
    )
    verbose: bool = Field(
        default=False,
        description="Capture request/response logs on every attempt.",
    )

    # Sampling
    optional_property_probability: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Chance that an optional object property is sampled.",
    )
    array_length: int = Field(
        default=2,
        ge=0,
        le=100,
        description="Items generated for array schemas.",
    )
    max_schema_depth: int = Field(
        default=5,
        ge=1,
        le=64,
        description="Recursion bound for request sampling.",
    )
    sampler_seed: int = Field(
        default=0,
        description="Seed for optional-property inclusion.",
    )

    def effective_concurrency(self) -> int:
        if self.max_concurrency > 0:
            return self.max_concurrency
        return min(os.cpu_count() or 1, AUTO_CONCURRENCY_CAP)


def load_settings(**overrides: object) -> ProbeSettings:
    """Build settings, turning validation failures into `ConfigurationError`."""

    try:
        return ProbeSettings(**overrides)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(problems) from exc


def default_settings() -> ProbeSettings:
    """Field defaults only; reads neither the environment nor `.env`."""

    return ProbeSettings.model_construct()
