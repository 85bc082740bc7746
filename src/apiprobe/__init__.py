"""apiprobe: contract-driven HTTP API probing engine.

Typical use:

    operations = operations_from_document(openapi_dict)
    result = await probe(operations=operations, base_url="https://api.example.com")
    print(result.summary.passed, "/", result.summary.total)
"""

from apiprobe.adapters.auth import ApiKeyAuth, BasicAuth, BearerAuth, auth_from_config
from apiprobe.adapters.http_client import HttpxTransport
from apiprobe.adapters.openapi_document import operations_from_document
from apiprobe.core.config import ProbeSettings, default_settings, load_settings
from apiprobe.core.domain.contract import OperationDescriptor, Parameter, ParameterLocation, ResponseSpec
from apiprobe.core.domain.models import (
    AuthConfig,
    AuthType,
    ExecutionPlan,
    HttpResponse,
    ProbePolicy,
    RunSummary,
    TestOutcome,
    ValidationReport,
)
from apiprobe.core.errors import (
    ConfigurationError,
    ContractViolation,
    ProbeError,
    SynthesisError,
    TransportError,
)
from apiprobe.core.services.probe_pipeline import (
    OperationSelection,
    PipelineHooks,
    ProbeResult,
    probe,
)

__version__ = "0.1.0"

__all__ = [
    "ApiKeyAuth",
    "AuthConfig",
    "AuthType",
    "BasicAuth",
    "BearerAuth",
    "ConfigurationError",
    "ContractViolation",
    "ExecutionPlan",
    "HttpResponse",
    "HttpxTransport",
    "OperationDescriptor",
    "OperationSelection",
    "Parameter",
    "ParameterLocation",
    "PipelineHooks",
    "ProbeError",
    "ProbePolicy",
    "ProbeResult",
    "ProbeSettings",
    "ResponseSpec",
    "RunSummary",
    "SynthesisError",
    "TestOutcome",
    "TransportError",
    "ValidationReport",
    "auth_from_config",
    "default_settings",
    "load_settings",
    "operations_from_document",
    "probe",
]
