"""Probe run orchestration.

Plans every selected operation, runs the plans through the scheduler with
retries and validation, and folds the outcomes into a summary. Front ends
(command runner, dashboard) call `probe` and render the `ProbeResult`; this
module prints nothing and writes no files.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable, Iterable, Sequence

from apiprobe.core.config import MAX_RETRIES_CAP, ProbeSettings, default_settings
from apiprobe.core.domain.contract import OperationDescriptor
from apiprobe.core.domain.models import (
    ERR_STATUS,
    Attempt,
    ExecutionPlan,
    ProbePolicy,
    RunSummary,
    TestOutcome,
    ValidationReport,
)
from apiprobe.core.errors import ConfigurationError
from apiprobe.core.interfaces.transport import RequestDecorator, Transport
from apiprobe.core.services.aggregator import ResultAggregator
from apiprobe.core.services.planner import RequestPlanner
from apiprobe.core.services.retry import RetryPolicy, SleepFn
from apiprobe.core.services.sampler import SchemaSampler
from apiprobe.core.services.scheduler import ConcurrencyScheduler
from apiprobe.core.services.validator import ResponseValidator

logger = logging.getLogger(__name__)


@dataclass
class OperationSelection:
    """Which operations to probe.

    `endpoints` keeps only the listed `(METHOD, path)` pairs; `query` uses
    the dashboard filter syntax (`method:get`, `tag:users`, `path:/users`,
    or free text matched against path, summary and operation id).
    """

    endpoints: set[tuple[str, str]] | None = None
    query: str | None = None


@dataclass
class PipelineHooks:
    """Optional callbacks for UI layers (progress, warnings)."""

    warning: Callable[[str], None] | None = None
    started: Callable[[int], None] | None = None
    progress: Callable[[TestOutcome, int, int], None] | None = None


@dataclass
class ProbeResult:
    """Output of a probe run."""

    outcomes: list[TestOutcome]
    summary: RunSummary
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False


def validate_policy(policy: ProbePolicy) -> None:
    problems: list[str] = []
    if policy.concurrency_limit < 0:
        problems.append(f"concurrency limit must be >= 0, got {policy.concurrency_limit}")
    if policy.max_retries < 0:
        problems.append(f"max retries must be >= 0, got {policy.max_retries}")
    elif policy.max_retries > MAX_RETRIES_CAP:
        problems.append(f"max retries must be <= {MAX_RETRIES_CAP}, got {policy.max_retries}")
    if policy.base_delay < 0:
        problems.append(f"base delay must be >= 0, got {policy.base_delay}")
    if policy.max_delay < 0:
        problems.append(f"max delay must be >= 0, got {policy.max_delay}")
    if policy.request_timeout <= 0:
        problems.append(f"request timeout must be > 0, got {policy.request_timeout}")
    if policy.auth is not None and not isinstance(policy.auth, RequestDecorator):
        problems.append("auth must provide apply(plan) -> plan")
    if problems:
        raise ConfigurationError(problems)


def _matches(operation: OperationDescriptor, query: str) -> bool:
    query = query.strip().lower()
    if not query:
        return True
    if ":" in query:
        field_name, value = (part.strip() for part in query.split(":", 1))
        if field_name == "method":
            return operation.method.lower() == value
        if field_name == "tag":
            return any(value in tag.lower() for tag in operation.tags)
        if field_name == "path":
            return value in operation.path_template.lower()
    haystack = " ".join(
        [operation.method, operation.path_template, operation.summary, operation.operation_id or ""]
    ).lower()
    return query in haystack


def select_operations(
    operations: Iterable[OperationDescriptor],
    selection: OperationSelection | None,
) -> list[OperationDescriptor]:
    ops = list(operations)
    if selection is None:
        return ops
    if selection.endpoints is not None:
        wanted = {(m.upper(), p) for m, p in selection.endpoints}
        ops = [op for op in ops if op.key in wanted]
    if selection.query:
        ops = [op for op in ops if _matches(op, selection.query)]
    return ops


def describe_outcome(
    attempts: Sequence[Attempt],
    validation: ValidationReport | None,
    max_retries: int,
) -> str:
    last = attempts[-1]
    retries = len(attempts) - 1

    failure, response = last.error, last.response
    if response is None:
        message = failure.message if failure is not None else "no response received"
        if failure is not None and retries and retries == max_retries and failure.retryable:
            return f"max retries ({max_retries}) exceeded: {message}"
        return message

    status = response.status
    if validation is not None and not validation.passed:
        return validation.schema_errors[0] if validation.schema_errors else "Response validation failed"
    if not 200 <= status < 300:
        try:
            phrase = HTTPStatus(status).phrase
        except ValueError:
            phrase = ""
        return f"HTTP {status} {phrase}".strip()

    notes = ["validated"] if validation is not None else []
    if retries:
        notes.append(f"{retries} retries")
    return f"OK ({', '.join(notes)})" if notes else "OK"


class ProbeEngine:
    """Executes plans for known operations: retries, then validation."""

    def __init__(
        self,
        *,
        transport: Transport,
        policy: ProbePolicy,
        validator: ResponseValidator | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.policy = policy
        self.validator = validator or ResponseValidator()
        self.retry = RetryPolicy(
            max_retries=policy.max_retries,
            base_delay=policy.base_delay,
            max_delay=policy.max_delay,
            verbose=policy.verbose,
            sleep=sleep,
        )

    async def _send(self, plan: ExecutionPlan):
        return await self.transport.send(plan, timeout=self.policy.request_timeout)

    async def execute(self, plan: ExecutionPlan, operation: OperationDescriptor) -> TestOutcome:
        started = time.monotonic()
        attempts = await self.retry.execute(plan, self._send)
        duration = time.monotonic() - started

        last = attempts[-1]
        validation = None
        if self.policy.validate_responses:
            validation = self.validator.validate(last, operation)

        outcome = TestOutcome(
            index=plan.index,
            method=plan.method,
            endpoint=plan.endpoint,
            final_status=last.response.status if last.response is not None else ERR_STATUS,
            attempts=attempts,
            retry_count=len(attempts) - 1,
            duration=max(0.0, duration),
            validation=validation,
            message=describe_outcome(attempts, validation, self.policy.max_retries),
        )
        logger.debug(
            "%s %s -> %s (%d attempt(s), %.3fs)",
            outcome.method,
            outcome.endpoint,
            outcome.final_status,
            len(attempts),
            outcome.duration,
        )
        return outcome


async def probe(
    *,
    operations: Sequence[OperationDescriptor],
    base_url: str,
    policy: ProbePolicy | None = None,
    settings: ProbeSettings | None = None,
    transport: Transport | None = None,
    hooks: PipelineHooks | None = None,
    cancel: asyncio.Event | None = None,
    selection: OperationSelection | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> ProbeResult:
    hooks = hooks or PipelineHooks()
    settings = settings or default_settings()
    policy = policy or ProbePolicy.from_settings(settings)
    validate_policy(policy)

    warnings: list[str] = []

    def warn(message: str) -> None:
        logger.warning(message)
        warnings.append(message)
        if hooks.warning:
            hooks.warning(message)

    selected = select_operations(operations, selection)
    planner = RequestPlanner(
        base_url,
        sampler=SchemaSampler.from_settings(settings),
        headers=policy.headers,
        decorator=policy.auth,
    )

    aggregator = ResultAggregator()
    plans: list[ExecutionPlan] = []
    by_index: dict[int, OperationDescriptor] = {}
    for index, operation in enumerate(selected):
        try:
            plan = planner.plan(operation, index)
        except Exception as exc:  # a broken example must not abort the batch
            warn(f"could not build request for {operation.method} {operation.path_template}: {exc}")
            aggregator.add(
                TestOutcome(
                    index=index,
                    method=operation.method,
                    endpoint=operation.path_template,
                    final_status=ERR_STATUS,
                    message=f"Failed to generate request: {exc}",
                )
            )
            continue
        plans.append(plan)
        by_index[index] = operation

    if hooks.started:
        hooks.started(len(selected))
    logger.info(
        "probing %d operation(s) against %s (concurrency=%d, retries=%d)",
        len(selected),
        base_url,
        policy.concurrency_limit,
        policy.max_retries,
    )

    owned = None
    if transport is None:
        from apiprobe.adapters.http_client import HttpxTransport

        owned = transport = HttpxTransport(settings=settings)

    engine = ProbeEngine(transport=transport, policy=policy, sleep=sleep)
    scheduler = ConcurrencyScheduler(policy.concurrency_limit, on_outcome=hooks.progress)

    async def execute(plan: ExecutionPlan) -> TestOutcome:
        return await engine.execute(plan, by_index[plan.index])

    try:
        async for outcome in scheduler.stream(plans, execute, cancel):
            aggregator.add(outcome)
    finally:
        if owned is not None:
            await owned.aclose()

    summary = aggregator.summary()
    cancelled = cancel is not None and cancel.is_set() and len(aggregator) < len(selected)
    logger.info(
        "probe finished: %d passed, %d failed, %d total%s",
        summary.passed,
        summary.failed,
        summary.total,
        " (cancelled)" if cancelled else "",
    )
    return ProbeResult(
        outcomes=aggregator.outcomes,
        summary=summary,
        warnings=warnings,
        cancelled=cancelled,
    )


__all__ = [
    "OperationSelection",
    "PipelineHooks",
    "ProbeEngine",
    "ProbeResult",
    "describe_outcome",
    "probe",
    "select_operations",
    "validate_policy",
]
