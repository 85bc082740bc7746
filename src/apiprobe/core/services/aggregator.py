"""Run summary as a pure fold over outcomes.

Counters and duration sums are commutative, so the summary does not
depend on the order outcomes completed in. `per_outcome` is returned in
submission order (by `TestOutcome.index`) for the same reason.
"""

from __future__ import annotations

import math
from typing import Iterable

from apiprobe.core.domain.models import RunSummary, TestOutcome


def _order_key(outcome: TestOutcome) -> tuple:
    return (
        outcome.index,
        outcome.method,
        outcome.endpoint,
        str(outcome.final_status),
        outcome.duration,
        outcome.message,
    )


def aggregate(outcomes: Iterable[TestOutcome]) -> RunSummary:
    ordered = sorted(outcomes, key=_order_key)
    if not ordered:
        return RunSummary()

    passed = sum(1 for o in ordered if o.passed)
    durations = [o.duration for o in ordered]
    total_duration = math.fsum(durations)
    return RunSummary(
        total=len(ordered),
        passed=passed,
        failed=len(ordered) - passed,
        retried=sum(1 for o in ordered if o.retry_count > 0),
        total_duration=total_duration,
        average_duration=total_duration / len(ordered),
        min_duration=min(durations),
        max_duration=max(durations),
        per_outcome=ordered,
    )


_PASS_WORDS = frozenset({"pass", "passed", "success", "successful"})
_FAIL_WORDS = frozenset({"fail", "failed", "err"})


def _outcome_matches(outcome: TestOutcome, query: str) -> bool:
    status = str(outcome.final_status)
    if query in _PASS_WORDS:
        return status.startswith("2")
    if query in _FAIL_WORDS:
        return not status.startswith("2")
    return any(
        query in text.lower()
        for text in (status, outcome.method, outcome.endpoint, outcome.message)
    )


def filter_outcomes(outcomes: Iterable[TestOutcome], query: str) -> list[TestOutcome]:
    """Keep outcomes matching `query`.

    `pass`/`success` keep 2xx statuses, `fail`/`err` keep everything else;
    any other text is a case-insensitive substring match on status, method,
    endpoint and message.
    """

    query = query.strip().lower()
    if not query:
        return list(outcomes)
    return [o for o in outcomes if _outcome_matches(o, query)]


class ResultAggregator:
    """Collects outcomes as they complete and summarizes them."""

    def __init__(self) -> None:
        self._outcomes: list[TestOutcome] = []

    def add(self, outcome: TestOutcome) -> None:
        self._outcomes.append(outcome)

    def __len__(self) -> int:
        return len(self._outcomes)

    @property
    def outcomes(self) -> list[TestOutcome]:
        return sorted(self._outcomes, key=_order_key)

    def summary(self) -> RunSummary:
        return aggregate(self._outcomes)
