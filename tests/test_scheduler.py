import asyncio

import pytest

from apiprobe.core.domain.models import ExecutionPlan, TestOutcome
from apiprobe.core.services.scheduler import ConcurrencyScheduler


def _plans(count):
    return [
        ExecutionPlan(method="GET", url=f"http://api.test/items/{i}", endpoint="/items/{id}", index=i)
        for i in range(count)
    ]


def _ok(plan, status=200):
    return TestOutcome(index=plan.index, method=plan.method, endpoint=plan.endpoint, final_status=status)


@pytest.mark.asyncio
async def test_sequential_keeps_plan_order():
    async def execute(plan):
        await asyncio.sleep(0.01 * (5 - plan.index))
        return _ok(plan)

    outcomes = await ConcurrencyScheduler(1).run(_plans(5), execute)

    assert [o.index for o in outcomes] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_concurrent_limit_is_respected_and_results_arrive_in_completion_order():
    in_flight = 0
    peak = 0

    async def execute(plan):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02 * (6 - plan.index))
        in_flight -= 1
        return _ok(plan)

    outcomes = await ConcurrencyScheduler(3).run(_plans(6), execute)

    assert peak == 3
    assert sorted(o.index for o in outcomes) == [0, 1, 2, 3, 4, 5]
    assert [o.index for o in outcomes] != [0, 1, 2, 3, 4, 5]
    assert outcomes[0].index == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [1, 4])
async def test_crashing_plan_becomes_err_outcome(limit):
    async def execute(plan):
        if plan.index == 2:
            raise RuntimeError("boom")
        return _ok(plan)

    outcomes = await ConcurrencyScheduler(limit).run(_plans(4), execute)

    assert len(outcomes) == 4
    crashed = next(o for o in outcomes if o.index == 2)
    assert crashed.final_status == "ERR"
    assert crashed.message == "internal error: boom"
    assert all(o.final_status == 200 for o in outcomes if o.index != 2)


@pytest.mark.asyncio
async def test_cancel_stops_dispatch_in_sequential_mode():
    cancel = asyncio.Event()

    async def execute(plan):
        cancel.set()
        return _ok(plan)

    outcomes = await ConcurrencyScheduler(1).run(_plans(5), execute, cancel)

    assert [o.index for o in outcomes] == [0]


@pytest.mark.asyncio
async def test_cancel_lets_in_flight_plans_finish():
    cancel = asyncio.Event()
    started = []

    async def execute(plan):
        started.append(plan.index)
        await asyncio.sleep(0.01)
        return _ok(plan)

    def on_outcome(outcome, completed, total):
        cancel.set()

    outcomes = await ConcurrencyScheduler(2, on_outcome=on_outcome).run(_plans(10), execute, cancel)

    assert len(outcomes) == len(started)
    assert 1 <= len(outcomes) < 10


@pytest.mark.asyncio
async def test_progress_callback_counts_completions():
    seen = []

    async def execute(plan):
        return _ok(plan)

    def on_outcome(outcome, completed, total):
        seen.append((completed, total))
        raise ValueError("callback bugs do not stop the run")

    outcomes = await ConcurrencyScheduler(2, on_outcome=on_outcome).run(_plans(3), execute)

    assert len(outcomes) == 3
    assert seen == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_stream_yields_each_outcome_once():
    async def execute(plan):
        return _ok(plan, status=204)

    indices = [outcome.index async for outcome in ConcurrencyScheduler(3).stream(_plans(7), execute)]

    assert sorted(indices) == list(range(7))


@pytest.mark.asyncio
async def test_no_plans():
    async def execute(plan):  # pragma: no cover
        raise AssertionError

    assert await ConcurrencyScheduler(4).run([], execute) == []
