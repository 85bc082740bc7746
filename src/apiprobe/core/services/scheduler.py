"""Bounded-concurrency execution of plans.

- `limit <= 1`: plans run one after another, outcomes in plan order.
- `limit > 1`: a pool of `limit` workers pulls from a shared queue, so a
  finished slot is refilled immediately. Outcomes flow through an
  `asyncio.Queue` to a single collector and arrive in completion order;
  callers that need plan order sort by `TestOutcome.index`.
- Cancellation is cooperative: once the event is set no new plan is
  dispatched, in-flight plans finish on their own request timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Sequence

from apiprobe.core.domain.models import ERR_STATUS, ExecutionPlan, TestOutcome

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[ExecutionPlan], Awaitable[TestOutcome]]
ProgressFn = Callable[[TestOutcome, int, int], None]

_WORKER_DONE = object()


def failed_outcome(plan: ExecutionPlan, message: str) -> TestOutcome:
    return TestOutcome(
        index=plan.index,
        method=plan.method,
        endpoint=plan.endpoint or plan.url,
        final_status=ERR_STATUS,
        message=message,
    )


class ConcurrencyScheduler:
    def __init__(self, limit: int = 1, *, on_outcome: ProgressFn | None = None) -> None:
        self.limit = limit
        self.on_outcome = on_outcome

    async def _guarded(self, execute: ExecuteFn, plan: ExecutionPlan) -> TestOutcome:
        try:
            return await execute(plan)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("plan %s %s crashed", plan.method, plan.url)
            return failed_outcome(plan, f"internal error: {exc}")

    def _report(self, outcome: TestOutcome, completed: int, total: int) -> None:
        if self.on_outcome is None:
            return
        try:
            self.on_outcome(outcome, completed, total)
        except Exception:
            logger.exception("progress callback failed")

    async def stream(
        self,
        plans: Sequence[ExecutionPlan],
        execute: ExecuteFn,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[TestOutcome]:
        """Yield outcomes as plans complete."""

        total = len(plans)
        completed = 0

        if self.limit <= 1:
            for plan in plans:
                if cancel is not None and cancel.is_set():
                    logger.info("run cancelled, %d plan(s) not dispatched", total - completed)
                    break
                outcome = await self._guarded(execute, plan)
                completed += 1
                self._report(outcome, completed, total)
                yield outcome
            return

        pending: asyncio.Queue[ExecutionPlan] = asyncio.Queue()
        for plan in plans:
            pending.put_nowait(plan)
        done: asyncio.Queue[object] = asyncio.Queue()

        async def worker() -> None:
            try:
                while not (cancel is not None and cancel.is_set()):
                    try:
                        plan = pending.get_nowait()
                    except asyncio.QueueEmpty:
                        break
                    await done.put(await self._guarded(execute, plan))
            finally:
                done.put_nowait(_WORKER_DONE)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.limit, total))]
        running = len(workers)
        try:
            while running:
                item = await done.get()
                if item is _WORKER_DONE:
                    running -= 1
                    continue
                completed += 1
                self._report(item, completed, total)
                yield item
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if completed < total:
            logger.info("run cancelled, %d plan(s) not dispatched", total - completed)

    async def run(
        self,
        plans: Sequence[ExecutionPlan],
        execute: ExecuteFn,
        cancel: asyncio.Event | None = None,
    ) -> list[TestOutcome]:
        """Collect every outcome; order is completion order."""

        return [outcome async for outcome in self.stream(plans, execute, cancel)]
