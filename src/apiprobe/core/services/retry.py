"""Retry with exponential backoff for a single plan.

Only transport failures are retried. A response that carries an HTTP
status, including 4xx and 5xx, ends the loop: repeating a bad request or a
server error rarely changes its answer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from apiprobe.core.domain.models import (
    Attempt,
    ExecutionPlan,
    HttpResponse,
    RequestLog,
    TransportFailure,
)
from apiprobe.core.errors import TransportError

logger = logging.getLogger(__name__)

SendFn = Callable[[ExecutionPlan], Awaitable[HttpResponse]]
SleepFn = Callable[[float], Awaitable[None]]

_SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "x-api-key",
        "api-key",
        "apikey",
        "cookie",
        "set-cookie",
        "x-auth-token",
        "x-access-token",
    }
)


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        k: ("***" if k.lower() in _SENSITIVE_HEADERS else v)
        for k, v in headers.items()
    }


def _decode(body: bytes | None) -> str:
    if not body:
        return ""
    return body.decode("utf-8", errors="replace")


class RetryPolicy:
    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        verbose: bool = False,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.verbose = verbose
        self._sleep = sleep
        self._clock = clock

    def delay_before(self, attempt_number: int) -> float:
        """Wait inserted before `attempt_number` (1-indexed); 0 for the first."""

        if attempt_number < 2:
            return 0.0
        return min(self.base_delay * 2 ** (attempt_number - 2), self.max_delay)

    def _log_entry(
        self,
        plan: ExecutionPlan,
        started: float,
        ended: float,
        response: HttpResponse | None,
        failure: TransportFailure | None,
    ) -> RequestLog | None:
        if not self.verbose:
            return None
        if response is not None:
            response_headers = mask_headers(response.headers)
            response_body = RequestLog.truncate(_decode(response.body))
        else:
            response_headers = {}
            response_body = failure.message if failure else ""
        return RequestLog(
            request_url=plan.url,
            request_headers=mask_headers(plan.headers),
            request_body=RequestLog.truncate(_decode(plan.body)),
            response_headers=response_headers,
            response_body=response_body,
            duration=max(0.0, ended - started),
        )

    async def execute(self, plan: ExecutionPlan, send: SendFn) -> list[Attempt]:
        attempts: list[Attempt] = []
        for number in range(1, self.max_retries + 2):
            if number > 1:
                delay = self.delay_before(number)
                logger.warning(
                    "retrying %s %s (attempt %d/%d) in %.2fs: %s",
                    plan.method,
                    plan.url,
                    number,
                    self.max_retries + 1,
                    delay,
                    attempts[-1].error.message if attempts[-1].error else "",
                )
                await self._sleep(delay)

            started = self._clock()
            response: HttpResponse | None = None
            failure: TransportFailure | None = None
            try:
                response = await send(plan)
            except TransportError as exc:
                failure = exc.failure
            ended = self._clock()

            attempts.append(
                Attempt(
                    attempt_number=number,
                    start_time=started,
                    end_time=max(ended, started),
                    response=response,
                    error=failure,
                    log=self._log_entry(plan, started, ended, response, failure),
                )
            )
            if failure is None or not failure.retryable:
                break
        return attempts
