"""
Scheduling primitives: polled admission control, convergence polling and
first-wins races between waiters.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from logging import Logger
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine

from rich.console import Console

__all__ = [
    "RateLimiter",
    "ConvergenceChecker",
    "Countdown",
    "race",
]


class RateLimiter:
    """
    Bounds the number of concurrently admitted tasks to a fixed number of
    permits. Waiters re-check for a free permit every `poll_interval`
    seconds; there is no ordering among waiters.
    """

    permits: int
    poll_interval: float

    live: int
    """
    Number of tasks currently admitted.
    """

    peak: int
    """
    Highest number of tasks admitted at the same time.
    """

    def __init__(self, permits: int, *, poll_interval: float = 1.0):
        assert permits > 0, f"permits must be positive, got {permits}"

        self.permits = permits
        self.poll_interval = poll_interval
        self.live = 0
        self.peak = 0

    @asynccontextmanager
    async def admit(self) -> AsyncIterator[None]:
        while self.live >= self.permits:
            await asyncio.sleep(self.poll_interval)

        self.live += 1
        self.peak = max(self.peak, self.live)

        try:
            yield
        finally:
            self.live -= 1


class ConvergenceChecker:
    """
    Polls `check` every `interval` seconds until it reported success for
    `required` consecutive polls. Errors raised by `check` count as a
    failed poll.
    """

    _check: Callable[[], Awaitable[bool]]
    _interval: float
    _required: int
    _logger: Logger

    polls: int
    """
    Number of polls performed so far.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[bool]],
        *,
        interval: float = 2.0,
        required: int = 5,
        logger: Logger | None = None,
    ):
        self._check = check
        self._interval = interval
        self._required = required
        self._logger = logger or logging.getLogger(__name__)
        self.polls = 0

    async def wait(self) -> bool:
        """
        Wait until converged; returns `True`.
        """
        streak = 0

        while True:
            await asyncio.sleep(self._interval)
            self.polls += 1

            try:
                converged = await self._check()
            except Exception as e:
                self._logger.debug(f"Convergence check failed: {e}")
                converged = False

            streak = streak + 1 if converged else 0

            if streak >= self._required:
                return True


class Countdown:
    """
    Waiter which resolves after a fixed timeout, optionally displaying the
    remaining time on a console.
    """

    timeout: float
    _console: Console | None

    def __init__(self, timeout: float, *, console: Console | None = None):
        self.timeout = timeout
        self._console = console

    async def wait(self) -> bool:
        """
        Wait for the timeout to elapse; returns `False` to indicate the
        waited-for condition was not reached.
        """
        if self._console is None:
            await asyncio.sleep(self.timeout)
            return False

        end = time.monotonic() + self.timeout

        with self._console.status(self._message(self.timeout)) as status:
            while (left := end - time.monotonic()) > 0:
                status.update(self._message(left))
                await asyncio.sleep(min(1.0, left))

        return False

    def _message(self, left: float) -> str:
        return f"Waiting before pause or terminate, left {int(left):3d}s"


async def race(*coros: Coroutine[Any, Any, Any]) -> Any:
    """
    Run coroutines concurrently and return the result of whichever finishes
    first; the others are cancelled.
    """
    tasks = [asyncio.ensure_future(c) for c in coros]

    try:
        done, _ = await asyncio.wait(
            tasks, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # prefer a deterministic winner if several finished in the same cycle
    winner = next(t for t in tasks if t in done)
    return winner.result()
