"""
Lifecycle orchestration of sync jobs: create, resume or recreate each
selected session under its own lock, flush it, wait for all of them to
converge and finally pause or terminate them.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from functools import partial
from logging import Logger
from pathlib import Path
from typing import Awaitable, Callable

from rich.console import Console

from .descriptor import Endpoints, SessionDescriptor
from .engine import BaseEngine
from .exceptions import EmptySelectionError
from .lock import DEFAULT_LOCK_TTL, LockManager
from .scheduling import ConvergenceChecker, Countdown, RateLimiter, race
from .state import CommandStore
from .types import JobInfo, LiveStatus, Mode, Stage

__all__ = [
    "StatusCallback",
    "Timing",
    "SyncReport",
    "Orchestrator",
]

DEFAULT_CONCURRENCY = 5
"""
Default maximum number of sessions concurrently being brought up.
"""

JOB_LOCK_NAME = "job"

StatusCallback = Callable[[str, Stage, Exception | None], Awaitable[None]]
"""
Invoked with session name, stage and error (if any) upon each transition.
"""


@dataclass(kw_only=True)
class Timing:
    """
    Timing constants of orchestration, in seconds.
    """

    admission_poll: float = 1.0
    """
    Interval at which sessions waiting for admission re-check for a slot.
    """

    convergence_interval: float = 2.0
    """
    Interval at which live status is polled while waiting for convergence.
    """

    convergence_required: int = 5
    """
    Number of consecutive polls all jobs must report watching.
    """

    convergence_timeout: float = 5 * 60.0
    """
    Maximum time to wait for convergence before stopping jobs regardless.
    """

    lock_ttl: float = DEFAULT_LOCK_TTL


@dataclass(kw_only=True)
class SyncReport:
    """
    Outcome of a single {obj}`Orchestrator.sync` invocation.
    """

    started: list[str] = field(default_factory=list)
    """
    Job names which were flushed successfully.
    """

    busy: list[str] = field(default_factory=list)
    """
    Job names skipped since another process held their lock.
    """

    failed: dict[str, Exception] = field(default_factory=dict)
    """
    Mapping of session name to error.
    """

    converged: bool | None = None
    """
    Whether all started jobs converged before the timeout, or `None` if
    there was no need to wait.
    """

    stopped: list[str] = field(default_factory=list)
    """
    Job names which were paused or terminated afterward.
    """


class Orchestrator:
    """
    Brings up sync jobs for a set of sessions against an engine.
    """

    engine: BaseEngine
    state_dir: Path
    timing: Timing

    _locks: LockManager
    _commands: CommandStore
    _console: Console | None
    _logger: Logger

    def __init__(
        self,
        engine: BaseEngine,
        state_dir: Path,
        *,
        locks: LockManager | None = None,
        timing: Timing | None = None,
        console: Console | None = None,
        logger: Logger | None = None,
    ):
        self.engine = engine
        self.state_dir = state_dir
        self.timing = timing or Timing()

        self._logger = logger or logging.getLogger(__name__)
        self._locks = locks or LockManager(logger=self._logger)
        self._commands = CommandStore(state_dir)
        self._console = console

    def lock_key(self, job_name: str) -> Path:
        """
        Get key of the lock guarding a job, kept in the job's folder next to
        its recorded command.
        """
        return self.state_dir / job_name / JOB_LOCK_NAME

    async def sync(
        self,
        sessions: list[SessionDescriptor],
        *,
        mode: Mode | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        force_unlock: bool = False,
        force_recreate: bool = False,
        pause_after: bool = True,
        terminate_after: bool = False,
        silent_errors: bool = False,
        success_stage: Stage = Stage.FLUSHING,
        on_update: StatusCallback | None = None,
    ) -> SyncReport:
        """
        Bring up and flush jobs for the given sessions, which must already be
        filtered by selection and exclude sessions disabled for `mode`.

        :param mode: Directional mode, or `None` to use each session's own mode
        :param concurrency: Maximum number of sessions concurrently being brought up
        :param force_unlock: Seize per-session locks even if held
        :param force_recreate: Terminate and recreate existing jobs
        :param pause_after: Pause jobs after they converged
        :param terminate_after: Terminate jobs after they converged; takes precedence over `pause_after`
        :param silent_errors: Report per-session failures only via `on_update` rather than raising
        :param success_stage: Stage reported via `on_update` once a session was flushed
        :param on_update: Callback invoked upon each session transition
        """
        if not sessions:
            raise EmptySelectionError("No session to sync")

        invocation = _Invocation(
            orchestrator=self,
            mode=mode,
            force_unlock=force_unlock,
            force_recreate=force_recreate,
            stop_action=(
                "terminate"
                if terminate_after
                else "pause"
                if pause_after
                else None
            ),
            success_stage=success_stage,
            on_update=on_update,
            limiter=RateLimiter(
                concurrency, poll_interval=self.timing.admission_poll
            ),
        )

        return await invocation.run(sessions, silent_errors=silent_errors)


@dataclass(kw_only=True)
class _Invocation:
    """
    State of a single {obj}`Orchestrator.sync` invocation.
    """

    orchestrator: Orchestrator
    mode: Mode | None
    force_unlock: bool
    force_recreate: bool
    stop_action: str | None
    success_stage: Stage
    on_update: StatusCallback | None
    limiter: RateLimiter

    live: dict[str, JobInfo] = field(default_factory=dict)
    """
    Snapshot of live jobs taken at start of the invocation.
    """

    duplicates: Counter[str] = field(default_factory=Counter)
    """
    Number of live jobs per name.
    """

    started: dict[str, SessionDescriptor] = field(default_factory=dict)
    """
    Mapping of job name to session for jobs flushed successfully.
    """

    notified: set[str] = field(default_factory=set)
    """
    Jobs for which convergence was already reported.
    """

    report: SyncReport = field(default_factory=SyncReport)

    @property
    def engine(self) -> BaseEngine:
        return self.orchestrator.engine

    @property
    def logger(self) -> Logger:
        return self.orchestrator._logger

    async def run(
        self, sessions: list[SessionDescriptor], *, silent_errors: bool
    ) -> SyncReport:
        jobs = await self.engine.list()
        self.live = {job.name: job for job in jobs}
        self.duplicates = Counter(job.name for job in jobs)

        results = await asyncio.gather(
            *(self._sync_session(session) for session in sessions),
            return_exceptions=True,
        )

        # unexpected errors are not isolated per session
        for result in results:
            if isinstance(result, BaseException):
                raise result

        if self.report.failed and not silent_errors:
            raise next(iter(self.report.failed.values()))

        if self.stop_action is None or not self.started:
            return self.report

        self.report.converged = await self._wait_converged()

        await asyncio.gather(*(self._stop(job) for job in self.started))
        return self.report

    async def _sync_session(self, session: SessionDescriptor):
        job_name = session.job_name(self.mode)

        async with self.limiter.admit():
            acquired = await self.orchestrator._locks.acquire(
                self.orchestrator.lock_key(job_name),
                self.orchestrator.timing.lock_ttl,
                self.force_unlock,
                partial(self._sync_locked, session, job_name),
            )

        if not acquired:
            self.logger.warning(
                f"Another process is syncing {job_name}, skipped"
            )
            self.report.busy.append(job_name)

    async def _sync_locked(self, session: SessionDescriptor, job_name: str):
        self.logger.info(f"Flushing {job_name}")

        try:
            await self._bring_up(session, job_name)
            await self.engine.flush(job_name)
        except Exception as e:
            self.logger.error(f"Failed to sync {job_name}: {e}")
            self.report.failed[session.name] = e
            await self._notify(session.name, Stage.ERROR, e)
            return

        self.started[job_name] = session
        self.report.started.append(job_name)
        await self._notify(session.name, self.success_stage, None)

    async def _bring_up(self, session: SessionDescriptor, job_name: str):
        """
        Create, recreate or resume the job as needed.
        """
        endpoints = session.endpoints(self.mode)
        command = self.engine.describe_create(job_name, endpoints)
        info = self.live.get(job_name)
        status = info.status if info else LiveStatus.NOT_EXISTS

        if self.duplicates[job_name] > 1 or self.force_recreate:
            reason = (
                f"{self.duplicates[job_name]} live jobs"
                if self.duplicates[job_name] > 1
                else "forced"
            )
            self.logger.info(f"Recreating {job_name} ({reason})")
            await self.engine.terminate(job_name)
            await self._create(job_name, endpoints, command)
            return

        if status is LiveStatus.NOT_EXISTS:
            await self._create(job_name, endpoints, command)
            return

        if self.orchestrator._commands.read(job_name) != command:
            self.logger.info(f"Options of {job_name} changed, recreating")
            await self.engine.terminate(job_name)
            await self._create(job_name, endpoints, command)
            return

        if status is LiveStatus.PAUSED:
            self.logger.debug(f"Resuming {job_name}")
            await self.engine.resume(job_name)

    async def _create(self, job_name: str, endpoints: Endpoints, command: str):
        self.logger.debug(f"Creating {job_name}")
        await self.engine.create(job_name, endpoints)
        self.orchestrator._commands.write(job_name, command)

    async def _wait_converged(self) -> bool:
        """
        Race convergence polling against the timeout.
        """
        timing = self.orchestrator.timing
        checker = ConvergenceChecker(
            self._check_converged,
            interval=timing.convergence_interval,
            required=timing.convergence_required,
            logger=self.logger,
        )
        countdown = Countdown(
            timing.convergence_timeout, console=self.orchestrator._console
        )

        self.logger.info(
            f"Waiting up to {timing.convergence_timeout:.0f}s before {self.stop_action}"
        )

        converged = await race(checker.wait(), countdown.wait())

        if converged:
            self.logger.info("All jobs converged")
        else:
            self.logger.warning(
                "Timed out waiting for jobs to converge, stopping anyway"
            )

        return converged

    async def _check_converged(self) -> bool:
        mapping = await self.engine.list_mapping()
        converged = True

        for job_name, session in self.started.items():
            info = mapping.get(job_name)

            if info is None or info.status is not LiveStatus.WATCHING:
                status = info.status if info else LiveStatus.NOT_EXISTS
                self.logger.info(f"Still working {job_name}: {status}")
                converged = False
                continue

            if job_name not in self.notified:
                await self._notify(session.name, Stage.DONE, None)
                self.notified.add(job_name)

        return converged

    async def _stop(self, job_name: str):
        if self.stop_action == "terminate":
            self.logger.info(f"Terminating {job_name}")
            await self.engine.terminate(job_name)
        else:
            self.logger.info(f"Pausing {job_name}")
            await self.engine.pause(job_name)

        self.report.stopped.append(job_name)

    async def _notify(
        self, name: str, stage: Stage, error: Exception | None
    ):
        if self.on_update is not None:
            await self.on_update(name, stage, error)
