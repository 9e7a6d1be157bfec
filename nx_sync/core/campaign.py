"""
Resumable multi-session campaigns.

A campaign runs one directional command (upload or download) across a
selection of sessions. Progress of each session is persisted after every
transition, so that a campaign interrupted by a crash or Ctrl-C continues
where it left off when invoked again, skipping sessions already done.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from logging import Logger
from pathlib import Path

from .descriptor import ALL_GROUPS, SessionDescriptor, select_sessions
from .exceptions import IncompatibleCampaignError
from .lock import LockManager
from .orchestrator import Orchestrator, SyncReport
from .state import CampaignState, CampaignStore, format_time
from .types import CampaignKind, Stage

__all__ = [
    "CampaignResult",
    "CampaignOutcome",
    "WorkflowController",
]

CAMPAIGN_LOCK_NAME = "session"
"""
Name of the global campaign lock within the state dir.
"""


class CampaignResult(StrEnum):
    """
    How a campaign invocation ended.
    """

    BUSY = "busy"
    """Another process is running a campaign; nothing was done"""

    EMPTY = "empty"
    """No sessions matched the group filter"""

    ALREADY_DONE = "already-done"
    """All sessions of the campaign were already done"""

    COMPLETED = "completed"
    """Pending sessions were run"""


@dataclass(kw_only=True)
class CampaignOutcome:
    result: CampaignResult
    state: CampaignState | None = None
    report: SyncReport | None = None


class WorkflowController:
    """
    Runs resumable campaigns, delegating the work on each pending session to
    an {obj}`Orchestrator`.
    """

    sessions: list[SessionDescriptor]
    """
    All configured sessions.
    """

    orchestrator: Orchestrator
    store: CampaignStore

    locks: LockManager
    _logger: Logger

    def __init__(
        self,
        sessions: list[SessionDescriptor],
        orchestrator: Orchestrator,
        *,
        store: CampaignStore | None = None,
        locks: LockManager | None = None,
        logger: Logger | None = None,
    ):
        self.sessions = sessions
        self.orchestrator = orchestrator

        self._logger = logger or logging.getLogger(__name__)
        self.store = store or CampaignStore(
            orchestrator.state_dir, logger=self._logger
        )
        self.locks = locks or LockManager(logger=self._logger)

    @property
    def lock_key(self) -> Path:
        return self.orchestrator.state_dir / CAMPAIGN_LOCK_NAME

    def status(self) -> CampaignState | None:
        """
        Get the persisted campaign state without locking.
        """
        return self.store.load()

    async def run(
        self,
        kind: CampaignKind,
        groups: list[str] | None,
        *,
        renew_all: bool = False,
    ) -> CampaignOutcome:
        """
        Start or continue a campaign.

        :param kind: Campaign kind
        :param groups: Groups or session names to select, `None` for all
        :param renew_all: Restart the campaign even if sessions are already done
        """
        outcome: CampaignOutcome | None = None

        async def work():
            nonlocal outcome
            outcome = await self._run_locked(
                CampaignKind(kind), _normalize_groups(groups), renew_all
            )

        if not await self.locks.acquire(
            self.lock_key, self.orchestrator.timing.lock_ttl, False, work
        ):
            self._logger.info("Another campaign is running, skipped")
            return CampaignOutcome(result=CampaignResult.BUSY)

        assert outcome is not None
        return outcome

    async def _run_locked(
        self,
        kind: CampaignKind,
        group_filter: list[str] | None,
        renew_all: bool,
    ) -> CampaignOutcome:
        state = self.store.load()

        if state is None or self._should_renew(
            state, kind, group_filter, renew_all
        ):
            selected = select_sessions(
                self.sessions, group_filter, mode=kind.mode, logger=self._logger
            )
            state = CampaignState.fresh(
                kind, group_filter, [s.name for s in selected]
            )
            self.store.save(state)

        if not state.stage_mapping:
            self._logger.warning("No groups found")
            return CampaignOutcome(result=CampaignResult.EMPTY, state=state)

        pending = state.pending
        if not pending:
            self._logger.info(
                f"Campaign {kind} all done, pass --renew to restart all"
            )
            return CampaignOutcome(
                result=CampaignResult.ALREADY_DONE, state=state
            )

        sessions = [s for s in self.sessions if s.name in pending]

        if missing := set(pending) - {s.name for s in sessions}:
            self._logger.warning(
                f"Sessions no longer configured: {', '.join(sorted(missing))}"
            )

        if not sessions:
            return CampaignOutcome(result=CampaignResult.EMPTY, state=state)

        async with _StageRecorder(self.store, state, logger=self._logger) as recorder:
            report = await self.orchestrator.sync(
                sessions,
                mode=kind.mode,
                force_unlock=True,
                pause_after=True,
                terminate_after=False,
                silent_errors=True,
                on_update=recorder.update,
            )

        return CampaignOutcome(
            result=CampaignResult.COMPLETED, state=state, report=report
        )

    def _should_renew(
        self,
        state: CampaignState,
        kind: CampaignKind,
        group_filter: list[str] | None,
        renew_all: bool,
    ) -> bool:
        if state.command is None:
            return True

        if state.command is not kind:
            if pending := state.pending:
                raise IncompatibleCampaignError(state.command, pending)

            self._logger.info(
                f"Campaign command changed: {state.command} -> {kind}"
            )
            return True

        return renew_all or state.group_filter != group_filter


class _StageRecorder:
    """
    Owns mutation of a {obj}`CampaignState`: updates from concurrent session
    handlers are queued and applied one at a time by a single task, which
    persists the state before the updating handler resumes.
    """

    _store: CampaignStore
    _state: CampaignState
    _queue: asyncio.Queue[
        tuple[str, Stage, Exception | None, asyncio.Future[None]] | None
    ]
    _task: asyncio.Task | None
    _logger: Logger

    def __init__(
        self,
        store: CampaignStore,
        state: CampaignState,
        *,
        logger: Logger,
    ):
        self._store = store
        self._state = state
        self._queue = asyncio.Queue()
        self._task = None
        self._logger = logger

    async def __aenter__(self) -> _StageRecorder:
        self._task = asyncio.create_task(self._consume())
        return self

    async def __aexit__(self, *_):
        assert self._task
        await self._queue.put(None)
        await self._task

    async def update(self, name: str, stage: Stage, error: Exception | None):
        """
        Record a transition; returns once it was persisted.
        """
        future: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )
        await self._queue.put((name, stage, error, future))
        await future

    async def _consume(self):
        while (item := await self._queue.get()) is not None:
            name, stage, error, future = item

            try:
                self._apply(name, Stage.ERROR if error else stage)
            except Exception as e:
                if future.done():
                    self._logger.error(f"Failed to record {name}: {e}")
                else:
                    future.set_exception(e)
            else:
                # the updating handler may have been cancelled meanwhile
                if not future.done():
                    future.set_result(None)

    def _apply(self, name: str, stage: Stage):
        mapping = self._state.stage_mapping

        if name not in mapping:
            raise ValueError(f"Unexpected session name: {name}")

        if mapping[name] is Stage.DONE and stage is not Stage.DONE:
            self._logger.warning(
                f"Ignoring transition of {name} from done to {stage}"
            )
            return

        mapping[name] = stage
        self._state.updated_at = format_time()
        self._store.save(self._state)


def _normalize_groups(groups: list[str] | None) -> list[str] | None:
    """
    Map an empty selection or `all` to `None`.
    """
    if not groups or groups == [ALL_GROUPS]:
        return None
    return list(groups)
