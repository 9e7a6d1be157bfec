"""
Direct control of jobs for a selection of sessions, without orchestration.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from logging import Logger
from typing import Literal

from .descriptor import SessionDescriptor, select_sessions
from .engine import BaseEngine
from .exceptions import EmptySelectionError
from .types import JobInfo, Mode

__all__ = [
    "ControlCommand",
    "JobEntry",
    "SessionControl",
]

ControlCommand = Literal["pause", "resume", "terminate"]


@dataclass(frozen=True, kw_only=True)
class JobEntry:
    """
    A selected job along with its live info, if it exists.
    """

    name: str
    info: JobInfo | None

    @property
    def missing(self) -> bool:
        return self.info is None


class SessionControl:
    """
    Lists, pauses, resumes or terminates the jobs of selected sessions.
    """

    engine: BaseEngine
    sessions: list[SessionDescriptor]
    _logger: Logger

    def __init__(
        self,
        engine: BaseEngine,
        sessions: list[SessionDescriptor],
        *,
        logger: Logger | None = None,
    ):
        self.engine = engine
        self.sessions = sessions
        self._logger = logger or logging.getLogger(__name__)

    async def show(
        self, groups: list[str] | None, *, mode: Mode | None = None
    ) -> list[JobEntry]:
        """
        Get each selected job and whether it exists; an empty selection
        yields no entries.
        """
        names = self._job_names(groups, mode)
        if not names:
            return []

        mapping = await self.engine.list_mapping()
        return [JobEntry(name=name, info=mapping.get(name)) for name in names]

    async def list(
        self, groups: list[str] | None, *, mode: Mode | None = None
    ) -> list[JobInfo]:
        """
        Get live info of selected jobs which exist.
        """
        return [entry.info for entry in await self._live(groups, mode)]

    async def apply(
        self,
        command: ControlCommand,
        groups: list[str] | None,
        *,
        mode: Mode | None = None,
    ) -> list[str]:
        """
        Run command against each selected job which exists; returns the
        affected job names.
        """
        handler = {
            "pause": self.engine.pause,
            "resume": self.engine.resume,
            "terminate": self.engine.terminate,
        }[command]

        names = [entry.name for entry in await self._live(groups, mode)]

        self._logger.info(f"Running {command}: {', '.join(names)}")
        await asyncio.gather(*(handler(name) for name in names))

        return names

    async def _live(
        self, groups: list[str] | None, mode: Mode | None
    ) -> list[JobEntry]:
        names = self._job_names(groups, mode)
        if not names:
            raise EmptySelectionError("No session matched selection")

        mapping = await self.engine.list_mapping()
        live = [
            JobEntry(name=name, info=mapping[name])
            for name in names
            if name in mapping
        ]

        if not live:
            raise EmptySelectionError("All sessions are missing")

        return live

    def _job_names(
        self, groups: list[str] | None, mode: Mode | None
    ) -> list[str]:
        return [
            session.job_name(mode)
            for session in select_sessions(
                self.sessions, groups, mode=mode, logger=self._logger
            )
        ]
