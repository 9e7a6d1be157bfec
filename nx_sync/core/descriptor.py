"""
Session descriptors as configured by the user, and selection of sessions by
group or name.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from logging import Logger
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from .types import Mode, SyncMode

__all__ = [
    "SessionOptions",
    "SessionDescriptor",
    "Endpoints",
    "normalize_job_name",
    "resolve_job_name",
    "select_sessions",
]

ALL_GROUPS = "all"
"""
Group name which selects every session.
"""


class SessionOptions(BaseModel):
    """
    Options passed to the engine when creating a job.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: SyncMode | None = None
    default_owner_alpha: str | None = None
    default_group_alpha: str | None = None
    default_owner_beta: str | None = None
    default_group_beta: str | None = None

    ignores: tuple[str, ...] = ()
    """
    Ignore patterns, passed to the engine in order.
    """

    watch_polling_interval_alpha: int | None = None
    """
    Polling interval of alpha in seconds.
    """

    watch_polling_interval_beta: int | None = None
    """
    Polling interval of beta in seconds.
    """

    def merged(self, defaults: SessionOptions) -> SessionOptions:
        """
        Get options with fields not explicitly set here taken from `defaults`.
        """
        return defaults.model_copy(update=self.model_dump(exclude_unset=True))

    def swapped(self) -> SessionOptions:
        """
        Get options with alpha and beta exchanged.
        """
        return self.model_copy(
            update={
                "default_owner_alpha": self.default_owner_beta,
                "default_group_alpha": self.default_group_beta,
                "default_owner_beta": self.default_owner_alpha,
                "default_group_beta": self.default_group_alpha,
                "watch_polling_interval_alpha": self.watch_polling_interval_beta,
                "watch_polling_interval_beta": self.watch_polling_interval_alpha,
            }
        )


class SessionDescriptor(BaseModel):
    """
    A named sync relationship between a source (alpha) and destination
    (beta). Immutable for the duration of a run.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    src: str
    dst: str
    options: SessionOptions = Field(default_factory=SessionOptions)
    groups: tuple[str, ...] = ()

    disabled_modes: tuple[Mode, ...] = ()
    """
    Directional modes under which this session is skipped.
    """

    def is_disabled(self, mode: Mode | None) -> bool:
        return mode is not None and mode in self.disabled_modes

    def matches(self, groups: Iterable[str]) -> bool:
        """
        Whether this session is selected by any of the given groups or names.
        """
        return any(g == self.name or g in self.groups for g in groups)

    def job_name(self, mode: Mode | None) -> str:
        return resolve_job_name(self.name, mode)

    def endpoints(self, mode: Mode | None) -> Endpoints:
        """
        Resolve alpha, beta and engine options under the given directional
        mode.
        """
        alpha, beta, options = self.src, self.dst, self.options

        if mode is not None:
            options = options.model_copy(update={"mode": mode.sync_mode})

            if mode.is_reversed:
                alpha, beta = beta, alpha
                options = options.swapped()

        return Endpoints(alpha=alpha, beta=beta, options=options)


@dataclass(frozen=True, kw_only=True)
class Endpoints:
    """
    Fully resolved arguments for creating a job.
    """

    alpha: str
    beta: str
    options: SessionOptions


def normalize_job_name(name: str) -> str:
    """
    Engine job names cannot contain underscores.
    """
    return name.replace("_", "-")


def resolve_job_name(name: str, mode: Mode | None) -> str:
    """
    Get the external job name of a session, distinct per directional mode so
    that runs in different modes never collide.
    """
    actual = f"{name}-{mode.value}" if mode is not None else name
    return normalize_job_name(actual)


def select_sessions(
    sessions: Iterable[SessionDescriptor],
    groups: list[str] | None,
    *,
    mode: Mode | None = None,
    logger: Logger | None = None,
) -> list[SessionDescriptor]:
    """
    Select sessions by group or name, in configuration order, skipping those
    disabled for `mode`. If `groups` is empty or `None`, all sessions are
    selected.
    """
    logger = logger or logging.getLogger(__name__)

    selected: list[SessionDescriptor] = []
    select_all = not groups or groups == [ALL_GROUPS]

    for session in sessions:
        if not (select_all or session.matches(groups or [])):
            continue

        if session.is_disabled(mode):
            logger.info(
                f"{session.job_name(mode)} skipped because disabled"
            )
            continue

        selected.append(session)

    return selected
