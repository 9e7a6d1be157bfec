"""
Enumerations and value types shared across the orchestration layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

__all__ = [
    "Mode",
    "SyncMode",
    "LiveStatus",
    "Stage",
    "CampaignKind",
    "JobInfo",
]


class Mode(StrEnum):
    """
    Directional mode of a run; overrides the sync mode configured for a
    session.
    """

    ALPHA_TO_BETA = "alpha-to-beta"
    """Two-way sync where alpha wins all conflicts"""

    ALPHA_REPLICA = "alpha-replica"
    """Beta becomes an exact replica of alpha"""

    BETA_TO_ALPHA = "beta-to-alpha"
    """Two-way sync where beta wins all conflicts"""

    BETA_REPLICA = "beta-replica"
    """Alpha becomes an exact replica of beta"""

    SAFE = "safe"
    """Two-way sync without data loss"""

    @property
    def is_reversed(self) -> bool:
        """
        Whether alpha and beta swap roles under this mode.
        """
        return self in (Mode.BETA_TO_ALPHA, Mode.BETA_REPLICA)

    @property
    def sync_mode(self) -> SyncMode:
        """
        Engine sync mode implied by this directional mode.
        """
        return _SYNC_MODES[self]


class SyncMode(StrEnum):
    """
    Sync mode as understood by the engine.
    """

    TWO_WAY_SAFE = "two-way-safe"
    TWO_WAY_RESOLVED = "two-way-resolved"
    ONE_WAY_SAFE = "one-way-safe"
    ONE_WAY_REPLICA = "one-way-replica"


_SYNC_MODES: dict[Mode, SyncMode] = {
    Mode.ALPHA_TO_BETA: SyncMode.TWO_WAY_RESOLVED,
    Mode.ALPHA_REPLICA: SyncMode.ONE_WAY_REPLICA,
    Mode.BETA_TO_ALPHA: SyncMode.TWO_WAY_RESOLVED,
    Mode.BETA_REPLICA: SyncMode.ONE_WAY_REPLICA,
    Mode.SAFE: SyncMode.TWO_WAY_SAFE,
}


class LiveStatus(StrEnum):
    """
    Status of a job as reported by the engine.
    """

    NOT_EXISTS = "not-exists"
    PAUSED = "paused"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    WATCHING = "watching"


class Stage(StrEnum):
    """
    Orchestration-owned stage of a session within a campaign.
    """

    INIT = "init"
    FLUSHING = "flushing"
    DONE = "done"
    ERROR = "error"


class CampaignKind(StrEnum):
    """
    Kind of resumable multi-session campaign.
    """

    UPLOAD = "upload"
    DOWNLOAD = "download"

    @property
    def mode(self) -> Mode:
        """
        Directional mode used for every session of this campaign.
        """
        return (
            Mode.ALPHA_REPLICA
            if self is CampaignKind.UPLOAD
            else Mode.BETA_REPLICA
        )


@dataclass(frozen=True, kw_only=True)
class JobInfo:
    """
    Snapshot of a single job as listed by the engine.
    """

    name: str
    identifier: str
    status: LiveStatus
