"""
Persistent state: campaign progress and the command each job was last
created with.

Files are written to a temp file first and renamed into place, so readers
never observe a partially written file.
"""
from __future__ import annotations

import datetime
import logging
from logging import Logger
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .types import CampaignKind, Stage

__all__ = [
    "CampaignState",
    "CampaignStore",
    "CommandStore",
    "format_time",
]

CAMPAIGN_FILENAME = "session.json"
"""
Name of campaign state file within the state dir.
"""

COMMAND_FILENAME = "cmd"
"""
Name of the file within a job's folder recording its create command.
"""


class CampaignState(BaseModel):
    """
    Persisted progress of a campaign. The key set of `stage_mapping` is
    fixed when the campaign is (re)created.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    command: CampaignKind | None = None
    created_at: str
    updated_at: str

    group_filter: list[str] | None = None
    """
    Groups selected when the campaign was created, or `None` for all.
    """

    stage_mapping: dict[str, Stage] = Field(default_factory=dict)
    """
    Mapping of session name to stage.
    """

    @classmethod
    def fresh(
        cls,
        command: CampaignKind,
        group_filter: list[str] | None,
        names: list[str],
    ) -> CampaignState:
        now = format_time()
        return cls(
            command=command,
            created_at=now,
            updated_at=now,
            group_filter=group_filter,
            stage_mapping={name: Stage.INIT for name in names},
        )

    @property
    def pending(self) -> list[str]:
        """
        Names of sessions not yet done, in insertion order.
        """
        return [
            name
            for name, stage in self.stage_mapping.items()
            if stage is not Stage.DONE
        ]

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=4)


class CampaignStore:
    """
    Loads and saves {obj}`CampaignState` as JSON.
    """

    file_path: Path
    _logger: Logger

    def __init__(self, state_dir: Path, *, logger: Logger | None = None):
        self.file_path = state_dir / CAMPAIGN_FILENAME
        self._logger = logger or logging.getLogger(__name__)

    def load(self) -> CampaignState | None:
        """
        Load state; a missing or unreadable file is treated as no state.
        """
        try:
            text = self.file_path.read_text()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            self._logger.warning(
                f"Ignoring unreadable campaign state '{self.file_path}': {e}"
            )
            return None

        try:
            return CampaignState.model_validate_json(text)
        except ValidationError as e:
            self._logger.warning(
                f"Ignoring invalid campaign state '{self.file_path}': {e}"
            )
            return None

    def save(self, state: CampaignState):
        _write_atomic(self.file_path, state.to_json())
        self._logger.debug(f"Updated campaign state '{self.file_path}'")


class CommandStore:
    """
    Records the exact create command of each job, keyed by job name.
    """

    state_dir: Path

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    def read(self, job_name: str) -> str | None:
        try:
            return self._path(job_name).read_text()
        except FileNotFoundError:
            return None

    def write(self, job_name: str, command: str):
        _write_atomic(self._path(job_name), command)

    def _path(self, job_name: str) -> Path:
        return self.state_dir / job_name / COMMAND_FILENAME


def format_time(dt: datetime.datetime | None = None) -> str:
    return (dt or datetime.datetime.now()).strftime(r"%Y-%m-%d %H:%M:%S")


def _write_atomic(path: Path, text: str):
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_file = path.with_name(path.name + ".tmp")
    temp_file.write_text(text)
    temp_file.replace(path)
