"""
Interface to configuration as persisted in .yaml file.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Self

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from .core import ConfigError, Mode, SessionDescriptor, SessionOptions, SyncMode
from .yaml_model import BaseYamlModel

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "Config",
    "RemoteConfig",
    "SessionConfig",
    "load_config",
    "template_config",
]

DEFAULT_CONFIG_FILE = Path("~/.nx-sync.yaml")

WORKING_GROUP = "working"
"""
Group implicitly added to sessions listed in `working`.
"""

DEFAULT_OPTIONS = SessionOptions(
    watch_polling_interval_alpha=120,
    watch_polling_interval_beta=1800,
)


class RemoteConfig(BaseModel):
    """
    Remote host used to expand home-relative destinations.
    """

    user: str
    host: str
    home: str

    def expand(self, path: str) -> str:
        """
        Map a path relative to the local home folder to the same path on the
        remote, e.g. `~/src` -> `me@devhost:/home/me/src`.
        """
        prefix = f"{self.user}@{self.host}:{self.home}"

        if path == "~":
            return prefix
        if path.startswith("~/"):
            return f"{prefix}/{path.removeprefix('~/')}"

        raise ValueError(f"cannot map '{path}' to remote: not relative to ~")


class SessionConfig(BaseModel):
    """
    A session as configured; `dst` defaults to `src` mapped to the remote.
    """

    name: str
    src: str
    dst: str | None = None
    options: SessionOptions = Field(default_factory=SessionOptions)
    groups: list[str] = Field(default_factory=list)
    disabled_modes: list[Mode] = Field(default_factory=list)


class Config(BaseYamlModel):
    """
    Encapsulates configuration of sessions and local state.
    """

    state_dir: Path = Path("~/.nx-sync")
    """
    Folder for locks, campaign state and recorded create commands.
    """

    mutagen: str = "mutagen"
    """
    Mutagen executable.
    """

    remote: RemoteConfig | None = None

    defaults: SessionOptions = DEFAULT_OPTIONS
    """
    Options applied to every session unless overridden.
    """

    working: list[str] = Field(default_factory=list)
    """
    Names of sessions to add to the `working` group.
    """

    sessions: list[SessionConfig] = Field(default_factory=list)

    @field_validator("state_dir", mode="before")
    def validate_state_dir(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            return Path(value).expanduser()
        return value

    @field_validator("defaults", mode="after")
    def validate_defaults(cls, value: SessionOptions) -> SessionOptions:
        return value.merged(DEFAULT_OPTIONS)

    @field_serializer("state_dir")
    def serialize_state_dir(self, value: Path) -> str:
        return str(value)

    @model_validator(mode="after")
    def validate_sessions(self) -> Self:
        names: set[str] = set()

        for session in self.sessions:
            if session.name in names:
                raise ValueError(f"duplicate session name: {session.name}")
            names.add(session.name)

            if session.dst is None and self.remote is None:
                raise ValueError(
                    f"session {session.name} has no dst and no remote is configured"
                )

        for name in self.working:
            if name not in names:
                raise ValueError(f"working name not found: {name}")

        return self

    def descriptors(self) -> list[SessionDescriptor]:
        """
        Get sessions with defaults applied.
        """
        descriptors: list[SessionDescriptor] = []

        for session in self.sessions:
            groups = list(session.groups)
            if session.name in self.working and WORKING_GROUP not in groups:
                groups.append(WORKING_GROUP)

            if session.dst is not None:
                dst = session.dst
            else:
                assert self.remote
                try:
                    dst = self.remote.expand(session.src)
                except ValueError as e:
                    raise ConfigError(f"session {session.name}: {e}") from e

            descriptors.append(
                SessionDescriptor(
                    name=session.name,
                    src=session.src,
                    dst=dst,
                    options=session.options.merged(self.defaults),
                    groups=tuple(groups),
                    disabled_modes=tuple(session.disabled_modes),
                )
            )

        return descriptors


def load_config(file: Path) -> Config:
    """
    Load config from .yaml file, raising {obj}`ConfigError` if it doesn't
    exist or is invalid.
    """
    file = file.expanduser()

    if not file.is_file():
        raise ConfigError(f"config file does not exist: {file}")

    try:
        return Config.load_yaml(file)
    except (ValueError, ValidationError) as e:
        raise ConfigError(f"failed to load config file '{file}': {e}") from e


def template_config() -> Config:
    """
    Get example config written by `nx-sync init`.
    """
    return Config(
        remote=RemoteConfig(user="me", host="devhost", home="/home/me"),
        defaults=SessionOptions(
            mode=SyncMode.TWO_WAY_RESOLVED,
            watch_polling_interval_alpha=120,
            watch_polling_interval_beta=1800,
        ),
        working=["example"],
        sessions=[
            SessionConfig(
                name="example",
                src="~/Projects/example",
                options=SessionOptions(
                    ignores=("/.git/index.lock", "/.git", "/log")
                ),
                groups=["core", "example"],
            ),
            SessionConfig(
                name="home",
                src="~/",
                dst="me@devhost:/home/me/home_bak/",
                options=SessionOptions(
                    mode=SyncMode.ONE_WAY_REPLICA,
                    ignores=("*", "!/.bashrc", "!/.gitconfig", "!/.ssh"),
                ),
                disabled_modes=[Mode.BETA_REPLICA, Mode.BETA_TO_ALPHA],
                groups=["core", "home"],
            ),
        ],
    )
