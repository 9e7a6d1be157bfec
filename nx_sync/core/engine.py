"""
Adapter to the external sync engine.
"""
from __future__ import annotations

import asyncio
import logging
import re
import shlex
from abc import ABC, abstractmethod
from logging import Logger

from .descriptor import Endpoints, SessionOptions, normalize_job_name
from .exceptions import EngineInvocationError
from .types import JobInfo, LiveStatus, SyncMode

__all__ = [
    "BaseEngine",
    "MutagenEngine",
    "format_create_command",
    "parse_list_output",
]

DEFAULT_SYNC_MODE = SyncMode.TWO_WAY_SAFE
"""
Sync mode used when neither the session nor the directional mode sets one.
"""

SEPARATOR_RE = re.compile(r"^-+$")

STATUS_MAP: dict[str, LiveStatus] = {
    "Watching for changes": LiveStatus.WATCHING,
    "[Paused]": LiveStatus.PAUSED,
    "Scanning files": LiveStatus.SCANNING,
}


class BaseEngine(ABC):
    """
    Interface to an engine which runs named sync jobs. All operations may be
    invoked concurrently for distinct names.
    """

    @abstractmethod
    def describe_create(self, name: str, endpoints: Endpoints) -> str:
        """
        Get the canonical text of the command which would create this job;
        used to detect option drift since the job was created.
        """
        ...

    @abstractmethod
    async def create(self, name: str, endpoints: Endpoints):
        ...

    @abstractmethod
    async def resume(self, name: str):
        ...

    @abstractmethod
    async def flush(self, name: str):
        """
        Block until the engine applied pending changes of this job.
        """
        ...

    @abstractmethod
    async def pause(self, name: str):
        ...

    @abstractmethod
    async def terminate(self, name: str):
        ...

    @abstractmethod
    async def list(self) -> list[JobInfo]:
        ...

    async def list_mapping(self) -> dict[str, JobInfo]:
        """
        Get live jobs keyed by name.
        """
        return {job.name: job for job in await self.list()}


class MutagenEngine(BaseEngine):
    """
    Engine implemented by invoking the `mutagen` executable.
    """

    _executable: str
    _logger: Logger

    def __init__(
        self, executable: str = "mutagen", *, logger: Logger | None = None
    ):
        self._executable = executable
        self._logger = logger or logging.getLogger(__name__)

    def describe_create(self, name: str, endpoints: Endpoints) -> str:
        return shlex.join(
            format_create_command(name, endpoints, executable=self._executable)
        )

    async def create(self, name: str, endpoints: Endpoints):
        argv = format_create_command(
            name, endpoints, executable=self._executable
        )
        await self._run(argv)

    async def resume(self, name: str):
        await self._sync_cmd("resume", name, tolerate_failure=True)

    async def flush(self, name: str):
        await self._sync_cmd("flush", name)

    async def pause(self, name: str):
        await self._sync_cmd("pause", name, tolerate_failure=True)

    async def terminate(self, name: str):
        await self._sync_cmd("terminate", name, tolerate_failure=True)

    async def list(self) -> list[JobInfo]:
        stdout = await self._run([self._executable, "sync", "list"])
        return parse_list_output(stdout)

    async def _sync_cmd(
        self, cmd: str, name: str, *, tolerate_failure: bool = False
    ):
        argv = [self._executable, "sync", cmd, normalize_job_name(name)]

        try:
            await self._run(argv)
        except EngineInvocationError as e:
            if not tolerate_failure:
                raise
            self._logger.debug(f"Ignoring failure of '{cmd}' for {name}: {e}")

    async def _run(self, argv: list[str]) -> str:
        self._logger.debug(f"Running: {shlex.join(argv)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineInvocationError(argv, None, str(e)) from e

        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            raise EngineInvocationError(
                argv, proc.returncode, stderr.decode(errors="replace")
            )

        return stdout.decode(errors="replace")


def format_create_command(
    name: str, endpoints: Endpoints, *, executable: str = "mutagen"
) -> list[str]:
    """
    Get argv of the command which creates a job.
    """
    assert name, "create requires name"
    assert endpoints.alpha, "create requires alpha"
    assert endpoints.beta, "create requires beta"

    options = endpoints.options

    argv = [
        executable,
        "sync",
        "create",
        f"--sync-mode={options.mode or DEFAULT_SYNC_MODE}",
        f"--name={normalize_job_name(name)}",
    ]
    argv += _optional_flags(
        options,
        "default_owner_alpha",
        "default_group_alpha",
        "default_owner_beta",
        "default_group_beta",
    )
    argv += [f"--ignore={pattern}" for pattern in options.ignores]
    argv += _optional_flags(
        options,
        "watch_polling_interval_alpha",
        "watch_polling_interval_beta",
    )
    argv += [endpoints.alpha, endpoints.beta]

    return argv


def parse_list_output(output: str) -> list[JobInfo]:
    """
    Parse output of `mutagen sync list`, e.g.:

    ```
    --------------------------------------------------------------------------------
    Name: code-lens
    Identifier: sync_OXV9ouDa8v5gaCmVkHC4wHgzp2QpXvVW5JOud6pQvBc
    Labels: None
    Alpha:
            URL: /Users/me/Projects/code-lens
            Connection state: Connected
    Beta:
            URL: me@devhost:/home/me/Projects/code-lens
            Connection state: Connected
    Status: Watching for changes
    --------------------------------------------------------------------------------
    ```

    Only top-level `Name`, `Identifier` and `Status` fields are used.
    """
    jobs: list[JobInfo] = []
    fields: dict[str, str] = {}

    def end_block():
        if "name" in fields:
            jobs.append(
                JobInfo(
                    name=fields["name"],
                    identifier=fields.get("identifier", ""),
                    status=_map_status(fields.get("status", "")),
                )
            )
        fields.clear()

    for line in output.splitlines():
        if SEPARATOR_RE.match(line.strip()):
            end_block()
            continue

        # nested fields are indented, e.g. under Alpha/Beta
        if line[:1].isspace():
            continue

        prop, sep, value = line.partition(":")
        if not sep:
            continue

        prop = prop.strip()
        if prop in ("Name", "Identifier", "Status"):
            fields[prop.lower()] = value.strip()

    end_block()
    return jobs


def _map_status(status: str) -> LiveStatus:
    if mapped := STATUS_MAP.get(status):
        return mapped

    if status.startswith("Connecting"):
        return LiveStatus.CONNECTING

    # transient states, e.g. staging or reconciling
    return LiveStatus.SCANNING


def _optional_flags(options: SessionOptions, *fields: str) -> list[str]:
    """
    Get a `--field-name=value` flag for each field which is set; unset fields
    are left to the engine's defaults.
    """
    flags: list[str] = []

    for field in fields:
        value = getattr(options, field)
        if value is not None:
            flags.append(f"--{field.replace('_', '-')}={value}")

    return flags
