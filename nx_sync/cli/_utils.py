from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Coroutine, TypeVar

from click import BadParameter, Choice, Parameter
from rich.console import Console
from typer import Context, Exit, Option, Typer

from ..config import Config, load_config
from ..core import (
    ConfigError,
    LockManager,
    Mode,
    MutagenEngine,
    NxSyncError,
    Orchestrator,
    SessionControl,
    SessionDescriptor,
    WorkflowController,
)

T = TypeVar("T")

console = Console()

logger = logging.getLogger("nx-sync")

MODE_OPTION = Option(
    None,
    "--mode",
    "-m",
    help="Directional mode, overriding the sync mode of each session",
    show_choices=True,
    click_type=Choice([m.value for m in Mode]),
)

GROUPS_HELP = "Groups or session names to select; 'all' selects every session"


class MainTyper(Typer):
    """
    Top-level app with preconfigured settings.
    """

    def __init__(self, name: str, *, help: str):
        return super().__init__(
            name=name,
            help=help,
            rich_markup_mode="markdown",
            no_args_is_help=True,
            add_completion=False,
        )


@dataclass(kw_only=True)
class RootContext:
    """
    Encapsulates top-level options; config is loaded on first use so that
    commands like `init` work without one.
    """

    ctx: Context
    config_file: Path

    _config: Config | None = field(default=None, init=False)

    @property
    def config(self) -> Config:
        if self._config is None:
            try:
                self._config = load_config(self.config_file)
            except ConfigError as e:
                raise BadParameter(
                    str(e),
                    ctx=self.ctx,
                    param=lookup_param(self.ctx, "config_file"),
                )
        return self._config

    @property
    def sessions(self) -> list[SessionDescriptor]:
        try:
            return self.config.descriptors()
        except ConfigError as e:
            raise BadParameter(
                str(e),
                ctx=self.ctx,
                param=lookup_param(self.ctx, "config_file"),
            )

    def create_orchestrator(self) -> Orchestrator:
        return Orchestrator(
            MutagenEngine(self.config.mutagen, logger=logger),
            self.config.state_dir,
            locks=LockManager(logger=logger),
            console=console,
            logger=logger,
        )

    def create_controller(self) -> WorkflowController:
        return WorkflowController(
            self.sessions, self.create_orchestrator(), logger=logger
        )

    def create_control(self) -> SessionControl:
        return SessionControl(
            MutagenEngine(self.config.mutagen, logger=logger),
            self.sessions,
            logger=logger,
        )


def get_root_context(ctx: Context) -> RootContext:
    root_context = ctx.find_root().obj
    assert isinstance(root_context, RootContext)
    return root_context


def lookup_param(ctx: Context, name: str) -> Parameter:
    """
    Lookup param by name, searching parent commands as well.
    """
    current: Context | None = ctx
    while current is not None:
        param = next(
            (p for p in current.command.params if p.name == name), None
        )
        if param:
            return param
        current = current.parent

    assert False, f"Could not find param with name: {name}"


def parse_mode(value: str | None) -> Mode | None:
    return Mode(value) if value else None


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run coroutine to completion, exiting with code 1 upon errors raised by
    nx-sync itself.
    """
    try:
        return asyncio.run(coro)
    except NxSyncError as e:
        logger.error(str(e))
        raise Exit(1)
