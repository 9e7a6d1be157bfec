"""
Commands which act on jobs directly, bypassing locks and campaigns.
"""

from rich.table import Table
from typer import Argument, Context

from ..core import ControlCommand
from ._utils import (
    GROUPS_HELP,
    MODE_OPTION,
    console,
    get_root_context,
    logger,
    parse_mode,
    run_async,
)


def show(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    mode: str | None = MODE_OPTION,
):
    """
    Show job names of selected sessions and whether they exist
    """
    control = get_root_context(ctx).create_control()
    entries = run_async(control.show(groups, mode=parse_mode(mode)))

    for entry in entries:
        suffix = " [MISSING]" if entry.missing else ""
        console.print(f"{entry.name}{suffix}", markup=False)


def list_(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    mode: str | None = MODE_OPTION,
):
    """
    List live status of selected jobs
    """
    control = get_root_context(ctx).create_control()
    infos = run_async(control.list(groups, mode=parse_mode(mode)))

    table = Table("Name", "Identifier", "Status")
    for info in infos:
        table.add_row(info.name, info.identifier, str(info.status))

    console.print(table)


def pause(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    mode: str | None = MODE_OPTION,
):
    """
    Pause selected jobs
    """
    _apply(ctx, "pause", groups, mode)


def resume(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    mode: str | None = MODE_OPTION,
):
    """
    Resume selected jobs
    """
    _apply(ctx, "resume", groups, mode)


def terminate(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    mode: str | None = MODE_OPTION,
):
    """
    Terminate selected jobs
    """
    _apply(ctx, "terminate", groups, mode)


def _apply(
    ctx: Context, command: ControlCommand, groups: list[str], mode: str | None
):
    control = get_root_context(ctx).create_control()
    names = run_async(control.apply(command, groups, mode=parse_mode(mode)))

    logger.info(f"Done: {command} {len(names)} job(s)")
