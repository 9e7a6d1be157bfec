"""
Entry point of `nx-sync` CLI.

Typical usage:

- `nx-sync flush working`: bring up, flush and pause sessions in group `working`
- `nx-sync upload working`: replicate local to remote, resumable across restarts
- `nx-sync download working`: replicate remote to local, resumable across restarts
- `nx-sync status`: show progress of current campaign
"""

import logging
import os
from pathlib import Path

import dotenv
from click import UsageError, edit
from rich.logging import RichHandler
from typer import Context, Option

from ..config import DEFAULT_CONFIG_FILE, template_config
from . import control, sync
from ._utils import MainTyper, RootContext, console, get_root_context, logger

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_level=True,
            show_time=True,
            show_path=False,
        )
    ],
)

dotenv.load_dotenv()

app = MainTyper(
    "nx-sync",
    help="Orchestrate Mutagen sync sessions",
)


@app.callback()
def main(
    ctx: Context,
    config_file: Path = Option(
        DEFAULT_CONFIG_FILE,
        "--config",
        help=".yaml file containing sessions",
        envvar="NX_SYNC_CONFIG",
        dir_okay=False,
    ),
    verbose: bool = Option(False, "--verbose", "-v", help="Enable debug logs"),
):
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    ctx.obj = RootContext(ctx=ctx, config_file=config_file.expanduser())


@app.command()
def init(
    ctx: Context,
    overwrite: bool = Option(
        False, help="Whether to overwrite config file if it already exists"
    ),
):
    """
    Write an example config file
    """
    root_context = get_root_context(ctx)
    path = root_context.config_file

    if path.exists() and not overwrite:
        raise UsageError(
            f"Config file '{path}' exists and --overwrite was not passed",
            ctx=ctx,
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    template_config().dump_yaml(path)

    logger.info(f"Wrote config to '{path}'")


@app.command("edit")
def edit_(ctx: Context):
    """
    Open config file in editor
    """
    root_context = get_root_context(ctx)
    edit(filename=str(root_context.config_file), editor=os.environ.get("EDITOR"))


app.command()(sync.flush)
app.command()(sync.upload)
app.command()(sync.download)
app.command()(sync.status)
app.command()(sync.unlock)

app.command("show")(control.show)
app.command("list")(control.list_)
app.command()(control.pause)
app.command()(control.resume)
app.command()(control.terminate)


def run():
    app()


if __name__ == "__main__":
    app()
