"""
Commands which bring up sessions: one-shot flush and resumable campaigns.
"""

from click import BadParameter
from typer import Argument, Context, Exit, Option

from ..core import (
    CampaignKind,
    CampaignOutcome,
    CampaignResult,
    Mode,
    Stage,
    resolve_job_name,
    select_sessions,
)
from ._utils import (
    GROUPS_HELP,
    MODE_OPTION,
    console,
    get_root_context,
    logger,
    lookup_param,
    parse_mode,
    run_async,
)

REPLICA_COMMANDS = {
    Mode.ALPHA_REPLICA: CampaignKind.UPLOAD,
    Mode.BETA_REPLICA: CampaignKind.DOWNLOAD,
}


def flush(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    force: bool = Option(
        False, "--force", "-f", help="Seize session locks held by others"
    ),
    pause: bool = Option(True, help="Pause sessions after they converged"),
    terminate: bool = Option(
        False, help="Terminate sessions after they converged"
    ),
    recreate: bool = Option(
        False, help="Terminate and recreate sessions which already exist"
    ),
    concurrency: int = Option(
        5, min=1, help="Maximum number of sessions brought up concurrently"
    ),
    mode: str | None = MODE_OPTION,
):
    """
    Bring up and flush sessions, then pause them
    """
    root_context = get_root_context(ctx)
    actual_mode = parse_mode(mode)

    if actual_mode in REPLICA_COMMANDS:
        command = REPLICA_COMMANDS[actual_mode]
        raise BadParameter(
            f"use `nx-sync {command} {' '.join(groups)}` instead for {actual_mode}",
            ctx=ctx,
            param=lookup_param(ctx, "mode"),
        )

    sessions = select_sessions(
        root_context.sessions, groups, mode=actual_mode, logger=logger
    )
    orchestrator = root_context.create_orchestrator()

    logger.info("Sync begin")
    report = run_async(
        orchestrator.sync(
            sessions,
            mode=actual_mode,
            concurrency=concurrency,
            force_unlock=force,
            force_recreate=recreate,
            pause_after=pause,
            terminate_after=terminate,
        )
    )
    logger.info(
        f"Done: {len(report.started)} started, {len(report.busy)} busy"
    )


def upload(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    renew: bool = Option(
        False, help="Restart campaign even if sessions are already done"
    ),
):
    """
    Replicate local to remote, continuing an unfinished upload
    """
    _run_campaign(ctx, CampaignKind.UPLOAD, groups, renew)


def download(
    ctx: Context,
    groups: list[str] = Argument(help=GROUPS_HELP),
    renew: bool = Option(
        False, help="Restart campaign even if sessions are already done"
    ),
):
    """
    Replicate remote to local, continuing an unfinished download
    """
    _run_campaign(ctx, CampaignKind.DOWNLOAD, groups, renew)


def status(ctx: Context):
    """
    Show progress of current campaign
    """
    root_context = get_root_context(ctx)
    state = root_context.create_controller().status()

    if state is None:
        logger.info("No campaign found")
        return

    console.print_json(state.to_json())


def unlock(
    ctx: Context,
    name: str | None = Argument(
        None, help="Session whose lock to remove"
    ),
    campaign: bool = Option(
        False, help="Remove the campaign lock instead of a session lock"
    ),
    mode: str | None = MODE_OPTION,
):
    """
    Force-unlock a stuck session or campaign
    """
    root_context = get_root_context(ctx)
    controller = root_context.create_controller()
    locks = controller.locks

    if campaign:
        key = controller.lock_key
    elif name:
        key = controller.orchestrator.lock_key(
            resolve_job_name(name, parse_mode(mode))
        )
    else:
        raise BadParameter(
            "either a session name or --campaign is required",
            ctx=ctx,
            param=lookup_param(ctx, "name"),
        )

    if not locks.force_release(key):
        logger.info(f"Not locked: {key}")


def _run_campaign(
    ctx: Context, kind: CampaignKind, groups: list[str], renew: bool
):
    root_context = get_root_context(ctx)
    controller = root_context.create_controller()

    outcome: CampaignOutcome = run_async(
        controller.run(kind, groups, renew_all=renew)
    )

    if outcome.result is CampaignResult.COMPLETED:
        assert outcome.state

        failed = [
            name
            for name, stage in outcome.state.stage_mapping.items()
            if stage is Stage.ERROR
        ]
        if failed:
            logger.error(f"Failed sessions: {', '.join(failed)}")
            raise Exit(1)

        logger.info(f"Campaign {kind}: {len(outcome.state.pending)} pending")
