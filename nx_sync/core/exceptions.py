__all__ = [
    "NxSyncError",
    "ConfigError",
    "LockBusyError",
    "EngineInvocationError",
    "EmptySelectionError",
    "IncompatibleCampaignError",
]


class NxSyncError(Exception):
    """
    Base class of errors raised by nx-sync; the CLI reports these without a
    traceback.
    """


class ConfigError(NxSyncError):
    """
    Raised when configuration is invalid, e.g. an unknown mode or a duplicate
    session name.
    """


class LockBusyError(NxSyncError):
    """
    Raised by {obj}`LockManager.locked` when the lock is held by another
    live holder.
    """

    key: str

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock is held by another process: {key}")


class EngineInvocationError(NxSyncError):
    """
    Raised when an invocation of the sync engine fails.
    """

    args_: list[str]
    returncode: int | None
    stderr: str

    def __init__(
        self, args: list[str], returncode: int | None, stderr: str = ""
    ):
        self.args_ = args
        self.returncode = returncode
        self.stderr = stderr.strip()

        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(
            f"Command '{' '.join(args)}' failed with code {returncode}{detail}"
        )


class EmptySelectionError(NxSyncError):
    """
    Raised when no sessions matched a requested group/name selection.
    """


class IncompatibleCampaignError(NxSyncError):
    """
    Raised when switching campaign kind while the previous campaign still has
    unfinished sessions.
    """

    command: str
    pending: list[str]

    def __init__(self, command: str, pending: list[str]):
        self.command = command
        self.pending = pending
        super().__init__(
            f"Previous campaign '{command}' not complete: {','.join(pending)}"
        )
