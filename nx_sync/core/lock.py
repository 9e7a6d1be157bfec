"""
File-based exclusive locks with TTL.

A lock over key `k` is a record file `k.lock` created exclusively with
`O_CREAT | O_EXCL`. Acquisition is a single non-blocking attempt; a record
whose TTL has elapsed is considered abandoned by a crashed process and may be
seized, as may any record when `force_unlock` is requested. While the guarded
work runs, the record's expiry is periodically extended so that long-running
work is not mistaken for a crashed holder.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
import time
import uuid
from contextlib import asynccontextmanager
from logging import Logger
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from .exceptions import LockBusyError

__all__ = [
    "DEFAULT_LOCK_TTL",
    "LockRecord",
    "LockManager",
]

DEFAULT_LOCK_TTL = 5 * 60.0
"""
Default time in seconds after which an unrefreshed lock is considered stale.
"""

LOCK_SUFFIX = ".lock"


class LockRecord(BaseModel):
    """
    Contents of a lock file.
    """

    holder: str
    """
    Unique token of the claim.
    """

    pid: int
    host: str
    acquired_at: float
    expires_at: float

    @classmethod
    def new(cls, ttl: float) -> LockRecord:
        now = time.time()
        return cls(
            holder=uuid.uuid4().hex,
            pid=os.getpid(),
            host=socket.gethostname(),
            acquired_at=now,
            expires_at=now + ttl,
        )

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at

    def __str__(self) -> str:
        return f"pid {self.pid}@{self.host}"


class LockManager:
    """
    Hands out named, TTL-scoped exclusive claims backed by the filesystem.
    """

    _logger: Logger

    def __init__(self, *, logger: Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    async def acquire(
        self,
        key: str | Path,
        ttl: float,
        force_unlock: bool,
        work: Callable[[], Awaitable[Any]],
    ) -> bool:
        """
        Run `work` while holding the lock over `key`.

        Returns `False` without running `work` if the lock is held by a live
        holder, else `True` once `work` completed. Exceptions raised by
        `work` propagate after the lock is released.
        """
        path = _lock_path(key)
        record = self._claim(path, ttl, force_unlock)

        if record is None:
            return False

        async with self._held(path, record, ttl):
            await work()

        return True

    @asynccontextmanager
    async def locked(
        self, key: str | Path, ttl: float, *, force_unlock: bool = False
    ) -> AsyncIterator[LockRecord]:
        """
        Context manager variant of {obj}`LockManager.acquire`, raising
        {obj}`LockBusyError` if the lock could not be obtained.
        """
        path = _lock_path(key)
        record = self._claim(path, ttl, force_unlock)

        if record is None:
            raise LockBusyError(str(key))

        async with self._held(path, record, ttl):
            yield record

    def holder(self, key: str | Path) -> LockRecord | None:
        """
        Get the current record of a lock, if any.
        """
        return _read_record(_lock_path(key))

    def force_release(self, key: str | Path) -> bool:
        """
        Remove a lock regardless of its holder. Returns whether a lock
        existed.
        """
        path = _lock_path(key)
        record = _read_record(path)

        try:
            path.unlink()
        except FileNotFoundError:
            return False

        self._logger.warning(f"Force released lock '{path}' held by {record}")
        return True

    def _claim(
        self, path: Path, ttl: float, force_unlock: bool
    ) -> LockRecord | None:
        """
        Single attempt to claim the lock; returns the new record on success.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        record = LockRecord.new(ttl)

        if _create_record(path, record):
            self._logger.debug(f"Acquired lock '{path}'")
            return record

        existing = _read_record(path)

        if not force_unlock:
            if existing is not None and not existing.expired:
                return None

            # record is unreadable while its creator is still writing it
            if existing is None and not _older_than(path, ttl):
                return None

        reason = "forced" if force_unlock else "stale"
        self._logger.warning(
            f"Seizing lock '{path}' held by {existing} ({reason})"
        )

        if not self._evict(path, existing):
            return None

        if _create_record(path, record):
            return record

        return None

    def _evict(self, path: Path, expected: LockRecord | None) -> bool:
        """
        Move the lock file out of the way, restoring it if it turned out to
        be a different claim than the one observed.
        """
        tomb = path.with_name(f"{path.name}.{uuid.uuid4().hex}.evicted")

        try:
            os.rename(path, tomb)
        except FileNotFoundError:
            return True

        evicted = _read_record(tomb)

        try:
            if expected is not None and (
                evicted is None or evicted.holder != expected.holder
            ):
                # lost a race with another evictor which already re-claimed
                with contextlib.suppress(FileExistsError):
                    os.link(tomb, path)
                return False
            return True
        finally:
            tomb.unlink(missing_ok=True)

    @asynccontextmanager
    async def _held(
        self, path: Path, record: LockRecord, ttl: float
    ) -> AsyncIterator[None]:
        refresher = asyncio.create_task(self._refresh(path, record, ttl))

        try:
            yield
        finally:
            refresher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await refresher
            self._release(path, record)

    async def _refresh(self, path: Path, record: LockRecord, ttl: float):
        """
        Extend the expiry of a held lock every third of its TTL.
        """
        while True:
            await asyncio.sleep(ttl / 3)

            current = _read_record(path)
            if current is None or current.holder != record.holder:
                self._logger.warning(f"Lock '{path}' was taken over")
                return

            _write_record(
                path,
                current.model_copy(update={"expires_at": time.time() + ttl}),
            )

    def _release(self, path: Path, record: LockRecord):
        current = _read_record(path)

        if current is None or current.holder != record.holder:
            self._logger.warning(
                f"Not releasing lock '{path}': now held by {current}"
            )
            return

        path.unlink(missing_ok=True)
        self._logger.debug(f"Released lock '{path}'")


def _lock_path(key: str | Path) -> Path:
    key_path = Path(key).expanduser()
    return key_path.with_name(key_path.name + LOCK_SUFFIX)


def _create_record(path: Path, record: LockRecord) -> bool:
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False

    with os.fdopen(fd, "w") as fh:
        fh.write(record.model_dump_json())

    return True


def _write_record(path: Path, record: LockRecord):
    temp_file = path.with_name(f"{path.name}.{record.holder}.tmp")
    temp_file.write_text(record.model_dump_json())
    temp_file.replace(path)


def _read_record(path: Path) -> LockRecord | None:
    try:
        return LockRecord.model_validate_json(path.read_text())
    except (FileNotFoundError, ValidationError):
        return None


def _older_than(path: Path, seconds: float) -> bool:
    try:
        return time.time() - path.stat().st_mtime >= seconds
    except FileNotFoundError:
        return True
