import asyncio
import os
import time
from pathlib import Path

from pytest import mark, raises

from nx_sync import LockBusyError, LockManager, LockRecord


def _write_record(path: Path, *, expires_in: float):
    now = time.time()
    record = LockRecord(
        holder="other",
        pid=os.getpid() + 1,
        host="otherhost",
        acquired_at=now,
        expires_at=now + expires_in,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(record.model_dump_json())


@mark.asyncio
async def test_acquire(tmp_path: Path):
    locks = LockManager()
    key = tmp_path / "job"
    lock_path = tmp_path / "job.lock"

    seen: list[str] = []

    async def work():
        holder = locks.holder(key)
        assert holder is not None
        assert holder.pid == os.getpid()
        seen.append(holder.holder)

    assert await locks.acquire(key, 30.0, False, work)
    assert len(seen) == 1

    # released afterward
    assert not lock_path.exists()
    assert locks.holder(key) is None


@mark.asyncio
async def test_exclusive(tmp_path: Path):
    """
    Concurrent claims on the same key: at most one holder at a time.
    """
    locks = LockManager()
    key = tmp_path / "job"

    holders = 0
    peak = 0
    ran = 0

    async def work():
        nonlocal holders, peak, ran
        holders += 1
        peak = max(peak, holders)
        await asyncio.sleep(0.05)
        holders -= 1
        ran += 1

    results = await asyncio.gather(
        *(locks.acquire(key, 30.0, False, work) for _ in range(5))
    )

    assert results.count(True) == ran == 1
    assert peak == 1


@mark.asyncio
async def test_busy(tmp_path: Path):
    locks = LockManager()
    key = tmp_path / "job"
    _write_record(tmp_path / "job.lock", expires_in=60.0)

    async def work():
        assert False, "work should not run"

    assert not await locks.acquire(key, 30.0, False, work)

    # record of other holder untouched
    holder = locks.holder(key)
    assert holder is not None
    assert holder.holder == "other"

    with raises(LockBusyError):
        async with locks.locked(key, 30.0):
            pass


@mark.asyncio
async def test_stale(tmp_path: Path):
    """
    A lock whose TTL elapsed is seized.
    """
    locks = LockManager()
    key = tmp_path / "job"
    _write_record(tmp_path / "job.lock", expires_in=-1.0)

    async with locks.locked(key, 30.0) as record:
        holder = locks.holder(key)
        assert holder is not None
        assert holder.holder == record.holder

    assert locks.holder(key) is None


@mark.asyncio
async def test_force_unlock(tmp_path: Path):
    locks = LockManager()
    key = tmp_path / "job"
    _write_record(tmp_path / "job.lock", expires_in=60.0)

    ran = False

    async def work():
        nonlocal ran
        ran = True

    assert await locks.acquire(key, 30.0, True, work)
    assert ran
    assert locks.holder(key) is None


@mark.asyncio
async def test_release_on_error(tmp_path: Path):
    locks = LockManager()
    key = tmp_path / "job"

    async def work():
        raise RuntimeError("failed")

    with raises(RuntimeError, match="failed"):
        await locks.acquire(key, 30.0, False, work)

    assert locks.holder(key) is None
    assert not (tmp_path / "job.lock").exists()


@mark.asyncio
async def test_refresh(tmp_path: Path):
    """
    Expiry is extended while work runs.
    """
    locks = LockManager()
    key = tmp_path / "job"
    ttl = 0.3

    async with locks.locked(key, ttl) as record:
        await asyncio.sleep(ttl * 1.5)

        current = locks.holder(key)
        assert current is not None
        assert current.holder == record.holder
        assert current.expires_at > record.expires_at
        assert not current.expired


@mark.asyncio
async def test_unreadable(tmp_path: Path):
    """
    An unreadable record is treated as busy until it's older than the TTL.
    """
    locks = LockManager()
    key = tmp_path / "job"
    lock_path = tmp_path / "job.lock"
    lock_path.write_text("")

    async def work():
        pass

    assert not await locks.acquire(key, 30.0, False, work)

    old = time.time() - 60.0
    os.utime(lock_path, (old, old))

    assert await locks.acquire(key, 30.0, False, work)


def test_force_release(tmp_path: Path):
    locks = LockManager()
    key = tmp_path / "job"

    assert not locks.force_release(key)

    _write_record(tmp_path / "job.lock", expires_in=60.0)
    assert locks.force_release(key)
    assert locks.holder(key) is None
