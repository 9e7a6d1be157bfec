import asyncio
import logging
import shlex
from pathlib import Path

from pytest import fixture

from nx_sync import (
    BaseEngine,
    Endpoints,
    JobInfo,
    LiveStatus,
    Orchestrator,
    SessionDescriptor,
    SessionOptions,
    Timing,
    format_create_command,
)

logging.basicConfig(level=logging.WARNING)


class FakeEngine(BaseEngine):
    """
    In-memory engine which records calls and tracks concurrency of flushes.
    """

    jobs: list[JobInfo]
    """
    Live jobs; a name may appear more than once.
    """

    calls: list[tuple[str, str]]
    """
    Tuples of (operation, job name) in invocation order.
    """

    flush_errors: dict[str, Exception]
    flush_delay: float

    stuck: set[str]
    """
    Jobs which keep scanning after being flushed rather than watching.
    """

    active: int
    peak: int

    def __init__(self):
        self.jobs = []
        self.calls = []
        self.flush_errors = {}
        self.flush_delay = 0.0
        self.stuck = set()
        self.active = 0
        self.peak = 0
        self._next_id = 0

    def add_job(self, name: str, status: LiveStatus = LiveStatus.WATCHING):
        self._next_id += 1
        self.jobs.append(
            JobInfo(name=name, identifier=f"sync_{self._next_id}", status=status)
        )

    def names(self) -> list[str]:
        return [job.name for job in self.jobs]

    def ops(self, name: str) -> list[str]:
        """
        Get operations invoked for a job, in order.
        """
        return [op for op, job_name in self.calls if job_name == name]

    def describe_create(self, name: str, endpoints: Endpoints) -> str:
        return shlex.join(format_create_command(name, endpoints))

    async def create(self, name: str, endpoints: Endpoints):
        self.calls.append(("create", name))
        self.add_job(name, LiveStatus.CONNECTING)

    async def resume(self, name: str):
        self.calls.append(("resume", name))
        self._set_status(name, LiveStatus.SCANNING)

    async def flush(self, name: str):
        self.calls.append(("flush", name))

        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.flush_delay)
        finally:
            self.active -= 1

        if error := self.flush_errors.get(name):
            raise error

        self._set_status(
            name,
            LiveStatus.SCANNING if name in self.stuck else LiveStatus.WATCHING,
        )

    async def pause(self, name: str):
        self.calls.append(("pause", name))
        self._set_status(name, LiveStatus.PAUSED)

    async def terminate(self, name: str):
        self.calls.append(("terminate", name))
        self.jobs = [job for job in self.jobs if job.name != name]

    async def list(self) -> list[JobInfo]:
        return list(self.jobs)

    def _set_status(self, name: str, status: LiveStatus):
        self.jobs = [
            JobInfo(name=job.name, identifier=job.identifier, status=status)
            if job.name == name
            else job
            for job in self.jobs
        ]


def create_session(
    name: str,
    *groups: str,
    options: SessionOptions | None = None,
    **kwargs,
) -> SessionDescriptor:
    kwargs.setdefault("src", f"/home/me/{name}")
    kwargs.setdefault("dst", f"me@devhost:/home/me/{name}")

    return SessionDescriptor(
        name=name,
        options=options
        or SessionOptions(
            watch_polling_interval_alpha=120,
            watch_polling_interval_beta=1800,
        ),
        groups=groups,
        **kwargs,
    )


@fixture
def engine() -> FakeEngine:
    return FakeEngine()


@fixture
def timing() -> Timing:
    """
    Timing scaled down so that tests complete quickly.
    """
    return Timing(
        admission_poll=0.01,
        convergence_interval=0.01,
        convergence_required=2,
        convergence_timeout=2.0,
        lock_ttl=30.0,
    )


@fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@fixture
def orchestrator(
    engine: FakeEngine, state_dir: Path, timing: Timing
) -> Orchestrator:
    return Orchestrator(engine, state_dir, timing=timing)


@fixture
def sessions() -> list[SessionDescriptor]:
    return [
        create_session("a", "g1"),
        create_session("b", "g1", "g2"),
        create_session("c", "g2"),
    ]


@fixture
def make_session():
    """
    Factory for session descriptors with endpoints derived from the name.
    """
    return create_session
