"""
Core orchestration: locking, engine adapter, lifecycle orchestrator and
resumable campaigns.
"""

from pyrollup import rollup

from . import (
    campaign,
    control,
    descriptor,
    engine,
    exceptions,
    lock,
    orchestrator,
    scheduling,
    state,
    types,
)
from .campaign import *  # noqa
from .control import *  # noqa
from .descriptor import *  # noqa
from .engine import *  # noqa
from .exceptions import *  # noqa
from .lock import *  # noqa
from .orchestrator import *  # noqa
from .scheduling import *  # noqa
from .state import *  # noqa
from .types import *  # noqa

__all__ = rollup(
    types,
    exceptions,
    descriptor,
    lock,
    engine,
    scheduling,
    state,
    orchestrator,
    campaign,
    control,
)

__canonical_children__ = [
    "types",
    "exceptions",
    "descriptor",
    "lock",
    "engine",
    "scheduling",
    "state",
    "orchestrator",
    "campaign",
    "control",
]
