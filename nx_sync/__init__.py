"""
nx-sync: orchestration of resumable, multi-session Mutagen sync campaigns.
"""

from pyrollup import rollup

from . import core
from .core import *  # noqa

__all__ = rollup(core)

__canonical_children__ = [
    "core",
]
