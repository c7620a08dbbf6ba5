"""
filemutex - cross-process mutual exclusion through a shared lock file

Threads and processes that share nothing but a filesystem serialize a
critical section by polling a single "Ready"/"Wait" token.
"""

from filemutex.core.locks import (
    CrossProcessMutex,
    ExclusiveSection,
    LockHandle,
    LockInfo,
    LockState,
    LockStore,
)
from filemutex.core.version import __version__

__all__ = [
    "__version__",
    "CrossProcessMutex",
    "ExclusiveSection",
    "LockHandle",
    "LockInfo",
    "LockState",
    "LockStore",
]
