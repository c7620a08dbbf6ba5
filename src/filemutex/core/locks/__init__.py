"""Locking subsystem for cross-process coordination.

This package keeps the lock file format, the guard backends and the
polling mutex behind a small API so callers only deal with
``CrossProcessMutex`` and ``ExclusiveSection``.
"""

from filemutex.core.locks.backends import (
    FcntlFileLockBackend,
    LeaseFileLockBackend,
    LockBackendUnavailableError,
    NullLockBackend,
    create_lock_backend,
)
from filemutex.core.locks.mutex import CrossProcessMutex, LockHandle
from filemutex.core.locks.section import ExclusiveSection
from filemutex.core.locks.store import LockInfo, LockState, LockStore

__all__ = [
    "CrossProcessMutex",
    "ExclusiveSection",
    "FcntlFileLockBackend",
    "LeaseFileLockBackend",
    "LockBackendUnavailableError",
    "LockHandle",
    "LockInfo",
    "LockState",
    "LockStore",
    "NullLockBackend",
    "create_lock_backend",
]
