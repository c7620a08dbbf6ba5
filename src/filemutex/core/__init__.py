"""Core module - Foundation components with no internal dependencies.

This module provides the basic building blocks used throughout the package:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
"""

from filemutex.core.version import __version__

from filemutex.core.exceptions import (
    FileMutexError,
    ConfigurationError,
    LockError,
    LockReadError,
    LockNotFoundError,
    LockStateError,
    LockWriteError,
    LockTimeoutError,
    LockCancelledError,
    LockOwnershipError,
)

from filemutex.core.config import (
    LockConfig,
    DriverConfig,
)

from filemutex.core.constants import (
    DEFAULT_LOCK_FILE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_LOCK_BACKEND,
    LOCK_BACKENDS,
    DEFAULT_WORKERS,
    DEFAULT_ITERATIONS,
    DEFAULT_HOLD_SECONDS,
    MAX_WORKERS,
)

__all__ = [
    # Version
    '__version__',
    # Exceptions
    'FileMutexError',
    'ConfigurationError',
    'LockError',
    'LockReadError',
    'LockNotFoundError',
    'LockStateError',
    'LockWriteError',
    'LockTimeoutError',
    'LockCancelledError',
    'LockOwnershipError',
    # Config dataclasses
    'LockConfig',
    'DriverConfig',
    # Constants
    'DEFAULT_LOCK_FILE',
    'DEFAULT_POLL_INTERVAL',
    'DEFAULT_LOCK_BACKEND',
    'LOCK_BACKENDS',
    'DEFAULT_WORKERS',
    'DEFAULT_ITERATIONS',
    'DEFAULT_HOLD_SECONDS',
    'MAX_WORKERS',
]
