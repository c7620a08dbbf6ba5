"""Custom exceptions for filemutex.

All exception classes carry the lock path they relate to so that a caller
juggling several locks can tell which one failed.
"""


class FileMutexError(Exception):
    """Base exception for all filemutex errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(FileMutexError):
    """Exception raised for configuration-related errors.

    Examples:
        - Non-numeric poll interval in the environment
        - Negative timeout
        - Unknown lock backend name
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class LockError(FileMutexError):
    """Base exception for lock file operations."""

    def __init__(
        self,
        message: str,
        lock_path: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.lock_path = lock_path
        self.original_error = original_error
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.lock_path:
            parts.append(f"lock file '{self.lock_path}'")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


class LockReadError(LockError):
    """Raised when the lock file exists but cannot be read.

    Acquisition treats this as "state unknown" and keeps polling.
    """


class LockNotFoundError(LockReadError):
    """Raised when the lock file does not exist.

    Recoverable: any participant may create the file later.
    """


class LockStateError(LockReadError):
    """Raised when the lock file holds a token that is neither Ready nor Wait."""

    def __init__(self, lock_path: str, token: str):
        self.token = token
        super().__init__("Unrecognized lock token", lock_path=lock_path, details=repr(token))


class LockWriteError(LockError):
    """Raised when the lock state or holder metadata cannot be persisted.

    Never absorbed: a silently failed write can leave the lock stuck in
    the Wait state with nobody able to release it.
    """


class LockTimeoutError(LockError):
    """Raised when acquisition does not succeed before the deadline."""

    def __init__(self, lock_path: str, timeout: float):
        self.timeout = timeout
        super().__init__("Timed out waiting for lock", lock_path=lock_path, details=f"after {timeout:g}s")


class LockCancelledError(LockError):
    """Raised when acquisition is abandoned because the cancel signal was set."""

    def __init__(self, lock_path: str):
        super().__init__("Lock acquisition cancelled", lock_path=lock_path)


class LockOwnershipError(LockError):
    """Raised when a release is attempted by a participant that does not hold the lock.

    Attributes:
        lock_id: Holder token presented by the caller
        holder_id: Holder token recorded in the lock metadata (None if unknown)
    """

    def __init__(self, lock_path: str, lock_id: str, holder_id: str | None = None, details: str | None = None):
        self.lock_id = lock_id
        self.holder_id = holder_id
        if details is None:
            details = f"held by {holder_id}, not {lock_id}" if holder_id else "current holder is unknown"
        super().__init__("Lock is not held by this caller", lock_path=lock_path, details=details)
