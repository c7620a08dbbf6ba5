"""Constants and default values for filemutex.

This module centralizes the magic numbers, file names and environment
variable names used throughout the package.
"""

# ==================== LOCK FILE ====================

DEFAULT_LOCK_FILE: str = "lock.txt"
HOLDER_SUFFIX: str = ".info"  # Sidecar holding holder metadata (JSON)
GUARD_SUFFIX: str = ".guard"  # Sidecar taken around each read-check-write

# ==================== POLLING ====================

DEFAULT_POLL_INTERVAL: float = 1.0  # Seconds between state checks
GUARD_STALE_SECONDS: int = 30  # Lease guards are only held for one read-check-write
GUARD_RETRY_SECONDS: float = 0.01  # Release waits this long between guard attempts

# ==================== BACKENDS ====================

DEFAULT_LOCK_BACKEND: str = "auto"
LOCK_BACKENDS: tuple[str, ...] = ("auto", "fcntl", "lease", "none")

# ==================== DRIVER DEFAULTS ====================

DEFAULT_WORKERS: int = 2
DEFAULT_ITERATIONS: int = 10
DEFAULT_HOLD_SECONDS: float = 1.0
MAX_WORKERS: int = 256

# ==================== ENVIRONMENT ====================

ENV_LOCK_FILE: str = "FILEMUTEX_LOCK_FILE"
ENV_POLL_INTERVAL: str = "FILEMUTEX_POLL_INTERVAL"
ENV_TIMEOUT: str = "FILEMUTEX_TIMEOUT"
ENV_LOCK_BACKEND: str = "FILEMUTEX_LOCK_BACKEND"
ENV_STALE_THRESHOLD: str = "FILEMUTEX_STALE_THRESHOLD"

# ==================== LOGGING DEFAULTS ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB max per log file
LOG_FILE_BACKUP_COUNT: int = 5  # Number of backup log files to keep

# ==================== EXIT CODES ====================

EXIT_SUCCESS: int = 0
EXIT_FAILURE: int = 1
