"""Configuration dataclasses for filemutex.

These dataclasses centralize the tunables of the lock and the driver so
they can be built from command-line arguments, from the environment, or
directly in code.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from filemutex.core.constants import (
    DEFAULT_HOLD_SECONDS,
    DEFAULT_ITERATIONS,
    DEFAULT_LOCK_BACKEND,
    DEFAULT_LOCK_FILE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WORKERS,
    ENV_LOCK_BACKEND,
    ENV_LOCK_FILE,
    ENV_POLL_INTERVAL,
    ENV_STALE_THRESHOLD,
    ENV_TIMEOUT,
    LOCK_BACKENDS,
    MAX_WORKERS,
)
from filemutex.core.exceptions import ConfigurationError


def _parse_float(value: str, field_name: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid number for {field_name}", field=field_name, details=repr(value)) from e


def _parse_optional_float(value: str | None, field_name: str) -> float | None:
    if value is None or value.strip().lower() in ("", "none"):
        return None
    return _parse_float(value, field_name)


@dataclass
class LockConfig:
    """Configuration for a CrossProcessMutex.

    Attributes:
        lock_path: Lock file holding the Ready/Wait token (default: lock.txt)
        poll_interval: Seconds between state checks while waiting (default: 1.0)
        timeout: Seconds to wait before giving up, None waits forever (default: None)
        backend: Guard backend name: auto, fcntl, lease or none (default: auto)
        stale_threshold_seconds: Age after which a Wait lock is reclaimable (default: None)
        recover_abandoned: Reclaim locks whose local holder process is gone (default: True)
    """

    lock_path: Path = field(default_factory=lambda: Path(DEFAULT_LOCK_FILE))
    poll_interval: float = DEFAULT_POLL_INTERVAL
    timeout: float | None = None
    backend: str = DEFAULT_LOCK_BACKEND
    stale_threshold_seconds: float | None = None
    recover_abandoned: bool = True

    def validate(self) -> LockConfig:
        """Raise ConfigurationError for out-of-range values, return self otherwise."""
        if self.poll_interval <= 0:
            raise ConfigurationError(
                "Poll interval must be positive", field="poll_interval", details=str(self.poll_interval)
            )
        if self.timeout is not None and self.timeout < 0:
            raise ConfigurationError("Timeout must not be negative", field="timeout", details=str(self.timeout))
        if self.stale_threshold_seconds is not None and self.stale_threshold_seconds <= 0:
            raise ConfigurationError(
                "Stale threshold must be positive",
                field="stale_threshold_seconds",
                details=str(self.stale_threshold_seconds),
            )
        if self.backend.strip().lower() not in LOCK_BACKENDS:
            raise ConfigurationError(
                "Unknown lock backend",
                field="backend",
                details=f"{self.backend!r} (expected one of {', '.join(LOCK_BACKENDS)})",
            )
        return self

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, load_env_file: bool = True) -> LockConfig:
        """Build a config from FILEMUTEX_* variables.

        Args:
            env: Mapping to read instead of os.environ
            load_env_file: Load a .env file into os.environ first

        Returns:
            Validated LockConfig
        """
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True))
        source = os.environ if env is None else env

        config = cls()
        if source.get(ENV_LOCK_FILE):
            config.lock_path = Path(source[ENV_LOCK_FILE])
        if source.get(ENV_POLL_INTERVAL):
            config.poll_interval = _parse_float(source[ENV_POLL_INTERVAL], "poll_interval")
        if ENV_TIMEOUT in source:
            config.timeout = _parse_optional_float(source[ENV_TIMEOUT], "timeout")
        if source.get(ENV_LOCK_BACKEND):
            config.backend = source[ENV_LOCK_BACKEND].strip().lower()
        if ENV_STALE_THRESHOLD in source:
            config.stale_threshold_seconds = _parse_optional_float(
                source[ENV_STALE_THRESHOLD], "stale_threshold_seconds"
            )
        return config.validate()

    def with_overrides(self, **overrides: Any) -> LockConfig:
        """Return a copy with every non-None override applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values).validate()


@dataclass
class DriverConfig:
    """Configuration for the concurrent driver.

    Attributes:
        label: Free-text identifier of this driver instance, used in logs
        workers: Concurrent caller threads (default: 2)
        iterations: Critical sections submitted per worker (default: 10)
        hold_seconds: Duration of each simulated critical section (default: 1.0)
    """

    label: str
    workers: int = DEFAULT_WORKERS
    iterations: int = DEFAULT_ITERATIONS
    hold_seconds: float = DEFAULT_HOLD_SECONDS

    def validate(self) -> DriverConfig:
        if not 1 <= self.workers <= MAX_WORKERS:
            raise ConfigurationError(
                f"Workers must be between 1 and {MAX_WORKERS}", field="workers", details=str(self.workers)
            )
        if self.iterations < 1:
            raise ConfigurationError("Iterations must be at least 1", field="iterations", details=str(self.iterations))
        if self.hold_seconds < 0:
            raise ConfigurationError(
                "Hold duration must not be negative", field="hold_seconds", details=str(self.hold_seconds)
            )
        return self

    @property
    def total_sections(self) -> int:
        return self.workers * self.iterations
