"""Guard backends.

A guard is held across one read-check-write of the lock file and released
right after, which turns acquisition into a single atomic step for every
participant that takes the same guard. Guards never block: contention is
reported as ``None`` and the caller polls again, exactly like a lost race
on the lock file itself.

Backends:
- ``fcntl``: POSIX advisory ``flock`` on ``<lock file>.guard``.
- ``lease``: ``O_EXCL`` creation of ``<lock file>.guard`` holding JSON
  metadata; stale or corrupt leases are reclaimed.
- ``none``: no guard at all (the plain read-then-write protocol, racy
  across processes).
"""

from __future__ import annotations

import contextlib
import errno
import json
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from filemutex.core.constants import ENV_LOCK_BACKEND
from filemutex.core.locks.store import LockInfo, _utcnow_iso, _write_all

try:
    import fcntl
except ImportError:  # pragma: no cover - exercised on non-POSIX only
    fcntl = None

_FLOCK_UNSUPPORTED_ERRNOS = {
    err_no
    for err_no in (
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
        getattr(errno, "ENOSYS", None),
    )
    if err_no is not None
}


class LockBackendUnavailableError(OSError):
    """Raised when a backend exists but is unusable for the target guard path."""


class GuardHandle(Protocol):
    """Opaque backend-specific guard handle."""

    guard_path: Path
    guard_id: str


class LockBackend(Protocol):
    """Backend abstraction for the atomic guard."""

    name: str

    def acquire(self, guard_path: Path, stale_threshold_seconds: int) -> GuardHandle | None:
        """Try taking the guard non-blocking. Returns handle if taken."""

    def release(self, handle: GuardHandle) -> None:
        """Release guard held by handle."""


def is_process_running(pid: int) -> bool:
    """Return True if ``pid`` names a live process on this host."""
    if isinstance(pid, bool) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # EPERM means the process exists but we may not signal it.
        return True
    except OverflowError:
        return False
    except OSError as e:
        return e.errno == errno.EPERM


@dataclass
class FileGuardHandle:
    """Guard taken by one backend; ``fd`` is -1 when no file is held open."""

    guard_path: Path
    guard_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    fd: int = -1
    closed: bool = False

    def close_fd(self) -> None:
        if self.fd >= 0:
            with contextlib.suppress(OSError):
                os.close(self.fd)
            self.fd = -1


class FcntlFileLockBackend:
    """Guard taken with a non-blocking ``fcntl.flock`` on the guard file."""

    name = "fcntl"

    @staticmethod
    def is_supported() -> bool:
        return fcntl is not None

    def acquire(self, guard_path: Path, stale_threshold_seconds: int) -> FileGuardHandle | None:
        # The kernel drops flock locks with the holder; nothing can go stale.
        guard_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            handle = FileGuardHandle(guard_path, fd=os.open(str(guard_path), os.O_CREAT | os.O_RDWR, 0o600))
        except OSError:
            return None

        try:
            fcntl.flock(handle.fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            handle.close_fd()
            if isinstance(e, BlockingIOError) or e.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                return None
            if e.errno in _FLOCK_UNSUPPORTED_ERRNOS:
                raise LockBackendUnavailableError(f"flock is unsupported for guard path '{guard_path}'") from e
            raise
        return handle

    def release(self, handle: FileGuardHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        if handle.fd >= 0:
            with contextlib.suppress(OSError):
                fcntl.flock(handle.fd, fcntl.LOCK_UN)
        handle.close_fd()


class LeaseFileLockBackend:
    """Guard taken by exclusively creating the guard file.

    The file holds LockInfo JSON naming its creator, so a guard left by a
    dead process, or one older than the stale threshold, can be reclaimed.
    Used where ``flock`` is missing or unsupported (some network mounts).
    """

    name = "lease"
    acquire_attempts = 3
    unreadable_retry_attempts = 10
    unreadable_retry_sleep_seconds = 0.05

    def acquire(self, guard_path: Path, stale_threshold_seconds: int) -> FileGuardHandle | None:
        guard_path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(self.acquire_attempts):
            try:
                fd = os.open(str(guard_path), os.O_CREAT | os.O_EXCL | os.O_RDWR, 0o600)
            except FileExistsError:
                if self._reclaim(guard_path, stale_threshold_seconds):
                    continue
                return None
            except OSError:
                return None

            handle = FileGuardHandle(guard_path, fd=fd)
            try:
                payload = json.dumps(self._lease_info(handle.guard_id).to_dict(), sort_keys=True) + "\n"
                _write_all(fd, payload.encode("utf-8"))
                os.fsync(fd)
            except OSError:
                handle.close_fd()
                self._safe_unlink(guard_path)
                return None
            return handle

        return None

    def _reclaim(self, guard_path: Path, stale_threshold_seconds: int) -> bool:
        """Remove a corrupt or stale lease. True when another attempt is worthwhile."""
        lease = self._read_info_with_retries(guard_path)
        if lease is not None and not self._is_stale(lease, stale_threshold_seconds):
            return False
        return self._safe_unlink(guard_path)

    @staticmethod
    def _lease_info(guard_id: str) -> LockInfo:
        return LockInfo(
            lock_id=guard_id,
            pid=os.getpid(),
            host=socket.gethostname(),
            owner="",
            acquired_at=_utcnow_iso(),
            backend="lease",
        )

    def _read_info_with_retries(self, guard_path: Path) -> LockInfo | None:
        # A fresh lease is created empty and filled right after; give the writer a moment.
        for attempt in range(self.unreadable_retry_attempts + 1):
            info = self.read_info(guard_path)
            if info is not None or not guard_path.exists():
                return info
            if attempt < self.unreadable_retry_attempts:
                time.sleep(self.unreadable_retry_sleep_seconds)
        return None

    def release(self, handle: FileGuardHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        handle.close_fd()
        lease = self.read_info(handle.guard_path)
        if lease is not None and lease.lock_id == handle.guard_id:
            self._safe_unlink(handle.guard_path)

    @staticmethod
    def read_info(guard_path: Path) -> LockInfo | None:
        try:
            data = json.loads(guard_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return LockInfo.from_dict(data) if isinstance(data, dict) else None

    @staticmethod
    def _safe_unlink(guard_path: Path) -> bool:
        try:
            guard_path.unlink(missing_ok=True)
        except OSError:
            return False
        return True

    def _is_stale(self, info: LockInfo, stale_threshold_seconds: int) -> bool:
        if info.host == socket.gethostname() and not is_process_running(info.pid):
            return True
        acquired = info.acquired_datetime()
        if acquired is None:
            return True
        return (datetime.now(UTC) - acquired).total_seconds() > max(1, stale_threshold_seconds)


class NullLockBackend:
    """No guard: every attempt succeeds, leaving the read-then-write window open."""

    name = "none"

    def acquire(self, guard_path: Path, stale_threshold_seconds: int) -> FileGuardHandle:
        return FileGuardHandle(guard_path)

    def release(self, handle: FileGuardHandle) -> None:
        handle.closed = True


def create_lock_backend(
    backend_name: str | None = None,
    *,
    logger: logging.Logger | None = None,
) -> LockBackend:
    """Create guard backend from explicit value or environment override."""
    log = logger or logging.getLogger(__name__)
    requested = (backend_name or os.environ.get(ENV_LOCK_BACKEND, "auto")).strip().lower()

    if requested == "auto":
        if FcntlFileLockBackend.is_supported():
            return FcntlFileLockBackend()
        log.warning("fcntl locks unavailable; using lease lock backend")
        return LeaseFileLockBackend()

    if requested == "fcntl":
        if FcntlFileLockBackend.is_supported():
            return FcntlFileLockBackend()
        log.warning("Requested fcntl backend is unavailable; falling back to lease backend")
        return LeaseFileLockBackend()

    if requested == "lease":
        return LeaseFileLockBackend()

    if requested == "none":
        log.warning("Lock backend 'none' selected; acquisition is not atomic across processes")
        return NullLockBackend()

    log.warning("Unknown lock backend '%s'; falling back to auto selection", requested)
    return create_lock_backend("auto", logger=log)
