"""Polling mutex over a shared lock file."""

from __future__ import annotations

import contextlib
import logging
import socket
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from filemutex.core.config import LockConfig
from filemutex.core.constants import DEFAULT_POLL_INTERVAL, GUARD_RETRY_SECONDS, GUARD_STALE_SECONDS, GUARD_SUFFIX
from filemutex.core.exceptions import (
    LockCancelledError,
    LockNotFoundError,
    LockOwnershipError,
    LockReadError,
    LockTimeoutError,
    LockWriteError,
)
from filemutex.core.locks.backends import (
    FcntlFileLockBackend,
    GuardHandle,
    LeaseFileLockBackend,
    LockBackendUnavailableError,
    create_lock_backend,
    is_process_running,
)
from filemutex.core.locks.store import LockInfo, LockState, LockStore


@dataclass
class _PathMonitor:
    """In-process monitor for one lock file and the token of the handle holding it."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    holder_id: str | None = None


# One monitor per lock file per process, shared by every mutex on that path.
_monitors: dict[str, _PathMonitor] = {}
_monitors_guard = threading.Lock()


def _monitor_for(lock_path: Path) -> _PathMonitor:
    key = str(lock_path.resolve())
    with _monitors_guard:
        monitor = _monitors.get(key)
        if monitor is None:
            monitor = _monitors[key] = _PathMonitor()
        return monitor


@dataclass
class LockHandle:
    """Proof of a successful acquire, required to release."""

    lock_path: Path
    lock_id: str
    owner: str
    acquired_at: str
    released: bool = False


class _Deadline:
    def __init__(self, timeout: float | None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + max(0.0, timeout)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class CrossProcessMutex:
    """Mutual exclusion between threads and processes sharing one lock file.

    ``acquire`` polls the lock file until it reads ``Ready``, then writes
    ``Wait``; ``release`` writes ``Ready`` back. Within a process, callers
    are serialized by an in-process monitor before they ever touch the
    file. Across processes, each read-check-write runs under a short-lived
    guard (see ``backends``) so two participants cannot both observe
    ``Ready`` and both claim the lock.

    Usage:
        mutex = CrossProcessMutex(Path("lock.txt"), owner="worker-1")
        handle = mutex.acquire(timeout=30)
        try:
            ...
        finally:
            mutex.release(handle)

    Args:
        lock_path: Lock file holding the Ready/Wait token
        owner: Free-text label recorded as holder metadata
        poll_interval: Seconds between state checks while waiting
        backend_name: Guard backend ("auto", "fcntl", "lease", "none")
        stale_threshold_seconds: Age after which a Wait lock may be reclaimed
        recover_abandoned: Reclaim locks whose holder process on this host is gone
        logger: Logger to use instead of the module logger
    """

    def __init__(
        self,
        lock_path: Path | str,
        *,
        owner: str = "",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        backend_name: str | None = None,
        stale_threshold_seconds: float | None = None,
        recover_abandoned: bool = True,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.store = LockStore(lock_path)
        self.lock_path = self.store.lock_path
        self.guard_path = self.lock_path.with_name(f"{self.lock_path.name}{GUARD_SUFFIX}")
        self.owner = owner
        self.poll_interval = poll_interval
        self.stale_threshold_seconds = stale_threshold_seconds
        self.recover_abandoned = recover_abandoned
        self.logger = logger or logging.getLogger(__name__)
        self.backend = create_lock_backend(backend_name, logger=self.logger)
        self._monitor = _monitor_for(self.lock_path)

    @classmethod
    def from_config(
        cls,
        config: LockConfig,
        *,
        owner: str = "",
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> CrossProcessMutex:
        return cls(
            config.lock_path,
            owner=owner,
            poll_interval=config.poll_interval,
            backend_name=config.backend,
            stale_threshold_seconds=config.stale_threshold_seconds,
            recover_abandoned=config.recover_abandoned,
            logger=logger,
        )

    def __repr__(self) -> str:
        return f"CrossProcessMutex({str(self.lock_path)!r}, backend={self.backend.name!r})"

    # ------------------------------------------------------------------ acquire

    def acquire(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> LockHandle:
        """Block until the lock is held.

        Args:
            timeout: Seconds to keep trying; None waits forever, 0 tries once
            cancel_event: Abandons the wait as soon as it is set

        Returns:
            LockHandle to pass to release()

        Raises:
            LockTimeoutError: The deadline passed first
            LockCancelledError: cancel_event was set first
            LockWriteError: The lock was free but claiming it failed
        """
        deadline = _Deadline(timeout)
        self._enter_process_lock(deadline, cancel_event)
        try:
            while True:
                self._check_cancelled(cancel_event)
                handle = self._try_claim()
                if handle is not None:
                    self._monitor.holder_id = handle.lock_id
                    self.logger.debug("Acquired %s as %s", self.lock_path, handle.lock_id)
                    return handle
                self._sleep_before_retry(deadline, cancel_event)
        except BaseException:
            self._monitor.lock.release()
            raise

    def _enter_process_lock(self, deadline: _Deadline, cancel_event: threading.Event | None) -> None:
        if deadline.timeout is None and cancel_event is None:
            self._monitor.lock.acquire()
            return

        while True:
            self._check_cancelled(cancel_event)
            wait = self.poll_interval
            remaining = deadline.remaining()
            if remaining is not None:
                wait = min(wait, remaining)
            if self._monitor.lock.acquire(timeout=wait):
                return
            if deadline.expired():
                raise LockTimeoutError(str(self.lock_path), deadline.timeout)

    def _check_cancelled(self, cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise LockCancelledError(str(self.lock_path))

    def _sleep_before_retry(self, deadline: _Deadline, cancel_event: threading.Event | None) -> None:
        if deadline.expired():
            raise LockTimeoutError(str(self.lock_path), deadline.timeout)

        delay = self.poll_interval
        remaining = deadline.remaining()
        if remaining is not None:
            delay = min(delay, remaining)

        if cancel_event is None:
            time.sleep(delay)
        elif cancel_event.wait(delay):
            raise LockCancelledError(str(self.lock_path))

    def _take_guard(self) -> GuardHandle | None:
        try:
            return self.backend.acquire(self.guard_path, GUARD_STALE_SECONDS)
        except LockBackendUnavailableError:
            if not isinstance(self.backend, FcntlFileLockBackend):
                raise
            self.logger.warning(
                "fcntl backend unavailable for '%s'; falling back to lease backend",
                self.guard_path,
            )
            self.backend = LeaseFileLockBackend()
            return self.backend.acquire(self.guard_path, GUARD_STALE_SECONDS)

    def _try_claim(self) -> LockHandle | None:
        """One guarded read-check-write. None means "not this time"."""
        guard = self._take_guard()
        if guard is None:
            self.logger.debug("Guard %s is busy; retrying", self.guard_path)
            return None

        try:
            try:
                state = self.store.read()
            except LockNotFoundError:
                self.logger.info("Unable to open lock file '%s'; waiting for it to appear", self.lock_path)
                return None
            except LockReadError as e:
                self.logger.warning("%s; treating lock state as unknown", e)
                return None

            if state is LockState.HELD and not self._reclaim_if_abandoned():
                return None

            info = LockInfo.for_current_process(owner=self.owner, backend=self.backend.name)
            self.store.write_holder(info)
            try:
                self.store.write(LockState.HELD)
            except LockWriteError:
                self._clear_holder_quietly(info.lock_id)
                raise
            return LockHandle(
                lock_path=self.lock_path,
                lock_id=info.lock_id,
                owner=info.owner,
                acquired_at=info.acquired_at,
            )
        finally:
            self.backend.release(guard)

    def _reclaim_if_abandoned(self) -> bool:
        holder = self.store.read_holder()
        if holder is None:
            return False

        reason = None
        if self.recover_abandoned and holder.host == socket.gethostname() and not is_process_running(holder.pid):
            reason = f"holder process {holder.pid} is not running"
        elif self.stale_threshold_seconds is not None:
            acquired_at = holder.acquired_datetime()
            if acquired_at is not None:
                age = (datetime.now(UTC) - acquired_at).total_seconds()
                if age > self.stale_threshold_seconds:
                    reason = f"held for {age:.0f}s by '{holder.owner}'"

        if reason is None:
            return False
        self.logger.warning("Reclaiming abandoned lock %s (%s)", self.lock_path, reason)
        return True

    def _clear_holder_quietly(self, lock_id: str | None = None) -> None:
        try:
            self.store.clear_holder(lock_id)
        except LockWriteError as e:
            self.logger.error("%s", e)

    # ------------------------------------------------------------------ release

    def release(self, handle: LockHandle) -> None:
        """Mark the lock Ready again.

        Releasing an already released handle, or a lock that already reads
        Ready, is a no-op. A handle that does not currently hold this lock's
        in-process monitor is rejected before anything is touched.

        Raises:
            LockOwnershipError: The handle does not hold this lock, or the
                lock is recorded as held by someone else
            LockWriteError: The Ready token could not be written
        """
        if handle.released:
            return
        self._check_handle(handle)
        try:
            self._release_state(handle)
        finally:
            handle.released = True
            self._monitor.holder_id = None
            self._monitor.lock.release()

    def _check_handle(self, handle: LockHandle) -> None:
        if Path(handle.lock_path).resolve() != self.lock_path.resolve():
            raise LockOwnershipError(
                str(self.lock_path),
                handle.lock_id,
                details=f"handle belongs to '{handle.lock_path}'",
            )
        if self._monitor.holder_id != handle.lock_id:
            raise LockOwnershipError(str(self.lock_path), handle.lock_id, self._monitor.holder_id)

    @contextlib.contextmanager
    def _guarded(self) -> Iterator[None]:
        """Hold the guard for one read-check-write, waiting out short contention."""
        guard = self._take_guard()
        while guard is None:
            time.sleep(GUARD_RETRY_SECONDS)
            guard = self._take_guard()
        try:
            yield
        finally:
            self.backend.release(guard)

    def _release_state(self, handle: LockHandle) -> None:
        with self._guarded():
            holder = self.store.read_holder()
            if holder is not None and holder.lock_id != handle.lock_id:
                raise LockOwnershipError(str(self.lock_path), handle.lock_id, holder.lock_id)

            if holder is None:
                try:
                    state = self.store.read()
                except LockReadError as e:
                    self.logger.warning("%s; leaving lock file untouched", e)
                    return
                if state is LockState.AVAILABLE:
                    self.logger.warning("Lock %s was already released by another participant", self.lock_path)
                    return
                raise LockOwnershipError(str(self.lock_path), handle.lock_id)

            self.store.write(LockState.AVAILABLE)
            self._clear_holder_quietly(handle.lock_id)
        self.logger.debug("Released %s (%s)", self.lock_path, handle.lock_id)

    def force_release(self) -> LockInfo | None:
        """Write Ready without any ownership check.

        Meant for operators clearing a lock left behind by a crashed holder.

        Returns:
            Holder metadata recorded before the release, if any
        """
        with self._guarded():
            holder = self.store.read_holder()
            self.store.write(LockState.AVAILABLE)
            self.store.clear_holder(holder.lock_id if holder is not None else None)
        if holder is not None:
            self.logger.warning(
                "Force-released %s held by '%s' (pid %s on %s)", self.lock_path, holder.owner, holder.pid, holder.host
            )
        else:
            self.logger.warning("Force-released %s", self.lock_path)
        return holder

    # ------------------------------------------------------------------ diagnostics

    def state(self) -> LockState:
        return self.store.read()

    def holder(self) -> LockInfo | None:
        return self.store.read_holder()
