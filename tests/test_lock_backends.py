"""Tests for guard backend behavior."""

from __future__ import annotations

import errno
import json
import os
import socket
import threading
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

import filemutex.core.locks.backends as backends_module
from filemutex.core.locks.backends import (
    FcntlFileLockBackend,
    LeaseFileLockBackend,
    LockBackendUnavailableError,
    NullLockBackend,
    create_lock_backend,
    is_process_running,
)
from filemutex.core.locks.store import LockInfo


def _build_lease_info(
    lock_id: str,
    *,
    pid: int | None = None,
    host: str | None = None,
    acquired_at: str | None = None,
) -> LockInfo:
    return LockInfo(
        lock_id=lock_id,
        pid=os.getpid() if pid is None else pid,
        host=socket.gethostname() if host is None else host,
        owner="",
        acquired_at=datetime.now(UTC).isoformat() if acquired_at is None else acquired_at,
        backend="lease",
    )


def _write_lease(guard_path: Path, info: LockInfo) -> None:
    guard_path.write_text(json.dumps(info.to_dict()) + "\n", encoding="utf-8")


def _requires_fcntl() -> None:
    if backends_module.fcntl is None:
        pytest.skip("fcntl not available on this platform")


class TestFcntlBackend:
    def test_acquire_and_release(self, tmp_path):
        _requires_fcntl()
        guard_path = tmp_path / "lock.txt.guard"
        backend = FcntlFileLockBackend()

        handle = backend.acquire(guard_path, stale_threshold_seconds=30)

        assert handle is not None
        assert guard_path.exists()
        backend.release(handle)
        assert handle.closed is True
        # Guard file stays behind for the next participant.
        assert guard_path.exists()

    def test_second_acquire_is_contended_until_release(self, tmp_path):
        _requires_fcntl()
        guard_path = tmp_path / "lock.txt.guard"
        backend = FcntlFileLockBackend()

        first = backend.acquire(guard_path, stale_threshold_seconds=30)
        assert first is not None
        try:
            assert backend.acquire(guard_path, stale_threshold_seconds=30) is None
        finally:
            backend.release(first)

        second = backend.acquire(guard_path, stale_threshold_seconds=30)
        assert second is not None
        backend.release(second)

    def test_release_is_idempotent(self, tmp_path):
        _requires_fcntl()
        backend = FcntlFileLockBackend()
        handle = backend.acquire(tmp_path / "g.guard", stale_threshold_seconds=30)
        backend.release(handle)
        backend.release(handle)

    def test_unsupported_flock_raises_backend_unavailable(self, tmp_path, monkeypatch):
        _requires_fcntl()

        def _unsupported_flock(fd: int, operation: int) -> None:
            del fd, operation
            raise OSError(errno.EOPNOTSUPP, "flock unsupported")

        monkeypatch.setattr(backends_module.fcntl, "flock", _unsupported_flock)

        with pytest.raises(LockBackendUnavailableError):
            FcntlFileLockBackend().acquire(tmp_path / "g.guard", stale_threshold_seconds=30)

    def test_non_contention_flock_errors_surface(self, tmp_path, monkeypatch):
        _requires_fcntl()

        def _broken_flock(fd: int, operation: int) -> None:
            del fd, operation
            raise OSError(errno.EIO, "flock I/O error")

        monkeypatch.setattr(backends_module.fcntl, "flock", _broken_flock)

        with pytest.raises(OSError, match="flock I/O error"):
            FcntlFileLockBackend().acquire(tmp_path / "g.guard", stale_threshold_seconds=30)


class TestLeaseBackend:
    def test_acquire_writes_lease_metadata(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        backend = LeaseFileLockBackend()

        handle = backend.acquire(guard_path, stale_threshold_seconds=30)

        assert handle is not None
        info = backend.read_info(guard_path)
        assert info is not None
        assert info.lock_id == handle.guard_id
        assert info.pid == os.getpid()
        assert info.backend == "lease"

        backend.release(handle)
        assert not guard_path.exists()

    def test_active_lease_blocks_acquire(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        backend = LeaseFileLockBackend()
        first = backend.acquire(guard_path, stale_threshold_seconds=30)
        try:
            assert backend.acquire(guard_path, stale_threshold_seconds=30) is None
        finally:
            backend.release(first)

    def test_reclaims_lease_of_dead_local_process(self, tmp_path, monkeypatch):
        guard_path = tmp_path / "lock.txt.guard"
        _write_lease(guard_path, _build_lease_info("dead-holder", pid=999_999))
        monkeypatch.setattr(backends_module, "is_process_running", lambda pid: False)

        backend = LeaseFileLockBackend()
        handle = backend.acquire(guard_path, stale_threshold_seconds=30)

        assert handle is not None
        assert backend.read_info(guard_path).lock_id == handle.guard_id
        backend.release(handle)

    def test_reclaims_expired_remote_lease(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        old = (datetime.now(UTC) - timedelta(minutes=10)).isoformat()
        _write_lease(guard_path, _build_lease_info("remote", host="some-other-host", acquired_at=old))

        handle = LeaseFileLockBackend().acquire(guard_path, stale_threshold_seconds=30)

        assert handle is not None

    def test_fresh_remote_lease_is_respected(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        _write_lease(guard_path, _build_lease_info("remote", host="some-other-host"))

        assert LeaseFileLockBackend().acquire(guard_path, stale_threshold_seconds=30) is None

    def test_waits_for_transient_unreadable_lease(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        guard_path.write_text("", encoding="utf-8")
        backend = LeaseFileLockBackend()

        def _delayed_write() -> None:
            time.sleep(backend.unreadable_retry_sleep_seconds * 2)
            _write_lease(guard_path, _build_lease_info("late-writer"))

        writer = threading.Thread(target=_delayed_write, daemon=True)
        writer.start()
        try:
            handle = backend.acquire(guard_path, stale_threshold_seconds=30)
        finally:
            writer.join(timeout=2)

        # Metadata became readable and fresh, so the lease is respected.
        assert handle is None
        assert backend.read_info(guard_path).lock_id == "late-writer"

    def test_reclaims_persistently_unreadable_lease(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        guard_path.write_text("{bad json", encoding="utf-8")
        backend = LeaseFileLockBackend()

        start = time.monotonic()
        handle = backend.acquire(guard_path, stale_threshold_seconds=3600)
        elapsed = time.monotonic() - start

        assert handle is not None
        # Recovery is bounded by the retry window, not the stale threshold.
        assert elapsed < 2.0
        backend.release(handle)

    def test_release_does_not_unlink_new_owner_lease(self, tmp_path):
        guard_path = tmp_path / "lock.txt.guard"
        backend = LeaseFileLockBackend()
        handle = backend.acquire(guard_path, stale_threshold_seconds=30)
        _write_lease(guard_path, _build_lease_info("new-owner"))

        backend.release(handle)

        assert guard_path.exists()
        assert backend.read_info(guard_path).lock_id == "new-owner"


class TestNullBackend:
    def test_never_contends(self, tmp_path):
        backend = NullLockBackend()
        first = backend.acquire(tmp_path / "g.guard", stale_threshold_seconds=30)
        second = backend.acquire(tmp_path / "g.guard", stale_threshold_seconds=30)
        assert first.guard_id != second.guard_id
        assert not (tmp_path / "g.guard").exists()
        backend.release(first)
        backend.release(second)


class TestCreateLockBackend:
    def test_explicit_names(self):
        assert isinstance(create_lock_backend("lease"), LeaseFileLockBackend)
        assert isinstance(create_lock_backend("none"), NullLockBackend)
        assert isinstance(create_lock_backend(" LEASE "), LeaseFileLockBackend)

    def test_auto_prefers_fcntl(self):
        _requires_fcntl()
        assert isinstance(create_lock_backend("auto"), FcntlFileLockBackend)
        assert isinstance(create_lock_backend(None), FcntlFileLockBackend)

    def test_auto_without_fcntl_uses_lease(self, monkeypatch):
        monkeypatch.setattr(backends_module, "fcntl", None)
        assert isinstance(create_lock_backend("auto"), LeaseFileLockBackend)
        assert isinstance(create_lock_backend("fcntl"), LeaseFileLockBackend)

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("FILEMUTEX_LOCK_BACKEND", "lease")
        assert isinstance(create_lock_backend(), LeaseFileLockBackend)

    def test_unknown_name_falls_back_to_auto(self, caplog):
        backend = create_lock_backend("zookeeper")
        assert backend.name in ("fcntl", "lease")
        assert "Unknown lock backend 'zookeeper'" in caplog.text


class TestIsProcessRunning:
    def test_current_process(self):
        assert is_process_running(os.getpid()) is True

    @pytest.mark.parametrize("pid", [0, -1, True])
    def test_invalid_pids(self, pid):
        assert is_process_running(pid) is False
