"""Pytest configuration and fixtures for filemutex tests"""
import pytest

from filemutex.core.locks import CrossProcessMutex, LockState, LockStore

FAST_POLL = 0.01


@pytest.fixture(autouse=True)
def clean_lock_env(monkeypatch):
    """Keep developer FILEMUTEX_* settings out of the tests (and .env loads from leaking between them)"""
    for name in (
        "FILEMUTEX_LOCK_FILE",
        "FILEMUTEX_POLL_INTERVAL",
        "FILEMUTEX_TIMEOUT",
        "FILEMUTEX_LOCK_BACKEND",
        "FILEMUTEX_STALE_THRESHOLD",
        "LOG_LEVEL",
    ):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def lock_path(tmp_path):
    """Path of a lock file initialized to Ready"""
    path = tmp_path / "lock.txt"
    LockStore(path).initialize(LockState.AVAILABLE)
    return path


@pytest.fixture
def store(lock_path):
    return LockStore(lock_path)


@pytest.fixture
def mutex(lock_path):
    """Fast-polling mutex on the initialized lock file"""
    return CrossProcessMutex(lock_path, owner="test-owner", poll_interval=FAST_POLL)
