"""Persisted lock state.

The lock file holds exactly one token, ``Ready`` or ``Wait``. Holder
identity lives in a JSON sidecar next to it (``<lock file>.info``) so that
the token format stays readable by participants that know nothing about
holder tokens.
"""

from __future__ import annotations

import contextlib
import json
import os
import socket
import tempfile
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from filemutex.core.constants import HOLDER_SUFFIX
from filemutex.core.exceptions import (
    LockNotFoundError,
    LockReadError,
    LockStateError,
    LockWriteError,
)


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class LockState(Enum):
    """The two values the lock file can hold."""

    AVAILABLE = "Ready"
    HELD = "Wait"

    @property
    def token(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> LockState | None:
        """Exact token match, ignoring surrounding whitespace."""
        token = text.strip()
        for state in cls:
            if state.value == token:
                return state
        return None


@dataclass
class LockInfo:
    """Serializable holder metadata."""

    lock_id: str
    pid: int
    host: str
    owner: str
    acquired_at: str
    backend: str
    version: int = 1

    @classmethod
    def for_current_process(cls, owner: str, backend: str) -> LockInfo:
        return cls(
            lock_id=str(uuid.uuid4()),
            pid=os.getpid(),
            host=socket.gethostname(),
            owner=owner,
            acquired_at=_utcnow_iso(),
            backend=backend,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockInfo | None:
        try:
            return cls(
                lock_id=str(data["lock_id"]),
                pid=int(data["pid"]),
                host=str(data["host"]),
                owner=str(data.get("owner", "")),
                acquired_at=str(data["acquired_at"]),
                backend=str(data.get("backend", "")),
                version=int(data.get("version", 1)),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def acquired_datetime(self) -> datetime | None:
        try:
            value = datetime.fromisoformat(self.acquired_at)
        except ValueError:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


def _write_all(fd: int, payload: bytes) -> None:
    """Write complete payload to fd, handling short writes."""
    total_written = 0
    while total_written < len(payload):
        written = os.write(fd, payload[total_written:])
        if written <= 0:
            raise OSError("short write while persisting lock state")
        total_written += written


def _atomic_write_text(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` so that readers see the old or new content, never a mix."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        try:
            _write_all(fd, text.encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


class LockStore:
    """Durable read/write of the single lock token and its holder metadata."""

    def __init__(self, lock_path: Path | str):
        self.lock_path = Path(lock_path)
        self.holder_path = self.lock_path.with_name(f"{self.lock_path.name}{HOLDER_SUFFIX}")

    def __repr__(self) -> str:
        return f"LockStore({str(self.lock_path)!r})"

    def exists(self) -> bool:
        return self.lock_path.exists()

    def read(self) -> LockState:
        """Read and parse the lock token.

        Raises:
            LockNotFoundError: The lock file does not exist
            LockStateError: The file holds an unrecognized token
            LockReadError: Any other I/O fault
        """
        try:
            text = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise LockNotFoundError("Lock file not found", lock_path=str(self.lock_path), original_error=e) from e
        except (OSError, UnicodeDecodeError) as e:
            raise LockReadError(
                "Error reading lock file", lock_path=str(self.lock_path), details=str(e), original_error=e
            ) from e

        state = LockState.parse(text)
        if state is None:
            raise LockStateError(str(self.lock_path), text.strip())
        return state

    def write(self, state: LockState) -> None:
        """Overwrite the lock file with the token of ``state``.

        Raises:
            LockWriteError: The token could not be persisted; the previous
                token is left in place.
        """
        try:
            _atomic_write_text(self.lock_path, state.token)
        except OSError as e:
            raise LockWriteError(
                f"Error writing '{state.token}' to lock file",
                lock_path=str(self.lock_path),
                details=str(e),
                original_error=e,
            ) from e

    def initialize(self, state: LockState = LockState.AVAILABLE, overwrite: bool = False) -> bool:
        """Create the lock file out-of-band.

        Returns:
            True if the file was written, False if it already existed
        """
        if overwrite:
            self.write(state)
            return True
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.lock_path, "x", encoding="utf-8") as f:
                f.write(state.token)
        except FileExistsError:
            return False
        except OSError as e:
            raise LockWriteError(
                "Error creating lock file", lock_path=str(self.lock_path), details=str(e), original_error=e
            ) from e
        return True

    def read_holder(self) -> LockInfo | None:
        """Read holder metadata; missing or malformed metadata reads as None."""
        try:
            with open(self.holder_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None

        if not isinstance(data, dict):
            return None
        return LockInfo.from_dict(data)

    def write_holder(self, info: LockInfo) -> None:
        payload = json.dumps(info.to_dict(), sort_keys=True) + "\n"
        try:
            _atomic_write_text(self.holder_path, payload)
        except OSError as e:
            raise LockWriteError(
                "Error writing holder metadata",
                lock_path=str(self.lock_path),
                details=str(e),
                original_error=e,
            ) from e

    def clear_holder(self, lock_id: str | None = None) -> bool:
        """Remove the holder sidecar.

        With ``lock_id``, only metadata recorded for that holder is removed.
        Returns False when the sidecar names another holder and was kept.
        """
        if lock_id is not None:
            holder = self.read_holder()
            if holder is not None and holder.lock_id != lock_id:
                return False
        try:
            self.holder_path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            raise LockWriteError(
                "Error clearing holder metadata",
                lock_path=str(self.lock_path),
                details=str(e),
                original_error=e,
            ) from e
        return True
