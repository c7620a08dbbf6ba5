"""Scoped critical-section execution."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from filemutex.core.exceptions import LockError
from filemutex.core.locks.mutex import CrossProcessMutex, LockHandle
from filemutex.core.logging import with_log_context

P = ParamSpec("P")
T = TypeVar("T")


class ExclusiveSection:
    """Run work while holding a CrossProcessMutex, releasing on every exit path.

    Usage:
        section = ExclusiveSection(mutex, label="nightly-import")
        result = section.run_exclusive(do_import, source)

        with section as handle:
            ...

    Args:
        mutex: Mutex guarding the section
        label: Identifier logged on entry and exit (defaults to the mutex owner)
        timeout: Acquisition deadline in seconds, None waits forever
        cancel_event: Abandons acquisition when set
        logger: Logger to use instead of the module logger
    """

    def __init__(
        self,
        mutex: CrossProcessMutex,
        *,
        label: str | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.mutex = mutex
        self.label = label or mutex.owner or mutex.lock_path.name
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.logger = with_log_context(
            logger or logging.getLogger(__name__),
            section_label=self.label,
            lock_path=str(mutex.lock_path),
        )
        # Handles are per thread: one section object may be entered by many threads.
        self._local = threading.local()

    def run_exclusive(self, work: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """Acquire, run ``work(*args, **kwargs)``, release; return what work returned."""
        handle = self._enter()
        try:
            result = work(*args, **kwargs)
        except BaseException:
            self._exit(handle, failed=True)
            raise
        self._exit(handle, failed=False)
        return result

    def __enter__(self) -> LockHandle:
        handle = self._enter()
        stack = getattr(self._local, "handles", None)
        if stack is None:
            stack = self._local.handles = []
        stack.append(handle)
        return handle

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        handle = self._local.handles.pop()
        self._exit(handle, failed=exc_type is not None)

    def _enter(self) -> LockHandle:
        handle = self.mutex.acquire(timeout=self.timeout, cancel_event=self.cancel_event)
        self.logger.info("%s start %s", self.label, threading.current_thread().name)
        return handle

    def _exit(self, handle: LockHandle, *, failed: bool) -> None:
        try:
            self.mutex.release(handle)
        except LockError as e:
            if not failed:
                raise
            # The work's own exception is the one the caller needs to see.
            self.logger.error("Failed to release %s after error: %s", self.mutex.lock_path, e)
        finally:
            self.logger.info("%s end   %s", self.label, threading.current_thread().name)
