"""Console colors for filemutex CLI output."""

import os
import sys

from filemutex.core.locks.store import LockState


class ConsoleColors:
    """ANSI highlighting for CLI summaries and lock state.

    Disabled when stdout is not a terminal or NO_COLOR is set.
    """
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    RESET = '\033[0m'

    _STATE_COLORS = {
        LockState.AVAILABLE: GREEN,
        LockState.HELD: YELLOW,
    }

    @staticmethod
    def enabled() -> bool:
        if os.environ.get('NO_COLOR'):
            return False
        return sys.stdout.isatty() and (os.name != 'nt' or bool(os.environ.get('TERM')))

    @classmethod
    def _wrap(cls, color: str, text: str) -> str:
        return f"{color}{text}{cls.RESET}" if cls.enabled() else text

    @classmethod
    def success(cls, text: str) -> str:
        return cls._wrap(cls.GREEN, text)

    @classmethod
    def error(cls, text: str) -> str:
        return cls._wrap(cls.RED, text)

    @classmethod
    def warning(cls, text: str) -> str:
        return cls._wrap(cls.YELLOW, text)

    @classmethod
    def lock_state(cls, state: LockState) -> str:
        """Render a lock token, green when Ready and yellow when Wait"""
        return cls._wrap(cls._STATE_COLORS[state], state.token)
