"""CLI argument parsing."""

from __future__ import annotations

import argparse
from pathlib import Path

from filemutex.core.constants import (
    DEFAULT_HOLD_SECONDS,
    DEFAULT_ITERATIONS,
    DEFAULT_WORKERS,
    LOCK_BACKENDS,
)
from filemutex.core.version import __version__


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"'{value}' is not a number") from e
    if number <= 0:
        raise argparse.ArgumentTypeError(f"'{value}' must be greater than 0")
    return number


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"'{value}' is not a number") from e
    if number < 0:
        raise argparse.ArgumentTypeError(f"'{value}' must not be negative")
    return number


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"'{value}' is not an integer") from e
    if number < 1:
        raise argparse.ArgumentTypeError(f"'{value}' must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filemutex",
        description="Run concurrent critical sections serialized through a shared lock file.",
        epilog="""
Examples:
  # Create lock.txt (Ready) if missing and run the default 2x10 workload
  filemutex instance-a --init

  # Two processes sharing one lock file
  filemutex instance-a --lock-file /shared/lock.txt &
  filemutex instance-b --lock-file /shared/lock.txt

  # Inspect or clear a stuck lock
  filemutex ops --status
  filemutex ops --force-release

Environment:
  FILEMUTEX_LOCK_FILE, FILEMUTEX_POLL_INTERVAL, FILEMUTEX_TIMEOUT,
  FILEMUTEX_LOCK_BACKEND, FILEMUTEX_STALE_THRESHOLD, LOG_LEVEL
  (a .env file in the working directory is loaded first)
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("name", help="Identifier of this instance, used in logs and holder metadata")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    lock_group = parser.add_argument_group("lock")
    lock_group.add_argument("--lock-file", type=Path, default=None, help="Lock file path (default: lock.txt)")
    lock_group.add_argument(
        "--poll-interval",
        type=_positive_float,
        default=None,
        metavar="SECONDS",
        help="Delay between state checks while waiting (default: 1.0)",
    )
    lock_group.add_argument(
        "--timeout",
        type=_non_negative_float,
        default=None,
        metavar="SECONDS",
        help="Give up acquiring after this long (default: wait forever)",
    )
    lock_group.add_argument(
        "--backend",
        choices=LOCK_BACKENDS,
        default=None,
        help="Guard backend making acquisition atomic across processes (default: auto)",
    )
    lock_group.add_argument(
        "--stale-threshold",
        type=_positive_float,
        default=None,
        metavar="SECONDS",
        help="Reclaim a Wait lock whose holder acquired it longer ago than this",
    )

    workload_group = parser.add_argument_group("workload")
    workload_group.add_argument(
        "--workers", type=_positive_int, default=DEFAULT_WORKERS, help=f"Concurrent callers (default: {DEFAULT_WORKERS})"
    )
    workload_group.add_argument(
        "--iterations",
        type=_positive_int,
        default=DEFAULT_ITERATIONS,
        help=f"Sections per worker (default: {DEFAULT_ITERATIONS})",
    )
    workload_group.add_argument(
        "--hold",
        type=_non_negative_float,
        default=DEFAULT_HOLD_SECONDS,
        metavar="SECONDS",
        help=f"Duration of each simulated critical section (default: {DEFAULT_HOLD_SECONDS})",
    )

    action_mx = parser.add_mutually_exclusive_group()
    action_mx.add_argument("--status", action="store_true", help="Print lock state and holder, then exit")
    action_mx.add_argument(
        "--force-release", action="store_true", help="Mark the lock Ready without an ownership check, then exit"
    )
    parser.add_argument("--init", action="store_true", help="Create the lock file as Ready if it does not exist")

    output_group = parser.add_argument_group("output")
    output_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL env var or INFO)",
    )
    output_group.add_argument("--log-format", choices=["text", "json"], default="text", help="Log output format")
    output_group.add_argument("--log-dir", type=Path, default=None, help="Also write a rotating log file here")
    output_group.add_argument("--quiet", "-q", action="store_true", help="Suppress the progress bar")

    return parser


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)
