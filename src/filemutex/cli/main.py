"""CLI entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys

from filemutex.cli.parser import parse_arguments
from filemutex.core.colors import ConsoleColors
from filemutex.core.config import DriverConfig, LockConfig
from filemutex.core.constants import EXIT_FAILURE, EXIT_SUCCESS
from filemutex.core.exceptions import FileMutexError, LockReadError
from filemutex.core.locks import CrossProcessMutex, LockStore
from filemutex.core.logging import flush_logging_handlers, setup_logging, with_log_context
from filemutex.driver import run_driver


def _lock_config_from_args(args: argparse.Namespace) -> LockConfig:
    return LockConfig.from_env().with_overrides(
        lock_path=args.lock_file,
        poll_interval=args.poll_interval,
        timeout=args.timeout,
        backend=args.backend,
        stale_threshold_seconds=args.stale_threshold,
    )


def _print_status(mutex: CrossProcessMutex) -> int:
    try:
        state = mutex.state()
    except LockReadError as e:
        print(ConsoleColors.error(f"ERROR: {e}"), file=sys.stderr)
        return EXIT_FAILURE

    print(f"Lock file: {mutex.lock_path}")
    print(f"State: {ConsoleColors.lock_state(state)}")
    holder = mutex.holder()
    if holder is not None:
        print(f"Holder: {holder.owner or '-'} (pid {holder.pid} on {holder.host})")
        print(f"Acquired at: {holder.acquired_at}")
        print(f"Holder token: {holder.lock_id}")
    return EXIT_SUCCESS


def run(args: argparse.Namespace) -> int:
    logger = setup_logging(label=args.name, log_level=args.log_level, log_format=args.log_format, log_dir=args.log_dir)
    log = with_log_context(logger, driver_label=args.name)

    lock_config = _lock_config_from_args(args)
    if args.init:
        created = LockStore(lock_config.lock_path).initialize()
        if created:
            log.info("Created lock file %s", lock_config.lock_path)

    mutex = CrossProcessMutex.from_config(lock_config, owner=args.name, logger=log)
    if args.status:
        return _print_status(mutex)
    if args.force_release:
        previous = mutex.force_release()
        owner = f" (was held by '{previous.owner}')" if previous is not None else ""
        print(ConsoleColors.success(f"Lock {mutex.lock_path} marked Ready{owner}"))
        return EXIT_SUCCESS

    driver_config = DriverConfig(
        label=args.name,
        workers=args.workers,
        iterations=args.iterations,
        hold_seconds=args.hold,
    ).validate()
    report = run_driver(driver_config, lock_config, quiet=args.quiet, logger=log)

    if report.success:
        print(ConsoleColors.success(f"{report.completed} critical sections completed without overlap"))
        return EXIT_SUCCESS
    if report.overlaps:
        print(ConsoleColors.error(f"{len(report.overlaps)} overlapping critical sections detected"), file=sys.stderr)
    if report.errors:
        print(ConsoleColors.error(f"{len(report.errors)} critical sections failed"), file=sys.stderr)
    return EXIT_FAILURE


def main(argv: list[str] | None = None) -> int:
    args = parse_arguments(argv)
    try:
        return run(args)
    except FileMutexError as e:
        print(ConsoleColors.error(f"ERROR: {e}"), file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print(ConsoleColors.warning("Interrupted"), file=sys.stderr)
        return EXIT_FAILURE
    finally:
        flush_logging_handlers(logging.getLogger("filemutex"))


if __name__ == "__main__":
    sys.exit(main())
