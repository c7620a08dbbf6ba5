"""Concurrent driver: many callers hammering one ExclusiveSection.

Each submitted task acquires the lock, sleeps for the configured hold
time as a stand-in for real work, and releases. Entry/exit timestamps of
every section are collected so the run can be checked for overlap.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime

from tqdm import tqdm

from filemutex.core.config import DriverConfig, LockConfig
from filemutex.core.locks import CrossProcessMutex, ExclusiveSection

TQDM_BAR_FORMAT = "{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]"


@dataclass(frozen=True)
class SectionTiming:
    """Wall-clock interval one caller spent inside the critical section."""

    label: str
    worker: str
    started_at: float
    ended_at: float

    @property
    def duration(self) -> float:
        return self.ended_at - self.started_at

    def overlaps(self, other: SectionTiming) -> bool:
        return self.started_at < other.ended_at and other.started_at < self.ended_at

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "worker": self.worker,
            "started_at": datetime.fromtimestamp(self.started_at, UTC).isoformat(),
            "ended_at": datetime.fromtimestamp(self.ended_at, UTC).isoformat(),
            "duration": round(self.duration, 6),
        }


@dataclass
class DriverReport:
    """Outcome of a driver run."""

    label: str
    timings: list[SectionTiming] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return len(self.timings)

    @property
    def overlaps(self) -> list[tuple[SectionTiming, SectionTiming]]:
        return find_overlapping_sections(self.timings)

    @property
    def success(self) -> bool:
        return not self.errors and not self.overlaps


def find_overlapping_sections(timings: list[SectionTiming]) -> list[tuple[SectionTiming, SectionTiming]]:
    """Return every adjacent pair (by start time) whose intervals intersect."""
    ordered = sorted(timings, key=lambda t: t.started_at)
    overlapping = []
    latest = None
    for timing in ordered:
        if latest is not None and timing.overlaps(latest):
            overlapping.append((latest, timing))
        if latest is None or timing.ended_at > latest.ended_at:
            latest = timing
    return overlapping


def simulated_work(label: str, hold_seconds: float) -> SectionTiming:
    """Stand-in critical section: record entry, sleep, record exit."""
    started_at = time.time()
    time.sleep(hold_seconds)
    return SectionTiming(
        label=label,
        worker=threading.current_thread().name,
        started_at=started_at,
        ended_at=time.time(),
    )


def run_driver(
    driver_config: DriverConfig,
    lock_config: LockConfig,
    *,
    quiet: bool = False,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> DriverReport:
    """Submit ``workers * iterations`` critical sections to a thread pool and wait for all of them.

    Args:
        driver_config: Label, pool size, iterations and hold time
        lock_config: Lock file and polling configuration
        quiet: Suppress the progress bar
        logger: Logger to use instead of the module logger

    Returns:
        DriverReport with one timing per completed section and one message per failure
    """
    log = logger or logging.getLogger(__name__)
    driver_config.validate()
    lock_config.validate()

    mutex = CrossProcessMutex.from_config(lock_config, owner=driver_config.label, logger=log)
    section = ExclusiveSection(mutex, label=driver_config.label, timeout=lock_config.timeout, logger=log)
    report = DriverReport(label=driver_config.label)

    log.info(
        "Starting %d sections on %d workers against %s (%s backend)",
        driver_config.total_sections,
        driver_config.workers,
        mutex.lock_path,
        mutex.backend.name,
    )

    with ThreadPoolExecutor(max_workers=driver_config.workers, thread_name_prefix="filemutex") as executor:
        futures = [
            executor.submit(section.run_exclusive, simulated_work, driver_config.label, driver_config.hold_seconds)
            for _ in range(driver_config.total_sections)
        ]

        with tqdm(
            total=len(futures),
            desc=f"Sections ({driver_config.label})",
            unit="section",
            bar_format=TQDM_BAR_FORMAT,
            leave=False,
            disable=quiet,
        ) as pbar:
            for future in as_completed(futures):
                try:
                    report.timings.append(future.result())
                except Exception as e:
                    report.errors.append(str(e))
                    log.error("✗ Critical section failed: %s", e)
                pbar.update(1)

    overlaps = report.overlaps
    if overlaps:
        log.error("Detected %d overlapping critical sections", len(overlaps))
    log.info(
        "Driver complete: %d/%d sections succeeded",
        report.completed,
        driver_config.total_sections,
    )
    return report
