"""Reconcile the mirrored suite and the passing manifest into named snapshots."""

from __future__ import annotations

import logging
from pathlib import Path
import threading
import time
from typing import Callable

from backend.db.enums import TestSetName
from reconciliation.common import KeyedLocks, utc_now
from reconciliation.contracts import (
    MetricsSink,
    PassingSetSource,
    ProgressStats,
    RefreshResult,
    RepositoryMirror,
)
from reconciliation.identifier_extractor import extract_identifiers
from reconciliation.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Sole writer of the snapshot store; one refresh in flight per named set."""

    def __init__(
        self,
        *,
        store: SnapshotStore,
        mirror: RepositoryMirror,
        passing_source: PassingSetSource,
        metrics: MetricsSink,
        suite_git_dir: Path,
        suite_git_url: str,
        suite_tests_subdir: str = "tests",
        extractor: Callable[[Path], frozenset[str]] = extract_identifiers,
    ) -> None:
        self._store = store
        self._mirror = mirror
        self._passing_source = passing_source
        self._metrics = metrics
        self._suite_git_dir = Path(suite_git_dir)
        self._suite_git_url = suite_git_url
        self._suite_tests_subdir = suite_tests_subdir
        self._extractor = extractor
        self._refresh_locks = KeyedLocks()

    def refresh_passing(self) -> RefreshResult:
        """Fetch the passing manifest and replace the passing snapshot."""
        with self._refresh_locks.hold(TestSetName.PASSING):
            logger.debug("Getting passing tests")
            identifiers = self._passing_source.fetch_passing_identifiers()
            count = self._store.replace(TestSetName.PASSING, identifiers)
            self._metrics.publish(TestSetName.PASSING, count)

        logger.info("Refreshed passing tests: %d", count)
        return RefreshResult(set_name=TestSetName.PASSING, identifier_count=count, refreshed_at_utc=utc_now())

    def refresh_total(self) -> RefreshResult:
        """Update the suite checkout, extract every declared test and replace the total snapshot."""
        with self._refresh_locks.hold(TestSetName.TOTAL):
            logger.debug("Getting all tests")
            outcome = self._mirror.ensure_up_to_date(self._suite_git_dir, self._suite_git_url)
            logger.debug("Suite checkout %s: %s", self._suite_git_dir, outcome.value)
            identifiers = self._extractor(self._suite_git_dir / self._suite_tests_subdir)
            count = self._store.replace(TestSetName.TOTAL, identifiers)
            self._metrics.publish(TestSetName.TOTAL, count)

        logger.info("Refreshed total tests: %d", count)
        return RefreshResult(
            set_name=TestSetName.TOTAL,
            identifier_count=count,
            refreshed_at_utc=utc_now(),
            mirror_outcome=outcome,
        )

    def refresh(self, set_name: TestSetName) -> RefreshResult:
        """Refresh one named set."""
        if set_name is TestSetName.PASSING:
            return self.refresh_passing()
        return self.refresh_total()

    def refresh_all(self) -> tuple[RefreshResult, RefreshResult]:
        """Refresh both sets, passing first; the first failure propagates."""
        logger.debug("Retrieving latest changes...")
        passing = self.refresh_passing()
        total = self.refresh_total()
        logger.debug("Done retrieving latest changes.")
        return passing, total

    def stats(self) -> ProgressStats:
        """Read current counts; sets that were never populated count as zero."""
        total_ready = self._store.is_populated(TestSetName.TOTAL)
        passing_ready = self._store.is_populated(TestSetName.PASSING)
        return ProgressStats(
            total=self._store.size(TestSetName.TOTAL) if total_ready else 0,
            passing=self._store.size(TestSetName.PASSING) if passing_ready else 0,
            populated=total_ready and passing_ready,
        )

    def publish_stored_counts(self) -> ProgressStats:
        """Push the persisted counts to the metrics sink."""
        stats = self.stats()
        self._metrics.publish(TestSetName.TOTAL, stats.total)
        self._metrics.publish(TestSetName.PASSING, stats.passing)
        return stats

    def run_periodic(
        self,
        *,
        interval_seconds: float,
        stop_event: threading.Event,
        failure_backoff_seconds: float,
        max_consecutive_failures: int,
        max_cycles: int | None = None,
        wait_first: bool = False,
    ) -> int:
        """Run `refresh_all` every interval until stop_event is set or max_cycles complete."""
        logger.info("Periodic reconciliation started, interval=%ss", interval_seconds)
        if wait_first:
            stop_event.wait(interval_seconds)
        cycles = 0
        consecutive_failures = 0
        try:
            while not stop_event.is_set():
                started = time.monotonic()
                try:
                    self.refresh_all()
                    consecutive_failures = 0
                except Exception as exc:
                    consecutive_failures += 1
                    logger.error(
                        "Periodic reconciliation failed (failure_count=%d): %s: %s",
                        consecutive_failures,
                        type(exc).__name__,
                        exc,
                    )
                    if consecutive_failures >= max_consecutive_failures:
                        raise RuntimeError(
                            f"Periodic reconciliation exceeded max consecutive failures ({max_consecutive_failures})"
                        ) from exc
                    stop_event.wait(failure_backoff_seconds)
                    continue

                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                stop_event.wait(max(0.0, interval_seconds - (time.monotonic() - started)))
        finally:
            logger.info("Periodic reconciliation stopped, completed_cycles=%d", cycles)
        return cycles
