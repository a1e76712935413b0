"""Unit tests for the Reconciler against a real SQLite snapshot store."""

from __future__ import annotations

from pathlib import Path
import threading

import pytest

from backend.db.enums import TestSetName
from reconciliation.contracts import MirrorOutcome
from reconciliation.errors import NetworkError, ParseError, RepositoryError, StorageError
from reconciliation.reconciler import Reconciler
from reconciliation.snapshot_store import SnapshotStore
from tests.utils.fakes import (
    FakeMirror,
    FakePassingSource,
    RecordingMetrics,
    sequence_extractor,
    write_suite,
)

SUITE_URL = "https://example.test/sytest.git"


def _reconciler(
    store: SnapshotStore,
    tmp_path: Path,
    *,
    mirror: FakeMirror | None = None,
    passing: FakePassingSource | None = None,
    metrics: RecordingMetrics | None = None,
    **kwargs,
) -> Reconciler:
    return Reconciler(
        store=store,
        mirror=mirror or FakeMirror(),
        passing_source=passing or FakePassingSource(()),
        metrics=metrics or RecordingMetrics(),
        suite_git_dir=tmp_path / "sytest",
        suite_git_url=SUITE_URL,
        **kwargs,
    )


def test_refresh_passing_replaces_snapshot_and_publishes(store: SnapshotStore, tmp_path: Path) -> None:
    metrics = RecordingMetrics()
    reconciler = _reconciler(store, tmp_path, passing=FakePassingSource(["a", "b", "b"]), metrics=metrics)

    result = reconciler.refresh_passing()

    assert result.set_name is TestSetName.PASSING
    assert result.identifier_count == 2
    assert result.mirror_outcome is None
    assert store.read(TestSetName.PASSING) == frozenset({"a", "b"})
    assert metrics.latest(TestSetName.PASSING) == 2


def test_refresh_total_extracts_from_checkout(store: SnapshotStore, tmp_path: Path) -> None:
    write_suite(
        tmp_path / "sytest",
        {
            "10apidoc/01login.pl": 'test "Login works",\n   requires => [],\n\ntest "Logout works",\n',
            "20rooms.pl": 'test "Can create room",\n',
        },
    )
    mirror = FakeMirror(outcome=MirrorOutcome.UPDATED)
    metrics = RecordingMetrics()
    reconciler = _reconciler(store, tmp_path, mirror=mirror, metrics=metrics)

    result = reconciler.refresh_total()

    assert mirror.calls == [(tmp_path / "sytest", SUITE_URL)]
    assert result.mirror_outcome is MirrorOutcome.UPDATED
    assert result.identifier_count == 3
    assert store.read(TestSetName.TOTAL) == frozenset({"Login works", "Logout works", "Can create room"})
    assert metrics.latest(TestSetName.TOTAL) == 3


def test_refresh_total_uses_configured_subdirectory(store: SnapshotStore, tmp_path: Path) -> None:
    suite = tmp_path / "sytest" / "suite"
    suite.mkdir(parents=True)
    (suite / "one.pl").write_text('test "only here",\n', encoding="utf-8")
    reconciler = _reconciler(store, tmp_path, suite_tests_subdir="suite")

    assert reconciler.refresh_total().identifier_count == 1


def test_fetch_failure_leaves_previous_passing_snapshot(store: SnapshotStore, tmp_path: Path) -> None:
    metrics = RecordingMetrics()
    passing = FakePassingSource(["a", "b"], NetworkError("manifest unavailable"))
    reconciler = _reconciler(store, tmp_path, passing=passing, metrics=metrics)
    reconciler.refresh_passing()

    with pytest.raises(NetworkError, match="manifest unavailable"):
        reconciler.refresh_passing()

    assert store.read(TestSetName.PASSING) == frozenset({"a", "b"})
    assert metrics.published == [(TestSetName.PASSING, 2)]


def test_storage_failure_after_fetch_leaves_passing_snapshot_and_gauge(
    store: SnapshotStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    metrics = RecordingMetrics()
    passing = FakePassingSource(["a", "b"], ["a", "b", "c"])
    reconciler = _reconciler(store, tmp_path, passing=passing, metrics=metrics)
    reconciler.refresh_passing()

    def _failing_replace(set_name: TestSetName, identifiers: object) -> int:
        raise StorageError(f"Unable to replace {set_name.value} snapshot: disk I/O error")

    monkeypatch.setattr(store, "replace", _failing_replace)
    with pytest.raises(StorageError, match="disk I/O error"):
        reconciler.refresh_passing()

    assert passing.calls == 2
    assert store.read(TestSetName.PASSING) == frozenset({"a", "b"})
    assert metrics.published == [(TestSetName.PASSING, 2)]
    assert reconciler.stats().passing == 2


def test_mirror_failure_leaves_previous_total_snapshot(store: SnapshotStore, tmp_path: Path) -> None:
    store.replace(TestSetName.TOTAL, ["x", "y"])
    metrics = RecordingMetrics()
    mirror = FakeMirror(error=RepositoryError("git pull failed"))
    reconciler = _reconciler(store, tmp_path, mirror=mirror, metrics=metrics)

    with pytest.raises(RepositoryError):
        reconciler.refresh_total()

    assert store.read(TestSetName.TOTAL) == frozenset({"x", "y"})
    assert metrics.published == []


def test_parse_failure_leaves_previous_total_snapshot(store: SnapshotStore, tmp_path: Path) -> None:
    store.replace(TestSetName.TOTAL, ["x"])
    write_suite(tmp_path / "sytest", {"broken.pl": 'test "never closed\n'})
    metrics = RecordingMetrics()
    reconciler = _reconciler(store, tmp_path, metrics=metrics)

    with pytest.raises(ParseError, match="unterminated"):
        reconciler.refresh_total()

    assert store.read(TestSetName.TOTAL) == frozenset({"x"})
    assert metrics.published == []


def test_refresh_dispatches_by_set_name(store: SnapshotStore, tmp_path: Path) -> None:
    reconciler = _reconciler(
        store,
        tmp_path,
        passing=FakePassingSource(["p"]),
        extractor=sequence_extractor(["t1", "t2"]),
    )

    assert reconciler.refresh(TestSetName.PASSING).set_name is TestSetName.PASSING
    assert reconciler.refresh(TestSetName.TOTAL).identifier_count == 2


def test_stats_are_zero_before_population(store: SnapshotStore, tmp_path: Path) -> None:
    stats = _reconciler(store, tmp_path).stats()

    assert (stats.total, stats.passing, stats.populated) == (0, 0, False)
    assert stats.ratio_text == "0/0"


def test_refresh_all_reports_total_over_passing(store: SnapshotStore, tmp_path: Path) -> None:
    write_suite(tmp_path / "sytest", {"a.pl": 'test "A",\ntest "B",\ntest "C",\n'})
    reconciler = _reconciler(store, tmp_path, passing=FakePassingSource(["A", "C"]))

    passing, total = reconciler.refresh_all()

    assert (passing.set_name, total.set_name) == (TestSetName.PASSING, TestSetName.TOTAL)
    stats = reconciler.stats()
    assert stats.populated is True
    assert stats.ratio_text == "3/2"


def test_refresh_all_stops_at_first_failure(store: SnapshotStore, tmp_path: Path) -> None:
    mirror = FakeMirror()
    reconciler = _reconciler(store, tmp_path, mirror=mirror, passing=FakePassingSource(NetworkError("down")))

    with pytest.raises(NetworkError):
        reconciler.refresh_all()

    assert mirror.calls == []
    assert not store.is_populated(TestSetName.TOTAL)


def test_concurrent_total_refreshes_are_serialized(store: SnapshotStore, tmp_path: Path) -> None:
    first_started = threading.Event()
    release_first = threading.Event()

    def _gate(index: int) -> None:
        if index == 0:
            first_started.set()
            assert release_first.wait(timeout=5.0)

    extractor = sequence_extractor(["old-1", "old-2"], ["new-1", "new-2", "new-3"], gate=_gate)
    reconciler = _reconciler(store, tmp_path, extractor=extractor)
    results = []

    first = threading.Thread(target=lambda: results.append(reconciler.refresh_total()))
    first.start()
    assert first_started.wait(timeout=5.0)

    second = threading.Thread(target=lambda: results.append(reconciler.refresh_total()))
    second.start()
    second.join(timeout=0.2)
    assert second.is_alive()

    release_first.set()
    first.join(timeout=5.0)
    second.join(timeout=5.0)

    assert [result.identifier_count for result in results] == [2, 3]
    assert store.read(TestSetName.TOTAL) == frozenset({"new-1", "new-2", "new-3"})


def test_publish_stored_counts_reflects_store(store: SnapshotStore, tmp_path: Path) -> None:
    store.replace(TestSetName.TOTAL, ["a", "b", "c"])
    store.replace(TestSetName.PASSING, ["a"])
    metrics = RecordingMetrics()

    stats = _reconciler(store, tmp_path, metrics=metrics).publish_stored_counts()

    assert stats.ratio_text == "3/1"
    assert metrics.latest(TestSetName.TOTAL) == 3
    assert metrics.latest(TestSetName.PASSING) == 1


def test_run_periodic_completes_requested_cycles(store: SnapshotStore, tmp_path: Path) -> None:
    passing = FakePassingSource(["a"])
    reconciler = _reconciler(store, tmp_path, passing=passing, extractor=sequence_extractor(["a", "b"]))

    cycles = reconciler.run_periodic(
        interval_seconds=0.0,
        stop_event=threading.Event(),
        failure_backoff_seconds=0.0,
        max_consecutive_failures=3,
        max_cycles=2,
    )

    assert cycles == 2
    assert passing.calls == 2


def test_run_periodic_recovers_after_failure(store: SnapshotStore, tmp_path: Path) -> None:
    passing = FakePassingSource(NetworkError("blip"), ["a"])
    reconciler = _reconciler(store, tmp_path, passing=passing, extractor=sequence_extractor(["a"]))

    cycles = reconciler.run_periodic(
        interval_seconds=0.0,
        stop_event=threading.Event(),
        failure_backoff_seconds=0.0,
        max_consecutive_failures=2,
        max_cycles=1,
    )

    assert cycles == 1
    assert passing.calls == 2


def test_run_periodic_halts_after_consecutive_failures(store: SnapshotStore, tmp_path: Path) -> None:
    passing = FakePassingSource(NetworkError("down"))
    reconciler = _reconciler(store, tmp_path, passing=passing)

    with pytest.raises(RuntimeError, match=r"max consecutive failures \(3\)"):
        reconciler.run_periodic(
            interval_seconds=0.0,
            stop_event=threading.Event(),
            failure_backoff_seconds=0.0,
            max_consecutive_failures=3,
        )

    assert passing.calls == 3


def test_run_periodic_returns_immediately_when_stopped(store: SnapshotStore, tmp_path: Path) -> None:
    passing = FakePassingSource(["a"])
    stop_event = threading.Event()
    stop_event.set()

    cycles = _reconciler(store, tmp_path, passing=passing).run_periodic(
        interval_seconds=60.0,
        stop_event=stop_event,
        failure_backoff_seconds=0.0,
        max_consecutive_failures=1,
        wait_first=True,
    )

    assert cycles == 0
    assert passing.calls == 0
