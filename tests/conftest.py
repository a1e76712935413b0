"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from reconciliation.snapshot_store import SnapshotStore, create_store_engine


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    """SQLite-backed snapshot store with its schema in place."""
    snapshot_store = SnapshotStore(create_store_engine(f"sqlite:///{tmp_path / 'stats.db'}"))
    snapshot_store.ensure_schema()
    try:
        yield snapshot_store
    finally:
        snapshot_store.engine.dispose()


@pytest.fixture(scope="session")
def pg_engine() -> Any:
    """Session-scoped PostgreSQL engine for integration tests."""
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL is not set; PostgreSQL integration tests skipped")

    engine = create_store_engine(url)
    try:
        yield engine
    finally:
        engine.dispose()
