"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.snapshot import SNAPSHOT_MODEL_BY_SET, AllTest, PassingTest, SnapshotRefresh

logger = logging.getLogger(__name__)

__all__ = [
    "AllTest",
    "PassingTest",
    "SNAPSHOT_MODEL_BY_SET",
    "SnapshotRefresh",
]
