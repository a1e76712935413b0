"""Named test-set snapshot model definitions."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Integer,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import TestSetName

logger = logging.getLogger(__name__)


class AllTest(Base):
    """Every test identifier declared by the mirrored test suite."""

    __tablename__ = "all_tests"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_all_tests"),
        CheckConstraint("length(name) > 0", name="ck_all_tests_name_not_blank"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class PassingTest(Base):
    """Test identifiers currently reported as passing by the monitored server."""

    __tablename__ = "passing_tests"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_passing_tests"),
        CheckConstraint("length(name) > 0", name="ck_passing_tests_name_not_blank"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class SnapshotRefresh(Base):
    """Latest successful refresh of each named set, written with its snapshot rows."""

    __tablename__ = "snapshot_refresh"
    __table_args__ = (
        PrimaryKeyConstraint("set_name", name="pk_snapshot_refresh"),
        CheckConstraint("set_name IN ('total', 'passing')", name="ck_snapshot_refresh_set_name"),
        CheckConstraint("identifier_count >= 0", name="ck_snapshot_refresh_count_non_negative"),
    )

    set_name: Mapped[str] = mapped_column(Text, nullable=False)
    identifier_count: Mapped[int] = mapped_column(Integer, nullable=False)
    refreshed_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


SNAPSHOT_MODEL_BY_SET: dict[TestSetName, type[AllTest] | type[PassingTest]] = {
    TestSetName.TOTAL: AllTest,
    TestSetName.PASSING: PassingTest,
}
