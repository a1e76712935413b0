"""Transactional named-set snapshot store on SQLAlchemy."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Iterable

from sqlalchemy import Engine, create_engine, delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from backend.db.base import metadata
from backend.db.enums import TestSetName
from backend.db.models import SNAPSHOT_MODEL_BY_SET, SnapshotRefresh
from reconciliation.common import KeyedLocks, utc_now
from reconciliation.errors import StorageError

logger = logging.getLogger(__name__)

_REFRESH_TABLE = SnapshotRefresh.__table__


def create_store_engine(database_url: str, *, busy_timeout_seconds: float = 30.0) -> Engine:
    """Build an engine for database_url, sharing SQLite connections across threads."""
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": busy_timeout_seconds}
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


class SnapshotStore:
    """Named test sets with atomic whole-set replacement and committed-only reads."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._set_locks = KeyedLocks()

    @classmethod
    def from_url(cls, database_url: str) -> "SnapshotStore":
        return cls(create_store_engine(database_url))

    @property
    def engine(self) -> Engine:
        return self._engine

    def ensure_schema(self) -> None:
        """Create snapshot tables if they do not exist."""
        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Unable to create snapshot schema: {exc}") from exc

    def replace(self, set_name: TestSetName, identifiers: Iterable[str]) -> int:
        """Atomically swap the contents of set_name for identifiers; return the stored count."""
        table = SNAPSHOT_MODEL_BY_SET[set_name].__table__
        rows = [{"name": name} for name in sorted(set(identifiers))]
        refreshed_at = utc_now()

        with self._set_locks.hold(set_name):
            try:
                with self._engine.begin() as conn:
                    conn.execute(delete(table))
                    if rows:
                        conn.execute(insert(table), rows)
                    conn.execute(delete(_REFRESH_TABLE).where(_REFRESH_TABLE.c.set_name == set_name.value))
                    conn.execute(
                        insert(_REFRESH_TABLE),
                        {
                            "set_name": set_name.value,
                            "identifier_count": len(rows),
                            "refreshed_at_utc": refreshed_at,
                        },
                    )
            except SQLAlchemyError as exc:
                raise StorageError(f"Unable to replace {set_name.value} snapshot: {exc}") from exc

        logger.debug("Stored %d identifiers in %s snapshot", len(rows), set_name.value)
        return len(rows)

    def read(self, set_name: TestSetName) -> frozenset[str]:
        """Return the committed identifiers of set_name."""
        table = SNAPSHOT_MODEL_BY_SET[set_name].__table__
        try:
            with self._engine.connect() as conn:
                names = conn.execute(select(table.c.name)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Unable to read {set_name.value} snapshot: {exc}") from exc
        return frozenset(names)

    def size(self, set_name: TestSetName) -> int:
        """Return the number of identifiers in set_name."""
        table = SNAPSHOT_MODEL_BY_SET[set_name].__table__
        try:
            with self._engine.connect() as conn:
                count = conn.execute(select(func.count()).select_from(table)).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageError(f"Unable to count {set_name.value} snapshot: {exc}") from exc
        return int(count)

    def last_refreshed_at(self, set_name: TestSetName) -> datetime | None:
        """Return when set_name was last replaced, or None if it never was."""
        try:
            with self._engine.connect() as conn:
                value = conn.execute(
                    select(_REFRESH_TABLE.c.refreshed_at_utc).where(_REFRESH_TABLE.c.set_name == set_name.value)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"Unable to read {set_name.value} refresh record: {exc}") from exc
        if value is not None and value.tzinfo is None:
            # SQLite drops the offset on round trip.
            value = value.replace(tzinfo=timezone.utc)
        return value

    def is_populated(self, set_name: TestSetName) -> bool:
        """Return True once set_name has been replaced at least once."""
        return self.last_refreshed_at(set_name) is not None
