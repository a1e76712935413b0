"""Initial snapshot schema for the test-suite progress tracker."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE all_tests (
        id INTEGER GENERATED BY DEFAULT AS IDENTITY,
        name TEXT NOT NULL,
        CONSTRAINT pk_all_tests PRIMARY KEY (id),
        CONSTRAINT ck_all_tests_name_not_blank CHECK (length(name) > 0)
    );
    """,
    """
    CREATE TABLE passing_tests (
        id INTEGER GENERATED BY DEFAULT AS IDENTITY,
        name TEXT NOT NULL,
        CONSTRAINT pk_passing_tests PRIMARY KEY (id),
        CONSTRAINT ck_passing_tests_name_not_blank CHECK (length(name) > 0)
    );
    """,
    """
    CREATE TABLE snapshot_refresh (
        set_name TEXT NOT NULL,
        identifier_count INTEGER NOT NULL,
        refreshed_at_utc TIMESTAMPTZ NOT NULL,
        CONSTRAINT pk_snapshot_refresh PRIMARY KEY (set_name),
        CONSTRAINT ck_snapshot_refresh_set_name CHECK (set_name IN ('total', 'passing')),
        CONSTRAINT ck_snapshot_refresh_count_non_negative CHECK (identifier_count >= 0)
    );
    """,
)

DROP_DDL: tuple[str, ...] = (
    "DROP TABLE IF EXISTS snapshot_refresh;",
    "DROP TABLE IF EXISTS passing_tests;",
    "DROP TABLE IF EXISTS all_tests;",
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial snapshot schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    _execute_all(TABLE_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial snapshot schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(DROP_DDL)
    logger.info("Completed initial schema migration downgrade.")
