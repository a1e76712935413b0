"""Protocols and result types shared by the reconciliation components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import enum
from pathlib import Path
from typing import Protocol

from backend.db.enums import TestSetName


class MirrorOutcome(str, enum.Enum):
    """Result of bringing a checkout up to date."""

    CLONED = "CLONED"
    UPDATED = "UPDATED"
    ALREADY_UP_TO_DATE = "ALREADY_UP_TO_DATE"


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one successful named-set refresh."""

    set_name: TestSetName
    identifier_count: int
    refreshed_at_utc: datetime
    mirror_outcome: MirrorOutcome | None = None


@dataclass(frozen=True)
class ProgressStats:
    """Point-in-time counts read from the snapshot store."""

    total: int
    passing: int
    populated: bool

    @property
    def ratio_text(self) -> str:
        return f"{self.total}/{self.passing}"


class RepositoryMirror(Protocol):
    """Keeps a local checkout of a remote repository current."""

    def ensure_up_to_date(self, path: Path, remote_url: str) -> MirrorOutcome:
        """Clone path from remote_url if absent, otherwise pull the latest changes."""


class PassingSetSource(Protocol):
    """Retrieves the identifiers currently reported as passing."""

    def fetch_passing_identifiers(self) -> frozenset[str]:
        """Fetch the passing manifest as a set of identifiers."""


class MetricsSink(Protocol):
    """Receives the latest committed count of each named set."""

    def publish(self, set_name: TestSetName, count: int) -> None:
        """Record count as the current size of set_name."""
