"""Test-set reconciliation pipeline package."""

from reconciliation.contracts import MirrorOutcome, ProgressStats, RefreshResult
from reconciliation.errors import (
    AuthenticationError,
    NetworkError,
    ParseError,
    ProgressError,
    RepositoryError,
    StorageError,
)
from reconciliation.identifier_extractor import extract_identifiers, scan_test_declarations
from reconciliation.passing_fetcher import ManifestFetcher, fetch_passing_identifiers, parse_manifest
from reconciliation.progress_config import ProgressConfig, load_progress_config
from reconciliation.reconciler import Reconciler
from reconciliation.repository_mirror import GitRepositoryMirror
from reconciliation.snapshot_store import SnapshotStore
from reconciliation.webhooks import DispatchOutcome, WebhookDispatcher, WebhookSource, verify_signature

__all__ = [
    "AuthenticationError",
    "DispatchOutcome",
    "GitRepositoryMirror",
    "ManifestFetcher",
    "MirrorOutcome",
    "NetworkError",
    "ParseError",
    "ProgressConfig",
    "ProgressError",
    "ProgressStats",
    "Reconciler",
    "RefreshResult",
    "RepositoryError",
    "SnapshotStore",
    "StorageError",
    "WebhookDispatcher",
    "WebhookSource",
    "extract_identifiers",
    "fetch_passing_identifiers",
    "load_progress_config",
    "parse_manifest",
    "scan_test_declarations",
    "verify_signature",
]
