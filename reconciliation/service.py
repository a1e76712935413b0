"""Object graph for one tracker process, built from a single config object."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from fastapi import FastAPI

from reconciliation.common import ensure_dir
from reconciliation.http_app import create_app
from reconciliation.metrics import PrometheusMetricsSink
from reconciliation.passing_fetcher import ManifestFetcher
from reconciliation.progress_config import ProgressConfig
from reconciliation.reconciler import Reconciler
from reconciliation.repository_mirror import GitRepositoryMirror
from reconciliation.snapshot_store import SnapshotStore
from reconciliation.webhooks import WebhookDispatcher, WebhookSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressService:
    config: ProgressConfig
    store: SnapshotStore
    metrics: PrometheusMetricsSink
    reconciler: Reconciler
    dispatcher: WebhookDispatcher
    app: FastAPI


def build_service(config: ProgressConfig) -> ProgressService:
    """Wire store, mirror, fetcher, metrics, reconciler, dispatcher and app for config."""
    if config.database_url.startswith("sqlite"):
        ensure_dir(config.database_path.parent)
    store = SnapshotStore.from_url(config.database_url)
    store.ensure_schema()

    metrics = PrometheusMetricsSink()
    reconciler = Reconciler(
        store=store,
        mirror=GitRepositoryMirror(timeout_seconds=config.git_timeout_seconds),
        passing_source=ManifestFetcher(
            manifest_url=config.passing_manifest_url,
            timeout_seconds=config.network_timeout_seconds,
            attempts=config.fetch_attempts,
        ),
        metrics=metrics,
        suite_git_dir=config.suite_git_dir,
        suite_git_url=config.suite_git_url,
        suite_tests_subdir=config.suite_tests_subdir,
    )
    dispatcher = WebhookDispatcher(
        sources=[
            WebhookSource(name=name, secret=secret, refresh=set_name)
            for name, (secret, set_name) in config.source_bindings().items()
        ],
        refresher=reconciler,
        max_workers=config.webhook_workers,
    )
    logger.debug("Webhook sources: %s", ", ".join(dispatcher.source_names))
    app = create_app(reconciler=reconciler, dispatcher=dispatcher, metrics=metrics)
    return ProgressService(
        config=config,
        store=store,
        metrics=metrics,
        reconciler=reconciler,
        dispatcher=dispatcher,
        app=app,
    )
