#!/usr/bin/env python3
"""Test-suite progress tracker CLI."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
import threading
from typing import Any, Sequence

import uvicorn

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend.db.enums import TestSetName, parse_test_set_name
from reconciliation.common import utc_iso
from reconciliation.contracts import RefreshResult
from reconciliation.progress_config import load_progress_config
from reconciliation.service import ProgressService, build_service

logger = logging.getLogger("progress_cli")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _result_payload(result: RefreshResult) -> dict[str, Any]:
    return {
        "set_name": result.set_name.value,
        "identifier_count": result.identifier_count,
        "refreshed_at_utc": utc_iso(result.refreshed_at_utc),
        "mirror_outcome": None if result.mirror_outcome is None else result.mirror_outcome.value,
    }


def _start_periodic_thread(
    service: ProgressService,
    stop_event: threading.Event,
    *,
    wait_first: bool,
) -> threading.Thread | None:
    cfg = service.config
    if cfg.refresh_interval_seconds <= 0:
        return None

    def _loop() -> None:
        try:
            service.reconciler.run_periodic(
                interval_seconds=cfg.refresh_interval_seconds,
                stop_event=stop_event,
                failure_backoff_seconds=cfg.failure_backoff_seconds,
                max_consecutive_failures=cfg.max_consecutive_failures,
                wait_first=wait_first,
            )
        except RuntimeError:
            logger.exception("Periodic reconciliation halted")

    thread = threading.Thread(target=_loop, name="periodic-reconciliation", daemon=True)
    thread.start()
    return thread


def _serve(service: ProgressService, *, skip_initial_refresh: bool) -> int:
    cfg = service.config
    service.reconciler.publish_stored_counts()
    if not skip_initial_refresh:
        service.reconciler.refresh_all()

    stop_event = threading.Event()
    periodic = _start_periodic_thread(service, stop_event, wait_first=not skip_initial_refresh)
    try:
        uvicorn.run(service.app, host=cfg.http_host, port=cfg.http_port, log_level=cfg.log_level.lower())
    finally:
        stop_event.set()
        if periodic is not None:
            periodic.join(timeout=5.0)
        service.dispatcher.shutdown(wait=True)
    return 0


def _test_set_arg(value: str) -> TestSetName:
    try:
        return parse_test_set_name(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Test-suite progress tracker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Populate snapshots and serve the HTTP endpoints")
    serve.add_argument(
        "--skip-initial-refresh",
        action="store_true",
        help="Start from the stored snapshots instead of refreshing both sets first",
    )

    subparsers.add_parser("refresh-total", help="Refresh the total test set from the suite checkout")
    subparsers.add_parser("refresh-passing", help="Refresh the passing test set from the manifest")
    refresh = subparsers.add_parser("refresh", help="Refresh one named test set")
    refresh.add_argument("set_name", type=_test_set_arg, help="Test set to refresh: total or passing")
    subparsers.add_parser("refresh-all", help="Refresh both test sets")
    subparsers.add_parser("status", help="Print stored counts")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    cfg = load_progress_config()
    _configure_logging(cfg.log_level)
    service = build_service(cfg)

    if args.command == "serve":
        return _serve(service, skip_initial_refresh=args.skip_initial_refresh)

    try:
        if args.command == "status":
            stats = service.reconciler.stats()
            print(
                json.dumps(
                    {
                        "total": stats.total,
                        "passing": stats.passing,
                        "populated": stats.populated,
                        "ratio": stats.ratio_text,
                    },
                    sort_keys=True,
                )
            )
            return 0

        if args.command == "refresh-total":
            print(json.dumps(_result_payload(service.reconciler.refresh_total()), sort_keys=True))
            return 0

        if args.command == "refresh-passing":
            print(json.dumps(_result_payload(service.reconciler.refresh_passing()), sort_keys=True))
            return 0

        if args.command == "refresh":
            print(json.dumps(_result_payload(service.reconciler.refresh(args.set_name)), sort_keys=True))
            return 0

        if args.command == "refresh-all":
            results = service.reconciler.refresh_all()
            print(json.dumps([_result_payload(result) for result in results], sort_keys=True))
            return 0

        raise SystemExit(f"Unknown command: {args.command}")
    finally:
        service.dispatcher.shutdown(wait=True)


if __name__ == "__main__":
    raise SystemExit(main())
