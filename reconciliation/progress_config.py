"""Environment-backed configuration for the progress tracker."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import re

from backend.db.enums import TestSetName


DEFAULT_SUITE_GIT_URL = "https://github.com/matrix-org/sytest"
DEFAULT_PASSING_MANIFEST_URL = "https://raw.githubusercontent.com/matrix-org/dendrite/master/testfile"

_SOURCE_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_.]*$")

# Names understood by both logging and uvicorn.
_LOG_LEVELS: tuple[str, ...] = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
_LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


@dataclass(frozen=True)
class ProgressConfig:
    """Canonical configuration surface, constructed once at startup."""

    suite_git_url: str
    suite_git_dir: Path
    suite_tests_subdir: str
    passing_manifest_url: str
    server_source_name: str
    server_webhook_secret: str
    suite_source_name: str
    suite_webhook_secret: str
    database_path: Path
    database_url: str
    http_host: str
    http_port: int
    log_level: str
    network_timeout_seconds: float
    fetch_attempts: int
    git_timeout_seconds: float
    webhook_workers: int
    refresh_interval_seconds: int
    failure_backoff_seconds: int
    max_consecutive_failures: int

    @property
    def suite_tests_dir(self) -> Path:
        """Directory of test-definition files inside the checkout."""
        return self.suite_git_dir / self.suite_tests_subdir

    def source_bindings(self) -> dict[str, tuple[str, TestSetName]]:
        """Map each webhook source name to its secret and the set it refreshes."""
        return {
            self.server_source_name: (self.server_webhook_secret, TestSetName.PASSING),
            self.suite_source_name: (self.suite_webhook_secret, TestSetName.TOTAL),
        }


_REQUIRED_KEYS: tuple[str, ...] = (
    "PROGRESS_SERVER_WEBHOOK_SECRET",
    "PROGRESS_SUITE_WEBHOOK_SECRET",
)


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value for {name}: {raw}") from exc
    return value


def _read_log_level(name: str, default: str) -> str:
    level = os.getenv(name, default).strip().upper()
    level = _LOG_LEVEL_ALIASES.get(level, level)
    if level not in _LOG_LEVELS:
        raise RuntimeError(f"Invalid log level for {name}: {level}")
    return level


def _read_source_name(name: str, default: str) -> str:
    value = _read_env(name, default).lower()
    if not _SOURCE_NAME_RE.match(value):
        raise RuntimeError(f"Invalid webhook source name for {name}: {value}")
    return value


def load_progress_config() -> ProgressConfig:
    """Load and validate tracker configuration from environment."""
    for key in _REQUIRED_KEYS:
        _read_env(key)

    server_source = _read_source_name("PROGRESS_SERVER_SOURCE_NAME", "dendrite")
    suite_source = _read_source_name("PROGRESS_SUITE_SOURCE_NAME", "sytest")
    if server_source == suite_source:
        raise RuntimeError("PROGRESS_SERVER_SOURCE_NAME and PROGRESS_SUITE_SOURCE_NAME must differ")

    tests_subdir = _read_env("PROGRESS_SUITE_TESTS_SUBDIR", "tests")
    if Path(tests_subdir).is_absolute() or ".." in Path(tests_subdir).parts:
        raise RuntimeError(f"PROGRESS_SUITE_TESTS_SUBDIR must be relative to the checkout: {tests_subdir}")

    database_path = Path(_read_env("PROGRESS_DATABASE_PATH", "stats.db")).resolve()
    database_url = os.getenv("PROGRESS_DATABASE_URL", "").strip() or f"sqlite:///{database_path}"

    http_port = _read_int("PROGRESS_HTTP_PORT", 8765)
    if not 0 < http_port < 65536:
        raise RuntimeError(f"Invalid port for PROGRESS_HTTP_PORT: {http_port}")

    fetch_attempts = _read_int("PROGRESS_FETCH_ATTEMPTS", 3)
    if fetch_attempts < 1:
        raise RuntimeError("PROGRESS_FETCH_ATTEMPTS must be at least 1")

    webhook_workers = _read_int("PROGRESS_WEBHOOK_WORKERS", 4)
    if webhook_workers < 1:
        raise RuntimeError("PROGRESS_WEBHOOK_WORKERS must be at least 1")

    return ProgressConfig(
        suite_git_url=_read_env("PROGRESS_SUITE_GIT_URL", DEFAULT_SUITE_GIT_URL),
        suite_git_dir=Path(_read_env("PROGRESS_SUITE_GIT_DIR", "sytest")).resolve(),
        suite_tests_subdir=tests_subdir,
        passing_manifest_url=_read_env("PROGRESS_PASSING_MANIFEST_URL", DEFAULT_PASSING_MANIFEST_URL),
        server_source_name=server_source,
        server_webhook_secret=_read_env("PROGRESS_SERVER_WEBHOOK_SECRET"),
        suite_source_name=suite_source,
        suite_webhook_secret=_read_env("PROGRESS_SUITE_WEBHOOK_SECRET"),
        database_path=database_path,
        database_url=database_url,
        http_host=_read_env("PROGRESS_HTTP_HOST", "0.0.0.0"),
        http_port=http_port,
        log_level=_read_log_level("PROGRESS_LOG_LEVEL", "INFO"),
        network_timeout_seconds=_read_float("PROGRESS_NETWORK_TIMEOUT_SECONDS", 20.0),
        fetch_attempts=fetch_attempts,
        git_timeout_seconds=_read_float("PROGRESS_GIT_TIMEOUT_SECONDS", 300.0),
        webhook_workers=webhook_workers,
        refresh_interval_seconds=_read_int("PROGRESS_REFRESH_INTERVAL_SECONDS", 0),
        failure_backoff_seconds=_read_int("PROGRESS_FAILURE_BACKOFF_SECONDS", 60),
        max_consecutive_failures=_read_int("PROGRESS_MAX_CONSECUTIVE_FAILURES", 10),
    )
