"""Git-backed mirror of the test-suite repository."""

from __future__ import annotations

import logging
import os
from pathlib import Path
import shutil
import subprocess
from typing import Sequence
import uuid

from reconciliation.common import KeyedLocks, ensure_dir
from reconciliation.contracts import MirrorOutcome
from reconciliation.errors import RepositoryError

logger = logging.getLogger(__name__)


class GitRepositoryMirror:
    """Clone-if-absent, pull-if-present mirror with one update in flight per checkout path."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 300.0,
        git_binary: str = "git",
        remote_name: str = "origin",
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._git_binary = git_binary
        self._remote_name = remote_name
        self._path_locks = KeyedLocks()

    def _git(self, args: Sequence[str], *, cwd: Path | None = None) -> str:
        command = [self._git_binary, *args]
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=True,
            )
        except subprocess.TimeoutExpired as exc:
            raise RepositoryError(
                f"git {args[0]} timed out after {self._timeout_seconds:g}s"
            ) from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            raise RepositoryError(f"git {args[0]} failed (exit {exc.returncode}): {detail}") from exc
        except OSError as exc:
            raise RepositoryError(f"Unable to run {self._git_binary}: {exc}") from exc
        return completed.stdout.strip()

    def _head(self, path: Path) -> str:
        return self._git(["rev-parse", "HEAD"], cwd=path)

    def _clone(self, path: Path, remote_url: str) -> MirrorOutcome:
        ensure_dir(path.parent)
        staging = path.parent / f".{path.name}.clone-{uuid.uuid4().hex[:12]}"
        logger.debug("Cloning %s into %s", remote_url, staging)
        try:
            self._git(["clone", "--depth", "1", "--", remote_url, str(staging)])
            staging.rename(path)
        except (RepositoryError, OSError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            if isinstance(exc, RepositoryError):
                raise
            raise RepositoryError(f"Unable to move fresh clone into {path}: {exc}") from exc
        logger.info("Cloned %s into %s", remote_url, path)
        return MirrorOutcome.CLONED

    def _pull(self, path: Path) -> MirrorOutcome:
        if not (path / ".git").exists():
            raise RepositoryError(f"{path} exists but is not a git checkout")
        before = self._head(path)
        logger.debug("Pulling %s in %s", self._remote_name, path)
        self._git(["pull", "--ff-only", self._remote_name], cwd=path)
        after = self._head(path)
        if before == after:
            logger.debug("Checkout %s already up to date at %s", path, after)
            return MirrorOutcome.ALREADY_UP_TO_DATE
        logger.info("Updated checkout %s from %s to %s", path, before[:12], after[:12])
        return MirrorOutcome.UPDATED

    def ensure_up_to_date(self, path: Path, remote_url: str) -> MirrorOutcome:
        """Clone remote_url into path if absent, otherwise fast-forward it to the remote."""
        resolved = Path(path).resolve()
        with self._path_locks.hold(str(resolved)):
            if not resolved.exists():
                return self._clone(resolved, remote_url)
            return self._pull(resolved)
