"""Passing-manifest adapter for the monitored server's currently passing tests."""

from __future__ import annotations

from http.client import HTTPException
import logging
from typing import Callable, Optional
from urllib.request import Request, urlopen

from reconciliation.errors import NetworkError

logger = logging.getLogger(__name__)


def parse_manifest(text: str) -> frozenset[str]:
    """Split a newline-delimited manifest into identifiers, dropping blank lines."""
    identifiers = (line.rstrip("\r") for line in text.split("\n"))
    return frozenset(identifier for identifier in identifiers if identifier.strip())


class ManifestFetcher:
    """Read-only manifest adapter with bounded retries and a per-request timeout."""

    def __init__(
        self,
        *,
        manifest_url: str,
        timeout_seconds: float = 20.0,
        attempts: int = 3,
        requester: Optional[Callable[[str], str]] = None,
    ) -> None:
        self._manifest_url = manifest_url
        self._timeout_seconds = timeout_seconds
        self._attempts = max(1, attempts)
        self._requester = requester

    def _request_text(self) -> str:
        if self._requester is not None:
            return self._requester(self._manifest_url)

        request = Request(url=self._manifest_url, headers={"Accept": "text/plain"}, method="GET")
        last_error: Exception | None = None
        for _ in range(self._attempts):
            try:
                with urlopen(request, timeout=self._timeout_seconds) as response:
                    status = getattr(response, "status", 200)
                    if not 200 <= status < 300:
                        raise NetworkError(f"Manifest request returned HTTP {status}")
                    return response.read().decode("utf-8")
            except (OSError, HTTPException, NetworkError) as exc:
                last_error = exc
                logger.debug("Manifest request to %s failed: %s", self._manifest_url, exc)
                continue
            except UnicodeDecodeError as exc:
                raise NetworkError(f"Manifest at {self._manifest_url} is not valid UTF-8") from exc

        if last_error is None:
            raise NetworkError("Manifest request failed without an exception")
        raise NetworkError(f"Manifest request failed after retries: {last_error}") from last_error

    def fetch_passing_identifiers(self) -> frozenset[str]:
        """Fetch the manifest and return the set of passing identifiers."""
        logger.debug("Fetching passing manifest from %s", self._manifest_url)
        identifiers = parse_manifest(self._request_text())
        logger.debug("Got passing count: %d", len(identifiers))
        return identifiers


def fetch_passing_identifiers(manifest_url: str, *, timeout_seconds: float = 20.0, attempts: int = 3) -> frozenset[str]:
    """One-shot fetch of the passing manifest at manifest_url."""
    return ManifestFetcher(
        manifest_url=manifest_url,
        timeout_seconds=timeout_seconds,
        attempts=attempts,
    ).fetch_passing_identifiers()
