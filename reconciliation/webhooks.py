"""Signed webhook verification and refresh dispatch."""

from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
import enum
import hashlib
import hmac
import json
import logging
import threading
from typing import Mapping, Optional, Protocol, Sequence

from backend.db.enums import TestSetName
from reconciliation.contracts import RefreshResult
from reconciliation.errors import AuthenticationError

logger = logging.getLogger(__name__)

PUSH_EVENT = "push"

_DIGESTS = {
    "sha256": hashlib.sha256,
    "sha1": hashlib.sha1,
}


class Refresher(Protocol):
    def refresh(self, set_name: TestSetName) -> RefreshResult:
        """Refresh one named set."""


@dataclass(frozen=True)
class WebhookSource:
    """An upstream project allowed to trigger one kind of refresh."""

    name: str
    secret: str
    refresh: TestSetName


class DispatchOutcome(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    IGNORED = "IGNORED"
    REJECTED = "REJECTED"
    MALFORMED = "MALFORMED"
    UNKNOWN_SOURCE = "UNKNOWN_SOURCE"


@dataclass(frozen=True)
class DispatchResult:
    outcome: DispatchOutcome
    source: str
    refresh: TestSetName | None = None
    future: Optional[Future] = None


def verify_signature(secret: str, raw_payload: bytes, signature_header: str | None) -> None:
    """Check a GitHub-style `<algo>=<hexdigest>` HMAC of raw_payload under secret."""
    if not signature_header:
        raise AuthenticationError("Missing webhook signature")
    algorithm, sep, received = signature_header.strip().partition("=")
    digest = _DIGESTS.get(algorithm.lower())
    if not sep or digest is None:
        raise AuthenticationError(f"Unsupported webhook signature format: {algorithm!r}")
    expected = hmac.new(secret.encode("utf-8"), raw_payload, digest).hexdigest()
    if not hmac.compare_digest(expected, received.strip().lower()):
        raise AuthenticationError("Webhook signature mismatch")


class WebhookDispatcher:
    """Verifies inbound webhooks and schedules the bound refresh off the request thread."""

    def __init__(
        self,
        *,
        sources: Sequence[WebhookSource],
        refresher: Refresher,
        executor: Executor | None = None,
        max_workers: int = 4,
    ) -> None:
        self._sources: Mapping[str, WebhookSource] = {source.name: source for source in sources}
        if len(self._sources) != len(sources):
            raise ValueError("Webhook source names must be unique")
        self._refresher = refresher
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="refresh")
        # At most one not-yet-started refresh per set; later pushes join it.
        self._queued: dict[TestSetName, Future] = {}
        self._queued_lock = threading.RLock()

    @property
    def source_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._sources))

    def _run_refresh(self, source: str, set_name: TestSetName) -> RefreshResult | None:
        with self._queued_lock:
            self._queued.pop(set_name, None)
        try:
            return self._refresher.refresh(set_name)
        except Exception:
            logger.exception("[%s webhook handler] %s refresh failed", source, set_name.value)
            return None

    def handle(
        self,
        source: str,
        raw_payload: bytes,
        signature_header: str | None,
        *,
        event_type: str | None,
    ) -> DispatchResult:
        """Verify and act on one webhook delivery; never raises for bad input."""
        binding = self._sources.get(source)
        if binding is None:
            logger.warning("Webhook for unknown source %r", source)
            return DispatchResult(outcome=DispatchOutcome.UNKNOWN_SOURCE, source=source)

        try:
            verify_signature(binding.secret, raw_payload, signature_header)
        except AuthenticationError as exc:
            logger.warning("[%s webhook handler] %s", source, exc)
            return DispatchResult(outcome=DispatchOutcome.REJECTED, source=source)

        if (event_type or "").strip().lower() != PUSH_EVENT:
            logger.debug("[%s webhook handler] Unhandled webhook request type: %s", source, event_type)
            return DispatchResult(outcome=DispatchOutcome.IGNORED, source=source)

        try:
            payload = json.loads(raw_payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            payload = None
        if not isinstance(payload, dict):
            logger.warning("[%s webhook handler] Push payload is not a JSON object", source)
            return DispatchResult(outcome=DispatchOutcome.MALFORMED, source=source)

        logger.info(
            "[%s webhook handler] Push to %s (%s), refreshing %s tests",
            source,
            payload.get("ref", "?"),
            str(payload.get("after", "?"))[:12],
            binding.refresh.value,
        )
        with self._queued_lock:
            future = self._queued.get(binding.refresh)
            if future is not None:
                logger.debug("[%s webhook handler] %s refresh already queued", source, binding.refresh.value)
            else:
                future = self._executor.submit(self._run_refresh, source, binding.refresh)
                if not future.done():
                    self._queued[binding.refresh] = future
        return DispatchResult(
            outcome=DispatchOutcome.ACCEPTED,
            source=source,
            refresh=binding.refresh,
            future=future,
        )

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the refresh worker pool if this dispatcher created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
