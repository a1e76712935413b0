"""FastAPI surface: progress ratio, Prometheus metrics and webhook endpoints."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from reconciliation.errors import StorageError
from reconciliation.metrics import PrometheusMetricsSink
from reconciliation.reconciler import Reconciler
from reconciliation.webhooks import DispatchOutcome, WebhookDispatcher

logger = logging.getLogger(__name__)

_STATUS_BY_OUTCOME = {
    DispatchOutcome.ACCEPTED: 202,
    DispatchOutcome.IGNORED: 200,
    DispatchOutcome.MALFORMED: 400,
    DispatchOutcome.REJECTED: 401,
    DispatchOutcome.UNKNOWN_SOURCE: 404,
}


def create_app(
    *,
    reconciler: Reconciler,
    dispatcher: WebhookDispatcher,
    metrics: PrometheusMetricsSink,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        dispatcher.shutdown(wait=False)

    app = FastAPI(title="Test-suite progress", docs_url=None, redoc_url=None, lifespan=lifespan)

    @app.get("/", response_class=PlainTextResponse)
    def progress_ratio() -> str:
        try:
            return reconciler.stats().ratio_text
        except StorageError as exc:
            logger.error("Unable to read progress stats: %s", exc)
            raise HTTPException(status_code=503, detail="progress data unavailable") from None

    @app.get("/metrics")
    def prometheus_metrics() -> Response:
        return Response(content=metrics.render(), media_type=metrics.content_type)

    @app.post("/{source}-webhook")
    async def webhook(source: str, request: Request) -> JSONResponse:
        raw_payload = await request.body()
        signature = request.headers.get("X-Hub-Signature-256") or request.headers.get("X-Hub-Signature")
        result = dispatcher.handle(
            source,
            raw_payload,
            signature,
            event_type=request.headers.get("X-GitHub-Event"),
        )
        return JSONResponse(
            status_code=_STATUS_BY_OUTCOME[result.outcome],
            content={"status": result.outcome.value.lower()},
        )

    return app
