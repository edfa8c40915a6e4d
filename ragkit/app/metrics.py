from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from ragkit.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
DOCUMENTS_INGESTED = Counter(
    "rag_documents_ingested_total",
    "Documents upserted into a collection",
    ["collection"],
)
PIPELINE_FAILURES = Counter(
    "rag_pipeline_failures_total",
    "Pipeline operations that ended in a typed failure",
    ["error", "stage"],
)


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    if request.url.path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        path = _route_path(request)
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def record_ingested(collection: str, count: int) -> None:
    if settings.metrics_enabled and count:
        DOCUMENTS_INGESTED.labels(collection).inc(count)


def record_failure(error: str, stage: str | None) -> None:
    if settings.metrics_enabled:
        PIPELINE_FAILURES.labels(error, stage or "none").inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
