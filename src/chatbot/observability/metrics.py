from __future__ import annotations

"""Prometheus metrics for the chatbot FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters describing the chat turn pipeline.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds); streamed turns land in the tail
REQUEST_LATENCY = Histogram(
    "chatbot_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

CHAT_TURNS = Counter(
    "chatbot_chat_turns_total",
    "Chat turns by delivery mode and outcome",
    labelnames=("mode", "outcome"),
)

RELAY_FALLBACKS = Counter(
    "chatbot_relay_fallback_total",
    "Non-streaming retries issued after an empty upstream stream",
    labelnames=("outcome",),
)

RELAY_CHUNK_ANOMALIES = Counter(
    "chatbot_relay_chunk_anomalies_total",
    "Upstream stream lines skipped while decoding",
    labelnames=("kind",),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /projects/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api" and len(segs) > 1:
        return "/api/" + segs[1]
    return "/" + segs[0]


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.endswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
