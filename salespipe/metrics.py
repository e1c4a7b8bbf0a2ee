from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

pipeline_conversions_total = Counter(
    "pipeline_conversions_total",
    "Pipeline conversions and reversals by kind",
    ["kind"],
)

pipeline_sequence_conflicts_total = Counter(
    "pipeline_sequence_conflicts_total",
    "Unique-number conflicts recovered or exhausted by counter key",
    ["counter"],
)

pipeline_items_synced_total = Counter(
    "pipeline_items_synced_total",
    "Line items written through batch replace or clone",
    ["item_type"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", _UUID_RE.sub("{id}", path))


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        for attr in ("path_format", "path"):
            template = getattr(route, attr, None)
            if isinstance(template, str) and template:
                return _PATH_PARAM_RE.sub("{id}", template)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_conversion(kind: str) -> None:
    pipeline_conversions_total.labels(kind=kind).inc()


def observe_sequence_conflict(counter_key: str) -> None:
    pipeline_sequence_conflicts_total.labels(counter=counter_key).inc()


def observe_items_synced(item_type: str, count: int) -> None:
    if count > 0:
        pipeline_items_synced_total.labels(item_type=item_type).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
