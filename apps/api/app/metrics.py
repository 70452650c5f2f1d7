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

crm_scope_resolutions_total = Counter(
    "crm_scope_resolutions_total",
    "Visibility scope resolutions by resource and resulting scope kind",
    ["resource", "scope"],
)

crm_scope_lookups_total = Counter(
    "crm_scope_lookups_total",
    "Read-only lookups issued while resolving a visibility scope",
    ["step"],
)

crm_store_failures_total = Counter(
    "crm_store_failures_total",
    "Store requests that failed at the fetch boundary",
    ["path"],
)

crm_import_rows_total = Counter(
    "crm_import_rows_total",
    "Imported CSV rows by outcome",
    ["outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_resolution(resource: str, scope: str) -> None:
    crm_scope_resolutions_total.labels(resource=resource, scope=scope).inc()


def observe_scope_lookup(step: str) -> None:
    crm_scope_lookups_total.labels(step=step).inc()


def observe_store_failure(path: str) -> None:
    crm_store_failures_total.labels(path=path).inc()


def observe_import_rows(created: int, failed: int) -> None:
    if created > 0:
        crm_import_rows_total.labels(outcome="created").inc(created)
    if failed > 0:
        crm_import_rows_total.labels(outcome="error").inc(failed)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
