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

intake_mutations_total = Counter(
    "intake_mutations_total",
    "Total client intake mutations by action",
    ["action"],
)

intake_validation_failures_total = Counter(
    "intake_validation_failures_total",
    "Total rejected client intake payloads by operation",
    ["operation"],
)

exports_total = Counter(
    "exports_total",
    "Total rendered exports by scope and format",
    ["scope", "format"],
)

export_duration_seconds = Histogram(
    "export_duration_seconds",
    "Export rendering duration in seconds",
    ["scope", "format"],
)

audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Total audit entries that could not be persisted",
    ["action"],
)

staff_mutations_total = Counter(
    "staff_mutations_total",
    "Total HR directory mutations by entity and action",
    ["entity", "action"],
)

login_attempts_total = Counter(
    "login_attempts_total",
    "Total login attempts by outcome",
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
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_intake_mutation(action: str) -> None:
    intake_mutations_total.labels(action=action).inc()


def observe_intake_validation_failure(operation: str) -> None:
    intake_validation_failures_total.labels(operation=operation).inc()


def observe_export(scope: str, export_format: str, duration: float) -> None:
    exports_total.labels(scope=scope, format=export_format).inc()
    export_duration_seconds.labels(scope=scope, format=export_format).observe(duration)


def observe_audit_write_failure(action: str) -> None:
    audit_write_failures_total.labels(action=action).inc()


def observe_staff_mutation(entity: str, action: str) -> None:
    staff_mutations_total.labels(entity=entity, action=action).inc()


def observe_login_attempt(outcome: str) -> None:
    login_attempts_total.labels(outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
