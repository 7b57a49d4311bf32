from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.context import resolve_client_ip
from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _request_fields(request: Request, status_code: int, duration_ms: float) -> dict[str, Any]:
    # the route and the authenticated user are only known once the handler has run
    context = getattr(request.state, "context", None)
    return {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": duration_ms,
        "client_ip": resolve_client_ip(request),
        "actor": getattr(context, "user_id", None),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` line and one metric observation per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, _elapsed_ms(started))
            observe_http_request(fields["method"], fields["path"], 500, fields["duration_ms"] / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        fields = _request_fields(request, response.status_code, _elapsed_ms(started))
        observe_http_request(fields["method"], fields["path"], response.status_code, fields["duration_ms"] / 1000)
        if response.status_code >= 500:
            logger.warning("http.request", extra=fields)
        elif response.status_code == 429:
            logger.info("http.rate_limited", extra=fields)
        else:
            logger.info("http.request", extra=fields)
        return response
