from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.context import resolve_client_ip


# expired windows are swept once this many clients are tracked
_SWEEP_THRESHOLD = 10_000


@dataclass
class _Window:
    opened_at: float
    hits: int = 0


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: int


class _FixedWindowCounter:
    """Counts hits per client in fixed windows opened by the client's first request."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}

    def hit(self, client_key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = time.monotonic()
        with self._lock:
            if len(self._windows) >= _SWEEP_THRESHOLD:
                self._sweep(now, window_seconds)

            window = self._windows.get(client_key)
            if window is None or now - window.opened_at >= window_seconds:
                window = _Window(opened_at=now)
                self._windows[client_key] = window
            window.hits += 1

            return RateLimitDecision(
                allowed=window.hits <= limit,
                limit=limit,
                remaining=max(0, limit - window.hits),
                reset_after=max(1, math.ceil(window.opened_at + window_seconds - now)),
            )

    def _sweep(self, now: float, window_seconds: int) -> None:
        expired = [key for key, window in self._windows.items() if now - window.opened_at >= window_seconds]
        for key in expired:
            del self._windows[key]

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


_counter = _FixedWindowCounter()


def _quota_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_after),
    }


class ApiRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP request quota over every ``/api`` route; ``/health`` and ``/metrics`` are exempt."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled or not request.url.path.startswith("/api/"):
            return await call_next(request)

        decision = _counter.hit(
            client_key=resolve_client_ip(request) or "unknown",
            limit=settings.rate_limit_api_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        if decision.allowed:
            response = await call_next(request)
            response.headers.update(_quota_headers(decision))
            return response

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or request.headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "success": False,
                "code": "rate_limited",
                "message": "Too many requests from this IP, please try again later.",
                "details": None,
                "correlation_id": correlation_id,
            },
        )
        response.headers.update(_quota_headers(decision))
        response.headers["Retry-After"] = str(decision.reset_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def reset_rate_limiter() -> None:
    _counter.clear()
