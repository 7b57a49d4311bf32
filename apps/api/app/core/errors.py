from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.context import get_correlation_id
from app.core.config import get_settings


logger = logging.getLogger("app.errors")

_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "bad_request",
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_409_CONFLICT: "conflict",
    status.HTTP_503_SERVICE_UNAVAILABLE: "store_unavailable",
}


@dataclass
class ErrorEnvelope:
    success: bool
    code: str
    message: str
    details: Any
    correlation_id: str | None


def validation_error(errors: list[dict[str, str]], message: str = "Validation failed") -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"message": message, "errors": errors})


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        success=False,
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=asdict(payload))


def http_error_response(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        message = str(detail.get("message", code))
        details = detail.get("errors", detail)
    else:
        message = str(detail)
        details = None
    response = error_response(request, status_code=exc.status_code, code=code, message=message, details=details)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    for item in exc.errors():
        location = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or "request", "message": str(item.get("msg", "invalid value"))})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _STATUS_CODES.get(exc.status_code, "http_error")
        return http_error_response(request, HTTPException(exc.status_code, exc.detail, exc.headers), code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="validation_failed",
            message="Validation failed",
            details=_field_errors(exc),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method, "error": str(exc)})
        settings = get_settings()
        return error_response(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="internal_error",
            message=str(exc) if settings.app_debug else "Internal server error",
            details=None,
        )
