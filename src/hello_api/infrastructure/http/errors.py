# Copyright (c)
# SPDX-License-Identifier: MIT
"""HTTP error envelopes and FastAPI exception handlers.

Summary:
    Every error leaving the application is rendered here. Request validation
    failures keep their dedicated wire shape; everything else is wrapped in
    the canonical envelope::

        {"error": {code, http_status, message, details?, request_id}, "success": false}

    4xx responses are logged at warn, 5xx at error with the stack. Error
    responses carry the correlation id and a small set of security headers.

Usage:
    register_exception_handlers(app, verbose=settings.environment is Environment.DEVELOPMENT)
"""

from __future__ import annotations

import logging
from typing import Any, Final

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from hello_api.adapters.validation.errors import RequestValidationFailed
from hello_api.domain.exceptions.base import DomainError
from hello_api.infrastructure.http.request_context import REQUEST_ID_HEADER, get_request_context
from hello_api.infrastructure.logging.logger import get_json_logger

__all__ = [
    "SECURITY_HEADERS",
    "error_envelope",
    "handle_domain_error",
    "handle_http_exception",
    "handle_request_validation_failed",
    "handle_unhandled_exception",
    "handle_validation_error",
    "register_exception_handlers",
]

logger = get_json_logger(__name__)

SECURITY_HEADERS: Final[dict[str, str]] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}


def _request_id(request: Request) -> str:
    return get_request_context(request).request_id


def _headers(request_id: str, extra: dict[str, str] | None = None) -> dict[str, str]:
    headers = {**SECURITY_HEADERS, REQUEST_ID_HEADER: request_id}
    if extra:
        headers.update(extra)
    return headers


def _log(request: Request, status: int, code: str, message: str, exc: BaseException | None = None) -> None:
    meta = {
        "request_id": _request_id(request),
        "code": code,
        "status_code": status,
        "method": request.method,
        "url": str(request.url.path),
        "user_agent": request.headers.get("user-agent", "Unknown"),
        "remote_addr": request.client.host if request.client else None,
    }
    if status >= 500:
        logger.error(message, exc_info=exc, extra={"meta": meta})
    else:
        logger.warning(message, extra={"meta": meta})


def error_envelope(
    *,
    code: str,
    http_status: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Build the canonical error envelope."""
    err: dict[str, Any] = {
        "code": code,
        "http_status": http_status,
        "message": message,
    }
    if details:
        err["details"] = details
    if request_id is not None:
        err["request_id"] = request_id
    return {"error": err, "success": False}


def _envelope_response(
    request: Request,
    *,
    code: str,
    status: int,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    payload = error_envelope(
        code=code,
        http_status=status,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(status_code=status, content=payload, headers=_headers(request_id, headers))


async def handle_request_validation_failed(request: Request, exc: RequestValidationFailed) -> Response:
    """Render a validator failure in the validation wire shape."""
    info = exc.info
    return JSONResponse(
        status_code=info.status_code,
        content=info.to_payload(verbose=exc.verbose),
        headers=_headers(info.request_id),
    )


async def handle_domain_error(request: Request, exc: DomainError) -> Response:
    """Render a handler-raised domain error (business rule or missing resource)."""
    _log(request, exc.status_code, exc.code, exc.message or exc.code)
    return _envelope_response(
        request,
        code=exc.code,
        status=exc.status_code,
        message=exc.message or "Request cannot be processed",
        details=exc.details,
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> Response:
    """Render FastAPI's own parameter validation errors as a 400 envelope."""
    _log(request, 400, "VALIDATION_ERROR", "Request validation failed")
    return _envelope_response(
        request,
        code="VALIDATION_ERROR",
        status=400,
        message="Request validation failed",
        details={"errors": [_jsonable_error(e) for e in exc.errors()]},
    )


def _jsonable_error(err: dict[str, Any]) -> dict[str, Any]:
    return {
        "loc": [str(part) for part in err.get("loc", ())],
        "msg": str(err.get("msg", "")),
        "type": str(err.get("type", "")),
    }


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> Response:
    """Render ``HTTPException`` (including router 404/405) with its own status."""
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    if exc.status_code >= 400:
        _log(request, exc.status_code, "HTTP_ERROR", message)
    return _envelope_response(
        request,
        code="HTTP_ERROR",
        status=exc.status_code,
        message=message,
        details=None if isinstance(exc.detail, str) else {"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def handle_unhandled_exception(*, verbose: bool):
    """Return the catch-all handler; ``verbose`` exposes the exception message."""

    async def _handler(request: Request, exc: Exception) -> Response:
        _log(request, 500, "INTERNAL_SERVER_ERROR", "Unhandled exception", exc)
        return _envelope_response(
            request,
            code="INTERNAL_SERVER_ERROR",
            status=500,
            message=str(exc) if verbose and str(exc) else "Internal server error",
            details={"type": type(exc).__name__} if verbose else None,
        )

    return _handler


def register_exception_handlers(app: FastAPI, *, verbose: bool = False) -> None:
    """Attach every handler to ``app``."""
    app.add_exception_handler(RequestValidationFailed, handle_request_validation_failed)  # type: ignore[arg-type]
    app.add_exception_handler(DomainError, handle_domain_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unhandled_exception(verbose=verbose))
