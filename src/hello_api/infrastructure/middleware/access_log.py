# Copyright (c)
# SPDX-License-Identifier: MIT
"""Access Log Middleware.

Summary:
    Emits exactly one structured access record per HTTP request, after the
    final response body chunk has been handed to the server, or none when a
    skip rule matches. Also owns the request context: it creates it before the
    app runs, binds the correlation id to the logging contextvar and echoes it
    as ``X-Request-Id``.

Design:
    * Pure ASGI middleware wrapping ``send`` (no response buffering); the
      record is emitted when ``http.response.body`` arrives with
      ``more_body`` false.
    * Severity: status >= 500 -> error, 400-499 -> warn, otherwise info.
    * Message by format: ``json`` (object string), ``dev`` (interpolated line),
      ``combined`` (``METHOD PATH STATUS BYTES - 12.34ms``). ``auto`` picks
      json in production, dev at debug level, combined otherwise. The
      structured metadata is the same for every format.
    * App failure before a response started: the record still emits with
      500 (exception) or 499 (cancelled), then the exception propagates.
    * Failures inside the middleware never propagate; they are logged as
      ``AccessLogInternalError``.

Fields:
    timestamp, request_id, method, url, path, http_version, status,
    content_length, response_time_ms, user_agent, remote_addr, remote_user,
    referrer.

Skip rules (first match wins):
    1. production and path == ``/health``;
    2. static asset extension;
    3. ``OPTIONS`` unless the configured level is debug.

Usage:
    app.add_middleware(AccessLogMiddleware, settings=settings.access)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
from datetime import UTC, datetime
from typing import Any, Final

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from hello_api.config.settings import AccessSettings
from hello_api.infrastructure.http.request_context import (
    REQUEST_ID_HEADER,
    RequestContext,
    ensure_request_context,
)
from hello_api.infrastructure.logging.logger import (
    get_json_logger,
    level_name,
    reset_request_context,
    set_request_context,
    stream,
)
from hello_api.infrastructure.logging.rotating import iso_utc
from hello_api.infrastructure.observability.metrics import (
    get_http_requests_total,
    get_http_server_request_duration_seconds,
)

__all__ = ["AccessLogMiddleware", "severity_for", "should_skip"]

_logger: logging.Logger = get_json_logger("hello_api.http.access")

_STATIC_RE: Final[re.Pattern[str]] = re.compile(
    r"\.(css|js|png|jpg|jpeg|gif|ico|svg|woff|woff2|ttf|eot)$", re.IGNORECASE
)
STATUS_CLIENT_CLOSED: Final[int] = 499


def severity_for(status: int) -> int:
    """Map an HTTP status onto the access record's log level."""
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def should_skip(method: str, path: str, settings: AccessSettings) -> bool:
    """Return True when a skip rule suppresses the record for this request."""
    if settings.skip_health and settings.production and path == "/health":
        return True
    if settings.skip_static_assets and _STATIC_RE.search(path):
        return True
    return settings.skip_options and method == "OPTIONS" and settings.level != "debug"


def _resolve_format(settings: AccessSettings) -> str:
    if settings.format != "auto":
        return settings.format
    if settings.production:
        return "json"
    if settings.level == "debug":
        return "dev"
    return "combined"


def _headers(scope: Scope) -> dict[str, str]:
    return {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers") or ()}


def _remote_user(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, _ = decoded.partition(":")
    return user if sep and user else None


class _Exchange:
    """Mutable per-request bookkeeping shared with the wrapped ``send``."""

    __slots__ = ("content_length", "emitted", "started", "status")

    def __init__(self) -> None:
        self.status: int | None = None
        self.content_length: int = 0
        self.started = False
        self.emitted = False


class AccessLogMiddleware:
    """Structured access logging middleware (pure ASGI)."""

    def __init__(
        self,
        app: ASGIApp,
        settings: AccessSettings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.app = app
        self.settings = settings or AccessSettings()
        self.format = _resolve_format(self.settings)
        self.logger = logger or _logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ctx = ensure_request_context(scope)
        token = set_request_context(request_id=ctx.request_id)
        exchange = _Exchange()
        self._incoming(scope, ctx)

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                exchange.started = True
                exchange.status = int(message["status"])
                headers = MutableHeaders(scope=message)
                if REQUEST_ID_HEADER.lower() not in headers:
                    headers.append(REQUEST_ID_HEADER, ctx.request_id)
                raw_length = headers.get("content-length")
                exchange.content_length = int(raw_length) if raw_length and raw_length.isdigit() else 0
            await send(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                self._finish(scope, ctx, exchange, exchange.status or 200)

        try:
            await self.app(scope, receive, send_wrapper)
        except asyncio.CancelledError:
            self._finish(scope, ctx, exchange, exchange.status or STATUS_CLIENT_CLOSED)
            raise
        except Exception:
            status = exchange.status if exchange.started and exchange.status else 500
            self._finish(scope, ctx, exchange, status)
            raise
        finally:
            reset_request_context(token)

    # ------------------------------------------------------------------ #
    # Emission
    # ------------------------------------------------------------------ #
    def _incoming(self, scope: Scope, ctx: RequestContext) -> None:
        if not self.logger.isEnabledFor(logging.DEBUG):
            return
        try:
            headers = _headers(scope)
            client = scope.get("client")
            self.logger.debug(
                "Incoming HTTP request",
                extra={
                    "meta": {
                        "request_id": ctx.request_id,
                        "method": scope.get("method"),
                        "url": self._url(scope),
                        "user_agent": headers.get("user-agent", "Unknown"),
                        "remote_addr": client[0] if client else None,
                        "query": scope.get("query_string", b"").decode("latin-1"),
                    }
                },
            )
        except Exception:  # noqa: BLE001 - logging must never break the request
            self._internal_error(scope, ctx)

    @staticmethod
    def _url(scope: Scope) -> str:
        query = scope.get("query_string", b"").decode("latin-1")
        path = scope.get("root_path", "") + scope.get("path", "")
        return f"{path}?{query}" if query else path

    def fields(self, scope: Scope, ctx: RequestContext, exchange: _Exchange, status: int) -> dict[str, Any]:
        """Build the unified access record metadata."""
        headers = _headers(scope)
        client = scope.get("client")
        return {
            "timestamp": iso_utc(datetime.now(tz=UTC)),
            "request_id": ctx.request_id,
            "method": scope.get("method", "GET"),
            "url": self._url(scope),
            "path": scope.get("path", ""),
            "http_version": scope.get("http_version", "1.1"),
            "status": status,
            "content_length": exchange.content_length,
            "response_time_ms": ctx.elapsed_ms(),
            "user_agent": headers.get("user-agent") or "Unknown",
            "remote_addr": client[0] if client else None,
            "remote_user": _remote_user(headers.get("authorization")),
            "referrer": headers.get("referer") or headers.get("referrer"),
        }

    def render(self, fields: dict[str, Any]) -> str:
        """Render the message line for the configured format."""
        if self.format == "json":
            return json.dumps(fields, ensure_ascii=False)
        if self.format == "dev":
            return (
                f"{fields['timestamp']} [{fields['request_id']}] {fields['method']} {fields['url']} "
                f"HTTP/{fields['http_version']} {fields['status']} {fields['content_length']} - "
                f"{fields['response_time_ms']:.2f}ms \"{fields['user_agent']}\""
            )
        return combined_line(fields)

    def _finish(self, scope: Scope, ctx: RequestContext, exchange: _Exchange, status: int) -> None:
        if exchange.emitted:
            return
        exchange.emitted = True
        method = scope.get("method", "GET")
        if should_skip(method, scope.get("path", ""), self.settings):
            return
        try:
            fields = self.fields(scope, ctx, exchange, status)
            level = severity_for(status)
            try:
                message = self.render(fields)
            except (TypeError, ValueError):
                stream.write(combined_line(fields) + "\n")
            else:
                self.logger.log(level, message, extra={"meta": fields})
            get_http_requests_total().labels(
                method=method, status=str(status), severity=level_name(level)
            ).inc()
            get_http_server_request_duration_seconds().labels(method=method, status=str(status)).observe(
                fields["response_time_ms"] / 1000.0
            )
        except Exception:  # noqa: BLE001 - access logging must never break the request
            self._internal_error(scope, ctx)

    def _internal_error(self, scope: Scope, ctx: RequestContext) -> None:
        self.logger.error(
            "Access log failure",
            exc_info=True,
            extra={
                "meta": {
                    "error": "AccessLogInternalError",
                    "request_id": ctx.request_id,
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                }
            },
        )


def combined_line(fields: dict[str, Any]) -> str:
    """``METHOD PATH STATUS BYTES - 12.34ms``."""
    return (
        f"{fields['method']} {fields['path']} {fields['status']} "
        f"{fields['content_length']} - {fields['response_time_ms']:.2f}ms"
    )
