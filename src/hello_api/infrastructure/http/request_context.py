# Copyright (c)
# SPDX-License-Identifier: MIT
"""Request Context.

Summary:
    Per-request container carrying the correlation id, the monotonic start
    instant and a free-form metadata bag. Created by whichever component first
    touches the request (the access log middleware in the default stack) and
    shared with every later consumer through ``scope["state"]``, which is the
    storage behind ``request.state``.

Contract:
    * Reads:  X-Request-Id (optional; printable ASCII, no whitespace, 1-128 chars)
    * Stores: request.state.request_context (RequestContext)
              request.state.request_id (str)
    * Does not bind the logging contextvar; the access log middleware
      binds and restores it around the request.

Notes:
    Keep the id opaque; it is a correlation token, never a secret.
"""

from __future__ import annotations

import re
import secrets
import string
import time
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Final

from starlette.requests import HTTPConnection


REQUEST_ID_HEADER: Final[str] = "X-Request-Id"
_STATE_KEY: Final[str] = "request_context"
_SAFE_RE: Final[re.Pattern[str]] = re.compile(r"^[\x21-\x7e]{1,128}$")
_BASE36: Final[str] = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_request_id() -> str:
    """Return 9 random base-36 characters followed by base-36 epoch milliseconds."""
    entropy = "".join(secrets.choice(_BASE36) for _ in range(9))
    return entropy + _to_base36(time.time_ns() // 1_000_000)


def coerce_request_id(raw: str | None) -> str:
    """Return a safe request id, preferring caller-provided values.

    Args:
        raw: Incoming request id header value, if any.

    Returns:
        The inbound value when acceptable, otherwise a generated id.
    """
    if raw and _SAFE_RE.match(raw):
        return raw
    return generate_request_id()


@dataclass(slots=True)
class RequestContext:
    """Correlation id, start instant and metadata bag of one request."""

    request_id: str
    started_at: float = field(default_factory=time.perf_counter)
    meta: dict[str, Any] = field(default_factory=dict)

    def elapsed_ms(self) -> float:
        """Milliseconds since the context was created, rounded to two decimals."""
        return round((time.perf_counter() - self.started_at) * 1000.0, 2)


def _header(scope: MutableMapping[str, Any], name: str) -> str | None:
    wanted = name.lower().encode("latin-1")
    for key, value in scope.get("headers") or ():
        if key.lower() == wanted:
            return value.decode("latin-1")
    return None


def ensure_request_context(
    source: HTTPConnection | MutableMapping[str, Any],
) -> RequestContext:
    """Return the request's context, creating it on first use.

    Accepts an ASGI scope or a Starlette connection. A second call for the
    same request returns the existing context unchanged.

    Args:
        source: ASGI scope mapping or ``Request``/``WebSocket``.

    Returns:
        The request context.
    """
    scope = source.scope if isinstance(source, HTTPConnection) else source
    state: dict[str, Any] = scope.setdefault("state", {})
    existing = state.get(_STATE_KEY)
    if isinstance(existing, RequestContext):
        return existing

    ctx = RequestContext(request_id=coerce_request_id(_header(scope, REQUEST_ID_HEADER)))
    state[_STATE_KEY] = ctx
    state["request_id"] = ctx.request_id
    return ctx


def get_request_context(request: HTTPConnection) -> RequestContext:
    """Read the request context, creating it lazily when no middleware did."""
    return ensure_request_context(request)
