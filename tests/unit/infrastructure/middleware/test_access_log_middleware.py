from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from hello_api.config.settings import AccessSettings
from hello_api.infrastructure.http.request_context import get_request_context
from hello_api.infrastructure.logging.logger import get_request_id, reset_request_context, set_request_context
from hello_api.infrastructure.middleware.access_log import (
    AccessLogMiddleware,
    combined_line,
    severity_for,
    should_skip,
)

LOGGER = "test.access"


async def _hello(request: Request) -> Response:
    return PlainTextResponse("Hello, World!\n")


async def _who(request: Request) -> Response:
    return PlainTextResponse(get_request_context(request).request_id)


async def _missing(request: Request) -> Response:
    return PlainTextResponse("nope", status_code=404)


async def _health(request: Request) -> Response:
    return PlainTextResponse("ok")


def _client(settings: AccessSettings) -> TestClient:
    inner = Starlette(
        routes=[
            Route("/", _hello),
            Route("/who", _who),
            Route("/missing", _missing),
            Route("/health", _health),
            Route("/app.css", _hello),
            Route("/", _hello, methods=["OPTIONS"], name="options"),
        ]
    )
    return TestClient(AccessLogMiddleware(inner, settings=settings, logger=logging.getLogger(LOGGER)))


def _records(caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.name == LOGGER and r.getMessage() != "Incoming HTTP request"]


@pytest.fixture(autouse=True)
def _capture(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger=LOGGER)


@pytest.mark.parametrize(
    ("status", "level"),
    [(200, logging.INFO), (302, logging.INFO), (404, logging.WARNING), (499, logging.WARNING), (503, logging.ERROR)],
)
def test_severity_for(status: int, level: int) -> None:
    assert severity_for(status) == level


def test_skip_rules() -> None:
    prod = AccessSettings(production=True)
    dev = AccessSettings(production=False)
    debug = AccessSettings(level="debug")

    assert should_skip("GET", "/health", prod)
    assert not should_skip("GET", "/health", dev)
    assert not should_skip("GET", "/health/live", prod)
    assert should_skip("GET", "/static/site.CSS", dev)
    assert should_skip("OPTIONS", "/api", dev)
    assert not should_skip("OPTIONS", "/api", debug)
    assert not should_skip("GET", "/api/users", prod)


def test_combined_line_format() -> None:
    fields = {"method": "GET", "path": "/", "status": 200, "content_length": 14, "response_time_ms": 1.5}
    assert combined_line(fields) == "GET / 200 14 - 1.50ms"


def test_one_record_with_unified_fields(caplog: pytest.LogCaptureFixture) -> None:
    client = _client(AccessSettings(format="combined"))
    token = base64.b64encode(b"alice:secret").decode()

    resp = client.get(
        "/?q=1",
        headers={"User-Agent": "pytest-agent", "Authorization": f"Basic {token}", "Referer": "https://ref.example"},
    )

    (record,) = _records(caplog)
    meta: dict[str, Any] = record.meta
    assert record.levelno == logging.INFO
    assert list(meta) == [
        "timestamp",
        "request_id",
        "method",
        "url",
        "path",
        "http_version",
        "status",
        "content_length",
        "response_time_ms",
        "user_agent",
        "remote_addr",
        "remote_user",
        "referrer",
    ]
    assert meta["url"] == "/?q=1"
    assert meta["path"] == "/"
    assert meta["status"] == 200
    assert meta["content_length"] == len("Hello, World!\n")
    assert meta["user_agent"] == "pytest-agent"
    assert meta["remote_user"] == "alice"
    assert meta["referrer"] == "https://ref.example"
    assert meta["request_id"] == resp.headers["X-Request-Id"]
    assert record.getMessage().startswith("GET / 200 14 - ")


def test_inbound_request_id_is_echoed_and_shared(caplog: pytest.LogCaptureFixture) -> None:
    client = _client(AccessSettings())

    resp = client.get("/who", headers={"X-Request-Id": "abc-123"})

    assert resp.headers["X-Request-Id"] == "abc-123"
    assert resp.text == "abc-123"
    assert _records(caplog)[0].meta["request_id"] == "abc-123"


def test_client_error_is_warning(caplog: pytest.LogCaptureFixture) -> None:
    _client(AccessSettings()).get("/missing")
    (record,) = _records(caplog)
    assert record.levelno == logging.WARNING
    assert record.meta["status"] == 404


def test_json_format_message_is_the_fields(caplog: pytest.LogCaptureFixture) -> None:
    _client(AccessSettings(format="json")).get("/")
    (record,) = _records(caplog)
    assert json.loads(record.getMessage()) == record.meta


def test_dev_format_line(caplog: pytest.LogCaptureFixture) -> None:
    _client(AccessSettings(format="dev")).get("/", headers={"X-Request-Id": "dev-1", "User-Agent": "ua"})
    (record,) = _records(caplog)
    message = record.getMessage()
    assert "[dev-1] GET / HTTP/1.1 200 14 - " in message
    assert message.endswith('ms "ua"')


def test_production_health_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    client = _client(AccessSettings(production=True))
    client.get("/health")
    client.get("/app.css")
    assert _records(caplog) == []


def test_options_logged_only_at_debug(caplog: pytest.LogCaptureFixture) -> None:
    _client(AccessSettings()).options("/")
    assert _records(caplog) == []

    _client(AccessSettings(level="debug")).options("/")
    assert len(_records(caplog)) == 1


def test_incoming_debug_record(caplog: pytest.LogCaptureFixture) -> None:
    _client(AccessSettings()).get("/?a=b", headers={"X-Request-Id": "in-1"})
    incoming = [r for r in caplog.records if r.name == LOGGER and r.getMessage() == "Incoming HTTP request"]
    assert incoming[0].levelno == logging.DEBUG
    assert incoming[0].meta["query"] == "a=b"
    assert incoming[0].meta["request_id"] == "in-1"


def test_exception_before_response_logs_500_and_propagates(caplog: pytest.LogCaptureFixture) -> None:
    async def exploding(scope: Scope, receive: Receive, send: Send) -> None:
        raise RuntimeError("boom")

    client = TestClient(AccessLogMiddleware(exploding, logger=logging.getLogger(LOGGER)))

    with pytest.raises(RuntimeError):
        client.get("/")

    (record,) = _records(caplog)
    assert record.levelno == logging.ERROR
    assert record.meta["status"] == 500
    assert record.meta["content_length"] == 0


def test_cancellation_logs_499(caplog: pytest.LogCaptureFixture) -> None:
    async def cancelled(scope: Scope, receive: Receive, send: Send) -> None:
        raise asyncio.CancelledError

    mw = AccessLogMiddleware(cancelled, logger=logging.getLogger(LOGGER))
    scope: dict[str, Any] = {"type": "http", "method": "GET", "path": "/slow", "headers": []}

    async def _receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def _send(message: dict[str, Any]) -> None:
        return None

    async def _run() -> None:
        with pytest.raises(asyncio.CancelledError):
            await mw(scope, _receive, _send)

    asyncio.run(_run())

    (record,) = _records(caplog)
    assert record.meta["status"] == 499
    assert record.levelno == logging.WARNING


def test_log_context_is_restored_after_the_request() -> None:
    seen: list[str | None] = []

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        seen.append(get_request_id())
        await PlainTextResponse("ok")(scope, receive, send)

    mw = AccessLogMiddleware(app, logger=logging.getLogger(LOGGER))
    scope: dict[str, Any] = {"type": "http", "method": "GET", "path": "/", "headers": [(b"x-request-id", b"inner-1")]}

    async def _receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def _send(message: dict[str, Any]) -> None:
        return None

    async def _run() -> str | None:
        token = set_request_context(request_id="outer")
        try:
            await mw(scope, _receive, _send)
            return get_request_id()
        finally:
            reset_request_context(token)

    assert asyncio.run(_run()) == "outer"
    assert seen == ["inner-1"]


def test_lifespan_scope_passes_through() -> None:
    seen: list[str] = []

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        seen.append(scope["type"])

    asyncio.run(AccessLogMiddleware(app)({"type": "lifespan"}, None, None))  # type: ignore[arg-type]
    assert seen == ["lifespan"]


def test_render_failure_falls_back_to_line_writer(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="hello_api.http")

    class Unrenderable(AccessLogMiddleware):
        def render(self, fields: dict[str, Any]) -> str:
            raise TypeError("not serializable")

    inner = Starlette(routes=[Route("/", _hello)])
    TestClient(Unrenderable(inner, logger=logging.getLogger(LOGGER))).get("/")

    lines = [r.getMessage() for r in caplog.records if r.name == "hello_api.http"]
    assert len(lines) == 1
    assert lines[0].startswith("GET / 200 14 - ")
