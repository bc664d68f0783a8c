from __future__ import annotations

import logging

import pytest
from fastapi import FastAPI, HTTPException, Query
from fastapi.testclient import TestClient

from hello_api.adapters.validation.errors import FieldFailure, RequestValidationFailed, ValidationErrorInfo
from hello_api.domain.exceptions.base import BusinessLogicError, ResourceNotFound
from hello_api.infrastructure.http.errors import SECURITY_HEADERS, error_envelope, register_exception_handlers


def _app(*, verbose: bool = False) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app, verbose=verbose)

    @app.get("/missing")
    async def missing() -> None:
        raise ResourceNotFound("user", "42")

    @app.get("/rule")
    async def rule() -> None:
        raise BusinessLogicError("Email address already exists", details={"field": "email"})

    @app.get("/teapot")
    async def teapot() -> None:
        raise HTTPException(status_code=418, detail="short and stout", headers={"X-Tea": "earl-grey"})

    @app.get("/typed")
    async def typed(limit: int = Query(...)) -> dict[str, int]:
        return {"limit": limit}

    @app.get("/validator")
    async def validator() -> None:
        info = ValidationErrorInfo(
            request_id="rid-1",
            category="body",
            failures=(FieldFailure(path="email", kind="value_error", message="bad email", value="x"),),
        )
        raise RequestValidationFailed(info, verbose=False)

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("database exploded")

    return app


@pytest.fixture
def api() -> TestClient:
    return TestClient(_app(), raise_server_exceptions=False)


def test_envelope_omits_empty_details() -> None:
    assert error_envelope(code="X", http_status=400, message="m") == {
        "error": {"code": "X", "http_status": 400, "message": "m"},
        "success": False,
    }


def test_envelope_includes_details_and_request_id() -> None:
    body = error_envelope(code="X", http_status=404, message="m", details={"id": "1"}, request_id="r")
    assert body["error"]["details"] == {"id": "1"}
    assert body["error"]["request_id"] == "r"


def test_resource_not_found(api: TestClient) -> None:
    resp = api.get("/missing", headers={"X-Request-Id": "trace-404"})

    assert resp.status_code == 404
    assert resp.json() == {
        "error": {
            "code": "RESOURCE_NOT_FOUND",
            "http_status": 404,
            "message": "user not found",
            "details": {"resource": "user", "id": "42"},
            "request_id": "trace-404",
        },
        "success": False,
    }
    assert resp.headers["X-Request-Id"] == "trace-404"
    for name, value in SECURITY_HEADERS.items():
        assert resp.headers[name] == value


def test_business_rule_is_422_and_logged_as_warning(api: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="hello_api")
    resp = api.get("/rule")

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "UNPROCESSABLE_REQUEST"
    records = [r for r in caplog.records if r.name == "hello_api.infrastructure.http.errors"]
    assert [r.levelno for r in records] == [logging.WARNING]
    assert records[0].meta["status_code"] == 422


def test_http_exception_keeps_status_and_headers(api: TestClient) -> None:
    resp = api.get("/teapot")

    assert resp.status_code == 418
    assert resp.json()["error"]["code"] == "HTTP_ERROR"
    assert resp.json()["error"]["message"] == "short and stout"
    assert resp.headers["X-Tea"] == "earl-grey"


def test_unknown_route_uses_envelope(api: TestClient) -> None:
    resp = api.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert resp.json()["error"]["code"] == "HTTP_ERROR"


def test_framework_validation_is_400(api: TestClient) -> None:
    resp = api.get("/typed", params={"limit": "many"})

    assert resp.status_code == 400
    err = resp.json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert err["details"]["errors"][0]["loc"] == ["query", "limit"]


def test_validator_failure_keeps_validation_shape(api: TestClient) -> None:
    resp = api.get("/validator")

    assert resp.status_code == 400
    body = resp.json()
    assert body["type"] == "ValidationError"
    assert body["id"] == "rid-1"
    assert body["details"]["fields"] == {"email": {"message": "bad email", "type": "value_error", "value": "x"}}
    assert "debug" not in body
    assert resp.headers["X-Request-Id"] == "rid-1"


def test_unhandled_exception_hides_message(api: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="hello_api")
    resp = api.get("/boom")

    assert resp.status_code == 500
    err = resp.json()["error"]
    assert err["code"] == "INTERNAL_SERVER_ERROR"
    assert err["message"] == "Internal server error"
    assert "details" not in err
    errors = [r for r in caplog.records if r.levelno == logging.ERROR and r.name.startswith("hello_api")]
    assert errors and errors[0].exc_info is not None


def test_unhandled_exception_verbose_in_development() -> None:
    resp = TestClient(_app(verbose=True), raise_server_exceptions=False).get("/boom")

    err = resp.json()["error"]
    assert err["message"] == "database exploded"
    assert err["details"] == {"type": "RuntimeError"}
