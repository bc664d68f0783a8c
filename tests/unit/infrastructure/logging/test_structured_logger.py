from __future__ import annotations

import asyncio
import io
import json
import logging
import sys
import threading
from collections.abc import Generator
from pathlib import Path

import pytest

from hello_api.config.settings import LoggerSettings
from hello_api.infrastructure.logging import logger as logmod
from hello_api.infrastructure.logging.logger import (
    ConsoleSink,
    FileSink,
    LineWriter,
    _HumanFormatter,
    _JsonFormatter,
    configure_logging,
    install_asyncio_exception_handler,
    install_exception_hooks,
    level_name,
    reset_request_context,
    set_request_context,
    shutdown_logging,
    uninstall_exception_hooks,
)


def _record(msg: str, level: int = logging.INFO, meta: dict | None = None, **attrs: object) -> logging.LogRecord:
    record = logging.getLogger("test.hello").makeRecord(
        name="test.hello",
        level=level,
        fn="test_structured_logger",
        lno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    if meta is not None:
        record.meta = meta
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root() -> Generator[None, None, None]:
    root = logging.getLogger()
    level = root.level
    yield
    shutdown_logging()
    root.setLevel(level)


def test_json_formatter_key_order_and_meta() -> None:
    fmt = _JsonFormatter(service="hello-api", environment="test")
    line = fmt.format(_record("hello", meta={"b": 1, "a": 2}))
    payload = json.loads(line)

    assert list(payload) == ["timestamp", "level", "message", "service", "environment", "b", "a"]
    assert payload["level"] == "info"
    assert payload["timestamp"].endswith("Z")
    assert len(payload["timestamp"]) == len("2024-01-01T00:00:00.000Z")


def test_json_formatter_renders_warning_as_warn_and_appends_stack() -> None:
    fmt = _JsonFormatter(service="svc", environment="test")
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record("failed", logging.WARNING, meta={"x": 1})
        record.exc_info = sys.exc_info()

    payload = json.loads(fmt.format(record))

    assert payload["level"] == "warn"
    assert list(payload)[-1] == "stack"
    assert "ValueError: boom" in payload["stack"]


def test_json_formatter_adds_request_id_unless_caller_set_one() -> None:
    fmt = _JsonFormatter(service="svc", environment="test")
    assert json.loads(fmt.format(_record("m", request_id="ctx-1")))["request_id"] == "ctx-1"
    explicit = _record("m", meta={"request_id": "mine"}, request_id="ctx-1")
    assert json.loads(fmt.format(explicit))["request_id"] == "mine"


def test_human_formatter_layout() -> None:
    fmt = _HumanFormatter(colorize=False)
    text = fmt.format(_record("hello", logging.ERROR, meta={"k": "v"}))
    first, *rest = text.split("\n")

    assert first.endswith(" [error]: hello")
    assert json.loads("\n".join(rest)) == {"k": "v"}


def test_human_formatter_without_meta_is_single_line() -> None:
    assert "\n" not in _HumanFormatter().format(_record("plain"))


def test_human_formatter_colorizes_only_when_asked() -> None:
    assert "\x1b[" in _HumanFormatter(colorize=True).format(_record("x"))
    assert "\x1b[" not in _HumanFormatter(colorize=False).format(_record("x"))


def test_level_name_mapping() -> None:
    assert [level_name(lv) for lv in (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR)] == [
        "debug",
        "info",
        "warn",
        "error",
    ]


def test_line_writer_strips_one_newline(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="test.lines")
    writer = LineWriter(logging.getLogger("test.lines"))

    writer.write("GET / 200 12 - 1.00ms\n")
    writer.write("two\n\n")

    messages = [r.getMessage() for r in caplog.records if r.name == "test.lines"]
    assert messages == ["GET / 200 12 - 1.00ms", "two\n"]
    assert all(r.levelno == logging.INFO and r.meta == {} for r in caplog.records if r.name == "test.lines")


def test_context_request_id_reaches_sink(restore_root: None) -> None:
    stream = io.StringIO()
    sink = ConsoleSink(stream)
    sink.setFormatter(_JsonFormatter(service="svc", environment="test"))
    sink.addFilter(logmod._ContextFilter())
    log = logging.getLogger("test.ctx")
    log.addHandler(sink)
    log.setLevel(logging.INFO)
    try:
        token = set_request_context(request_id="req-42")
        log.info("inside")
        reset_request_context(token)
        log.info("outside")
    finally:
        log.removeHandler(sink)

    inside, outside = (json.loads(line) for line in stream.getvalue().splitlines())
    assert inside["request_id"] == "req-42"
    assert "request_id" not in outside


def test_configure_logging_is_idempotent(restore_root: None) -> None:
    settings = LoggerSettings(level="info", format="json", service_name="svc", environment="test")
    configure_logging(settings)
    configure_logging(settings)

    sinks = [h for h in logging.getLogger().handlers if getattr(h, "_hello_api_sink", False)]
    assert len(sinks) == 1
    assert isinstance(sinks[0], ConsoleSink)
    assert sinks[0].level == logging.INFO


def test_configure_logging_with_files(tmp_path: Path, restore_root: None) -> None:
    settings = LoggerSettings(
        level="debug",
        format="simple",
        service_name="svc",
        environment="test",
        console_enabled=False,
        file_enabled=True,
        file_directory=str(tmp_path),
        file_max_size=1024 * 1024,
    )
    sinks = configure_logging(settings)

    assert [type(s) for s in sinks] == [FileSink, FileSink]
    assert [s.level for s in sinks] == [logging.INFO, logging.ERROR]

    log = logging.getLogger("test.files")
    log.info("general")
    log.error("broken")
    shutdown_logging()

    app_lines = [json.loads(x) for x in next(tmp_path.glob("app-*.log")).read_text().splitlines()]
    error_lines = [json.loads(x) for x in next(tmp_path.glob("error-*.log")).read_text().splitlines()]
    assert [e["message"] for e in app_lines] == ["general", "broken"]
    assert [e["message"] for e in error_lines] == ["broken"]
    assert app_lines[0]["service"] == "svc"


def test_no_sinks_installs_null_handler(restore_root: None) -> None:
    settings = LoggerSettings(
        level="info", format="json", service_name="svc", environment="test", console_enabled=False
    )
    sinks = configure_logging(settings)
    assert len(sinks) == 1
    assert isinstance(sinks[0], logging.NullHandler)


def test_sink_failure_writes_fallback_line(capsys: pytest.CaptureFixture[str]) -> None:
    class Broken(io.StringIO):
        def write(self, s: str) -> int:
            raise OSError("disk full")

    sink = ConsoleSink(Broken())
    sink.set_name("broken")
    sink.setFormatter(_JsonFormatter(service="svc", environment="test"))

    sink.handle(_record("lost"))

    err = capsys.readouterr().err
    assert "LoggerInternalError" in err
    assert "sink=broken" in err


def test_exception_hooks_log_without_exiting(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="test.hooks")
    seen: list[BaseException] = []
    install_exception_hooks(logging.getLogger("test.hooks"), on_fatal=seen.append)
    try:
        try:
            raise RuntimeError("uncaught")
        except RuntimeError as exc:
            sys.excepthook(type(exc), exc, exc.__traceback__)

        def _worker() -> None:
            raise ValueError("thread failure")

        t = threading.Thread(target=_worker)
        t.start()
        t.join()
    finally:
        uninstall_exception_hooks()

    messages = [r.getMessage() for r in caplog.records if r.name == "test.hooks"]
    assert messages == ["Uncaught exception", "Uncaught exception in thread"]
    assert [type(e) for e in seen] == [RuntimeError, ValueError]
    assert all(r.exc_info for r in caplog.records if r.name == "test.hooks")


def test_uninstall_restores_previous_hooks() -> None:
    before = sys.excepthook
    install_exception_hooks()
    assert sys.excepthook is not before
    uninstall_exception_hooks()
    assert sys.excepthook is before


def test_asyncio_handler_logs_unretrieved_task_failure(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="test.async")
    loop = asyncio.new_event_loop()
    try:
        install_asyncio_exception_handler(loop, logging.getLogger("test.async"))
        loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": KeyError("k")})
        loop.call_exception_handler({"message": "no exception attached"})
    finally:
        loop.close()

    records = [r for r in caplog.records if r.name == "test.async"]
    assert [r.getMessage() for r in records] == ["Unhandled asynchronous failure"] * 2
    assert records[0].meta["kind"] == "unhandledRejection"
    assert records[0].exc_info is not None
    assert records[1].meta["reason"] == "no exception attached"
