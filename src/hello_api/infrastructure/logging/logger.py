# Copyright (c)
# SPDX-License-Identifier: MIT
"""Structured logging utilities.

This module configures the process-wide sink set (console plus optional
rotating files), exposes a per-module logger factory, a textual-line adapter
for producers that only emit pre-formatted lines, and process-level exception
hooks.

Features:
    * Severities ``debug``, ``info``, ``warn``, ``error`` on top of stdlib levels.
    * Structured metadata travels as ``extra={"meta": {...}}``.
    * JSON records with the stable key order ``timestamp``, ``level``,
      ``message``, ``service``, ``environment``, metadata, ``stack``.
    * Human records ``TIMESTAMP [level]: MESSAGE`` with indented metadata and
      ANSI colour only on terminals.
    * Automatic ``request_id`` enrichment via contextvars.
    * Sink failures never surface; a single fallback line goes to stderr.

Typical usage:
    configure_logging(get_settings().logger)
    log = get_json_logger(__name__)
    log.info("User created", extra={"meta": {"user_id": uid}})
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from collections.abc import Callable, Mapping
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from types import TracebackType
from typing import TYPE_CHECKING, Any, Final, TextIO

from hello_api.infrastructure.logging.rotating import DailyRotatingFileHandler, iso_utc

if TYPE_CHECKING:
    from hello_api.config.settings import LoggerSettings

__all__ = [
    "LEVELS",
    "LineWriter",
    "configure_logging",
    "get_json_logger",
    "get_request_id",
    "install_asyncio_exception_handler",
    "install_exception_hooks",
    "level_name",
    "reset_request_context",
    "set_request_context",
    "shutdown_logging",
    "stream",
    "uninstall_exception_hooks",
]

LEVELS: Final[dict[str, int]] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_ANSI: Final[dict[str, str]] = {
    "debug": "\x1b[34m",
    "info": "\x1b[32m",
    "warn": "\x1b[33m",
    "error": "\x1b[31m",
}
_ANSI_RESET: Final[str] = "\x1b[0m"
_RESERVED_KEYS: Final[frozenset[str]] = frozenset(
    {"timestamp", "level", "message", "service", "environment", "stack"}
)
_SINK_MARKER: Final[str] = "_hello_api_sink"

# Per-request correlation context (task-local via contextvars).
_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("hello_request_id", default=None)

# Previously installed process hooks, restored by ``uninstall_exception_hooks``.
_previous_hooks: dict[str, Any] = {}


def set_request_context(*, request_id: str | None = None) -> Token[str | None] | None:
    """Bind a correlation id to the current context.

    Args:
        request_id: Correlation identifier, if any.

    Returns:
        A token for :func:`reset_request_context`, or ``None`` when nothing was set.
    """
    if request_id is None:
        return None
    return _REQUEST_ID_CTX.set(request_id)


def reset_request_context(token: Token[str | None] | None) -> None:
    """Restore the correlation id that was bound before ``token`` was created."""
    if token is not None:
        _REQUEST_ID_CTX.reset(token)


def get_request_id() -> str | None:
    """Return the current request id from contextvars, if any."""
    return _REQUEST_ID_CTX.get(None)


def level_name(levelno: int) -> str:
    """Map a stdlib level number onto ``debug``/``info``/``warn``/``error``."""
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


def record_meta(record: logging.LogRecord) -> dict[str, Any]:
    """Return the record's metadata with ``request_id`` appended when known."""
    raw = getattr(record, "meta", None)
    meta: dict[str, Any] = dict(raw) if isinstance(raw, Mapping) else {}
    rid = getattr(record, "request_id", None)
    if rid and "request_id" not in meta:
        meta["request_id"] = rid
    return meta


def _record_stack(formatter: logging.Formatter, record: logging.LogRecord) -> str | None:
    if record.exc_info and record.exc_info[0] is not None:
        return formatter.formatException(record.exc_info)
    if record.exc_text:
        return record.exc_text
    if record.stack_info:
        return formatter.formatStack(record.stack_info)
    return None


def _record_timestamp(record: logging.LogRecord) -> str:
    return iso_utc(datetime.fromtimestamp(record.created, tz=UTC))


class _ContextFilter(logging.Filter):
    """Stamp the active correlation id onto each record passing a sink."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = _REQUEST_ID_CTX.get(None)
        return True


class _JsonFormatter(logging.Formatter):
    """JSON log formatter emitting stable keys followed by metadata."""

    def __init__(self, *, service: str, environment: str) -> None:
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON object.

        Args:
            record: Logging record.

        Returns:
            JSON-encoded log line.
        """
        payload: dict[str, Any] = {
            "timestamp": _record_timestamp(record),
            "level": level_name(record.levelno),
            "message": record.getMessage(),
            "service": self.service,
            "environment": self.environment,
        }
        for key, value in record_meta(record).items():
            if key not in _RESERVED_KEYS:
                payload[key] = value
        stack = _record_stack(self, record)
        if stack:
            payload["stack"] = stack
        return json.dumps(payload, ensure_ascii=False, default=str)


class _HumanFormatter(logging.Formatter):
    """Readable formatter: header line, indented metadata, then the stack."""

    def __init__(self, *, colorize: bool = False) -> None:
        super().__init__()
        self.colorize = colorize

    def format(self, record: logging.LogRecord) -> str:
        level = level_name(record.levelno)
        if self.colorize:
            level = f"{_ANSI[level]}{level}{_ANSI_RESET}"
        line = f"{_record_timestamp(record)} [{level}]: {record.getMessage()}"
        meta = record_meta(record)
        if meta:
            line += "\n" + json.dumps(meta, indent=2, ensure_ascii=False, default=str)
        stack = _record_stack(self, record)
        if stack:
            line += "\n" + stack
        return line


class _SafeSinkMixin:
    """Replace stdlib error reporting with one ``LoggerInternalError`` stderr line."""

    name: str | None

    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802 (stdlib API)
        exc = sys.exc_info()[1]
        fallback = sys.stderr
        try:
            fallback.write(
                f"{iso_utc(datetime.now(tz=UTC))} LoggerInternalError "
                f"sink={self.name} error={exc!r} message={record.msg!r}\n"
            )
        except (OSError, ValueError):
            return


class ConsoleSink(_SafeSinkMixin, logging.StreamHandler):  # type: ignore[type-arg]
    """Console sink bound to stderr or stdout."""


class FileSink(_SafeSinkMixin, DailyRotatingFileHandler):
    """Rotating file sink; always structured."""


class LineWriter:
    """Textual-line adapter: each written line becomes one info record.

    Producers that can only emit pre-formatted text (access log fallback path)
    write through this object. One trailing newline is stripped; the record
    carries empty metadata.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def write(self, line: str) -> None:
        """Emit ``line`` (minus one trailing newline) at info severity."""
        if line.endswith("\n"):
            line = line[:-1]
        self._logger.info(line, extra={"meta": {}})

    def flush(self) -> None:
        """No-op; records are handed to the sinks synchronously."""


def _installed_sinks(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if getattr(h, _SINK_MARKER, False)]


def _mark(handler: logging.Handler, name: str) -> logging.Handler:
    handler.set_name(name)
    setattr(handler, _SINK_MARKER, True)
    handler.addFilter(_ContextFilter())
    return handler


def _build_sinks(settings: LoggerSettings) -> list[logging.Handler]:
    sinks: list[logging.Handler] = []
    json_formatter = _JsonFormatter(service=settings.service_name, environment=settings.environment)

    if settings.console_enabled:
        target: TextIO = sys.stdout if settings.console_stream == "stdout" else sys.stderr
        console = ConsoleSink(target)
        console.setLevel(LEVELS[settings.level])
        if settings.format == "json":
            console.setFormatter(json_formatter)
        else:
            isatty = getattr(target, "isatty", None)
            console.setFormatter(_HumanFormatter(colorize=bool(isatty and isatty())))
        sinks.append(_mark(console, "hello_api.console"))

    if settings.file_enabled:
        for prefix, level in (("app", logging.INFO), ("error", logging.ERROR)):
            sink = FileSink(
                settings.file_directory,
                prefix,
                max_bytes=settings.file_max_size,
                date_pattern=settings.file_date_pattern,
                max_files=settings.file_max_files,
                max_age_days=settings.file_max_age_days,
                compress=settings.file_compress,
                symlink=settings.file_symlink,
                level=level,
            )
            sink.setFormatter(json_formatter)
            sinks.append(_mark(sink, f"hello_api.file.{prefix}"))
    return sinks


def configure_logging(settings: LoggerSettings) -> list[logging.Handler]:
    """Install the sink set described by ``settings`` on the root logger.

    Re-configuration replaces previously installed sinks (they are closed),
    so repeated calls never duplicate output. Handlers installed by other
    libraries are left alone.

    Args:
        settings: Logger configuration snapshot.

    Returns:
        The newly installed sinks.
    """
    root = logging.getLogger()
    for handler in _installed_sinks(root):
        root.removeHandler(handler)
        handler.close()

    sinks = _build_sinks(settings)
    if not sinks:
        # Keeps logging.lastResort from printing when every sink is disabled.
        sinks.append(_mark(logging.NullHandler(), "hello_api.null"))
        root.setLevel(logging.WARNING)
    else:
        root.setLevel(min(h.level for h in sinks))
    for handler in sinks:
        root.addHandler(handler)
    return sinks


def get_json_logger(name: str) -> logging.Logger:
    """Return a module-specific logger backed by the root sinks.

    This does *not* implicitly configure logging. Call
    :func:`configure_logging` once at startup.

    Args:
        name: Logger name, typically ``__name__`` of the caller.

    Returns:
        Configured logger.
    """
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger


def shutdown_logging(timeout: float = 2.0) -> None:
    """Flush and close every installed sink, bounded by ``timeout`` seconds."""
    root = logging.getLogger()
    sinks = _installed_sinks(root)

    def _drain() -> None:
        for handler in sinks:
            try:
                handler.flush()
                handler.close()
            except Exception:  # noqa: BLE001 - one broken sink must not block the others
                handler.handleError(
                    logging.makeLogRecord({"msg": "shutdown", "levelno": logging.ERROR})
                )
            root.removeHandler(handler)

    worker = threading.Thread(target=_drain, name="hello-api-log-drain", daemon=True)
    worker.start()
    worker.join(timeout)


# --------------------------------------------------------------------------- #
# Process-level hooks
# --------------------------------------------------------------------------- #
_logger = get_json_logger("hello_api.process")


def install_exception_hooks(
    logger: logging.Logger | None = None,
    *,
    on_fatal: Callable[[BaseException], None] | None = None,
) -> None:
    """Register hooks that log uncaught exceptions without exiting the process.

    Args:
        logger: Logger receiving the error records (defaults to ``hello_api.process``).
        on_fatal: Optional application callback invoked after logging, e.g. to
            begin a graceful shutdown.
    """
    log = logger or _logger
    _previous_hooks.setdefault("sys", sys.excepthook)
    _previous_hooks.setdefault("threading", threading.excepthook)

    def _sys_hook(
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            _previous_hooks["sys"](exc_type, exc, tb)
            return
        log.error(
            "Uncaught exception",
            exc_info=(exc_type, exc, tb),
            extra={"meta": {"kind": "uncaughtException", "error": repr(exc)}},
        )
        if on_fatal is not None:
            on_fatal(exc)

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit or args.exc_value is None:
            return
        log.error(
            "Uncaught exception in thread",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            extra={
                "meta": {
                    "kind": "uncaughtException",
                    "thread": args.thread.name if args.thread else None,
                    "error": repr(args.exc_value),
                }
            },
        )
        if on_fatal is not None:
            on_fatal(args.exc_value)

    sys.excepthook = _sys_hook
    threading.excepthook = _thread_hook


def install_asyncio_exception_handler(
    loop: asyncio.AbstractEventLoop,
    logger: logging.Logger | None = None,
) -> None:
    """Log unhandled failures of tasks and futures on ``loop`` (never exits)."""
    log = logger or _logger

    def _handler(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        meta: dict[str, Any] = {
            "kind": "unhandledRejection",
            "reason": context.get("message", ""),
        }
        if isinstance(exc, BaseException):
            meta["error"] = repr(exc)
            log.error(
                "Unhandled asynchronous failure",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"meta": meta},
            )
        else:
            log.error("Unhandled asynchronous failure", extra={"meta": meta})

    loop.set_exception_handler(_handler)


def uninstall_exception_hooks() -> None:
    """Restore the process hooks that were active before installation."""
    if "sys" in _previous_hooks:
        sys.excepthook = _previous_hooks.pop("sys")
    if "threading" in _previous_hooks:
        threading.excepthook = _previous_hooks.pop("threading")


stream = LineWriter(get_json_logger("hello_api.http"))
