# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Validation error types.

Summary:
    ``FieldFailure`` is one failed check (dotted path, kind, message and the
    offending value when it is JSON-representable). ``ValidationErrorInfo`` is
    the immutable, consolidated error of one validator run and knows how to
    render the wire payload. ``RequestValidationFailed`` carries it through
    FastAPI's exception channel. ``Rejection`` is what a user predicate returns
    to fail with a chosen field and status.

Wire shape:
    {id, type: "ValidationError", message, statusCode,
     details: {validationType, fieldCount, fields: {"<path>": {message, type, value?}}},
     timestamp[, debug: {originalError, stack}]}

Layer:
    adapters/validation
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final, Literal

from hello_api.infrastructure.logging.rotating import iso_utc

Category = Literal["body", "query", "path", "composite", "custom"]

ROOT_PATH: Final[str] = "value"
_OMIT_VALUE_KINDS: Final[frozenset[str]] = frozenset({"missing"})


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "<missing>"


MISSING: Final = _Missing()


def _representable(value: Any) -> bool:
    if value is None or isinstance(value, (str, int, float, bool)):
        return True
    if isinstance(value, (list, tuple)):
        return all(_representable(v) for v in value)
    if isinstance(value, Mapping):
        return all(isinstance(k, str) and _representable(v) for k, v in value.items())
    return False


def dotted(loc: tuple[Any, ...] | list[Any]) -> str:
    """Join a pydantic ``loc`` into a dotted path (root -> ``value``)."""
    return ".".join(str(part) for part in loc) or ROOT_PATH


@dataclass(frozen=True, slots=True)
class FieldFailure:
    """One failed check."""

    path: str
    kind: str
    message: str
    value: Any = MISSING

    @classmethod
    def from_pydantic(cls, err: Mapping[str, Any]) -> FieldFailure:
        """Build a failure from one entry of ``ValidationError.errors()``."""
        kind = str(err.get("type", "invalid"))
        value = err.get("input", MISSING)
        if kind in _OMIT_VALUE_KINDS or not _representable(value):
            value = MISSING
        return cls(
            path=dotted(tuple(err.get("loc", ()))),
            kind=kind,
            message=str(err.get("msg", "Invalid value")),
            value=value,
        )

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"message": self.message, "type": self.kind}
        if self.value is not MISSING:
            out["value"] = self.value
        return out


@dataclass(frozen=True, slots=True)
class Rejection:
    """Predicate outcome that fails validation with a chosen field and status."""

    message: str
    field: str | None = None
    status_code: int = 400


@dataclass(frozen=True, slots=True)
class ValidationErrorInfo:
    """Consolidated, immutable validation error of one validator run."""

    request_id: str
    category: Category
    failures: tuple[FieldFailure, ...]
    status_code: int = 400
    original_error: str | None = None
    stack: str | None = None
    timestamp: str = field(default_factory=lambda: iso_utc(datetime.now(tz=UTC)))

    @property
    def message(self) -> str:
        return f"{self.category} validation failed"

    def fields(self) -> dict[str, dict[str, Any]]:
        """Failures keyed by dotted path; the first failure of a path wins."""
        out: dict[str, dict[str, Any]] = {}
        for failure in self.failures:
            out.setdefault(failure.path, failure.to_wire())
        return out

    def to_payload(self, *, verbose: bool = False) -> dict[str, Any]:
        """Render the wire payload; ``verbose`` adds the ``debug`` section."""
        fields = self.fields()
        payload: dict[str, Any] = {
            "id": self.request_id,
            "type": "ValidationError",
            "message": self.message,
            "statusCode": self.status_code,
            "details": {
                "validationType": self.category,
                "fieldCount": len(fields),
                "fields": fields,
            },
            "timestamp": self.timestamp,
        }
        if verbose:
            payload["debug"] = {
                "originalError": self.original_error or "Unknown validation error",
                "stack": self.stack,
            }
        return payload


class RequestValidationFailed(Exception):
    """Raised by request validators; rendered by the HTTP error handlers."""

    def __init__(self, info: ValidationErrorInfo, *, verbose: bool = False) -> None:
        super().__init__(info.message)
        self.info = info
        self.verbose = verbose

    @property
    def status_code(self) -> int:
        return self.info.status_code
