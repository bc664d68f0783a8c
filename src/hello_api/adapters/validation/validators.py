# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Request validators (FastAPI dependencies).

Summary:
    Factories that turn descriptors into request-scoped validators. A
    validator is a callable FastAPI dependency: it extracts its part of the
    request (path parameters, query string or JSON body), sanitizes it,
    validates it against the cached compiled schema, runs the optional user
    predicate, stores the result on ``request.state.validated[<category>]``
    and returns it. Failures raise :class:`RequestValidationFailed`, which the
    HTTP error handlers render.

Factories:
    * ``validate_body`` / ``validate_query`` / ``validate_params``
    * ``validate_request``: path -> query -> body in sequence, first failure wins,
      then an optional cross-part predicate (category ``composite``).
    * ``validate_id``: one path parameter of kind uuid/numeric/object_id/alphanumeric.
    * ``validate_pagination``: page/limit/offset/sort/order/search/filter with the
      page-offset exclusivity rule.
    * ``validate_email_body`` / ``validate_password_body`` / ``validate_uuid_param``:
      shortcuts over the reusable rules in :mod:`.descriptors`.

Predicates:
    Called as ``predicate(value, request)``, sync or async. ``True`` passes; a
    ``str`` fails with that message; a :class:`Rejection` fails with its field
    and status. Raising fails with category ``custom`` and status 500.
    ``asyncio.CancelledError`` is never intercepted.

Usage:
    @router.post("/users")
    async def create(body: dict = Depends(validate_body(USER_SCHEMA))): ...

Layer:
    adapters/validation
"""

# No postponed annotations here: FastAPI resolves the __call__ signature of
# dependency instances without access to this module's globals.
import inspect
import json
import re
import traceback
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Final, Literal
from urllib.parse import parse_qsl

from starlette.requests import Request

from hello_api.adapters.validation.cache import SchemaCache, get_schema_cache
from hello_api.adapters.validation.descriptors import EMAIL_RULE, PASSWORD_RULE
from hello_api.adapters.validation.errors import (
    ROOT_PATH,
    Category,
    FieldFailure,
    Rejection,
    RequestValidationFailed,
    ValidationErrorInfo,
)
from hello_api.adapters.validation.sanitize import sanitize_input
from hello_api.config.settings import ValidationSettings, get_settings
from hello_api.infrastructure.http.request_context import RequestContext, get_request_context
from hello_api.infrastructure.logging.logger import get_json_logger

__all__ = [
    "CompositeValidator",
    "Predicate",
    "RequestValidator",
    "parse_query_string",
    "validate_body",
    "validate_email_body",
    "validate_id",
    "validate_pagination",
    "validate_params",
    "validate_password_body",
    "validate_query",
    "validate_request",
    "validate_uuid_param",
]

logger = get_json_logger(__name__)

Part = Literal["path", "query", "body"]
PredicateResult = bool | str | Rejection | None
Predicate = Callable[[Any, Request], PredicateResult | Awaitable[PredicateResult]]
IdKind = Literal["uuid", "numeric", "object_id", "alphanumeric"]

_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_SEGMENT_RE: Final[re.Pattern[str]] = re.compile(r"\[([^\[\]]*)\]")
_ID_RULES: Final[dict[str, dict[str, Any]]] = {
    "uuid": {"type": "uuid"},
    "numeric": {"type": "integer", "min": 1},
    "object_id": {"type": "string", "pattern": r"^[0-9a-fA-F]{24}$"},
    "alphanumeric": {"type": "string", "pattern": r"^[A-Za-z0-9]+$", "min_length": 1, "max_length": 50},
}


# --------------------------------------------------------------------------- #
# Query string
# --------------------------------------------------------------------------- #
def _assign(target: dict[str, Any], parts: list[str], value: str) -> None:
    as_list = len(parts) > 1 and parts[-1] == ""
    if as_list:
        parts = parts[:-1]
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    last = parts[-1]
    existing = target.get(last)
    if existing is None or isinstance(existing, dict):
        target[last] = [value] if as_list else value
    elif isinstance(existing, list):
        existing.append(value)
    else:
        target[last] = [existing, value]


def parse_query_string(query: str) -> dict[str, Any]:
    """Parse a query string the way ``qs`` does.

    Repeated keys become lists, ``a[]=x`` always yields a list and bracket
    keys nest: ``filter[status]=active`` -> ``{"filter": {"status": "active"}}``.
    """
    out: dict[str, Any] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        match = _KEY_RE.match(key)
        if match is None:
            _assign(out, [key], value)
        else:
            _assign(out, [match.group(1), *_SEGMENT_RE.findall(match.group(2))], value)
    return out


# --------------------------------------------------------------------------- #
# Shared failure / predicate plumbing
# --------------------------------------------------------------------------- #
def _failure(
    ctx: RequestContext,
    category: Category,
    failures: Sequence[FieldFailure],
    *,
    settings: ValidationSettings,
    cache: SchemaCache,
    status_code: int = 400,
    original_error: str | None = None,
    stack: str | None = None,
) -> RequestValidationFailed:
    info = ValidationErrorInfo(
        request_id=ctx.request_id,
        category=category,
        failures=tuple(failures),
        status_code=status_code,
        original_error=original_error,
        stack=stack,
    )
    cache.metrics.record_failure(category)
    logger.warning(
        "Validation error occurred",
        extra={
            "meta": {
                "error_id": ctx.request_id,
                "validation_type": category,
                "field_count": len(info.fields()),
                "status_code": status_code,
            }
        },
    )
    return RequestValidationFailed(info, verbose=settings.verbose_errors)


async def _run_predicate(
    predicate: Predicate,
    value: Any,
    request: Request,
    *,
    category: Category,
    ctx: RequestContext,
    settings: ValidationSettings,
    cache: SchemaCache,
) -> None:
    try:
        outcome = predicate(value, request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as exc:
        logger.error(
            "Custom validator raised",
            exc_info=True,
            extra={"meta": {"request_id": ctx.request_id, "validation_type": category}},
        )
        raise _failure(
            ctx,
            "custom",
            [FieldFailure(ROOT_PATH, "custom.exception", "Custom validation error occurred")],
            settings=settings,
            cache=cache,
            status_code=500,
            original_error=repr(exc),
            stack=traceback.format_exc(),
        ) from exc

    if outcome is True:
        return
    if isinstance(outcome, Rejection):
        failure = FieldFailure(outcome.field or ROOT_PATH, "custom", outcome.message)
        status_code = outcome.status_code
    else:
        message = outcome if isinstance(outcome, str) and outcome else "Custom validation failed"
        failure = FieldFailure(ROOT_PATH, "custom", message)
        status_code = 400
    raise _failure(
        ctx,
        category,
        [failure],
        settings=settings,
        cache=cache,
        status_code=status_code,
        original_error=failure.message,
    )


def _store(request: Request, part: Part, value: Any) -> None:
    validated = getattr(request.state, "validated", None)
    if not isinstance(validated, dict):
        validated = {}
        request.state.validated = validated
    validated[part] = value


# --------------------------------------------------------------------------- #
# Validators
# --------------------------------------------------------------------------- #
class RequestValidator:
    """Validates one part of the request; usable as a FastAPI dependency."""

    def __init__(
        self,
        part: Part,
        descriptor: Mapping[str, Any],
        *,
        allow_unknown: bool,
        strip_unknown: bool,
        abort_early: bool = False,
        sanitize: bool | None = None,
        custom_validator: Predicate | None = None,
        settings: ValidationSettings | None = None,
        cache: SchemaCache | None = None,
    ) -> None:
        self.part: Part = part
        self.descriptor = dict(descriptor)
        self.allow_unknown = allow_unknown
        self.strip_unknown = strip_unknown
        self.abort_early = abort_early
        self.settings = settings or get_settings().validation
        self.sanitize = self.settings.sanitize if sanitize is None else sanitize
        self.custom_validator = custom_validator
        self.cache = cache or get_schema_cache()
        # Compile eagerly so malformed descriptors fail at import time.
        self.cache.get_or_compile(
            self.descriptor,
            allow_unknown=allow_unknown,
            strip_unknown=strip_unknown,
        )

    async def __call__(self, request: Request) -> dict[str, Any]:
        return await self.run(request)

    async def extract(self, request: Request, ctx: RequestContext) -> Any:
        """Return the raw structure this validator checks."""
        if self.part == "path":
            return dict(request.path_params)
        if self.part == "query":
            return parse_query_string(request.url.query)
        raw = await request.body()
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise _failure(
                ctx,
                "body",
                [FieldFailure(ROOT_PATH, "json_invalid", "Request body must be valid JSON")],
                settings=self.settings,
                cache=self.cache,
                original_error=str(exc),
            ) from exc

    async def run(self, request: Request) -> dict[str, Any]:
        """Sanitize, validate, apply the predicate and store the result."""
        ctx = get_request_context(request)
        self.cache.metrics.record_attempt(self.part)
        if self.settings.log_attempts:
            logger.debug(
                f"Starting {self.part} validation",
                extra={"meta": {"request_id": ctx.request_id}},
            )

        raw = await self.extract(request, ctx)
        data = sanitize_input(raw) if self.sanitize else raw

        schema = self.cache.get_or_compile(
            self.descriptor,
            allow_unknown=self.allow_unknown,
            strip_unknown=self.strip_unknown,
        )
        value, failures = schema.validate(data, abort_early=self.abort_early)
        if failures or value is None:
            raise _failure(
                ctx,
                self.part,
                failures,
                settings=self.settings,
                cache=self.cache,
                original_error="; ".join(f"{f.path}: {f.message}" for f in failures),
            )

        if self.custom_validator is not None:
            await _run_predicate(
                self.custom_validator,
                value,
                request,
                category="custom",
                ctx=ctx,
                settings=self.settings,
                cache=self.cache,
            )

        _store(request, self.part, value)
        logger.debug(
            f"{self.part.capitalize()} validation successful",
            extra={"meta": {"request_id": ctx.request_id}},
        )
        return value


class CompositeValidator:
    """Runs path, query and body validators in that order, then a cross-part predicate."""

    _ORDER: Final[tuple[Part, ...]] = ("path", "query", "body")

    def __init__(
        self,
        parts: Sequence[RequestValidator],
        *,
        custom_validator: Predicate | None = None,
        settings: ValidationSettings | None = None,
        cache: SchemaCache | None = None,
    ) -> None:
        self.parts = sorted(parts, key=lambda v: self._ORDER.index(v.part))
        self.custom_validator = custom_validator
        self.settings = settings or get_settings().validation
        self.cache = cache or get_schema_cache()

    async def __call__(self, request: Request) -> dict[str, Any]:
        ctx = get_request_context(request)
        logger.debug(
            "Starting composite request validation",
            extra={
                "meta": {
                    "request_id": ctx.request_id,
                    "validation_types": [v.part for v in self.parts],
                }
            },
        )
        results: dict[str, Any] = {"path": None, "query": None, "body": None}
        for validator in self.parts:
            results[validator.part] = await validator.run(request)

        if self.custom_validator is not None:
            await _run_predicate(
                self.custom_validator,
                results,
                request,
                category="composite",
                ctx=ctx,
                settings=self.settings,
                cache=self.cache,
            )
        logger.debug(
            "Composite request validation successful",
            extra={"meta": {"request_id": ctx.request_id}},
        )
        return results


# --------------------------------------------------------------------------- #
# Factories
# --------------------------------------------------------------------------- #
def validate_body(
    descriptor: Mapping[str, Any],
    *,
    allow_unknown: bool | None = None,
    strip_unknown: bool | None = None,
    abort_early: bool = False,
    sanitize: bool | None = None,
    custom_validator: Predicate | None = None,
    settings: ValidationSettings | None = None,
    cache: SchemaCache | None = None,
) -> RequestValidator:
    """Validate the JSON body. Unknown keys are rejected unless strict, stripped when strict."""
    settings = settings or get_settings().validation
    return RequestValidator(
        "body",
        descriptor,
        allow_unknown=False if allow_unknown is None else allow_unknown,
        strip_unknown=settings.strict if strip_unknown is None else strip_unknown,
        abort_early=abort_early,
        sanitize=sanitize,
        custom_validator=custom_validator,
        settings=settings,
        cache=cache,
    )


def validate_query(
    descriptor: Mapping[str, Any],
    *,
    allow_unknown: bool = True,
    strip_unknown: bool = False,
    abort_early: bool = False,
    sanitize: bool | None = None,
    custom_validator: Predicate | None = None,
    settings: ValidationSettings | None = None,
    cache: SchemaCache | None = None,
) -> RequestValidator:
    """Validate the query string (unknown keys kept by default)."""
    return RequestValidator(
        "query",
        descriptor,
        allow_unknown=allow_unknown,
        strip_unknown=strip_unknown,
        abort_early=abort_early,
        sanitize=sanitize,
        custom_validator=custom_validator,
        settings=settings,
        cache=cache,
    )


def validate_params(
    descriptor: Mapping[str, Any],
    *,
    allow_unknown: bool = False,
    strip_unknown: bool = True,
    abort_early: bool = False,
    sanitize: bool | None = None,
    custom_validator: Predicate | None = None,
    settings: ValidationSettings | None = None,
    cache: SchemaCache | None = None,
) -> RequestValidator:
    """Validate path parameters (unknown parameters stripped by default)."""
    return RequestValidator(
        "path",
        descriptor,
        allow_unknown=allow_unknown,
        strip_unknown=strip_unknown,
        abort_early=abort_early,
        sanitize=sanitize,
        custom_validator=custom_validator,
        settings=settings,
        cache=cache,
    )


def validate_request(
    *,
    path: Mapping[str, Any] | RequestValidator | None = None,
    query: Mapping[str, Any] | RequestValidator | None = None,
    body: Mapping[str, Any] | RequestValidator | None = None,
    custom_validator: Predicate | None = None,
    abort_early: bool = False,
    sanitize: bool | None = None,
    settings: ValidationSettings | None = None,
    cache: SchemaCache | None = None,
) -> CompositeValidator:
    """Compose validators for several request parts into one dependency.

    Each part is a descriptor (validated with its factory's defaults) or an
    already-built validator.
    """
    settings = settings or get_settings().validation
    common: dict[str, Any] = {
        "abort_early": abort_early,
        "sanitize": sanitize,
        "settings": settings,
        "cache": cache,
    }
    parts: list[RequestValidator] = []
    for part, factory in ((path, validate_params), (query, validate_query), (body, validate_body)):
        if part is None:
            continue
        parts.append(part if isinstance(part, RequestValidator) else factory(part, **common))
    return CompositeValidator(parts, custom_validator=custom_validator, settings=settings, cache=cache)


def validate_id(
    param: str = "id",
    *,
    kind: IdKind = "uuid",
    required: bool = True,
    custom_validator: Predicate | None = None,
    settings: ValidationSettings | None = None,
    cache: SchemaCache | None = None,
) -> RequestValidator:
    """Validate a single path parameter identifying an entity.

    Kinds: ``uuid`` (any version), ``numeric`` (positive integer), ``object_id``
    (24 hex chars) and ``alphanumeric`` (1-50 letters or digits). The optional
    predicate receives the parameter value rather than the whole mapping.
    """
    if kind not in _ID_RULES:
        raise ValueError(f"unsupported id kind: {kind!r}")
    rule = {**_ID_RULES[kind], "required": required}

    async def _check(value: Mapping[str, Any], request: Request) -> PredicateResult:
        if custom_validator is None:
            return True
        outcome = custom_validator(value.get(param), request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if outcome is True or isinstance(outcome, Rejection):
            return outcome
        return outcome or f"Invalid {param} parameter"

    return validate_params(
        {param: rule},
        custom_validator=_check if custom_validator is not None else None,
        settings=settings,
        cache=cache,
    )


def validate_email_body(**options: Any) -> RequestValidator:
    """Validate a body holding one required, normalized ``email``."""
    return validate_body({"email": EMAIL_RULE.model_copy(update={"required": True})}, **options)


def validate_password_body(**options: Any) -> RequestValidator:
    """Validate a body holding one required ``password`` of sufficient strength."""
    return validate_body({"password": PASSWORD_RULE.model_copy(update={"required": True})}, **options)


def validate_uuid_param(param: str = "id", **options: Any) -> RequestValidator:
    """Validate one UUID path parameter; same as ``validate_id(param, kind="uuid")``."""
    return validate_id(param, kind="uuid", **options)


def validate_pagination(
    *,
    max_limit: int = 100,
    default_limit: int = 20,
    max_page: int = 1000,
    default_page: int = 1,
    allowed_sort_fields: Sequence[str] = (),
    default_sort: str = "createdAt",
    allowed_sort_orders: Sequence[str] = ("asc", "desc", "ascending", "descending"),
    custom_validator: Predicate | None = None,
    settings: ValidationSettings | None = None,
    cache: SchemaCache | None = None,
) -> RequestValidator:
    """Validate pagination query parameters.

    ``page`` and ``offset`` are mutually exclusive; supplying both fails on
    field ``offset``. With ``page`` only (or neither) the output gains
    ``offset = (page - 1) * limit``; with ``offset`` only it gains
    ``page = offset // limit + 1``.
    """
    sort_rule: dict[str, Any] = (
        {"type": "enum", "values": tuple(allowed_sort_fields), "default": default_sort}
        if allowed_sort_fields
        else {"type": "string", "default": default_sort}
    )
    descriptor: dict[str, Any] = {
        "page": {"type": "integer", "min": 1, "max": max_page},
        "limit": {"type": "integer", "min": 1, "max": max_limit, "default": default_limit},
        "offset": {"type": "integer", "min": 0},
        "sort": sort_rule,
        "order": {"type": "enum", "values": tuple(allowed_sort_orders), "default": "asc"},
        "search": {"type": "string", "max_length": 100},
        "filter": {"type": "object"},
    }

    async def _paginate(value: dict[str, Any], request: Request) -> PredicateResult:
        page = value.get("page")
        offset = value.get("offset")
        if page is not None and offset is not None:
            return Rejection("Cannot use both page and offset parameters together", field="offset")
        limit = value["limit"]
        if offset is None:
            page = default_page if page is None else page
            value["page"] = page
            value["offset"] = (page - 1) * limit
        else:
            value["page"] = offset // limit + 1
        if custom_validator is None:
            return True
        outcome = custom_validator(value, request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    return validate_query(
        descriptor,
        allow_unknown=True,
        strip_unknown=False,
        custom_validator=_paginate,
        settings=settings,
        cache=cache,
    )
