# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Descriptor compiler.

Summary:
    Turns a descriptor into a pydantic model built with ``create_model``.
    Every field gets a positional internal name (``f0``, ``f1`` ...) and the
    descriptor name as alias, so any key (``class``, ``model_config``, keys
    with dots) is safe. Unknown keys map onto ``extra``: strip -> ``ignore``,
    allow -> ``allow``, otherwise ``forbid``.

Output:
    :meth:`CompiledSchema.validate` returns ``(value, failures)``. ``value``
    holds the fields the input supplied, fields with a declared default, and
    (under ``allow``) the unknown keys unchanged. Absent optional fields
    without a default are left out rather than set to ``None``.

Layer:
    adapters/validation
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar, Literal

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic_core import PydanticCustomError, PydanticUndefined

from hello_api.adapters.validation.descriptors import (
    FieldRule,
    canonical_key,
    effective_policy,
    split_descriptor,
)
from hello_api.adapters.validation.errors import FieldFailure

__all__ = ["CompiledSchema", "compile_schema"]

_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)
_URL_SCHEMES = frozenset({"http", "https", "ftp"})
_CONTAINER_KINDS = frozenset({"object", "array"})


class _DescriptorModel(BaseModel):
    """Base of every compiled model; knows how to export validated data."""

    declared_defaults: ClassVar[frozenset[str]] = frozenset()

    def export(self) -> dict[str, Any]:
        """Return validated data keyed by the descriptor's field names."""
        out: dict[str, Any] = {}
        for name, info in type(self).model_fields.items():
            if name in self.model_fields_set or name in self.declared_defaults:
                out[info.alias or name] = _export_value(getattr(self, name))
        if self.model_extra:
            for key, value in self.model_extra.items():
                out.setdefault(key, value)
        return out


def _export_value(value: Any) -> Any:
    if isinstance(value, _DescriptorModel):
        return value.export()
    if isinstance(value, list):
        return [_export_value(item) for item in value]
    if isinstance(value, dict):
        return {key: _export_value(item) for key, item in value.items()}
    return value


# --------------------------------------------------------------------------- #
# Kind checks that pydantic does not ship as plain-string validators
# --------------------------------------------------------------------------- #
def _check_uuid(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError as exc:
        raise PydanticCustomError("uuid", "must be a valid UUID") from exc
    return value


def _check_email(value: str) -> str:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as exc:
        raise PydanticCustomError("email", "must be a valid email") from exc
    return value


def _check_url(value: str) -> str:
    try:
        url = _URL_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise PydanticCustomError("url", "must be a valid uri") from exc
    if url.scheme not in _URL_SCHEMES or not url.host:
        raise PydanticCustomError("url", "must be a valid uri")
    return value


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _date_bounds(rule: FieldRule) -> Any:
    lower = _aware(rule.min) if isinstance(rule.min, datetime) else None
    upper = _aware(rule.max) if isinstance(rule.max, datetime) else None

    def check(value: datetime) -> datetime:
        moment = _aware(value)
        if lower is not None and moment < lower:
            raise PydanticCustomError("date_min", "must be on or after {limit}", {"limit": lower.isoformat()})
        if upper is not None and moment > upper:
            raise PydanticCustomError("date_max", "must be on or before {limit}", {"limit": upper.isoformat()})
        return value

    return check


def _string_type(rule: FieldRule, check: Any = None) -> Any:
    constraints = StringConstraints(
        strip_whitespace=rule.trim or None,
        to_lower=rule.lowercase or None,
        min_length=rule.min_length,
        max_length=rule.max_length,
        pattern=rule.pattern,
    )
    if check is None:
        return Annotated[str, constraints]
    return Annotated[str, constraints, AfterValidator(check)]


def _field_type(rule: FieldRule, *, policy: tuple[bool, bool], path: str) -> Any:
    """Return the annotation validating one rule (without nullability)."""
    kind = rule.type
    if kind == "string":
        return _string_type(rule)
    if kind == "uuid":
        return _string_type(rule, _check_uuid)
    if kind == "email":
        return _string_type(rule, _check_email)
    if kind == "url":
        return _string_type(rule, _check_url)
    if kind == "integer":
        return Annotated[int, Field(ge=rule.min, le=rule.max)]
    if kind == "number":
        return Annotated[float, Field(ge=rule.min, le=rule.max, allow_inf_nan=False)]
    if kind == "boolean":
        return bool
    if kind == "date":
        if rule.min is None and rule.max is None:
            return datetime
        return Annotated[datetime, AfterValidator(_date_bounds(rule))]
    if kind == "enum":
        assert rule.values is not None
        return Literal[rule.values]  # type: ignore[valid-type]
    if kind == "object":
        if rule.fields is None:
            return dict[str, Any]
        allow, strip = policy
        if rule.allow_unknown is not None:
            allow = rule.allow_unknown
        if rule.strip_unknown is not None:
            strip = rule.strip_unknown
        return _build_model(rule.fields, allow=allow, strip=strip, name=path)
    if kind == "array":
        item = (
            _field_type(rule.items, policy=policy, path=f"{path}_items")
            if rule.items is not None
            else Any
        )
        if rule.items is not None and rule.items.nullable:
            item = item | None
        return Annotated[list[item], Field(min_length=rule.min_length, max_length=rule.max_length)]  # type: ignore[valid-type]
    raise ValueError(f"unsupported field kind: {kind!r}")


class _ForbidModel(_DescriptorModel):
    model_config = ConfigDict(extra="forbid", regex_engine="python-re")


class _AllowModel(_DescriptorModel):
    model_config = ConfigDict(extra="allow", regex_engine="python-re")


class _IgnoreModel(_DescriptorModel):
    model_config = ConfigDict(extra="ignore", regex_engine="python-re")


def _base_for(*, allow: bool, strip: bool) -> type[_DescriptorModel]:
    if strip:
        return _IgnoreModel
    if allow:
        return _AllowModel
    return _ForbidModel


def _build_model(
    rules: Mapping[str, FieldRule],
    *,
    allow: bool,
    strip: bool,
    name: str,
) -> type[_DescriptorModel]:
    definitions: dict[str, Any] = {}
    defaults: set[str] = set()
    for index, (field_name, rule) in enumerate(rules.items()):
        internal = f"f{index}"
        annotation = _field_type(rule, policy=(allow, strip), path=f"{name}_{index}")
        if rule.nullable:
            annotation = annotation | None
        if rule.required:
            default: Any = PydanticUndefined
        elif rule.has_default:
            default = rule.default
            defaults.add(internal)
        else:
            default = None
        strict = None if rule.type in _CONTAINER_KINDS else not rule.coerce
        definitions[internal] = (annotation, Field(default=default, alias=field_name, strict=strict))

    model: type[_DescriptorModel] = create_model(  # type: ignore[call-overload]
        name,
        __base__=_base_for(allow=allow, strip=strip),
        **definitions,
    )
    model.declared_defaults = frozenset(defaults)
    return model


@dataclass(frozen=True, slots=True)
class CompiledSchema:
    """A descriptor compiled for one unknown-key policy."""

    key: str
    model: type[_DescriptorModel]

    def validate(
        self,
        data: Any,
        abort_early: bool = False,
    ) -> tuple[dict[str, Any] | None, list[FieldFailure]]:
        """Validate ``data``; return the exported value or the field failures.

        ``None`` input validates as an empty mapping. All failures are
        collected in field order unless ``abort_early`` keeps only the first.
        """
        if data is None:
            data = {}
        try:
            instance = self.model.model_validate(data)
        except ValidationError as exc:
            failures = [FieldFailure.from_pydantic(err) for err in exc.errors(include_url=False)]
            return None, failures[:1] if abort_early else failures
        return instance.export(), []


def compile_schema(
    descriptor: Mapping[str, Any],
    *,
    allow_unknown: bool = False,
    strip_unknown: bool = False,
) -> CompiledSchema:
    """Compile ``descriptor`` (uncached); see :class:`SchemaCache` for the cached path."""
    rules, options = split_descriptor(descriptor)
    allow, strip = effective_policy(options, allow_unknown=allow_unknown, strip_unknown=strip_unknown)
    key = canonical_key(descriptor, allow_unknown=allow_unknown, strip_unknown=strip_unknown)
    digest = hashlib.sha1(key.encode("utf-8"), usedforsecurity=False).hexdigest()[:12]
    return CompiledSchema(
        key=key,
        model=_build_model(rules, allow=allow, strip=strip, name=f"Schema_{digest}"),
    )
