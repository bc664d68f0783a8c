# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Validation descriptors.

Summary:
    A descriptor is a mapping ``field name -> field rule``. Rules may be plain
    mappings or :class:`FieldRule` instances; both normalize to the same
    :class:`FieldRule`. Two reserved top-level keys, ``allowUnknown`` and
    ``stripUnknown``, override the unknown-key policy chosen by the factory.

    :func:`canonical_key` turns a descriptor plus the effective unknown-key
    policy into a deterministic string: rule properties sorted, rule
    properties equal to their default omitted, field order preserved (it
    decides failure order).

Layer:
    adapters/validation
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

FieldKind = Literal[
    "string",
    "integer",
    "number",
    "boolean",
    "object",
    "array",
    "date",
    "uuid",
    "email",
    "url",
    "enum",
]

RESERVED_KEYS: Final[frozenset[str]] = frozenset({"allowUnknown", "stripUnknown"})


class FieldRule(BaseModel):
    """Declarative rule for one field.

    Attributes:
        type: Primitive kind of the field.
        required: Fail with ``missing`` when absent.
        default: Value injected when absent (only when explicitly given).
        nullable: Accept an explicit ``null``.
        min: Inclusive lower bound for numbers, or an ISO instant for dates.
        max: Inclusive upper bound for numbers, or an ISO instant for dates.
        min_length: Minimum length for strings and arrays.
        max_length: Maximum length for strings and arrays.
        pattern: Python ``re`` pattern a string must match.
        trim: Strip surrounding whitespace before length checks.
        lowercase: Lowercase the string.
        values: Allowed values of an ``enum`` field.
        fields: Nested descriptor of an ``object`` field.
        items: Rule applied to each element of an ``array`` field.
        coerce: Allow lax conversion (``"3"`` -> ``3``).
        allow_unknown: Unknown-key policy of a nested object (inherits when unset).
        strip_unknown: Drop unknown keys of a nested object (inherits when unset).
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    type: FieldKind = "string"
    required: bool = False
    default: Any = None
    nullable: bool = False
    min: float | datetime | None = None
    max: float | datetime | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    pattern: str | None = None
    trim: bool = False
    lowercase: bool = False
    values: tuple[Any, ...] | None = None
    fields: dict[str, FieldRule] | None = None
    items: FieldRule | None = None
    coerce: bool = True
    allow_unknown: bool | None = None
    strip_unknown: bool | None = None

    @model_validator(mode="after")
    def _check(self) -> FieldRule:
        if self.type == "enum" and not self.values:
            raise ValueError("enum rules need a non-empty 'values'")
        if self.required and "default" in self.model_fields_set:
            raise ValueError("a required field cannot declare a default")
        for bound in (self.min, self.max):
            if bound is None:
                continue
            if (self.type == "date") != isinstance(bound, datetime):
                raise ValueError("date rules take ISO instant bounds, other rules numeric bounds")
        return self

    @property
    def has_default(self) -> bool:
        """True when the rule explicitly declares a default (``None`` included)."""
        return "default" in self.model_fields_set


def as_rule(raw: FieldRule | Mapping[str, Any]) -> FieldRule:
    """Normalize a plain mapping (or rule) into a :class:`FieldRule`."""
    if isinstance(raw, FieldRule):
        return raw
    return FieldRule.model_validate(dict(raw))


def split_descriptor(
    descriptor: Mapping[str, Any],
) -> tuple[dict[str, FieldRule], dict[str, bool]]:
    """Separate field rules from the reserved unknown-key options.

    Returns:
        ``(rules, options)`` where options only holds reserved keys present.

    Raises:
        ValueError: If a reserved option is not a boolean or a rule is invalid.
    """
    rules: dict[str, FieldRule] = {}
    options: dict[str, bool] = {}
    for name, raw in descriptor.items():
        if name in RESERVED_KEYS:
            if not isinstance(raw, bool):
                raise ValueError(f"{name} must be a boolean")
            options[name] = raw
            continue
        rules[name] = as_rule(raw)
    return rules, options


def effective_policy(
    options: Mapping[str, bool],
    *,
    allow_unknown: bool,
    strip_unknown: bool,
) -> tuple[bool, bool]:
    """Apply descriptor-level overrides to the factory's unknown-key policy."""
    return (
        options.get("allowUnknown", allow_unknown),
        options.get("stripUnknown", strip_unknown),
    )


def _canonical_rule(rule: FieldRule) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(FieldRule.model_fields):
        value = getattr(rule, name)
        if name == "default":
            if rule.has_default:
                out[name] = value
            continue
        if value == FieldRule.model_fields[name].default:
            continue
        if name == "fields" and value is not None:
            value = [[key, _canonical_rule(sub)] for key, sub in value.items()]
        elif name == "items" and value is not None:
            value = _canonical_rule(value)
        elif name == "values":
            value = list(value)
        out[name] = value
    return out


def canonical_key(
    descriptor: Mapping[str, Any],
    *,
    allow_unknown: bool = False,
    strip_unknown: bool = False,
) -> str:
    """Return the deterministic cache key of ``descriptor`` under a policy.

    Two descriptors with the same validation semantics (same rules, same
    field order, same effective unknown-key policy) yield the same key
    regardless of how the rules were spelled.
    """
    rules, options = split_descriptor(descriptor)
    allow, strip = effective_policy(options, allow_unknown=allow_unknown, strip_unknown=strip_unknown)
    payload = {
        "allowUnknown": allow,
        "stripUnknown": strip,
        "fields": [[name, _canonical_rule(rule)] for name, rule in rules.items()],
    }
    return json.dumps(payload, separators=(",", ":"), default=str)


# --------------------------------------------------------------------------- #
# Reusable rules
# --------------------------------------------------------------------------- #
EMAIL_RULE: Final[FieldRule] = FieldRule(type="email", trim=True, lowercase=True)
PASSWORD_RULE: Final[FieldRule] = FieldRule(
    type="string",
    min_length=8,
    max_length=128,
    pattern=r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]",
)
# E.164 shape: optional "+", 8-15 digits, no leading zero.
PHONE_RULE: Final[FieldRule] = FieldRule(type="string", trim=True, pattern=r"^\+?[1-9]\d{7,14}$")


def date_range(
    minimum: datetime | str | None = None,
    maximum: datetime | str | None = None,
    **options: Any,
) -> FieldRule:
    """Return a ``date`` rule bounded by inclusive ISO instants.

    Args:
        minimum: Earliest accepted instant (``datetime`` or ISO string).
        maximum: Latest accepted instant (``datetime`` or ISO string).
        **options: Extra rule properties (``required``, ``nullable`` ...).

    Raises:
        ValueError: If a bound is not a valid ISO instant.
    """
    return as_rule({"type": "date", "min": minimum, "max": maximum, **options})
