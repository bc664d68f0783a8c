# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Input sanitization.

Deep-walks a decoded request structure before validation:

* strings are trimmed, HTML-escaped (``< > & " '``) and, when they are a
  syntactically valid email address, canonicalized;
* lists are sanitized element-wise;
* mappings are sanitized key- and value-wise (string keys only);
* every other scalar is returned unchanged.

The walk is idempotent: an ``&`` that already starts one of the produced
entities is not escaped again, and canonical emails are fixed points.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Final

from email_validator import EmailNotValidError, validate_email

__all__ = ["normalize_email", "sanitize_input", "sanitize_string"]

_AMP_RE: Final[re.Pattern[str]] = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27);)")
_ESCAPES: Final[dict[str, str]] = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
}
_ESCAPE_RE: Final[re.Pattern[str]] = re.compile(r"[<>\"']")

# Domain -> (drop dots, subaddress separator) for provider-specific canonicalization.
_PROVIDERS: Final[dict[str, tuple[bool, str]]] = {
    "gmail.com": (True, "+"),
    "googlemail.com": (True, "+"),
    "outlook.com": (False, "+"),
    "hotmail.com": (False, "+"),
    "live.com": (False, "+"),
    "icloud.com": (False, "+"),
    "me.com": (False, "+"),
    "mac.com": (False, "+"),
    "yahoo.com": (False, "-"),
    "ymail.com": (False, "-"),
}


def escape_html(value: str) -> str:
    """HTML-escape ``< > & " '`` without double-escaping existing entities."""
    value = _AMP_RE.sub("&amp;", value)
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(0)], value)


def normalize_email(value: str) -> str | None:
    """Return the canonical form of ``value`` or ``None`` if it is not an email.

    Lowercases the address; for gmail/googlemail drops dots and ``+tag`` and
    folds ``googlemail.com`` into ``gmail.com``; for outlook/hotmail/live and
    icloud drops ``+tag``; for yahoo drops ``-tag``.
    """
    if "@" not in value:
        return None
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return None

    local, _, domain = value.lower().rpartition("@")
    rule = _PROVIDERS.get(domain)
    if rule is not None:
        drop_dots, separator = rule
        candidate = local.split(separator, 1)[0]
        if drop_dots:
            candidate = candidate.replace(".", "")
        if candidate:
            local = candidate
        if domain == "googlemail.com":
            domain = "gmail.com"
    return f"{local}@{domain}"


def sanitize_string(
    value: str,
    *,
    trim: bool = True,
    escape: bool = True,
    normalize_emails: bool = True,
) -> str:
    """Sanitize one string (trim, escape, email canonicalization)."""
    if trim:
        value = value.strip()
    if escape:
        value = escape_html(value)
    if normalize_emails:
        canonical = normalize_email(value)
        if canonical is not None:
            value = canonical
    return value


def sanitize_input(
    value: Any,
    *,
    trim: bool = True,
    escape: bool = True,
    normalize_emails: bool = True,
) -> Any:
    """Return a sanitized deep copy of ``value``.

    Args:
        value: Decoded JSON-like structure (mappings, lists, scalars).
        trim: Strip surrounding whitespace of strings.
        escape: HTML-escape strings.
        normalize_emails: Canonicalize strings that are valid emails.

    Returns:
        The sanitized structure; non-string scalars are returned as-is.
    """
    options = {"trim": trim, "escape": escape, "normalize_emails": normalize_emails}
    if isinstance(value, str):
        return sanitize_string(value, **options)
    if isinstance(value, Mapping):
        return {
            (sanitize_string(k, **options) if isinstance(k, str) else k): sanitize_input(v, **options)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_input(item, **options) for item in value]
    return value
