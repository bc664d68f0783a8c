"""
Validation package export.

Keeps import sites clean and stable:
    from hello_api.adapters.validation import validate_body, validate_id
"""

from __future__ import annotations

from .cache import SchemaCache, get_schema_cache
from .compiler import CompiledSchema, compile_schema
from .descriptors import EMAIL_RULE, PASSWORD_RULE, PHONE_RULE, FieldRule, canonical_key, date_range
from .errors import FieldFailure, Rejection, RequestValidationFailed, ValidationErrorInfo
from .sanitize import sanitize_input
from .validators import (
    CompositeValidator,
    RequestValidator,
    validate_body,
    validate_email_body,
    validate_id,
    validate_pagination,
    validate_params,
    validate_password_body,
    validate_query,
    validate_request,
    validate_uuid_param,
)

__all__ = [
    "EMAIL_RULE",
    "PASSWORD_RULE",
    "PHONE_RULE",
    "CompiledSchema",
    "CompositeValidator",
    "FieldFailure",
    "FieldRule",
    "Rejection",
    "RequestValidationFailed",
    "RequestValidator",
    "SchemaCache",
    "ValidationErrorInfo",
    "canonical_key",
    "compile_schema",
    "date_range",
    "get_schema_cache",
    "sanitize_input",
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
