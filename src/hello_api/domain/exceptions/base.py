# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Base Domain Exceptions.

Summary:
    Canonical base class for domain/application exceptions to ensure deterministic
    mapping to HTTP at the boundary. Route handlers raise these; the HTTP error
    handlers render them unchanged.

Layer:
    domain/exceptions
"""
from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for all domain/application exceptions."""

    code: str = "DOMAIN_ERROR"
    status_code: int = 400

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class BusinessLogicError(DomainError):
    """A well-formed request that violates a business rule."""

    code = "UNPROCESSABLE_REQUEST"
    status_code = 422


class ResourceNotFound(DomainError):
    """The addressed resource does not exist."""

    code = "RESOURCE_NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            f"{resource} not found",
            details={"resource": resource, "id": identifier},
        )
