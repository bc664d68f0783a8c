# Copyright (c)
# SPDX-License-Identifier: MIT
"""
User Entity

Purpose:
    Immutable domain representation of an API user (no I/O).

Layer: domain/entities
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Final

from hello_api.infrastructure.logging.rotating import iso_utc

ROLES: Final[tuple[str, ...]] = ("admin", "moderator", "user")
STATUSES: Final[tuple[str, ...]] = ("active", "inactive", "pending")


@dataclass(frozen=True, slots=True)
class User:
    """User entity.

    Args:
        id: Canonical UUID string.
        name: Display name.
        email: Lower-cased email address.
        role: One of ``ROLES``.
        status: One of ``STATUSES``.
        created_at: UTC creation instant.
        updated_at: UTC instant of the last change.
        profile: Optional profile attributes.
        metadata: Free-form bookkeeping attached by the API.

    Raises:
        ValueError: If role or status is outside the allowed set.
    """

    id: str
    name: str
    email: str
    role: str = "user"
    status: str = "active"
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    profile: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"unsupported role: {self.role!r}")
        if self.status not in STATUSES:
            raise ValueError(f"unsupported status: {self.status!r}")

    def with_changes(self, **changes: Any) -> User:
        """Return a copy with ``changes`` applied and ``updated_at`` refreshed."""
        return replace(self, updated_at=datetime.now(tz=UTC), **changes)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase timestamps)."""
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "createdAt": iso_utc(self.created_at),
            "updatedAt": iso_utc(self.updated_at),
        }
        if self.profile is not None:
            out["profile"] = self.profile
        if self.metadata:
            out["metadata"] = self.metadata
        return out
