# Copyright (c)
# SPDX-License-Identifier: MIT
"""
UsersRepository: in-memory user store backing the illustrative endpoints.

Purpose:
    Serve a fixed population of synthetic users plus a couple of well-known
    records, and apply the business rules the user endpoints rely on
    (duplicate emails, admin protection). Nothing is persisted: writes return
    the resulting entity without mutating the store.

Layer: adapters / repositories

Notes:
    * Synthetic users are deterministic (uuid5 ids, fixed timestamps) so
      paging through them is stable across requests.
    * Update and delete treat every well-formed id as existing, like the
      stubbed handlers they back.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, Final

from hello_api.domain.entities.user import User
from hello_api.domain.exceptions.base import BusinessLogicError, ResourceNotFound

TOTAL_SYNTHETIC_USERS: Final[int] = 250
MOCK_USER_ID: Final[str] = "123e4567-e89b-12d3-a456-426614174000"
ADMIN_USER_ID: Final[str] = "a0000000-0000-4000-8000-000000000001"
EXISTING_EMAILS: Final[frozenset[str]] = frozenset({"admin@example.com", "test@example.com"})
SORT_FIELDS: Final[dict[str, str]] = {
    "id": "id",
    "name": "name",
    "email": "email",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

_ANCHOR: Final[datetime] = datetime(2024, 1, 1, tzinfo=UTC)
_NAMESPACE: Final[uuid.UUID] = uuid.UUID("6f1c2a3e-5b7d-4e8f-9a0b-1c2d3e4f5a6b")


def _synthetic(index: int) -> User:
    number = index + 1
    return User(
        id=str(uuid.uuid5(_NAMESPACE, f"user-{number}")),
        name=f"User {number}",
        email=f"user{number}@example.com",
        role="admin" if index % 5 == 0 else "user",
        status="inactive" if index % 3 == 0 else "active",
        created_at=_ANCHOR - timedelta(days=(index * 37) % 365, minutes=index),
        updated_at=_ANCHOR,
    )


def _known_users() -> dict[str, User]:
    john = User(
        id=MOCK_USER_ID,
        name="John Doe",
        email="john@example.com",
        role="user",
        status="active",
        created_at=datetime(2023, 1, 15, 10, 30, tzinfo=UTC),
        updated_at=datetime(2023, 12, 1, 14, 22, tzinfo=UTC),
        profile={
            "firstName": "John",
            "lastName": "Doe",
            "avatar": None,
            "timezone": "UTC",
            "language": "en",
        },
        metadata={"lastLogin": "2023-12-01T14:20:00.000Z", "loginCount": 157, "source": "registration"},
    )
    admin = User(
        id=ADMIN_USER_ID,
        name="Site Admin",
        email="admin@example.com",
        role="admin",
        status="active",
        created_at=datetime(2022, 6, 1, 9, 0, tzinfo=UTC),
        updated_at=datetime(2023, 11, 1, 12, 0, tzinfo=UTC),
    )
    return {john.id: john, admin.id: admin}


class UsersRepository:
    """Read-mostly, process-local user store."""

    def __init__(self, total: int = TOTAL_SYNTHETIC_USERS) -> None:
        self._synthetic: list[User] = [_synthetic(i) for i in range(total)]
        self._known: dict[str, User] = _known_users()

    @staticmethod
    def utc_now() -> datetime:
        """Return current UTC time with timezone info."""
        return datetime.now(UTC)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_page(
        self,
        *,
        offset: int,
        limit: int,
        sort: str = "createdAt",
        order: str = "asc",
        search: str | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of synthetic users and the total after filtering.

        Args:
            offset: Zero-based index of the first user.
            limit: Page size.
            sort: Sort field (``id``, ``name``, ``email``, ``createdAt``, ``updatedAt``).
            order: ``asc``/``ascending`` or ``desc``/``descending``.
            search: Case-insensitive substring matched against name and email.

        Returns:
            ``(users, total)`` where ``total`` counts every match.
        """
        users = self._synthetic
        if search:
            needle = search.lower()
            users = [u for u in users if needle in u.name.lower() or needle in u.email.lower()]
        attr = SORT_FIELDS.get(sort)
        if attr is not None:
            users = sorted(
                users,
                key=lambda u: getattr(u, attr),
                reverse=order in ("desc", "descending"),
            )
        return users[offset : offset + limit], len(users)

    def get(self, user_id: str) -> User:
        """Return the user with ``user_id``.

        Raises:
            ResourceNotFound: If no such user is known.
        """
        user = self._known.get(user_id)
        if user is None:
            raise ResourceNotFound("user", user_id)
        return user

    def _existing(self, user_id: str, name: str, email: str) -> User:
        known = self._known.get(user_id)
        if known is not None:
            return known
        return User(
            id=user_id,
            name=name,
            email=email,
            created_at=datetime(2023, 1, 15, 10, 30, tzinfo=UTC),
            updated_at=datetime(2023, 11, 1, 12, 0, tzinfo=UTC),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    @staticmethod
    def _ensure_unique(email: str) -> None:
        if email in EXISTING_EMAILS:
            raise BusinessLogicError(
                "Email address already exists",
                details={"field": "email", "value": email, "reason": "duplicate_email"},
            )

    def create(
        self,
        *,
        name: str,
        email: str,
        role: str = "user",
        status: str = "active",
        request_id: str | None = None,
    ) -> User:
        """Build a new user.

        Raises:
            BusinessLogicError: If the email is already registered.
        """
        email = email.strip().lower()
        self._ensure_unique(email)
        now = self.utc_now()
        return User(
            id=str(uuid.uuid4()),
            name=name.strip(),
            email=email,
            role=role,
            status=status,
            created_at=now,
            updated_at=now,
            metadata={"createdBy": "api", "source": "direct_creation", "requestId": request_id},
        )

    def update(self, user_id: str, changes: Mapping[str, Any], *, request_id: str | None = None) -> User:
        """Apply ``changes`` (name, email, role, status) to the addressed user.

        Raises:
            BusinessLogicError: If the new email is already registered.
        """
        existing = self._existing(user_id, "Original Name", "original@example.com")
        allowed = {k: v for k, v in changes.items() if k in ("name", "email", "role", "status") and v is not None}
        email = allowed.get("email")
        if email is not None and email != existing.email:
            self._ensure_unique(email)
        return existing.with_changes(
            **allowed,
            metadata={
                **existing.metadata,
                "lastUpdated": self.utc_now().isoformat(),
                "updatedBy": "api",
                "requestId": request_id,
            },
        )

    def delete(
        self,
        user_id: str,
        *,
        hard: bool = False,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """Delete the addressed user and return the deletion record.

        Raises:
            BusinessLogicError: If the user is an administrator.
        """
        existing = self._existing(user_id, "User to Delete", "delete@example.com")
        if existing.role == "admin":
            raise BusinessLogicError(
                "Admin users cannot be deleted",
                details={"resource": "user", "id": user_id, "role": existing.role, "reason": "admin_protection"},
            )
        return {
            "id": user_id,
            "deletedAt": self.utc_now().isoformat(),
            "deletionType": "hard" if hard else "soft",
            "reason": reason or "No reason provided",
            "deletedBy": "api",
            "requestId": request_id,
            "originalData": None if hard else existing.to_dict(),
        }


_users_repository = UsersRepository()


def get_users_repository() -> UsersRepository:
    """Return the process-wide repository (FastAPI dependency)."""
    return _users_repository
