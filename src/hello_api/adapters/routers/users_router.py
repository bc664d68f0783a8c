# Copyright (c)
# SPDX-License-Identifier: MIT
"""Users endpoints (Adapters Layer).

Purpose:
    Paginated listing and CRUD over the in-memory users repository. Every
    route validates its input through the request validators; handlers only
    ever see sanitized, validated data.

Routes:
    GET    /users        pagination + search
    POST   /users        body (name, email, role, status) -> 201 + Location
    GET    /users/{id}   uuid id
    PUT    /users/{id}   path + body (all fields optional)
    DELETE /users/{id}   path + query (hard, reason)

Layer:
    adapters/routers
"""

# No postponed annotations here: the route annotations reference validators
# local to get_router, which FastAPI cannot resolve from module globals.
import math
from typing import Annotated, Any, Final

from fastapi import APIRouter, Depends, Request, Response, status

from hello_api.adapters.repositories.users_repository import (
    SORT_FIELDS,
    UsersRepository,
    get_users_repository,
)
from hello_api.adapters.validation import (
    SchemaCache,
    validate_body,
    validate_id,
    validate_pagination,
    validate_request,
)
from hello_api.config.settings import ValidationSettings
from hello_api.domain.entities.user import ROLES, STATUSES
from hello_api.infrastructure.http.request_context import get_request_context
from hello_api.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)

Repo = Annotated[UsersRepository, Depends(get_users_repository)]

USER_CREATE: Final[dict[str, Any]] = {
    "name": {"type": "string", "trim": True, "min_length": 2, "max_length": 100, "required": True},
    "email": {"type": "email", "trim": True, "lowercase": True, "required": True},
    "role": {"type": "enum", "values": ROLES, "default": "user"},
    "status": {"type": "enum", "values": STATUSES, "default": "active"},
}
USER_UPDATE: Final[dict[str, Any]] = {
    "name": {"type": "string", "trim": True, "min_length": 2, "max_length": 100},
    "email": {"type": "email", "trim": True, "lowercase": True},
    "role": {"type": "enum", "values": ROLES},
    "status": {"type": "enum", "values": STATUSES},
}
USER_ID: Final[dict[str, Any]] = {"id": {"type": "uuid", "required": True}}
USER_DELETE_QUERY: Final[dict[str, Any]] = {
    "hard": {"type": "boolean", "default": False},
    "reason": {"type": "string", "trim": True, "max_length": 200},
}


def _client(request: Request) -> str | None:
    return request.client.host if request.client else None


def get_router(settings: ValidationSettings | None = None, cache: SchemaCache | None = None) -> APIRouter:
    """Build the users router with validators bound to ``settings``."""
    router = APIRouter()

    pagination = validate_pagination(
        allowed_sort_fields=tuple(SORT_FIELDS),
        default_sort="createdAt",
        max_limit=100,
        default_limit=20,
        settings=settings,
        cache=cache,
    )
    create_body = validate_body(USER_CREATE, settings=settings, cache=cache)
    user_id = validate_id("id", kind="uuid", settings=settings, cache=cache)
    update_request = validate_request(path=USER_ID, body=USER_UPDATE, settings=settings, cache=cache)
    delete_request = validate_request(path=USER_ID, query=USER_DELETE_QUERY, settings=settings, cache=cache)

    @router.get("/users", summary="List users", operation_id="users_list")
    async def list_users(
        request: Request,
        repo: Repo,
        query: Annotated[dict[str, Any], Depends(pagination)],
    ) -> dict[str, Any]:
        """Return one page of users."""
        request_id = get_request_context(request).request_id
        page, limit, offset = query["page"], query["limit"], query["offset"]
        users, total = repo.list_page(
            offset=offset,
            limit=limit,
            sort=query["sort"],
            order=query["order"],
            search=query.get("search"),
        )
        total_pages = math.ceil(total / limit) if total else 0
        logger.info(
            "Users list returned successfully",
            extra={
                "meta": {
                    "request_id": request_id,
                    "user_count": len(users),
                    "total_users": total,
                    "page": page,
                    "limit": limit,
                    "has_search": bool(query.get("search")),
                }
            },
        )
        return {
            "success": True,
            "data": {
                "users": [u.to_dict() for u in users],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "offset": offset,
                    "total": total,
                    "totalPages": total_pages,
                    "hasNext": page < total_pages,
                    "hasPrev": page > 1,
                    "sort": query["sort"],
                    "order": query["order"],
                },
            },
            "message": f"Users retrieved successfully. Found {len(users)} users.",
        }

    @router.post(
        "/users",
        summary="Create user",
        operation_id="users_create",
        status_code=status.HTTP_201_CREATED,
    )
    async def create_user(
        request: Request,
        response: Response,
        repo: Repo,
        body: Annotated[dict[str, Any], Depends(create_body)],
    ) -> dict[str, Any]:
        """Create a user; duplicate emails are rejected with 422."""
        request_id = get_request_context(request).request_id
        logger.info(
            "Create user endpoint accessed",
            extra={"meta": {"request_id": request_id, "body_keys": sorted(body), "remote_addr": _client(request)}},
        )
        user = repo.create(
            name=body["name"],
            email=body["email"],
            role=body["role"],
            status=body["status"],
            request_id=request_id,
        )
        response.headers["Location"] = f"{request.url.path.rstrip('/')}/{user.id}"
        logger.info(
            "User created successfully",
            extra={"meta": {"request_id": request_id, "user_id": user.id, "role": user.role}},
        )
        return {"success": True, "data": user.to_dict(), "message": "User created successfully"}

    @router.get("/users/{id}", summary="Get user", operation_id="users_get")
    async def get_user(
        request: Request,
        repo: Repo,
        params: Annotated[dict[str, Any], Depends(user_id)],
    ) -> dict[str, Any]:
        """Return the addressed user or 404."""
        user = repo.get(params["id"])
        logger.info(
            "User retrieved successfully",
            extra={"meta": {"request_id": get_request_context(request).request_id, "user_id": user.id}},
        )
        return {"success": True, "data": user.to_dict(), "message": "User retrieved successfully"}

    @router.put("/users/{id}", summary="Update user", operation_id="users_update")
    async def update_user(
        request: Request,
        repo: Repo,
        validated: Annotated[dict[str, Any], Depends(update_request)],
    ) -> dict[str, Any]:
        """Apply a partial update to the addressed user."""
        request_id = get_request_context(request).request_id
        changes = validated["body"] or {}
        user = repo.update(validated["path"]["id"], changes, request_id=request_id)
        logger.info(
            "User updated successfully",
            extra={"meta": {"request_id": request_id, "user_id": user.id, "updated_fields": sorted(changes)}},
        )
        return {"success": True, "data": user.to_dict(), "message": "User updated successfully"}

    @router.delete("/users/{id}", summary="Delete user", operation_id="users_delete")
    async def delete_user(
        request: Request,
        repo: Repo,
        validated: Annotated[dict[str, Any], Depends(delete_request)],
    ) -> dict[str, Any]:
        """Soft- or hard-delete the addressed user; administrators are protected."""
        request_id = get_request_context(request).request_id
        query = validated["query"]
        hard = bool(query.get("hard"))
        result = repo.delete(
            validated["path"]["id"],
            hard=hard,
            reason=query.get("reason"),
            request_id=request_id,
        )
        logger.info(
            "User deleted successfully",
            extra={"meta": {"request_id": request_id, "user_id": result["id"], "deletion_type": result["deletionType"]}},
        )
        return {
            "success": True,
            "data": result,
            "message": f"User {'permanently deleted' if hard else 'deleted'} successfully",
        }

    return router
