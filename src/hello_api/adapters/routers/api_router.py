# Copyright (c)
# SPDX-License-Identifier: MIT
"""API Router Aggregator (Adapters Layer).

Purpose:
    Compose the router mounted under ``API_BASE_URL`` (``/api`` by default).

Responsibilities:
    • ``GET /api``: discovery document listing the endpoints.
    • ``GET /api/health``: detailed health (dependencies, memory, cpu, uptime,
      validation cache statistics).
    • Mount the users endpoints under ``/api/users``.

Layer:
    adapters/routers
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Final

from fastapi import APIRouter, Depends, Request

from hello_api.adapters.dependencies.settings import app_settings
from hello_api.adapters.routers.users_router import get_router as get_users_router
from hello_api.adapters.validation import SchemaCache, get_schema_cache
from hello_api.config.settings import Settings
from hello_api.infrastructure.http.request_context import get_request_context
from hello_api.infrastructure.logging.logger import get_json_logger
from hello_api.infrastructure.logging.rotating import iso_utc
from hello_api.infrastructure.observability.process import (
    cpu_usage,
    human_uptime,
    memory_usage,
    python_version,
    uptime_seconds,
)

logger = get_json_logger(__name__)

AppSettings = Annotated[Settings, Depends(app_settings)]

ENDPOINTS: Final[tuple[tuple[str, str, str], ...]] = (
    ("GET", "", "API information and version details"),
    ("GET", "/users", "List all users with pagination"),
    ("POST", "/users", "Create new user"),
    ("GET", "/users/{id}", "Get specific user by ID"),
    ("PUT", "/users/{id}", "Update existing user"),
    ("DELETE", "/users/{id}", "Delete user by ID"),
    ("GET", "/health", "API health status and metrics"),
)


def _dependencies(now: str) -> dict[str, dict[str, Any]]:
    # No external dependencies are wired; every entry reports the in-process stub.
    return {
        "usersRepository": {"status": "healthy", "kind": "in-memory", "lastChecked": now},
        "schemaCache": {"status": "healthy", "kind": "in-memory", "lastChecked": now},
    }


def get_router(settings: Settings, cache: SchemaCache | None = None) -> APIRouter:
    """Build the API router for ``settings``; mount it at ``settings.api_base_url``."""
    router = APIRouter()
    schema_cache = cache or get_schema_cache()
    base = settings.api_base_url.rstrip("/")

    @router.get("", summary="API discovery", operation_id="api_discovery")
    async def discovery(request: Request, app_cfg: AppSettings) -> dict[str, Any]:
        """Describe the API and list its endpoints."""
        endpoints = [
            {"method": method, "path": f"{base}{path}", "description": description}
            for method, path, description in ENDPOINTS
        ]
        logger.info(
            "API information returned successfully",
            extra={
                "meta": {
                    "request_id": get_request_context(request).request_id,
                    "endpoint_count": len(endpoints),
                }
            },
        )
        return {
            "success": True,
            "data": {
                "name": "Hello World API",
                "version": app_cfg.service_version,
                "apiVersion": app_cfg.api_version,
                "description": "Production-ready FastAPI service with structured logging and validation",
                "endpoints": endpoints,
                "serverTime": iso_utc(datetime.now(tz=UTC)),
                "uptime": uptime_seconds(),
                "environment": app_cfg.environment.value,
                "pythonVersion": python_version(),
            },
            "message": "API information retrieved successfully",
        }

    @router.get("/health", summary="Detailed health", operation_id="api_health")
    async def detailed_health(request: Request, app_cfg: AppSettings) -> dict[str, Any]:
        """Report process statistics, dependency status and validation cache stats."""
        now = iso_utc(datetime.now(tz=UTC))
        uptime = uptime_seconds()
        dependencies = _dependencies(now)
        degraded = any(dep["status"] != "healthy" for dep in dependencies.values())
        overall = "degraded" if degraded else "healthy"
        data = {
            "status": overall,
            "timestamp": now,
            "uptime": {"seconds": uptime, "human": human_uptime(uptime)},
            "memory": memory_usage(),
            "cpu": cpu_usage(),
            "dependencies": dependencies,
            "validation": {"cache": schema_cache.stats()},
            "environment": app_cfg.environment.value,
            "version": app_cfg.service_version,
            "pythonVersion": python_version(),
        }
        logger.info(
            "Health check completed",
            extra={
                "meta": {
                    "request_id": get_request_context(request).request_id,
                    "status": overall,
                    "dependency_count": len(dependencies),
                    "uptime_seconds": int(uptime),
                }
            },
        )
        return {
            "success": True,
            "data": data,
            "message": f"API health check completed - Status: {overall}",
        }

    router.include_router(get_users_router(settings.validation, cache), tags=["Users"])
    return router
