# Copyright (c)
# SPDX-License-Identifier: MIT
"""Health endpoints (Adapters Layer).

Purpose:
    Expose health, liveness and readiness signals suitable for container
    orchestrators and load balancers.

Design:
    * ``/health`` is the basic report (status, uptime, memory); the
      environment tag is omitted in production.
    * ``/health/live`` performs no checks at all.
    * ``/health/ready`` checks that the process runs and the configuration
      loads; any failing check turns the response into a 503.
    * The access logger skips ``/health`` in production, so frequent probes
      do not flood the logs.
"""

from __future__ import annotations

import typing as t
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import Field

from hello_api.adapters.dependencies.settings import app_settings
from hello_api.adapters.schemas.http.base import BaseHTTPSchema
from hello_api.config.settings import Settings
from hello_api.infrastructure.logging.logger import get_json_logger
from hello_api.infrastructure.logging.rotating import iso_utc
from hello_api.infrastructure.observability.process import memory_usage, uptime_seconds

logger = get_json_logger(__name__)
router = APIRouter()


# -----------------------------------------------------------------------------
# Contracts
# -----------------------------------------------------------------------------


class HealthResponse(BaseHTTPSchema):
    """Basic health report."""

    status: t.Literal["healthy"] = "healthy"
    uptime: float
    timestamp: str
    memory: dict[str, float | int]
    environment: str | None = None


class LivenessResponse(BaseHTTPSchema):
    """Liveness response indicating the process is running."""

    status: t.Literal["alive"] = "alive"
    timestamp: str


class ReadinessResponse(BaseHTTPSchema):
    """Aggregated readiness response.

    Attributes:
        status: ``ready`` when every check passed.
        checks: Check name to outcome, in deterministic order.
        uptime: Seconds since start.
    """

    status: t.Literal["ready", "not ready"]
    timestamp: str
    checks: dict[str, bool] = Field(default_factory=dict)
    uptime: float


def _now() -> str:
    return iso_utc(datetime.now(tz=UTC))


def _configuration_ok(settings: Settings) -> bool:
    return bool(settings.service_name) and settings.environment is not None


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@router.get(
    "",
    summary="Health",
    operation_id="health_report",
    response_model=HealthResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
async def health(settings: Annotated[Settings, Depends(app_settings)]) -> HealthResponse:
    """Return the basic health report."""
    return HealthResponse(
        uptime=uptime_seconds(),
        timestamp=_now(),
        memory=memory_usage(),
        environment=None if settings.is_production else settings.environment.value,
    )


@router.get(
    "/live",
    summary="Liveness",
    operation_id="health_liveness",
    response_model=LivenessResponse,
    status_code=status.HTTP_200_OK,
)
async def liveness() -> LivenessResponse:
    """Return a fast liveness signal (no checks)."""
    return LivenessResponse(timestamp=_now())


@router.get(
    "/ready",
    summary="Readiness",
    operation_id="health_readiness",
    response_model=ReadinessResponse,
    responses={503: {"description": "Service not ready", "model": ReadinessResponse}},
)
async def readiness(
    response: Response,
    settings: Annotated[Settings, Depends(app_settings)],
) -> ReadinessResponse:
    """Run the readiness checks; 503 when any of them fails."""
    checks = {"process": True, "configuration": _configuration_ok(settings)}
    ready = all(checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning("Readiness check failed", extra={"meta": {"checks": checks}})
    return ReadinessResponse(
        status="ready" if ready else "not ready",
        timestamp=_now(),
        checks=checks,
        uptime=uptime_seconds(),
    )
