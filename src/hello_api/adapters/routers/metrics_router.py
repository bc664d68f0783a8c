# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus scrape endpoint (`/metrics`).

The request histogram is created and warmed on first scrape so the classic
`_bucket`/`_count`/`_sum` series exist even before any request was logged.

Layer:
    adapters/routers
"""

from __future__ import annotations

import prometheus_client as prom
from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from hello_api.infrastructure.observability.metrics import (
    get_http_requests_total,
    get_http_server_request_duration_seconds,
    get_validation_cache_hits_total,
    get_validation_cache_misses_total,
)

router = APIRouter()


def _warm() -> None:
    """Make sure every collector is registered before the first scrape."""
    get_http_server_request_duration_seconds()
    get_http_requests_total()
    get_validation_cache_hits_total()
    get_validation_cache_misses_total()


@router.get("/metrics", include_in_schema=False)
async def metrics_probe() -> Response:
    """Expose Prometheus metrics in the text exposition format."""
    _warm()
    return Response(content=generate_latest(prom.REGISTRY), media_type=CONTENT_TYPE_LATEST)
