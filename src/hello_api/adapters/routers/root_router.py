# Copyright (c)
# SPDX-License-Identifier: MIT
"""Root endpoint: ``GET /`` answers ``Hello, World!`` as plain text."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from hello_api.infrastructure.http.request_context import get_request_context
from hello_api.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)
router = APIRouter()


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def hello(request: Request) -> str:
    logger.info(
        "Root route accessed successfully",
        extra={
            "meta": {
                "request_id": get_request_context(request).request_id,
                "method": request.method,
                "path": request.url.path,
                "user_agent": request.headers.get("user-agent", "Unknown"),
            }
        },
    )
    return "Hello, World!\n"
