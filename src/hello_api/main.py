# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Application Entry (Adapters Bootstrap)

Synopsis:
    FastAPI bootstrap that wires middleware, exception handlers and all
    routers. Provides an application factory (`create_app`) and the `run`
    entrypoint behind the ``hello-api`` console script.

Design:
    • Bootstrap only (no business logic): routers + middleware + handlers.
    • Lifespan configures logging, process hooks and cache maintenance and
      tears them down on exit.
    • Middleware order (outermost first): access log, CORS, GZip. The access
      logger sees every response, including error responses and CORS
      preflights.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from starlette.middleware.gzip import GZipMiddleware

from hello_api import __version__
from hello_api.adapters.routers.api_router import get_router as get_api_router
from hello_api.adapters.routers.health_router import router as health_router
from hello_api.adapters.routers.metrics_router import router as metrics_router
from hello_api.adapters.routers.root_router import router as root_router
from hello_api.config.settings import Environment, Settings, get_settings
from hello_api.dependencies.core.bootstrap import bootstrap
from hello_api.infrastructure.http.errors import register_exception_handlers
from hello_api.infrastructure.logging.logger import get_json_logger
from hello_api.infrastructure.middleware.access_log import AccessLogMiddleware

logger = get_json_logger(__name__)


# -----------------------------------------------------------------------------
# Stable generator
# -----------------------------------------------------------------------------
def _stable_operation_id(route: APIRoute) -> str:
    """Deterministic operationId: ``"<methods>_<path>"`` with braces removed."""
    methods = ",".join(sorted(route.methods or []))
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "")
    return f"{methods.lower()}_{path.lower()}"


# -----------------------------------------------------------------------------
# Lifespan
# -----------------------------------------------------------------------------
@asynccontextmanager
async def runtime_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize and teardown process infrastructure via the core bootstrap.

    Args:
        app: FastAPI application instance; ``app.state.settings`` selects the
            configuration to boot with.

    Yields:
        None: Control back to FastAPI to serve requests.
    """
    async with bootstrap(app, app.state.settings) as state:
        app.state.maintenance_tasks = state.tasks
        yield


# -----------------------------------------------------------------------------
# Middleware & CORS
# -----------------------------------------------------------------------------
def _attach_middlewares(app: FastAPI, settings: Settings) -> None:
    """Attach core middleware.

    ``add_middleware`` prepends, so the last one added is the outermost:

        1. AccessLogMiddleware (request context + one access record per request)
        2. CORSMiddleware (when enabled)
        3. GZipMiddleware (when enabled)

    Args:
        app: FastAPI application.
        settings: Runtime settings for environment-aware toggles.
    """
    if settings.compression_enabled:
        app.add_middleware(GZipMiddleware, minimum_size=settings.compression_threshold)

    if settings.cors_enabled:
        _attach_cors(app, settings)

    if settings.enable_http_logging:
        app.add_middleware(AccessLogMiddleware, settings=settings.access)


def _attach_cors(app: FastAPI, settings: Settings) -> None:
    """Attach CORS middleware based on settings.

    Args:
        app: FastAPI application.
        settings: Runtime settings containing CORS config.
    """
    allow_origins = settings.cors_allow_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials="*" not in allow_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------
def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to build the app with (defaults to the singleton).

    Returns:
        FastAPI: Fully configured application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Hello World API",
        version=settings.service_version or __version__,
        description="Production-ready FastAPI service with structured logging and validation.",
        lifespan=runtime_lifespan,
        generate_unique_id_function=_stable_operation_id,
    )
    app.state.settings = settings

    register_exception_handlers(app, verbose=settings.environment is Environment.DEVELOPMENT)
    _attach_middlewares(app, settings)

    app.include_router(root_router)
    app.include_router(health_router, prefix="/health", tags=["Health"])
    app.include_router(get_api_router(settings), prefix=settings.api_base_url.rstrip("/"), tags=["API"])
    app.include_router(metrics_router)

    logger.info(
        "Application created",
        extra={
            "meta": {
                "service": settings.service_name,
                "environment": settings.environment.value,
                "version": settings.service_version,
                "api_base_url": settings.api_base_url,
            }
        },
    )
    return app


def run() -> None:
    """Serve the application with uvicorn (``hello-api`` console script)."""
    import uvicorn

    settings = get_settings()
    logger.info(
        "Server starting",
        extra={"meta": {"host": settings.host, "port": settings.port, "environment": settings.environment.value}},
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=max(1, settings.keep_alive_timeout_ms // 1000),
        timeout_graceful_shutdown=max(1, settings.graceful_shutdown_timeout_ms // 1000),
        log_config=None,
        access_log=False,
    )
    logger.info("Server stopped", extra={"meta": {"service": settings.service_name}})
