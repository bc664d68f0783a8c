# Copyright (c)
# SPDX-License-Identifier: MIT
"""Core bootstrap for process infrastructure (logging, hooks, cache maintenance).

This module owns the lifecycle of the process-wide pieces the FastAPI app
relies on. It is intentionally thin: configuration is read from Settings, and
all heavy lifting is delegated to the infrastructure modules.

The single public surface is :func:`bootstrap`, an async context manager that
yields a simple state object with the resolved Settings, the installed log
sinks and the background maintenance tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import FastAPI

from hello_api.adapters.validation import SchemaCache, get_schema_cache
from hello_api.config.settings import Settings, ValidationSettings, get_settings
from hello_api.infrastructure.logging.logger import (
    configure_logging,
    get_json_logger,
    install_asyncio_exception_handler,
    install_exception_hooks,
    shutdown_logging,
    uninstall_exception_hooks,
)

logger = get_json_logger(__name__)


@dataclass
class BootstrapState:
    """State yielded by the bootstrap context manager."""

    settings: Settings
    sinks: list[logging.Handler] = field(default_factory=list)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)


async def clear_cache_periodically(cache: SchemaCache, settings: ValidationSettings) -> None:
    """Clear ``cache`` every interval while it holds more than the threshold."""
    while True:
        await asyncio.sleep(settings.cache_clear_interval_s)
        size = len(cache)
        if size > settings.cache_clear_threshold:
            removed = cache.clear()
            logger.debug(
                "Validation cache cleared for memory management",
                extra={"meta": {"previous_size": removed, "threshold": settings.cache_clear_threshold}},
            )


async def log_cache_stats_periodically(cache: SchemaCache, settings: ValidationSettings) -> None:
    """Log cache statistics every interval."""
    while True:
        await asyncio.sleep(settings.cache_stats_interval_s)
        logger.info("Validation cache statistics", extra={"meta": cache.stats()})


def start_cache_maintenance(
    settings: ValidationSettings,
    cache: SchemaCache | None = None,
) -> list[asyncio.Task[None]]:
    """Start the cache task for the environment (clearing outside production, stats in production)."""
    cache = cache or get_schema_cache()
    if settings.production:
        coro = log_cache_stats_periodically(cache, settings)
        name = "validation-cache-stats"
    else:
        coro = clear_cache_periodically(cache, settings)
        name = "validation-cache-clear"
    return [asyncio.create_task(coro, name=name)]


async def stop_tasks(tasks: list[asyncio.Task[None]]) -> None:
    """Cancel ``tasks`` and wait for them to finish."""
    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task


@asynccontextmanager
async def bootstrap(app: FastAPI, settings: Settings | None = None) -> AsyncGenerator[BootstrapState, None]:
    """Initialize and teardown process infrastructure.

    Responsibilities:
        * Configure the log sinks from the settings snapshot.
        * Install the uncaught-exception hooks and the asyncio loop handler.
        * Start the validation cache maintenance task.
        * Ensure all of the above are shut down on exit, even on error.

    Args:
        app: FastAPI application instance.
        settings: Settings to boot with (defaults to the process singleton).

    Yields:
        BootstrapState: Resolved settings, sinks and background tasks.
    """
    settings = settings or get_settings()
    sinks = configure_logging(settings.logger)
    install_exception_hooks()
    install_asyncio_exception_handler(asyncio.get_running_loop())
    logger.info(
        "Application starting",
        extra={
            "meta": {
                "service": settings.service_name,
                "version": settings.service_version,
                "environment": settings.environment.value,
                "sinks": [type(s).__name__ for s in sinks],
            }
        },
    )

    state = BootstrapState(
        settings=settings,
        sinks=sinks,
        tasks=start_cache_maintenance(settings.validation),
    )

    try:
        yield state
    finally:
        try:
            await stop_tasks(state.tasks)
        except Exception:
            logger.exception("Cache maintenance shutdown failed")

        logger.info("Application stopped", extra={"meta": {"service": settings.service_name}})
        uninstall_exception_hooks()
        shutdown_logging()
