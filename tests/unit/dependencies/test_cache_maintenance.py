from __future__ import annotations

import asyncio
import logging

import pytest

from hello_api.adapters.validation import SchemaCache
from hello_api.config.settings import ValidationSettings
from hello_api.dependencies.core.bootstrap import (
    clear_cache_periodically,
    log_cache_stats_periodically,
    start_cache_maintenance,
    stop_tasks,
)


def _fill(cache: SchemaCache, count: int) -> None:
    for n in range(count):
        cache.get_or_compile({f"field{n}": {"type": "string"}})


def test_clear_task_empties_cache_above_threshold(cache: SchemaCache) -> None:
    _fill(cache, 3)
    settings = ValidationSettings(cache_clear_threshold=2, cache_clear_interval_s=0.01)

    async def _run() -> None:
        task = asyncio.create_task(clear_cache_periodically(cache, settings))
        await asyncio.sleep(0.1)
        await stop_tasks([task])

    asyncio.run(_run())
    assert len(cache) == 0


def test_clear_task_leaves_small_cache_alone(cache: SchemaCache) -> None:
    _fill(cache, 2)
    settings = ValidationSettings(cache_clear_threshold=2, cache_clear_interval_s=0.01)

    async def _run() -> None:
        task = asyncio.create_task(clear_cache_periodically(cache, settings))
        await asyncio.sleep(0.05)
        await stop_tasks([task])

    asyncio.run(_run())
    assert len(cache) == 2


def test_stats_task_logs(cache: SchemaCache, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="hello_api.dependencies.core.bootstrap")
    settings = ValidationSettings(cache_stats_interval_s=0.01)

    async def _run() -> None:
        task = asyncio.create_task(log_cache_stats_periodically(cache, settings))
        await asyncio.sleep(0.05)
        await stop_tasks([task])

    asyncio.run(_run())
    stats = [r for r in caplog.records if r.getMessage() == "Validation cache statistics"]
    assert stats
    assert set(stats[0].meta) == {"size", "hits", "misses", "attempts", "failures", "hit_rate"}


@pytest.mark.parametrize(("production", "name"), [(True, "validation-cache-stats"), (False, "validation-cache-clear")])
def test_task_choice_follows_environment(cache: SchemaCache, production: bool, name: str) -> None:
    async def _run() -> list[str]:
        tasks = start_cache_maintenance(ValidationSettings(production=production), cache)
        names = [t.get_name() for t in tasks]
        await stop_tasks(tasks)
        assert all(t.cancelled() for t in tasks)
        return names

    assert asyncio.run(_run()) == [name]
