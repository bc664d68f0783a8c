# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Schema cache and validation metrics.

Summary:
    ``SchemaCache`` maps canonical descriptor keys to compiled schemas.
    Reads are lock-free dict lookups; compilation and insertion happen under
    a ``threading.Lock`` with a re-check, so a descriptor is compiled once
    per key even under concurrent first use. Entries are only removed by an
    explicit :meth:`SchemaCache.clear`.

    ``ValidationMetrics`` keeps the four process counters (cache hits, cache
    misses, validation attempts, validation failures) under a lock and
    mirrors every increment into the Prometheus counters.

Layer:
    adapters/validation
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from hello_api.adapters.validation.compiler import CompiledSchema, compile_schema
from hello_api.adapters.validation.descriptors import canonical_key
from hello_api.infrastructure.logging.logger import get_json_logger
from hello_api.infrastructure.observability.metrics import (
    get_validation_attempts_total,
    get_validation_cache_hits_total,
    get_validation_cache_misses_total,
    get_validation_failures_total,
)

__all__ = ["SchemaCache", "ValidationMetrics", "get_schema_cache"]

logger = get_json_logger(__name__)


class ValidationMetrics:
    """Thread-safe validation counters mirrored into Prometheus."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0
        self.attempts = 0
        self.failures = 0

    def record_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1
        get_validation_cache_hits_total().inc()

    def record_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1
        get_validation_cache_misses_total().inc()

    def record_attempt(self, category: str) -> None:
        with self._lock:
            self.attempts += 1
        get_validation_attempts_total().labels(category=category).inc()

    def record_failure(self, category: str) -> None:
        with self._lock:
            self.failures += 1
        get_validation_failures_total().labels(category=category).inc()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            lookups = self.cache_hits + self.cache_misses
            return {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "attempts": self.attempts,
                "failures": self.failures,
                "hit_rate": (self.cache_hits / lookups) if lookups else 0.0,
            }

    def reset(self) -> None:
        with self._lock:
            self.cache_hits = self.cache_misses = self.attempts = self.failures = 0


class SchemaCache:
    """Process-local cache of compiled descriptors keyed by canonical key."""

    def __init__(self, metrics: ValidationMetrics | None = None) -> None:
        self._entries: dict[str, CompiledSchema] = {}
        self._lock = threading.Lock()
        self.metrics = metrics or ValidationMetrics()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_or_compile(
        self,
        descriptor: Mapping[str, Any],
        *,
        allow_unknown: bool = False,
        strip_unknown: bool = False,
    ) -> CompiledSchema:
        """Return the compiled schema for ``descriptor``, compiling on first use.

        Args:
            descriptor: Field rules plus optional reserved policy keys.
            allow_unknown: Factory policy for unknown keys.
            strip_unknown: Factory policy for dropping unknown keys.

        Returns:
            CompiledSchema: Cached or freshly compiled schema.

        Raises:
            ValueError: If the descriptor is malformed.
        """
        key = canonical_key(descriptor, allow_unknown=allow_unknown, strip_unknown=strip_unknown)
        cached = self._entries.get(key)
        if cached is not None:
            self.metrics.record_hit()
            logger.debug("Retrieved validation schema from cache", extra={"meta": {"cache_key": key}})
            return cached

        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self.metrics.record_hit()
                return cached
            compiled = compile_schema(
                descriptor,
                allow_unknown=allow_unknown,
                strip_unknown=strip_unknown,
            )
            self._entries[key] = compiled
            size = len(self._entries)

        self.metrics.record_miss()
        logger.debug(
            "Created and cached new validation schema",
            extra={"meta": {"cache_key": key, "cache_size": size}},
        )
        return compiled

    def clear(self) -> int:
        """Drop every entry; return how many were removed."""
        with self._lock:
            previous = len(self._entries)
            self._entries = {}
        logger.info("Validation schema cache cleared", extra={"meta": {"previous_size": previous}})
        return previous

    def stats(self) -> dict[str, Any]:
        """Return ``{size, hits, misses, attempts, failures, hit_rate}``."""
        return {"size": len(self._entries), **self.metrics.snapshot()}


_schema_cache = SchemaCache()


def get_schema_cache() -> SchemaCache:
    """Return the process-wide schema cache."""
    return _schema_cache
