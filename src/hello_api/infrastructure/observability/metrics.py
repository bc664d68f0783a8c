# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus metrics utilities (registry-aware, hot-reload safe).

Accessor functions return *singleton* collectors bound to the **current**
``prometheus_client.REGISTRY``:

- Safe under hot reload and tests that swap the default registry.
- No duplicate-registration errors.
- Cache automatically resets when the active registry changes.

Collectors:
    * ``http_server_request_duration_seconds`` (method, status) - observed by
      the access log middleware.
    * ``http_requests`` (method, status, severity) - one per access record.
    * ``validation_cache_hits`` / ``validation_cache_misses``.
    * ``validation_attempts`` / ``validation_failures`` (category).

Example:
    get_validation_failures_total().labels(category="body").inc()
"""

from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Final, TypeVar

import prometheus_client as prom
from prometheus_client import Counter, Histogram

_T = TypeVar("_T", Counter, Histogram)

_log = logging.getLogger(__name__)

# Common histogram buckets (seconds)
_BUCKETS: Final[tuple[float, ...]] = (
    0.005,
    0.010,
    0.025,
    0.050,
    0.100,
    0.250,
    0.500,
    1.000,
    2.500,
    5.000,
    10.000,
)

# Cache keyed by metric name within the currently-active registry.
_registry_id: int | None = None
_hist_cache: dict[str, Histogram] = {}
_counter_cache: dict[str, Counter] = {}
_lock = threading.RLock()


def _ensure_registry() -> None:
    """Reset caches if the active registry changed."""
    global _registry_id
    with _lock:
        rid = id(prom.REGISTRY)
        if _registry_id != rid:
            _hist_cache.clear()
            _counter_cache.clear()
            _registry_id = rid


def _lookup_existing(name: str, kind: type[_T]) -> _T | None:
    """Return a previously-registered collector of ``kind`` from the active registry.

    Args:
        name: Collector name.
        kind: Expected collector class.

    Returns:
        Existing collector if present and of the correct type.
    """
    with _lock, suppress(AttributeError):
        mapping = getattr(prom.REGISTRY, "_names_to_collectors", None)
        if isinstance(mapping, dict):
            col = mapping.get(name)
            if isinstance(col, kind):
                return col
    return None


def _get_or_create_hist(
    name: str,
    help_text: str,
    *,
    buckets: tuple[float, ...] = _BUCKETS,
    labelnames: tuple[str, ...] = (),
) -> Histogram:
    """Get or create a registry-bound ``Histogram`` with stable identity.

    Strategy:
    1. Return from module cache if present for the active registry.
    2. If registry already has a collector by this name, reuse it.
    3. Otherwise, register a new collector on the active registry.
    4. If concurrent registration triggers a duplication error, retry step 2.
    """
    _ensure_registry()
    with _lock:
        cached = _hist_cache.get(name)
        if cached is not None:
            return cached

        existing = _lookup_existing(name, Histogram)
        if existing is not None:
            _hist_cache[name] = existing
            return existing

        try:
            h = Histogram(name, help_text, labelnames, buckets=buckets, registry=prom.REGISTRY)
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Histogram)
                if again is not None:
                    _hist_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus histogram %s", name)
            raise
        _hist_cache[name] = h
        return h


def _get_or_create_counter(
    name: str,
    help_text: str,
    *,
    labelnames: tuple[str, ...] = (),
) -> Counter:
    """Get or create a registry-bound ``Counter`` with stable identity.

    Args:
        name: Metric name without the ``_total`` suffix.
        help_text: Human-readable description.
        labelnames: Optional label names tuple.

    Returns:
        Counter: Bound to ``prom.REGISTRY``.
    """
    _ensure_registry()
    with _lock:
        cached = _counter_cache.get(name)
        if cached is not None:
            return cached

        existing = _lookup_existing(name, Counter)
        if existing is not None:
            _counter_cache[name] = existing
            return existing

        try:
            c = Counter(name, help_text, labelnames, registry=prom.REGISTRY)
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Counter)
                if again is not None:
                    _counter_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus counter %s", name)
            raise
        _counter_cache[name] = c
        return c


# ---------------------------------------------------------------------------
# HTTP metrics


def get_http_server_request_duration_seconds() -> Histogram:
    """Server-side request latency, labelled by method and status."""
    return _get_or_create_hist(
        "http_server_request_duration_seconds",
        "HTTP server request duration in seconds.",
        labelnames=("method", "status"),
    )


def get_http_requests_total() -> Counter:
    """Access records emitted, labelled by method, status and log severity."""
    return _get_or_create_counter(
        "http_requests",
        "HTTP requests observed by the access logger.",
        labelnames=("method", "status", "severity"),
    )


# ---------------------------------------------------------------------------
# Validation metrics


def get_validation_cache_hits_total() -> Counter:
    """Schema cache lookups answered from the cache."""
    return _get_or_create_counter("validation_cache_hits", "Validation schema cache hits.")


def get_validation_cache_misses_total() -> Counter:
    """Schema cache lookups that compiled a new schema."""
    return _get_or_create_counter("validation_cache_misses", "Validation schema cache misses.")


def get_validation_attempts_total() -> Counter:
    """Validator invocations, labelled by category."""
    return _get_or_create_counter(
        "validation_attempts",
        "Request validation attempts.",
        labelnames=("category",),
    )


def get_validation_failures_total() -> Counter:
    """Validation failures, labelled by category."""
    return _get_or_create_counter(
        "validation_failures",
        "Request validation failures.",
        labelnames=("category",),
    )
