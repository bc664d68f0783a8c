from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from hello_api.adapters.validation.cache import SchemaCache, ValidationMetrics, get_schema_cache
from hello_api.adapters.validation.compiler import compile_schema

DESCRIPTOR = {"name": {"type": "string", "required": True}}
NESTED = {
    "name": {"type": "string", "trim": True, "min_length": 2, "required": True},
    "age": {"type": "integer", "min": 0, "max": 150},
    "role": {"type": "enum", "values": ("admin", "user"), "default": "user"},
    "address": {"type": "object", "fields": {"city": {"type": "string", "required": True}}},
    "tags": {"type": "array", "items": {"type": "string", "max_length": 5}, "max_length": 3},
}


def test_second_lookup_is_a_hit(cache: SchemaCache) -> None:
    first = cache.get_or_compile(DESCRIPTOR)
    second = cache.get_or_compile({"name": {"required": True}})

    assert second is first
    assert first.key in cache
    assert cache.stats() == {
        "size": 1,
        "hits": 1,
        "misses": 1,
        "attempts": 0,
        "failures": 0,
        "hit_rate": 0.5,
    }


def test_policies_are_separate_entries(cache: SchemaCache) -> None:
    forbid = cache.get_or_compile(DESCRIPTOR)
    allow = cache.get_or_compile(DESCRIPTOR, allow_unknown=True)

    assert forbid is not allow
    assert len(cache) == 2


def test_clear_reports_removed_entries(cache: SchemaCache) -> None:
    cache.get_or_compile(DESCRIPTOR)
    cache.get_or_compile(DESCRIPTOR, strip_unknown=True)

    assert cache.clear() == 2
    assert len(cache) == 0

    cache.get_or_compile(DESCRIPTOR)
    assert cache.stats()["misses"] == 3


def test_concurrent_first_use_compiles_once(cache: SchemaCache) -> None:
    with ThreadPoolExecutor(max_workers=16) as pool:
        compiled = list(pool.map(lambda _: cache.get_or_compile(DESCRIPTOR), range(64)))

    assert all(c is compiled[0] for c in compiled)
    stats = cache.stats()
    assert stats["misses"] == 1
    assert stats["hits"] == 63
    assert stats["size"] == 1


def test_malformed_descriptor_is_not_cached(cache: SchemaCache) -> None:
    with pytest.raises(ValueError):
        cache.get_or_compile({"kind": {"type": "enum"}})
    assert len(cache) == 0


def test_metrics_counters_and_reset() -> None:
    metrics = ValidationMetrics()
    metrics.record_attempt("body")
    metrics.record_attempt("query")
    metrics.record_failure("body")

    snap = metrics.snapshot()
    assert (snap["attempts"], snap["failures"], snap["hit_rate"]) == (2, 1, 0.0)

    metrics.reset()
    assert metrics.snapshot()["attempts"] == 0


def test_process_cache_is_a_singleton() -> None:
    assert get_schema_cache() is get_schema_cache()


@pytest.mark.parametrize(
    "value",
    [
        {"name": " Ada ", "age": "36", "address": {"city": "London"}, "tags": ["a", "b"]},
        {"name": "Bob", "address": {"city": "Paris"}},
        {"name": "A", "age": -1, "address": {}, "tags": ["toolong", "x", "y", "z"]},
        {"name": "Ada", "role": "root", "address": {"city": "Rome"}, "extra": 1},
        {},
    ],
)
@pytest.mark.parametrize(("allow", "strip"), [(False, False), (True, False), (False, True)])
def test_cached_schema_validates_like_a_fresh_compile(
    cache: SchemaCache, value: dict[str, object], allow: bool, strip: bool
) -> None:
    fresh = compile_schema(NESTED, allow_unknown=allow, strip_unknown=strip).validate(value)

    miss = cache.get_or_compile(NESTED, allow_unknown=allow, strip_unknown=strip).validate(value)
    hit = cache.get_or_compile(NESTED, allow_unknown=allow, strip_unknown=strip).validate(value)

    assert miss == fresh
    assert hit == fresh
    assert cache.stats()["hits"] == 1
