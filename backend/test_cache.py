"""
Tests for the validation verdict cache.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(__file__))

from cache import ValidationCache, generate_validation_cache_key
from schemas import ValidationResult


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _result(**overrides) -> ValidationResult:
    fields = dict(
        step_id="step_le_easy_01_1",
        is_correct=True,
        is_useful=True,
        feedback_text="Great! Subtract 5 from both sides.",
        confidence=0.85,
    )
    fields.update(overrides)
    return ValidationResult(**fields)


def test_key_format_uses_normalized_expression():
    key = generate_validation_cache_key("le_easy_01", 1, "x + 5 - 5 = 12 - 5")
    assert key.startswith("validation:le_easy_01:1:")
    assert key == generate_validation_cache_key("le_easy_01", 1, "X+5-5=12-5")
    assert key != generate_validation_cache_key("le_easy_01", 2, "x + 5 - 5 = 12 - 5")


def test_get_returns_what_was_set():
    cache = ValidationCache(clock=FakeClock())
    result = _result()
    cache.set("validation:p:1:abcd1234", result)

    assert cache.get("validation:p:1:abcd1234") == result
    assert cache.get("validation:p:1:missing") is None


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ValidationCache(default_ttl_ms=1_000, clock=clock)
    cache.set("k", _result())

    clock.now += 1_000
    assert cache.get("k") is not None, "entry is still valid at exactly ttl"

    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0, "expired entry should be evicted on read"


def test_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = ValidationCache(default_ttl_ms=60_000, clock=clock)
    cache.set("short", _result(), ttl_ms=10)

    clock.now += 11
    assert cache.get("short") is None


def test_stats_and_clear():
    cache = ValidationCache(clock=FakeClock())
    cache.set("a", _result())
    cache.set("b", _result(is_correct=False))

    cache.get("a")
    cache.get("a")
    cache.get("zzz")

    assert cache.get_stats() == {"hits": 2, "misses": 1, "total_size": 2}
    assert cache.clear() == 2
    assert cache.get_stats() == {"hits": 0, "misses": 0, "total_size": 0}
