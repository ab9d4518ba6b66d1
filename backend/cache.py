"""
TTL cache for validation verdicts.

Keys are derived from (problem, step number, normalized expression) so
cosmetically different spellings of the same step share an entry. Expired
entries are treated as absent and evicted on the read that finds them.
"""

import logging
import time
from typing import Callable, Optional

from math_rules import expression_hash
from schemas import CacheEntry, ValidationResult

logger = logging.getLogger(__name__)


KEY_PREFIX = "validation:"

# 7 days in milliseconds
DEFAULT_CACHE_TTL_MS = 7 * 24 * 60 * 60 * 1000


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def generate_validation_cache_key(problem_id: str, step_number: int, latex: str) -> str:
    """Format: validation:{problemId}:{stepNumber}:{hash of normalized latex}"""
    return f"{KEY_PREFIX}{problem_id}:{step_number}:{expression_hash(latex)}"


class ValidationCache:
    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        clock: Callable[[], int] = _wall_clock_ms
    ):
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[ValidationResult]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            logger.info(f"[Cache] Expired: {key}")
            return None

        self.hits += 1
        logger.info(f"[Cache] Hit: {key}")
        return entry.result

    def set(self, key: str, result: ValidationResult, ttl_ms: Optional[int] = None) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            result=result,
            cached_at_ms=self._clock(),
            ttl_ms=self.default_ttl_ms if ttl_ms is None else ttl_ms,
        )
        logger.info(f"[Cache] Stored: {key}")

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        logger.info(f"[Cache] Cleared {count} validation cache entries")
        return count

    def get_stats(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "total_size": len(self._entries),
        }
