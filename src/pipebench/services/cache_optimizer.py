"""Multi-tier cache with category TTL policies and FIFO batch eviction."""

import hashlib
import json
import math
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from pipebench.domain.models import CacheCategory, CacheEntry, utc_now
from pipebench.infrastructure.config import CacheConfig
from pipebench.infrastructure.file_cache import FileCacheStore
from pipebench.infrastructure.logger import get_logger
from pipebench.services.recommendations import (
    CACHE_CATEGORY_RULES,
    CACHE_IMPACT_TIERS,
    CACHE_OVERALL_RULES,
    Recommendation,
    classify,
    evaluate_rules,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Cache retrieval is assumed to cost 1% of the original computation
CACHE_RETRIEVAL_COST = 0.01
# Projected time never drops below 10% of the baseline
MIN_PROJECTED_FRACTION = 0.1


class CategoryStats(BaseModel):
    """Running counters for one cache category."""

    hits: int = 0
    misses: int = 0
    total_compute_time: float = 0.0

    @property
    def requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        if self.requests == 0:
            return 0.0
        return round(self.hits / self.requests * 100, 2)

    @property
    def average_compute_time(self) -> float:
        if self.total_compute_time <= 0:
            return 0.0
        return round(self.total_compute_time / max(self.misses, 1), 4)


class CategoryReport(BaseModel):
    category: str
    requests: int
    hits: int
    misses: int
    hit_rate: float
    average_compute_time: float


class OverallReport(BaseModel):
    total_requests: int = 0
    total_hits: int = 0
    total_misses: int = 0
    hit_rate: float = 0.0
    memory_cache_size: int = 0
    file_cache_enabled: bool = False


class CacheEfficiencyReport(BaseModel):
    """Snapshot of cache effectiveness."""

    overall: OverallReport = Field(default_factory=OverallReport)
    categories: list[CategoryReport] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


class CachePerformanceImpact(BaseModel):
    """Projected execution time with the observed hit rates."""

    baseline_execution_time: float
    projected_execution_time: float
    estimated_time_saved: float
    improvement_percentage: float
    cache_hit_rate: float
    recommendations: list[str]


class CacheOptimizer:
    """Memory tier backed by an optional one-file-per-entry JSON tier.

    The whole lookup, compute, store and evict sequence for a request runs
    under one re-entrant lock, so concurrent callers asking for the same key
    never compute it twice. The compute function therefore must not block on
    another thread that itself uses this cache.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize cache optimizer.

        Args:
            config: Cache configuration (defaults to CacheConfig())
            clock: Returns the current timezone-aware time, injectable for tests
        """
        self.config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._memory: dict[str, CacheEntry] = {}
        self._stats: dict[str, CategoryStats] = {}
        self._file_store: FileCacheStore | None = None
        self._configure_file_store()

    # ===== Public API =====

    def cached(
        self,
        category: CacheCategory | str,
        key: str,
        compute_fn: Callable[[], T],
        force_refresh: bool = False,
    ) -> T:
        """Return the cached value for (category, key), computing it on a miss.

        Args:
            category: Cache category, selects the TTL policy
            key: Cache key (unique within the category)
            compute_fn: Zero-argument callable producing the value
            force_refresh: Skip lookup and recompute

        Returns:
            Cached or freshly computed value
        """
        category = self._category_name(category)

        with self._lock:
            if not force_refresh:
                entry = self._lookup(category, key)
                if entry is not None:
                    self._category_stats(category).hits += 1
                    return entry.data  # type: ignore[no-any-return]

            stats = self._category_stats(category)
            stats.misses += 1

            compute_start = time.perf_counter()
            result = compute_fn()
            stats.total_compute_time += time.perf_counter() - compute_start

            self._store(category, key, result)
            return result

    def cache_efficiency_report(self) -> CacheEfficiencyReport:
        """Overall and per-category hit statistics with recommendations."""
        with self._lock:
            total_hits = sum(s.hits for s in self._stats.values())
            total_misses = sum(s.misses for s in self._stats.values())
            total_requests = total_hits + total_misses
            memory_size = len(self._memory)

            if total_requests == 0:
                return CacheEfficiencyReport(
                    overall=OverallReport(
                        memory_cache_size=memory_size,
                        file_cache_enabled=self._file_store is not None,
                    )
                )

            categories = [
                CategoryReport(
                    category=name,
                    requests=s.requests,
                    hits=s.hits,
                    misses=s.misses,
                    hit_rate=s.hit_rate,
                    average_compute_time=s.average_compute_time,
                )
                for name, s in self._ordered_stats()
            ]

        hit_rate = round(total_hits / total_requests * 100, 2)
        recommendations = evaluate_rules(CACHE_OVERALL_RULES, {"hit_rate": hit_rate})
        for report in categories:
            recommendations.extend(
                evaluate_rules(
                    CACHE_CATEGORY_RULES,
                    {"hit_rate": report.hit_rate},
                    requests=report.requests,
                    category=report.category,
                )
            )

        return CacheEfficiencyReport(
            overall=OverallReport(
                total_requests=total_requests,
                total_hits=total_hits,
                total_misses=total_misses,
                hit_rate=hit_rate,
                memory_cache_size=memory_size,
                file_cache_enabled=self._file_store is not None,
            ),
            categories=categories,
            recommendations=recommendations,
        )

    @property
    def hit_rate(self) -> float:
        """Overall hit rate percentage."""
        return self.cache_efficiency_report().overall.hit_rate

    @property
    def memory_size(self) -> int:
        with self._lock:
            return len(self._memory)

    def calculate_cache_performance_impact(self, baseline_time: float) -> CachePerformanceImpact:
        """Project execution time if every recorded hit saved its compute cost."""
        report = self.cache_efficiency_report()

        time_saved = 0.0
        for category in report.categories:
            per_hit = category.average_compute_time * (1 - CACHE_RETRIEVAL_COST)
            time_saved += category.hits * per_hit

        projected = max(baseline_time - time_saved, baseline_time * MIN_PROJECTED_FRACTION)
        improvement = (
            round((baseline_time - projected) / baseline_time * 100, 2) if baseline_time > 0 else 0.0
        )
        tier = classify(improvement, CACHE_IMPACT_TIERS, inclusive=True)

        return CachePerformanceImpact(
            baseline_execution_time=baseline_time,
            projected_execution_time=projected,
            estimated_time_saved=round(time_saved, 4),
            improvement_percentage=improvement,
            cache_hit_rate=report.overall.hit_rate,
            recommendations=[tier.message.format(value=improvement)],
        )

    def clear_all(self) -> None:
        """Purge both tiers and reset every counter."""
        with self._lock:
            self._memory.clear()
            removed = self._file_store.clear() if self._file_store else 0
            self._stats.clear()
        logger.info("cache_cleared", scope="all", files_removed=removed)

    def clear_category(self, category: CacheCategory | str) -> None:
        """Purge one category from both tiers and reset its counters."""
        category = self._category_name(category)
        with self._lock:
            for key in [k for k, e in self._memory.items() if e.category == category]:
                del self._memory[key]
            removed = self._file_store.clear(category) if self._file_store else 0
            self._stats.pop(category, None)
        logger.info("cache_cleared", scope=category, files_removed=removed)

    def update_configuration(self, **changes: Any) -> None:
        """Apply configuration changes (e.g. default_ttl) in place."""
        with self._lock:
            self.config = self.config.model_copy(update=changes)
            self._configure_file_store()
            overflow = len(self._memory) - self.config.memory_cache_size
            if overflow > 0:
                self._evict(protect=None)
        logger.info("cache_configuration_updated", changes=sorted(changes))

    def ttl_for(self, category: CacheCategory | str) -> float:
        """TTL in seconds for a category."""
        name = self._category_name(category)
        return self.config.category_ttls.get(name, self.config.default_ttl)

    def export_cache(self, path: Path) -> int:
        """Write all live memory entries to a JSON file.

        Entries whose data is not JSON serializable are skipped.

        Returns:
            Number of entries written
        """
        now = self._clock()
        with self._lock:
            entries = [e for e in self._memory.values() if not e.is_expired(now)]

        serialized = []
        for entry in entries:
            try:
                payload = entry.model_dump(mode="json")
                json.dumps(payload)
            except (TypeError, ValueError):
                logger.warning("cache_export_skipped_entry", key=entry.key)
                continue
            serialized.append(payload)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps({"exported_at": now.isoformat(), "entries": serialized}, indent=2),
            encoding="utf-8",
        )
        logger.info("cache_exported", path=str(path), entries=len(serialized))
        return len(serialized)

    def import_cache(self, path: Path) -> int:
        """Pre-warm the memory tier from an exported JSON file.

        Expired or invalid entries are skipped.

        Returns:
            Number of entries loaded
        """
        raw = json.loads(path.read_text(encoding="utf-8"))
        now = self._clock()
        loaded = 0

        with self._lock:
            for item in raw.get("entries", []):
                try:
                    entry = CacheEntry.model_validate(item)
                except ValueError as e:
                    logger.warning("cache_import_invalid_entry", error=str(e))
                    continue
                if entry.is_expired(now):
                    continue
                self._memory[self._memory_key(entry.category, entry.key)] = entry
                loaded += 1
            if len(self._memory) > self.config.memory_cache_size:
                self._evict(protect=None)

        logger.info("cache_imported", path=str(path), entries=loaded)
        return loaded

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Build a stable key from JSON-serializable parts.

        Strings and numbers are kept readable; other parts are hashed.
        """
        segments = []
        for part in parts:
            if isinstance(part, str | int | float | bool) or part is None:
                segments.append(str(part))
            else:
                encoded = json.dumps(part, sort_keys=True, default=repr)
                segments.append(hashlib.md5(encoded.encode("utf-8")).hexdigest())
        return ":".join(segments)

    # ===== Internals (caller holds the lock) =====

    def _lookup(self, category: str, key: str) -> CacheEntry | None:
        now = self._clock()
        memory_key = self._memory_key(category, key)

        entry = self._memory.get(memory_key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry
            del self._memory[memory_key]
            logger.debug("cache_entry_expired", category=category, key=key)

        if self._file_store is not None:
            entry = self._file_store.get(category, key, now)
            if entry is not None:
                self._memory[memory_key] = entry
                if len(self._memory) > self.config.memory_cache_size:
                    self._evict(protect=memory_key)
                return entry

        return None

    def _store(self, category: str, key: str, data: Any) -> None:
        now = self._clock()
        memory_key = self._memory_key(category, key)
        entry = CacheEntry(
            key=key,
            category=category,
            data=data,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_for(category)),
        )

        # Re-inserting moves the key to the end so FIFO order follows created_at
        self._memory.pop(memory_key, None)
        self._memory[memory_key] = entry

        if len(self._memory) > self.config.memory_cache_size:
            self._evict(protect=memory_key)

        if self._file_store is not None:
            self._file_store.put(entry)

    def _evict(self, protect: str | None) -> None:
        """Drop the oldest-created entries in one batch.

        Removes max(overflow, min(batch size, 10% of capacity)) entries and
        never the entry just stored.
        """
        capacity = self.config.memory_cache_size
        overflow = len(self._memory) - capacity
        batch = min(self.config.eviction_batch_size, math.ceil(capacity * 0.1))
        count = max(overflow, batch)

        candidates = sorted(
            (k for k in self._memory if k != protect),
            key=lambda k: self._memory[k].created_at,
        )
        evicted = candidates[:count]
        for memory_key in evicted:
            del self._memory[memory_key]

        logger.debug("cache_evicted", count=len(evicted), remaining=len(self._memory))

    def _category_stats(self, category: str) -> CategoryStats:
        if category not in self._stats:
            self._stats[category] = CategoryStats()
        return self._stats[category]

    def _ordered_stats(self) -> list[tuple[str, CategoryStats]]:
        known = [c.value for c in CacheCategory]
        return sorted(
            self._stats.items(),
            key=lambda item: (known.index(item[0]) if item[0] in known else len(known), item[0]),
        )

    def _configure_file_store(self) -> None:
        if self.config.file_cache_enabled:
            self._file_store = FileCacheStore(self.config.file_cache_directory)
        else:
            self._file_store = None

    @staticmethod
    def _memory_key(category: str, key: str) -> str:
        return f"{category}:{key}"

    @staticmethod
    def _category_name(category: CacheCategory | str) -> str:
        if isinstance(category, CacheCategory):
            return category.value
        return category
