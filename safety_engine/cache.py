"""
Classification Cache
====================

Environment analyses keyed by (subject_id, zone_name).

GUARANTEES:
===========
1. A live entry is returned without any inference call
2. At most ONE inference call is in flight per key; concurrent callers
   await the same task and receive the identical record
3. Failure defaults are cached with the same TTL as real results, so a
   failing backend is not hammered
4. TTL is measured on the injected clock
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple
import asyncio
import logging

from adapter import InferenceClient, RequestKind

from .clock import SystemClock
from .contracts import EnvironmentAnalysis, ZoneClassification
from .hardening import Hardener

logger = logging.getLogger(__name__)


CacheKey = Tuple[str, str]


@dataclass(frozen=True)
class CacheEntry:
    """One stored analysis."""
    key: CacheKey
    analysis: EnvironmentAnalysis
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0


@dataclass(frozen=True)
class CacheStats:
    """Statistics for cache performance."""
    total_entries: int
    in_flight: int
    hit_count: int
    miss_count: int
    coalesced_count: int
    eviction_count: int
    hit_rate: float
    computed_at: datetime


class ClassificationCache:
    """TTL cache with in-flight coalescing in front of ENVIRONMENT_ANALYSIS."""

    def __init__(
        self,
        client: InferenceClient,
        hardener: Hardener,
        clock=None,
        ttl_seconds: float = 45.0,
        max_entries: int = 10_000
    ):
        self._client = client
        self._hardener = hardener
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._in_flight: Dict[CacheKey, asyncio.Future] = {}
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._evictions = 0

    def _live_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock.now() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def peek(self, subject_id: str, zone_name: str) -> Optional[EnvironmentAnalysis]:
        """Live entry for a key, without calling inference or counting stats."""
        entry = self._live_entry((subject_id, zone_name))
        return entry.analysis if entry else None

    async def lookup(
        self,
        subject_id: str,
        zone_name: str,
        payload_factory: Callable[[], Dict[str, Any]]
    ) -> EnvironmentAnalysis:
        """
        Return the analysis for a key.

        payload_factory is only called on a miss, by the one caller that
        issues the inference request.
        """
        key = (subject_id, zone_name)
        entry = self._live_entry(key)
        if entry is not None:
            self._hits += 1
            self._entries[key] = CacheEntry(
                key=entry.key,
                analysis=entry.analysis,
                created_at=entry.created_at,
                expires_at=entry.expires_at,
                hit_count=entry.hit_count + 1,
            )
            return entry.analysis

        pending = self._in_flight.get(key)
        if pending is not None:
            self._coalesced += 1
            return await asyncio.shield(pending)

        self._misses += 1
        task = asyncio.ensure_future(self._fetch(key, payload_factory()))
        self._in_flight[key] = task
        return await asyncio.shield(task)

    async def classify(
        self,
        subject_id: str,
        zone_name: str,
        payload_factory: Callable[[], Dict[str, Any]]
    ) -> ZoneClassification:
        """Zone part of lookup()."""
        analysis = await self.lookup(subject_id, zone_name, payload_factory)
        return analysis.zone_classification

    async def _fetch(self, key: CacheKey, payload: Dict[str, Any]) -> EnvironmentAnalysis:
        try:
            outcome = await self._client.infer(RequestKind.ENVIRONMENT_ANALYSIS, payload)
            analysis = self._hardener.recover(outcome, entity_id=key[0])
            self._store(key, analysis)
            if analysis.degraded:
                logger.info("Cached fallback environment for %s/%s", *key)
            return analysis
        finally:
            self._in_flight.pop(key, None)

    def _store(self, key: CacheKey, analysis: EnvironmentAnalysis) -> None:
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_oldest()
        now = self._clock.now()
        self._entries[key] = CacheEntry(
            key=key,
            analysis=analysis,
            created_at=now,
            expires_at=now + self._ttl,
        )

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].created_at)
        del self._entries[oldest_key]
        self._evictions += 1

    def invalidate(self, subject_id: str, zone_name: Optional[str] = None) -> int:
        """Drop one key, or every key for a subject. Returns entries dropped."""
        if zone_name is not None:
            return 1 if self._entries.pop((subject_id, zone_name), None) else 0
        keys = [k for k in self._entries if k[0] == subject_id]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def purge_expired(self) -> int:
        now = self._clock.now()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses + self._coalesced
        return CacheStats(
            total_entries=len(self._entries),
            in_flight=len(self._in_flight),
            hit_count=self._hits,
            miss_count=self._misses,
            coalesced_count=self._coalesced,
            eviction_count=self._evictions,
            hit_rate=(self._hits + self._coalesced) / total if total > 0 else 0.0,
            computed_at=self._clock.now(),
        )
