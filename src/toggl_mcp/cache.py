"""
In-memory entity cache with TTL expiry and bounded per-kind capacity.

Holds the Toggl entities referenced by time entries (workspaces, projects,
clients, tasks, users, tags) so hydration can resolve names without a network
round-trip for every entry.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 3_600_000  # 1 hour
DEFAULT_MAX_SIZE = 1000
DEFAULT_BATCH_SIZE = 100


class EntityKind(str, enum.Enum):
    WORKSPACE = "workspace"
    PROJECT = "project"
    CLIENT = "client"
    TASK = "task"
    USER = "user"
    TAG = "tag"

    @property
    def plural(self) -> str:
        return f"{self.value}s"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class CacheConfig:
    """Cache sizing and expiry. `max_size` is split evenly across entity kinds."""

    ttl_ms: int = DEFAULT_TTL_MS
    max_size: int = DEFAULT_MAX_SIZE
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_ms / 1000.0

    @property
    def per_kind_capacity(self) -> int:
        return max(0, self.max_size // len(EntityKind))


@dataclass(frozen=True)
class CacheEntry:
    """A cached entity. Replaced wholesale on refresh, never mutated."""

    data: dict[str, Any]
    timestamp: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


@dataclass
class CacheStats:
    sizes: dict[EntityKind, int] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0
    last_reset: float = 0.0

    @property
    def hit_rate(self) -> int:
        total = self.hits + self.misses
        if total == 0:
            return 0
        return round(self.hits / total * 100)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            kind.plural: self.sizes.get(kind, 0) for kind in EntityKind
        }
        result["hits"] = self.hits
        result["misses"] = self.misses
        result["lastReset"] = datetime.fromtimestamp(
            self.last_reset, tz=timezone.utc
        ).isoformat()
        return result


class EntityCache:
    """
    Six independent TTL stores keyed by numeric entity id.

    Eviction is by insertion order: when a kind's store is full the
    oldest-inserted id is dropped before the new one is written, even when the
    id being written is already present. Reads do not reorder entries, so this
    is FIFO rather than true LRU.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or CacheConfig()
        self._clock = clock
        self._stores: dict[EntityKind, dict[int, CacheEntry]] = {
            kind: {} for kind in EntityKind
        }
        self._hits = 0
        self._misses = 0
        self._last_reset = clock()

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def capacity(self) -> int:
        return self._config.per_kind_capacity

    def get(self, kind: EntityKind, entity_id: int) -> dict[str, Any] | None:
        entry = self._stores[kind].get(entity_id)
        if entry is not None and entry.is_valid(self._clock()):
            self._hits += 1
            return entry.data
        self._misses += 1
        return None

    def contains(self, kind: EntityKind, entity_id: int) -> bool:
        """Valid-presence check that leaves hit/miss counters alone."""
        entry = self._stores[kind].get(entity_id)
        return entry is not None and entry.is_valid(self._clock())

    def put(self, kind: EntityKind, entity_id: int, entity: dict[str, Any]) -> None:
        capacity = self.capacity
        if capacity <= 0:
            return
        store = self._stores[kind]
        if len(store) >= capacity:
            oldest = next(iter(store))
            del store[oldest]
            logger.debug("Evicted %s %s from cache", kind.value, oldest)
        store[entity_id] = CacheEntry(
            data=entity, timestamp=self._clock(), ttl=self._config.ttl_seconds
        )

    def put_many(self, kind: EntityKind, entities: Iterable[dict[str, Any]]) -> None:
        for entity in entities:
            entity_id = entity.get("id")
            if isinstance(entity_id, int):
                self.put(kind, entity_id, entity)

    def clear(self) -> None:
        for store in self._stores.values():
            store.clear()
        self._hits = 0
        self._misses = 0
        self._last_reset = self._clock()

    def prune_expired(self) -> int:
        now = self._clock()
        removed = 0
        for store in self._stores.values():
            expired = [key for key, entry in store.items() if not entry.is_valid(now)]
            for key in expired:
                del store[key]
            removed += len(expired)
        if removed:
            logger.debug("Pruned %d expired cache entries", removed)
        return removed

    def size(self, kind: EntityKind) -> int:
        return len(self._stores[kind])

    def stats(self) -> CacheStats:
        return CacheStats(
            sizes={kind: len(store) for kind, store in self._stores.items()},
            hits=self._hits,
            misses=self._misses,
            last_reset=self._last_reset,
        )
