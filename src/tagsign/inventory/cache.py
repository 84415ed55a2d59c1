"""
TTL Result Cache

Bounds the number of calls made against the rate-limited inventory API.

Two shapes are provided:

- ``TTLCache``: a flat per-key cache, every entry with its own creation time.
  Used for tag search results in the lookup backend and autosign engine.
- ``LayeredTTLCache``: a coarse, optionally disk-backed snapshot made of named
  sections (hours-scale), where some volatile sections expire on their own
  much shorter schedule (seconds-scale).
"""

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import logging

from ..utils.files import atomic_write, read_json_snapshot

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """One cached search result."""
    key: str
    values: Tuple[str, ...]
    created_at: Optional[float]

    def age(self, now: float) -> float:
        return now - self.created_at


class TTLCache:
    """
    Thread-safe per-key TTL cache.

    A ttl of None disables caching entirely: ``put`` stores nothing.
    """

    def __init__(self, ttl: Optional[float], clock: Clock = time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl is not None

    def get(self, key: str) -> Optional[List[str]]:
        """Return the cached values for ``key``, or None if unknown or stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            # Something is wrong with this entry, don't trust it
            if entry.created_at is None:
                del self._entries[key]
                return None

            if self.ttl is None or entry.age(self._clock()) > self.ttl:
                del self._entries[key]
                return None

            logger.debug(f"Returning {key} from cache")
            return list(entry.values)

    def put(self, key: str, values: List[str]) -> None:
        if self.ttl is None:
            return
        with self._lock:
            self._entries[key] = CacheEntry(key=key, values=tuple(values), created_at=self._clock())

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_expired(self) -> int:
        """Drop every stale or broken entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [
                key for key, entry in self._entries.items()
                if entry.created_at is None or self.ttl is None or entry.age(now) > self.ttl
            ]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class CachedTagQuery:
    """Read-through cache in front of a TagQueryClient."""

    def __init__(self, client, cache: TTLCache):
        self.client = client
        self.cache = cache

    @staticmethod
    def cache_key(tag: str, dedup: bool) -> str:
        return f"{tag}|dedup={int(dedup)}"

    def get_tags_by_tag(self, tag: str, dedup: bool = True) -> List[str]:
        key = self.cache_key(tag, dedup)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        logger.debug(f"Not found in cache, searching for {tag}")
        results = self.client.get_tags_by_tag(tag, dedup=dedup)
        self.cache.put(key, results)
        return results


class LayeredTTLCache:
    """
    A coarse snapshot of named sections with independently expiring volatile
    sections.

    - The snapshot has one birth time. Once older than ``ttl`` every section
      is wiped and the snapshot is reborn.
    - Each section named in ``volatile_ttls`` also records when it was
      written, and is dropped on its own once older than its TTL.
    - With ``path`` set the snapshot is seeded from a JSON file (birth time is
      the file's mtime) and ``save()`` writes it back atomically.
    """

    def __init__(
        self,
        ttl: float,
        volatile_ttls: Optional[Dict[str, float]] = None,
        path: Optional[Union[str, Path]] = None,
        clock: Clock = time.time,
    ):
        self.ttl = ttl
        self.volatile_ttls = dict(volatile_ttls or {})
        self.path = Path(path) if path else None
        self._clock = clock
        self._lock = threading.Lock()
        self._born: float = clock()
        self._sections: Dict[str, Any] = {}
        self._written: Dict[str, float] = {}
        self.loaded_from_disk = False

        if self.path is not None:
            self._load()

    def _load(self) -> None:
        if not self.path.is_file():
            logger.debug(f"Cache file {self.path} does not exist")
            return
        try:
            data, born = read_json_snapshot(self.path)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {self.path}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring cache file {self.path} with unexpected shape")
            return

        self._sections = dict(data)
        self._written = {name: born for name in self._sections}
        self._born = born
        self.loaded_from_disk = True

    def _expire(self, now: float) -> None:
        age = now - self._born
        if age > self.ttl:
            logger.debug(f"Cached snapshot has expired ({age:.0f}s old)")
            self._sections.clear()
            self._written.clear()
            self._born = now
            self.loaded_from_disk = False
            return

        for name, section_ttl in self.volatile_ttls.items():
            written = self._written.get(name)
            if written is not None and now - written > section_ttl:
                logger.debug(f"Cached {name} section has expired")
                self._sections.pop(name, None)
                self._written.pop(name, None)

    def get(self, section: str) -> Optional[Any]:
        with self._lock:
            self._expire(self._clock())
            return self._sections.get(section)

    def put(self, section: str, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._expire(now)
            self._sections[section] = value
            self._written[section] = now

    def sections(self) -> Dict[str, Any]:
        with self._lock:
            self._expire(self._clock())
            return dict(self._sections)

    def age(self) -> float:
        with self._lock:
            return self._clock() - self._born

    def save(self) -> None:
        """Persist the snapshot (no-op without a path)."""
        if self.path is None:
            return
        with self._lock:
            atomic_write(self.path, json.dumps(self._sections, sort_keys=True))
