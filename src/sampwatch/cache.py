from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import InvalidPattern
from .models import ServerRecord

""" Server record cache with per-entry dynamic TTL and LFU eviction.

Brief:
  Thread-safe in-memory cache keyed by "host:port". Each entry's TTL is derived
  from the record it stores, and when the cache is full the least popular
  entry (oldest last access on ties) makes room for the new one.

Notes:
  - Expired entries are removed on access, on set(), and by sweep(), which
    can run on a background thread via start().
  - Callers always receive copies; stored records are never shared.
"""

logger = logging.getLogger(__name__)

OFFLINE_TTL = 30
EMPTY_TTL = 20
BUSY_TTL = 5
BUSY_PLAYER_THRESHOLD = 100


def compute_ttl(record: Optional[ServerRecord], default_ttl: int) -> int:
    """Brief: Derive a TTL in seconds from the record being cached.

    Inputs:
      - record: ServerRecord, or None for an offline server. A record with
        player_count_known=False counts as unknown.
      - default_ttl: Configured TTL for servers with some players.

    Outputs:
      - int seconds: 30 offline/unknown, 20 empty, 5 above 100 players,
        otherwise default_ttl.

    Example:
      >>> compute_ttl(ServerRecord(player_count=150), 10)
      5
    """

    if record is None or not getattr(record, "player_count_known", True):
        return OFFLINE_TTL
    players = int(record.player_count)
    if players == 0:
        return EMPTY_TTL
    if players > BUSY_PLAYER_THRESHOLD:
        return BUSY_TTL
    return int(default_ttl)


def estimate_size(record: Optional[ServerRecord]) -> int:
    if record is None:
        return 0
    try:
        return len(json.dumps(record.to_dict(), default=str))
    except (TypeError, ValueError):
        return 0


@dataclass
class CacheEntry:
    record: ServerRecord
    stored_at: float
    expires_at: float
    ttl: int
    access_count: int
    last_accessed_at: float
    estimated_size_bytes: int
    # Monotonic operation index breaking last_accessed_at ties.
    access_seq: int = 0


class ServerCache:
    """Thread-safe cache of ServerRecords with dynamic TTL and LFU eviction.

    Brief:
        get() counts as an access and bumps the entry's popularity; set()
        computes the TTL from the record and evicts one entry first when the
        cache is at capacity.

    Inputs:
        - default_ttl: Seconds used for servers with 1-100 players.
        - max_entries: Capacity bound (size never exceeds it).
        - cleanup_interval: Seconds between background sweeps.
        - clock: Callable returning epoch seconds; injectable for tests.

    Outputs:
        ServerCache instance

    Example use:
        >>> cache = ServerCache()
        >>> cache.set("127.0.0.1:7777", ServerRecord(hostname="x", player_count=3))
        10
        >>> cache.get("127.0.0.1:7777").hostname
        'x'
    """

    def __init__(
        self,
        default_ttl: int = 10,
        max_entries: int = 1000,
        cleanup_interval: float = 60.0,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl = max(1, int(default_ttl))
        self.max_entries = max(1, int(max_entries))
        self.cleanup_interval = max(0.01, float(cleanup_interval))
        self._clock = clock

        self._store: Dict[str, CacheEntry] = {}
        # Popularity is tracked separately so warmup() can pre-seed keys that
        # are not cached yet.
        self._popularity: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._op_counter = 0

        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.evictions = 0
        self.total_requests = 0
        self.started_at = self._clock()

        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _next_seq_locked(self) -> int:
        self._op_counter += 1
        return self._op_counter

    def _drop_locked(self, key: str) -> None:
        self._store.pop(key, None)
        self._popularity.pop(key, None)

    def get(self, key: str) -> Optional[ServerRecord]:
        """
        Return a copy of the cached record, or None on a miss.

        Inputs:
            key: "host:port" cache key.

        Outputs:
            ServerRecord copy, or None when absent or expired (expired entries
            are evicted on this path).
        """
        now = self._clock()
        with self._lock:
            self.total_requests += 1
            entry = self._store.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now >= entry.expires_at:
                self._drop_locked(key)
                self.misses += 1
                logger.debug("cache expiry on get: %s", key)
                return None

            entry.access_count += 1
            entry.last_accessed_at = now
            entry.access_seq = self._next_seq_locked()
            self._popularity[key] = self._popularity.get(key, 0) + 1
            self.hits += 1
            return entry.record.copy()

    def set(self, key: str, record: ServerRecord) -> int:
        """
        Store a copy of record under key with a TTL derived from the record.

        Inputs:
            key: "host:port" cache key.
            record: ServerRecord to cache.

        Outputs:
            int: The TTL in seconds that was applied.
        """
        now = self._clock()
        ttl = compute_ttl(record, self.default_ttl)
        stored = record.copy()
        with self._lock:
            self.sets += 1
            if key not in self._store:
                self._sweep_locked(now)
                while len(self._store) >= self.max_entries:
                    if not self._evict_one_locked():
                        break
            previous = self._store.get(key)
            self._store[key] = CacheEntry(
                record=stored,
                stored_at=now,
                expires_at=now + ttl,
                ttl=ttl,
                access_count=(previous.access_count + 1) if previous else 1,
                last_accessed_at=now,
                estimated_size_bytes=estimate_size(stored),
                access_seq=self._next_seq_locked(),
            )
            self._popularity[key] = self._popularity.get(key, 0) + 1
        return ttl

    def _evict_one_locked(self) -> bool:
        """Brief: Evict the least popular entry, oldest last access on ties.

        Outputs:
          - bool: True when an entry was removed.
        """

        if not self._store:
            return False
        victim = min(
            self._store.items(),
            key=lambda kv: (
                self._popularity.get(kv[0], 0),
                kv[1].last_accessed_at,
                kv[1].access_seq,
            ),
        )[0]
        popularity = self._popularity.get(victim, 0)
        self._drop_locked(victim)
        self.evictions += 1
        logger.debug("cache eviction: %s (popularity %d)", victim, popularity)
        return True

    def _sweep_locked(self, now: float) -> int:
        removed = 0
        for key, entry in list(self._store.items()):
            if now >= entry.expires_at:
                self._drop_locked(key)
                removed += 1
        return removed

    def sweep(self) -> int:
        """Remove all expired entries and return how many were removed."""
        with self._lock:
            removed = self._sweep_locked(self._clock())
        if removed:
            logger.info("cache sweep removed %d expired entries", removed)
        return removed

    def clear(self) -> int:
        """Empty the cache and return the number of entries it held."""
        with self._lock:
            size = len(self._store)
            self._store.clear()
            self._popularity.clear()
            self.evictions += size
        logger.info("cache cleared (%d entries removed)", size)
        return size

    def warmup(self, keys: Iterable[str]) -> int:
        """Brief: Pre-seed popularity counters so known-busy servers survive eviction.

        Inputs:
          - keys: "host:port" keys.

        Outputs:
          - int: number of keys seeded.
        """

        seeded = 0
        with self._lock:
            for key in keys:
                self._popularity[key] = self._popularity.get(key, 0) + 1
                seeded += 1
        logger.info("cache warmup seeded %d keys", seeded)
        return seeded

    def search(self, pattern: str) -> List[Dict[str, Any]]:
        """
        Case-insensitive regex search over live keys.

        Inputs:
            pattern: Regular expression matched with re.search.

        Outputs:
            list of {key, record, popularity, access_count} sorted by
            popularity descending.

        Raises:
            InvalidPattern when pattern does not compile.
        """
        try:
            rx = re.compile(pattern, re.IGNORECASE)
        except (re.error, TypeError) as exc:
            raise InvalidPattern(f"invalid search pattern {pattern!r}: {exc}")
        now = self._clock()
        with self._lock:
            results = [
                {
                    "key": key,
                    "record": entry.record.copy(),
                    "popularity": self._popularity.get(key, 0),
                    "access_count": entry.access_count,
                }
                for key, entry in self._store.items()
                if now < entry.expires_at and rx.search(key)
            ]
        results.sort(key=lambda r: r["popularity"], reverse=True)
        return results

    def keys(self) -> List[Dict[str, Any]]:
        """List live keys with seconds until expiry, sorted by popularity."""
        now = self._clock()
        with self._lock:
            out = [
                {
                    "key": key,
                    "expires_in": int(entry.expires_at - now),
                    "ttl": entry.ttl,
                    "popularity": self._popularity.get(key, 0),
                    "access_count": entry.access_count,
                }
                for key, entry in self._store.items()
                if now < entry.expires_at
            ]
        out.sort(key=lambda r: r["popularity"], reverse=True)
        return out

    def entry_info(self, key: str) -> Optional[Dict[str, Any]]:
        """Brief: Metadata for one entry without counting as an access."""

        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            return {
                "stored_at": entry.stored_at,
                "expires_at": entry.expires_at,
                "ttl": entry.ttl,
                "access_count": entry.access_count,
                "last_accessed_at": entry.last_accessed_at,
                "estimated_size_bytes": entry.estimated_size_bytes,
                "popularity": self._popularity.get(key, 0),
            }

    def stats(self) -> Dict[str, Any]:
        """Brief: Snapshot of size, hit rate, configuration and top servers."""

        now = self._clock()
        with self._lock:
            entries = len(self._store)
            total_size = sum(e.estimated_size_bytes for e in self._store.values())
            top = sorted(self._popularity.items(), key=lambda kv: kv[1], reverse=True)[:10]
            hits, misses, total = self.hits, self.misses, self.total_requests
            sets, evictions = self.sets, self.evictions

        hit_rate = round(hits / total * 100, 2) if total else 0.0
        uptime = max(0.0, now - self.started_at)
        return {
            "entries": entries,
            "max_entries": self.max_entries,
            "usage": {
                "percentage": round(entries / self.max_entries * 100, 2),
                "estimated_memory_bytes": total_size,
                "estimated_memory_kb": round(total_size / 1024, 2),
            },
            "performance": {
                "hits": hits,
                "misses": misses,
                "hit_rate": hit_rate,
                "total_requests": total,
                "sets": sets,
                "evictions": evictions,
            },
            "configuration": {
                "default_ttl": self.default_ttl,
                "cleanup_interval": self.cleanup_interval,
                "max_entries": self.max_entries,
            },
            "top_servers": [{"server": k, "requests": v} for k, v in top],
            "uptime_seconds": int(uptime),
        }

    def start(self) -> None:
        """Start the background sweep thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="sampwatch-cache-sweep", daemon=True
        )
        self._sweeper.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=self.cleanup_interval + 1)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.cleanup_interval):
            try:
                self.sweep()
            except Exception:  # pragma: no cover - sweep must never kill the thread
                logger.exception("cache sweep failed")
