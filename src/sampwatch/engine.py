"""Query engine: rate limiter, cache, fallback cascade and normalizer wired together.

Brief:
  QueryEngine is constructed once at process start and passed by reference to
  the HTTP layer. It owns its cache and limiter; there are no module-level
  singletons, so independent instances (for example one per test) never
  interfere.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from .backends.base import QueryBackend
from .backends.registry import build_backends
from .cache import ServerCache
from .config.config_schema import EngineConfig
from .errors import ConfigError
from .fallback import FallbackCoordinator
from .models import Decision, ServerAddress, ServerRecord
from .normalizer import normalize
from .rate_limit import RateLimiter
from .status import infer_status, quality_level

logger = logging.getLogger(__name__)


class LookupResult(NamedTuple):
    record: ServerRecord
    from_cache: bool
    status: str
    quality: str


class QueryEngine:
    """Brief: Entry points for lookups, admission and administration.

    Inputs:
      - coordinator: FallbackCoordinator used on cache misses.
      - cache: ServerCache storing normalized records.
      - limiter: RateLimiter gating callers.

    Outputs:
      - QueryEngine instance.
    """

    def __init__(
        self,
        coordinator: FallbackCoordinator,
        cache: ServerCache,
        limiter: RateLimiter,
    ) -> None:
        self.coordinator = coordinator
        self.cache = cache
        self.limiter = limiter

    @classmethod
    def from_config(
        cls,
        config: Optional[EngineConfig] = None,
        backends: Optional[Sequence[QueryBackend]] = None,
    ) -> "QueryEngine":
        """Brief: Build an engine and its components from an EngineConfig.

        Inputs:
          - config: EngineConfig (defaults used when None).
          - backends: Optional pre-built backends overriding config.query.backends.

        Outputs:
          - QueryEngine
        """

        cfg = config or EngineConfig()
        q, c, r = cfg.query, cfg.cache, cfg.rate_limit
        if backends is None:
            try:
                backends = build_backends(q.backends, timeout_ms=q.timeout_ms)
            except KeyError as exc:
                raise ConfigError(f"invalid query.backends: {exc.args[0]}")
        coordinator = FallbackCoordinator(backends, backoff_ms=q.backoff_ms)
        cache = ServerCache(
            default_ttl=c.ttl_seconds,
            max_entries=c.max_entries,
            cleanup_interval=c.cleanup_interval_ms / 1000.0,
        )
        if c.warmup:
            cache.warmup(c.warmup)
        limiter = RateLimiter(
            window_ms=r.window_ms,
            max_requests=r.max_requests,
            block_duration_ms=r.block_duration_ms,
            abuse_threshold=r.abuse_threshold,
            queue_enabled=r.queue_enabled,
            queue_max_size=r.queue_max_size,
            queue_timeout_ms=r.queue_timeout_ms,
            cleanup_interval=r.cleanup_interval_ms / 1000.0,
            whitelist=r.whitelist,
            blacklist=r.blacklist,
        )
        logger.info(
            "engine ready: backends=%s cache_ttl=%ds max_entries=%d rate=%d/%dms",
            coordinator.backend_names,
            c.ttl_seconds,
            c.max_entries,
            r.max_requests,
            r.window_ms,
        )
        return cls(coordinator, cache, limiter)

    def start(self) -> None:
        """Start background sweeps for the cache and the limiter."""
        self.cache.start()
        self.limiter.start()

    def stop(self) -> None:
        self.cache.stop()
        self.limiter.stop()

    def admit(self, client_id: str) -> Decision:
        return self.limiter.admit(client_id)

    def lookup(self, address: ServerAddress) -> LookupResult:
        """Brief: Cache-checked, fallback-protected server query.

        Inputs:
          - address: Validated ServerAddress.

        Outputs:
          - LookupResult with a copy of the canonical record.

        Raises:
          - InvalidAddress, DNSResolutionFailed, AllBackendsFailed.
        """

        key = address.key
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("cache hit for %s", key)
            return LookupResult(
                record=cached,
                from_cache=True,
                status=infer_status(cached.latency_ms),
                quality=quality_level(cached.latency_ms),
            )

        # Network I/O happens here, outside any cache or limiter lock.
        result, backend_name = self.coordinator.query(address)
        record = normalize(result.data, source_backend=backend_name, latency_ms=result.latency_ms)
        ttl = self.cache.set(key, record)
        logger.debug("cached %s from %s for %ds", key, backend_name, ttl)
        return LookupResult(
            record=record,
            from_cache=False,
            status=infer_status(record.latency_ms),
            quality=quality_level(record.latency_ms),
        )

    # Administrative surface

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def cache_keys(self) -> List[Dict[str, Any]]:
        return self.cache.keys()

    def cache_search(self, pattern: str) -> List[Dict[str, Any]]:
        return self.cache.search(pattern)

    def cache_clear(self) -> int:
        return self.cache.clear()

    def rate_limit_stats(self) -> Dict[str, Any]:
        return self.limiter.stats()

    def whitelist_add(self, client_id: str) -> None:
        self.limiter.add_whitelist(client_id)

    def whitelist_remove(self, client_id: str) -> bool:
        return self.limiter.remove_whitelist(client_id)

    def blacklist_add(self, client_id: str) -> None:
        self.limiter.add_blacklist(client_id)

    def blacklist_remove(self, client_id: str) -> bool:
        return self.limiter.remove_blacklist(client_id)
