"""Typed configuration models for sampwatch.

Brief:
  pydantic models describing every tunable of the query engine. Values come
  from an optional YAML file overlaid with environment variables (see
  sampwatch.config.config_parser).
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QueryConfig(BaseModel):
    """Brief: Query pipeline settings.

    Inputs:
      - timeout_ms: Per UDP round-trip timeout.
      - backoff_ms: Delay between fallback attempts.
      - backends: Ordered backend aliases tried by the fallback coordinator.
    """

    model_config = ConfigDict(extra="ignore")

    timeout_ms: int = Field(default=3000, ge=1)
    backoff_ms: int = Field(default=500, ge=0)
    backends: List[str] = Field(default_factory=lambda: ["samp", "info_only"])

    @field_validator("backends", mode="before")
    @classmethod
    def _split_backends(cls, value):
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value

    @field_validator("backends")
    @classmethod
    def _non_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one query backend is required")
        return value


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ttl_seconds: int = Field(default=10, ge=1)
    max_entries: int = Field(default=1000, ge=1)
    cleanup_interval_ms: int = Field(default=60_000, ge=10)
    warmup: List[str] = Field(default_factory=list)


class RateLimitConfig(BaseModel):
    """Brief: Rate limiter settings.

    Inputs:
      - window_ms: Sliding window length.
      - max_requests: Admitted requests per window.
      - block_duration_ms: Temporary abuse block length.
      - abuse_threshold: Attempts per window that trigger a block.
      - queue_enabled / queue_max_size / queue_timeout_ms: Wait queue.
      - cleanup_interval_ms: Sweep period.
      - whitelist / blacklist: Initial identifier lists.
    """

    model_config = ConfigDict(extra="ignore")

    window_ms: int = Field(default=60_000, ge=1)
    max_requests: int = Field(default=5, ge=1)
    block_duration_ms: int = Field(default=300_000, ge=0)
    abuse_threshold: int = Field(default=20, ge=1)
    queue_enabled: bool = False
    queue_max_size: int = Field(default=100, ge=0)
    queue_timeout_ms: int = Field(default=30_000, ge=0)
    cleanup_interval_ms: int = Field(default=60_000, ge=10)
    whitelist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)

    @field_validator("whitelist", "blacklist", mode="before")
    @classmethod
    def _split_ids(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "info"
    stderr: bool = True
    file: Optional[str] = None
    access_log: bool = True


class HttpConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    cors: bool = True


class EngineConfig(BaseModel):
    """Brief: Root configuration object."""

    model_config = ConfigDict(extra="ignore")

    query: QueryConfig = Field(default_factory=QueryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
