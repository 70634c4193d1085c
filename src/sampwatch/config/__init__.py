from .config_parser import load_config
from .config_schema import (
    CacheConfig,
    EngineConfig,
    HttpConfig,
    LoggingConfig,
    QueryConfig,
    RateLimitConfig,
)

__all__ = [
    "CacheConfig",
    "EngineConfig",
    "HttpConfig",
    "LoggingConfig",
    "QueryConfig",
    "RateLimitConfig",
    "load_config",
]
