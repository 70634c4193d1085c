"""Configuration loading for sampwatch.

Brief:
  Reads an optional YAML file and overlays environment variables on top.
  Environment values are parsed as YAML scalars so integers and booleans
  arrive typed ("true" -> True, "5000" -> 5000).

Precedence:
  - environment overrides the config file, which overrides model defaults.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .config_schema import EngineConfig

# Environment variable -> (section, field)
ENV_VARS: Dict[str, Tuple[str, str]] = {
    "QUERY_TIMEOUT_MS": ("query", "timeout_ms"),
    "QUERY_BACKOFF_MS": ("query", "backoff_ms"),
    "QUERY_BACKENDS": ("query", "backends"),
    "CACHE_TTL_SECONDS": ("cache", "ttl_seconds"),
    "CACHE_MAX_ENTRIES": ("cache", "max_entries"),
    "CACHE_CLEANUP_INTERVAL_MS": ("cache", "cleanup_interval_ms"),
    "RATE_LIMIT_WINDOW_MS": ("rate_limit", "window_ms"),
    "RATE_LIMIT_MAX_REQUESTS": ("rate_limit", "max_requests"),
    "RATE_LIMIT_BLOCK_DURATION_MS": ("rate_limit", "block_duration_ms"),
    "RATE_LIMIT_ABUSE_THRESHOLD": ("rate_limit", "abuse_threshold"),
    "RATE_LIMIT_QUEUE_ENABLED": ("rate_limit", "queue_enabled"),
    "RATE_LIMIT_QUEUE_MAX_SIZE": ("rate_limit", "queue_max_size"),
    "RATE_LIMIT_QUEUE_TIMEOUT_MS": ("rate_limit", "queue_timeout_ms"),
    "RATE_LIMIT_CLEANUP_INTERVAL_MS": ("rate_limit", "cleanup_interval_ms"),
    "RATE_LIMIT_WHITELIST": ("rate_limit", "whitelist"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FILE": ("logging", "file"),
    "HOST": ("http", "host"),
    "PORT": ("http", "port"),
}


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse an environment variable value as YAML.

    Inputs:
      - text: Raw string.

    Outputs:
      - Any: Parsed value (falls back to the original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def read_config_file(path: str) -> Dict[str, Any]:
    """Brief: Load a YAML mapping from path.

    Raises:
      - ConfigError when the file is unreadable or not a mapping.
    """

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}")
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def apply_environment(
    cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Brief: Overlay known environment variables onto a raw config mapping.

    Inputs:
      - cfg: Raw mapping (mutated in place and returned).
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - dict: cfg with environment overrides applied.

    Example:
      >>> apply_environment({}, {"CACHE_TTL_SECONDS": "15"})
      {'cache': {'ttl_seconds': 15}}
    """

    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_VARS.items():
        raw = env.get(var)
        if raw is None or str(raw).strip() == "":
            continue
        value = _parse_yaml_value(str(raw))
        # Lists given in env are comma separated; keep them as strings for
        # the model validators to split.
        if key in {"backends", "whitelist"}:
            value = str(raw)
        block = cfg.get(section)
        if not isinstance(block, dict):
            block = {}
            cfg[section] = block
        block[key] = value
    return cfg


def load_config(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> EngineConfig:
    """Brief: Build a validated EngineConfig.

    Inputs:
      - path: Optional YAML config file path.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - EngineConfig

    Raises:
      - ConfigError on unreadable files or validation failures.
    """

    raw: Dict[str, Any] = read_config_file(path) if path else {}
    apply_environment(raw, environ)
    try:
        return EngineConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}")
