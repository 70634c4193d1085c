"""HTTP API for sampwatch (server queries, health, cache and rate-limit admin).

This module provides a small FastAPI application over a QueryEngine. Handlers
are plain ``def`` functions so FastAPI runs them in its worker threadpool; the
UDP queries and the rate-limit wait queue block those threads, never the
event loop.
"""

from __future__ import annotations

import dataclasses
import importlib.metadata as importlib_metadata
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .engine import QueryEngine
from .errors import AllBackendsFailed, DNSResolutionFailed, InvalidAddress, InvalidPattern
from .models import Decision, ServerAddress

logger = logging.getLogger("sampwatch.webserver")

try:
    SAMPWATCH_VERSION = importlib_metadata.version("sampwatch")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    SAMPWATCH_VERSION = "unknown"

POSSIBLE_OFFLINE_CAUSES = [
    "server is offline",
    "server does not answer queries",
    "a firewall blocks UDP queries",
    "wrong address or port",
    "server under maintenance",
]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def client_id_from_request(request: Request) -> str:
    """Brief: Identify the caller, honouring proxy headers.

    Inputs:
      - request: Incoming FastAPI request.

    Outputs:
      - str: First X-Forwarded-For entry, else X-Real-IP, else the peer host.
    """

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _denied_response(decision: Decision) -> JSONResponse:
    retry = int(decision.retry_after_seconds)
    minutes, seconds = divmod(retry, 60)
    body = {
        "success": False,
        "error": "rate limit exceeded",
        "reason": decision.reason,
        "blocked": decision.blocked,
        "blacklisted": decision.blacklisted,
        "retry_after": f"{minutes}m {seconds}s",
        "retry_after_seconds": retry,
        "timestamp": _utc_now_iso(),
    }
    headers = {"Retry-After": str(retry)} if retry > 0 else {}
    return JSONResponse(content=body, status_code=429, headers=headers)


def create_app(engine: QueryEngine, config: Optional[Dict[str, Any]] = None) -> FastAPI:
    """Create the FastAPI app exposing query and admin endpoints.

    Inputs:
      - engine: Shared QueryEngine instance.
      - config: Optional http config mapping (keys: cors).

    Outputs:
      - Configured FastAPI application.

    Example:
      >>> from sampwatch.engine import QueryEngine
      >>> app = create_app(QueryEngine.from_config())
    """

    http_cfg = config or {}
    app = FastAPI(title="sampwatch", version=SAMPWATCH_VERSION)
    app.state.engine = engine
    app.state.started_at = time.time()

    if http_cfg.get("cors", True):
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            max_age=86400,
        )

    @app.get("/query")
    @app.get("/api/v1/query")
    def query(
        request: Request,
        ip: Optional[str] = Query(default=None),
        port: Optional[str] = Query(default=None),
    ):
        """Brief: Rate-limited, cached server lookup.

        Inputs: ip and port query parameters.

        Outputs:
          - 200 with online=true and the server record, or online=false when
            the server did not answer; 400 on invalid input; 429 when the
            caller is throttled, blocked or blacklisted.
        """

        decision = engine.admit(client_id_from_request(request))
        if not decision.allowed:
            return _denied_response(decision)

        try:
            address = ServerAddress.parse(ip, port)
        except InvalidAddress as exc:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "invalid parameters",
                    "message": str(exc),
                    "example": "/query?ip=127.0.0.1&port=7777",
                    "timestamp": _utc_now_iso(),
                },
            )

        started = time.monotonic()
        try:
            result = engine.lookup(address)
        except (AllBackendsFailed, DNSResolutionFailed) as exc:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.info("lookup of %s failed: %s", address, exc)
            return {
                "success": False,
                "online": False,
                "server": {"ip": address.host, "port": address.port, "address": address.key},
                "status": {"state": "offline", "latency_ms": elapsed, "quality": "unavailable"},
                "error": {
                    "code": exc.code,
                    "message": str(exc),
                    "details": str(getattr(exc, "last_error", "") or ""),
                    "possible_causes": POSSIBLE_OFFLINE_CAUSES,
                },
                "meta": {"queried_at": _utc_now_iso(), "response_time_ms": elapsed},
            }

        record = result.record
        rules = record.rules
        percentage = (
            round(record.player_count / record.max_players * 100) if record.max_players > 0 else 0
        )
        return {
            "success": True,
            "online": True,
            "server": {"ip": address.host, "port": address.port, "address": address.key},
            "status": {
                "state": result.status,
                "latency_ms": record.latency_ms,
                "quality": result.quality,
            },
            "info": {
                "hostname": record.hostname,
                "gamemode": record.gamemode,
                "mapname": record.mapname,
                "language": rules.get("language") or rules.get("lang") or "Unknown",
                "version": rules.get("version") or "Unknown",
                "weather": rules.get("weather") or "Unknown",
                "worldtime": rules.get("worldtime") or "Unknown",
                "weburl": rules.get("weburl") or rules.get("website"),
            },
            "players": {
                "online": record.player_count,
                "max": record.max_players,
                "percentage": percentage,
                "list": [dataclasses.asdict(p) for p in record.players],
            },
            "security": {
                "password": record.passworded,
                "lagcomp": rules.get("lagcomp") == "On",
            },
            "rules": rules,
            "source_backend": record.source_backend,
            "cache": {"from_cache": result.from_cache},
            "rate_limit": {"remaining": decision.remaining},
            "meta": {"queried_at": _utc_now_iso()},
        }

    @app.get("/health")
    @app.get("/api/v1/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "version": SAMPWATCH_VERSION,
            "uptime_seconds": int(time.time() - app.state.started_at),
            "backends": engine.coordinator.backend_names,
            "cache": {"entries": len(engine.cache), "max_entries": engine.cache.max_entries},
            "rate_limit": engine.rate_limit_stats()["configuration"],
            "server_time": _utc_now_iso(),
        }

    @app.get("/api/v1/cache/stats")
    def cache_stats() -> Dict[str, Any]:
        return engine.cache_stats()

    @app.get("/api/v1/cache/keys")
    def cache_keys() -> Dict[str, Any]:
        keys = engine.cache_keys()
        return {"count": len(keys), "keys": keys}

    @app.get("/api/v1/cache/search")
    def cache_search(pattern: str = Query(...)) -> Dict[str, Any]:
        try:
            matches = engine.cache_search(pattern)
        except InvalidPattern as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return {
            "pattern": pattern,
            "count": len(matches),
            "results": [
                {
                    "key": m["key"],
                    "popularity": m["popularity"],
                    "access_count": m["access_count"],
                    "record": m["record"].to_dict(),
                }
                for m in matches
            ],
        }

    @app.post("/api/v1/cache/clear")
    def cache_clear() -> Dict[str, Any]:
        return {"cleared": engine.cache_clear()}

    @app.get("/api/v1/ratelimit/stats")
    def rate_limit_stats() -> Dict[str, Any]:
        return engine.rate_limit_stats()

    @app.post("/api/v1/ratelimit/whitelist/{client_id}")
    def whitelist_add(client_id: str) -> Dict[str, Any]:
        engine.whitelist_add(client_id)
        return {"client": client_id, "whitelisted": True}

    @app.delete("/api/v1/ratelimit/whitelist/{client_id}")
    def whitelist_remove(client_id: str) -> Dict[str, Any]:
        if not engine.whitelist_remove(client_id):
            raise HTTPException(status_code=404, detail=f"{client_id} is not whitelisted")
        return {"client": client_id, "whitelisted": False}

    @app.delete("/api/v1/ratelimit/blacklist/{client_id}")
    def blacklist_remove(client_id: str) -> Dict[str, Any]:
        if not engine.blacklist_remove(client_id):
            raise HTTPException(status_code=404, detail=f"{client_id} is not blacklisted")
        return {"client": client_id, "blacklisted": False}

    return app
