"""Latency based server status helpers for API responses."""

from __future__ import annotations

from typing import Optional

ONLINE = "online"
UNSTABLE = "unstable"
OFFLINE = "offline"

UNSTABLE_LATENCY_MS = 300


def infer_status(latency_ms: Optional[int], online: bool = True) -> str:
    """Brief: Classify a server from its reply latency.

    Inputs:
      - latency_ms: Measured round trip, or None when there was no reply.
      - online: False when the query failed altogether.

    Outputs:
      - 'online' below 300 ms, 'unstable' at or above it, 'offline' without a reply.
    """

    if not online or latency_ms is None:
        return OFFLINE
    if latency_ms < UNSTABLE_LATENCY_MS:
        return ONLINE
    return UNSTABLE


def quality_level(latency_ms: Optional[int]) -> str:
    if latency_ms is None:
        return "unavailable"
    if latency_ms < 50:
        return "excellent"
    if latency_ms < 150:
        return "good"
    if latency_ms < 300:
        return "fair"
    return "poor"
