from __future__ import annotations

import logging
import math
import statistics
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence

from .errors import Blacklisted, Blocked, QueueTimeout, RateLimited
from .models import Decision

logger = logging.getLogger(__name__)

BLACKLIST_AFTER_BLOCKS = 3
QUEUE_POLL_SECONDS = 1.0

PATTERN_DDOS = "ddos-flood"
PATTERN_BOT = "automated-bot"
PATTERN_EXCESSIVE = "excessive-requests"
PATTERN_SUSPICIOUS = "suspicious"


def classify_pattern(timestamps: Sequence[float], abuse_threshold: int) -> str:
    """Brief: Label a blocked client's traffic shape for operators.

    Inputs:
      - timestamps: Ordered request times (seconds) within the window.
      - abuse_threshold: Configured abuse threshold.

    Outputs:
      - str: 'ddos-flood' when the mean interval is under 100 ms,
        'automated-bot' for near-constant intervals under 1 s,
        'excessive-requests' when volume reaches the threshold,
        otherwise 'suspicious'.

    Example:
      >>> classify_pattern([0.0, 0.01, 0.02, 0.03], 20)
      'ddos-flood'
    """

    ts = list(timestamps)
    intervals = [b - a for a, b in zip(ts, ts[1:])]
    if intervals:
        mean = statistics.fmean(intervals)
        if mean < 0.1:
            return PATTERN_DDOS
        spread = statistics.pstdev(intervals)
        if mean < 1.0 and spread <= mean * 0.1:
            return PATTERN_BOT
    if len(ts) >= abuse_threshold:
        return PATTERN_EXCESSIVE
    return PATTERN_SUSPICIOUS


@dataclass
class BlockRecord:
    since: float
    until: float
    reason: str
    block_count: int
    pattern: str


@dataclass
class _ClientState:
    # Admitted requests; these consume quota.
    admitted: Deque[float] = field(default_factory=deque)
    # Every attempt, admitted or not; these feed abuse detection.
    attempts: Deque[float] = field(default_factory=deque)
    block: Optional[BlockRecord] = None
    block_count: int = 0
    queued: int = 0
    removed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter:
    """Per-client sliding-window admission control with abuse detection.

    Brief:
      Each client identifier gets a trailing window of request timestamps.
      Clients reaching the abuse threshold inside one window are blocked for
      block_duration_ms; a third block promotes them to the blacklist, which
      only an operator can undo. Whitelisted identifiers bypass everything.
      Requests denied for ordinary quota reasons may optionally wait in a
      bounded per-client queue.

    Inputs:
      - window_ms: Sliding window length.
      - max_requests: Admitted requests allowed per window.
      - block_duration_ms: Length of a temporary abuse block.
      - abuse_threshold: Attempts per window that trigger a block.
      - queue_enabled / queue_max_size / queue_timeout_ms: Wait queue settings.
      - cleanup_interval: Seconds between background sweeps.
      - whitelist / blacklist: Initial identifier sets.
      - clock: Callable returning epoch seconds; injectable for tests.

    Notes:
      - Decisions for one client are serialized on that client's lock; the
        registry lock only guards the client map.
    """

    def __init__(
        self,
        window_ms: int = 60_000,
        max_requests: int = 5,
        block_duration_ms: int = 300_000,
        abuse_threshold: int = 20,
        *,
        queue_enabled: bool = False,
        queue_max_size: int = 100,
        queue_timeout_ms: int = 30_000,
        cleanup_interval: float = 60.0,
        whitelist: Optional[Iterable[str]] = None,
        blacklist: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window = max(1, int(window_ms)) / 1000.0
        self.max_requests = max(1, int(max_requests))
        self.block_duration = max(0, int(block_duration_ms)) / 1000.0
        self.abuse_threshold = max(1, int(abuse_threshold))
        self.queue_enabled = bool(queue_enabled)
        self.queue_max_size = max(0, int(queue_max_size))
        self.queue_timeout = max(0, int(queue_timeout_ms)) / 1000.0
        self.cleanup_interval = max(0.01, float(cleanup_interval))
        self._clock = clock

        self._clients: Dict[str, _ClientState] = {}
        self._registry_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._lists_lock = threading.Lock()
        self._whitelist = set(whitelist or ())
        self._blacklist = set(blacklist or ())
        # Wakes queued waiters when admission conditions change.
        self._wakeup = threading.Condition()

        self.allowed_total = 0
        self.denied_total = 0
        self.blocks_total = 0
        self.queue_timeouts_total = 0

        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    # -- client state -------------------------------------------------------

    def _state_for(self, client_id: str) -> _ClientState:
        with self._registry_lock:
            state = self._clients.get(client_id)
            if state is None:
                state = _ClientState()
                self._clients[client_id] = state
            return state

    def _prune_locked(self, state: _ClientState, now: float) -> None:
        cutoff = now - self.window
        while state.admitted and state.admitted[0] <= cutoff:
            state.admitted.popleft()
        while state.attempts and state.attempts[0] <= cutoff:
            state.attempts.popleft()

    def _is_whitelisted(self, client_id: str) -> bool:
        with self._lists_lock:
            return client_id in self._whitelist

    def is_blacklisted(self, client_id: str) -> bool:
        with self._lists_lock:
            return client_id in self._blacklist

    # -- admission -----------------------------------------------------------

    def check_limit(self, client_id: str) -> Decision:
        """Evaluate one request from client_id and record it.

        Inputs:
            client_id: Caller identifier (usually the client IP).

        Outputs:
            Decision describing whether the request may proceed.
        """
        decision = self._evaluate(client_id, record_attempt=True)
        self._count("allowed_total" if decision.allowed else "denied_total")
        return decision

    def _count(self, name: str) -> None:
        with self._stats_lock:
            setattr(self, name, getattr(self, name) + 1)

    def _evaluate(self, client_id: str, *, record_attempt: bool) -> Decision:
        if self._is_whitelisted(client_id):
            return Decision(
                allowed=True,
                remaining=self.max_requests,
                reason="whitelisted",
                whitelisted=True,
            )
        if self.is_blacklisted(client_id):
            return Decision(allowed=False, reason="blacklisted", blacklisted=True)

        while True:
            state = self._state_for(client_id)
            with state.lock:
                # The sweeper may have dropped this state between lookup and lock.
                if state.removed:
                    continue
                return self._evaluate_locked(client_id, state, self._clock(), record_attempt)

    def _evaluate_locked(
        self, client_id: str, state: _ClientState, now: float, record_attempt: bool
    ) -> Decision:
        # Re-checked under the client lock: a concurrent request may have
        # just promoted this client.
        if self.is_blacklisted(client_id):
            return Decision(allowed=False, reason="blacklisted", blacklisted=True)

        if state.block is not None:
            if now < state.block.until:
                return Decision(
                    allowed=False,
                    retry_after_seconds=max(1, math.ceil(state.block.until - now)),
                    reason="blocked",
                    blocked=True,
                    pattern=state.block.pattern,
                )
            logger.info("rate limit block expired for %s", client_id)
            state.block = None
            state.admitted.clear()
            state.attempts.clear()

        self._prune_locked(state, now)
        if record_attempt:
            state.attempts.append(now)

        if len(state.attempts) >= self.abuse_threshold:
            return self._block_locked(client_id, state, now)

        if len(state.admitted) >= self.max_requests:
            retry = state.admitted[0] + self.window - now
            return Decision(
                allowed=False,
                remaining=0,
                retry_after_seconds=max(1, math.ceil(retry)),
                reason="rate_limited",
            )

        state.admitted.append(now)
        return Decision(
            allowed=True,
            remaining=max(0, self.max_requests - len(state.admitted)),
            reason="ok",
        )

    def _block_locked(self, client_id: str, state: _ClientState, now: float) -> Decision:
        pattern = classify_pattern(state.attempts, self.abuse_threshold)
        state.block_count += 1
        self._count("blocks_total")

        if state.block_count >= BLACKLIST_AFTER_BLOCKS:
            state.block = None
            with self._lists_lock:
                self._blacklist.add(client_id)
            logger.warning(
                "client %s blacklisted after %d blocks (pattern %s)",
                client_id,
                state.block_count,
                pattern,
            )
            return Decision(
                allowed=False,
                reason="abuse",
                blacklisted=True,
                pattern=pattern,
            )

        state.block = BlockRecord(
            since=now,
            until=now + self.block_duration,
            reason="abuse",
            block_count=state.block_count,
            pattern=pattern,
        )
        logger.warning(
            "client %s blocked for %ds: %d requests in window (pattern %s, block %d)",
            client_id,
            int(self.block_duration),
            len(state.attempts),
            pattern,
            state.block_count,
        )
        return Decision(
            allowed=False,
            retry_after_seconds=max(1, math.ceil(self.block_duration)),
            reason="abuse",
            blocked=True,
            pattern=pattern,
        )

    def admit(self, client_id: str, wait: Optional[bool] = None) -> Decision:
        """Check client_id and, when enabled, wait in the queue for quota.

        Inputs:
            client_id: Caller identifier.
            wait: Override queue_enabled for this call (None uses the setting).

        Outputs:
            Decision. Only 'rate_limited' denials are queued; abuse, block
            and blacklist denials return immediately. A queued request that
            is not admitted within queue_timeout returns reason
            'queue_timeout' and is never admitted afterwards.
        """
        decision = self.check_limit(client_id)
        queue = self.queue_enabled if wait is None else bool(wait)
        if decision.allowed or decision.reason != "rate_limited" or not queue:
            return decision

        state = self._state_for(client_id)
        with state.lock:
            if state.queued >= self.queue_max_size:
                return Decision(
                    allowed=False,
                    retry_after_seconds=decision.retry_after_seconds,
                    reason="queue_full",
                )
            state.queued += 1

        started = time.monotonic()
        hint = float(decision.retry_after_seconds)
        try:
            while True:
                left = self.queue_timeout - (time.monotonic() - started)
                if left <= 0:
                    self._count("queue_timeouts_total")
                    logger.debug("queued request for %s timed out", client_id)
                    return Decision(
                        allowed=False,
                        retry_after_seconds=max(1, math.ceil(hint)),
                        reason="queue_timeout",
                    )
                with self._wakeup:
                    self._wakeup.wait(timeout=min(left, QUEUE_POLL_SECONDS, max(hint, 0.01)))
                # Re-checks must not count as new attempts.
                retry = self._evaluate(client_id, record_attempt=False)
                if retry.allowed:
                    self._count("allowed_total")
                    return retry
                if retry.reason != "rate_limited":
                    return retry
                hint = float(retry.retry_after_seconds)
        finally:
            with state.lock:
                state.queued -= 1

    def enforce(self, client_id: str) -> Decision:
        """Like admit(), but raises the matching RateLimitError on denial."""
        decision = self.admit(client_id)
        if decision.allowed:
            return decision
        retry = decision.retry_after_seconds
        if decision.blacklisted:
            raise Blacklisted(f"client {client_id} is blacklisted", retry)
        if decision.blocked or decision.reason == "abuse":
            raise Blocked(f"client {client_id} is temporarily blocked", retry)
        if decision.reason == "queue_timeout":
            raise QueueTimeout(f"queued request for {client_id} timed out", retry)
        raise RateLimited(f"rate limit exceeded for {client_id}", retry)

    def _notify_waiters(self) -> None:
        with self._wakeup:
            self._wakeup.notify_all()

    # -- operator surface ----------------------------------------------------

    def add_whitelist(self, client_id: str) -> None:
        with self._lists_lock:
            self._whitelist.add(client_id)
        logger.info("client %s whitelisted", client_id)
        self._notify_waiters()

    def remove_whitelist(self, client_id: str) -> bool:
        with self._lists_lock:
            present = client_id in self._whitelist
            self._whitelist.discard(client_id)
        return present

    def add_blacklist(self, client_id: str) -> None:
        state = self._state_for(client_id)
        with state.lock:
            state.block = None
            with self._lists_lock:
                self._blacklist.add(client_id)
        logger.info("client %s blacklisted by operator", client_id)

    def remove_blacklist(self, client_id: str) -> bool:
        """Lift a blacklist entry and reset the client's block history."""
        with self._lists_lock:
            present = client_id in self._blacklist
            self._blacklist.discard(client_id)
        state = self._state_for(client_id)
        with state.lock:
            state.block = None
            state.block_count = 0
            state.admitted.clear()
            state.attempts.clear()
        if present:
            logger.info("client %s removed from blacklist", client_id)
        self._notify_waiters()
        return present

    def unblock(self, client_id: str) -> bool:
        with self._registry_lock:
            state = self._clients.get(client_id)
        if state is None:
            return False
        with state.lock:
            had_block = state.block is not None
            state.block = None
            state.attempts.clear()
        self._notify_waiters()
        return had_block

    def whitelist(self) -> List[str]:
        with self._lists_lock:
            return sorted(self._whitelist)

    def blacklist(self) -> List[str]:
        with self._lists_lock:
            return sorted(self._blacklist)

    def reset(self) -> None:
        """Drop all per-client state (whitelist and blacklist are kept)."""
        with self._registry_lock:
            for state in self._clients.values():
                state.removed = True
            self._clients.clear()
        self._notify_waiters()

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        blocked: List[Dict[str, Any]] = []
        queued = 0
        with self._registry_lock:
            items = list(self._clients.items())
        for client_id, state in items:
            with state.lock:
                queued += state.queued
                if state.block is not None and now < state.block.until:
                    blocked.append(
                        {
                            "client": client_id,
                            "since": state.block.since,
                            "remaining_seconds": max(0, math.ceil(state.block.until - now)),
                            "block_count": state.block.block_count,
                            "pattern": state.block.pattern,
                            "reason": state.block.reason,
                        }
                    )
        with self._lists_lock:
            whitelist_size = len(self._whitelist)
            blacklist = sorted(self._blacklist)
        with self._stats_lock:
            totals = {
                "allowed": self.allowed_total,
                "denied": self.denied_total,
                "blocks": self.blocks_total,
                "queue_timeouts": self.queue_timeouts_total,
            }
        return {
            "active_clients": len(items),
            "blocked_clients": blocked,
            "blacklist": blacklist,
            "whitelist_size": whitelist_size,
            "queued_requests": queued,
            "totals": totals,
            "configuration": {
                "window_ms": int(self.window * 1000),
                "max_requests": self.max_requests,
                "block_duration_ms": int(self.block_duration * 1000),
                "abuse_threshold": self.abuse_threshold,
                "queue_enabled": self.queue_enabled,
                "queue_max_size": self.queue_max_size,
                "queue_timeout_ms": int(self.queue_timeout * 1000),
            },
        }

    # -- maintenance ---------------------------------------------------------

    def sweep(self) -> int:
        """Prune stale windows and expired blocks; drop idle clients.

        Outputs:
            int: number of client states removed.
        """
        now = self._clock()
        removed = 0
        with self._registry_lock:
            for client_id, state in list(self._clients.items()):
                with state.lock:
                    self._prune_locked(state, now)
                    if state.block is not None and now >= state.block.until:
                        state.block = None
                    # Clients with block history are kept so repeat offences
                    # still count towards the blacklist.
                    idle = (
                        not state.admitted
                        and not state.attempts
                        and state.block is None
                        and state.block_count == 0
                        and state.queued == 0
                    )
                    if idle:
                        state.removed = True
                        del self._clients[client_id]
                        removed += 1
        if removed:
            logger.debug("rate limit sweep removed %d idle clients", removed)
        return removed

    def start(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="sampwatch-ratelimit-sweep", daemon=True
        )
        self._sweeper.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._notify_waiters()
        if self._sweeper is not None:
            self._sweeper.join(timeout=self.cleanup_interval + 1)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.cleanup_interval):
            try:
                self.sweep()
            except Exception:  # pragma: no cover - sweep must never kill the thread
                logger.exception("rate limit sweep failed")
            self._notify_waiters()
