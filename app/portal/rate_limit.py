"""
In-memory sliding-window rate limiter for the auth endpoints.

Limits are tracked per process. Behind several workers or instances each one
keeps its own table, so the effective limit is per-instance; a shared store
would be needed for a global limit.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from flask import Request

from app.portal.models import IP_MAX_LENGTH

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


# Auth endpoints: 10 requests per 60 seconds per IP; general API: 60 per 60 seconds.
RATE_LIMITS: dict[str, RateLimitRule] = {
    "auth": RateLimitRule(max_requests=10, window_seconds=60),
    "api": RateLimitRule(max_requests=60, window_seconds=60),
}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after_seconds: int


@dataclass
class _Entry:
    count: int
    reset_at: float


class RateLimiter:
    """
    Sliding-window counters per key: each window opens on the first request
    and the count starts over once it has elapsed.

    The table is shared by all request threads and guarded by one lock. A
    daemon thread evicts elapsed entries every `cleanup_interval` seconds; it
    is started on the first check and never keeps the interpreter alive.
    """

    def __init__(
        self,
        *,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._stop_event = threading.Event()
        self._cleanup_thread: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def check(self, key: str, max_requests: int, window_seconds: float) -> RateLimitResult:
        self._ensure_cleanup()
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)

            if entry is None or now > entry.reset_at:
                reset_at = now + window_seconds
                self._entries[key] = _Entry(count=1, reset_at=reset_at)
                return RateLimitResult(
                    allowed=True,
                    remaining=max_requests - 1,
                    reset_at=reset_at,
                    retry_after_seconds=0,
                )

            entry.count += 1
            count, reset_at = entry.count, entry.reset_at

        if count > max_requests:
            logger.warning("Rate limit exceeded (key=%s count=%s max=%s)", key, count, max_requests)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=max(1, math.ceil(reset_at - now)),
            )

        return RateLimitResult(
            allowed=True,
            remaining=max_requests - count,
            reset_at=reset_at,
            retry_after_seconds=0,
        )

    def check_rule(self, key: str, rule: RateLimitRule) -> RateLimitResult:
        return self.check(key, rule.max_requests, rule.window_seconds)

    def evict_expired(self) -> int:
        """Drop every entry whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if now > entry.reset_at]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Evicted %s expired rate-limit entries", len(stale))
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def _ensure_cleanup(self) -> None:
        if self._cleanup_thread is not None or self._cleanup_interval <= 0:
            return
        with self._lock:
            if self._cleanup_thread is not None or self._stop_event.is_set():
                return
            t = threading.Thread(target=self._cleanup_loop, name="rate-limit-cleanup", daemon=True)
            self._cleanup_thread = t
        t.start()

    def _cleanup_loop(self) -> None:
        while not self._stop_event.wait(self._cleanup_interval):
            try:
                self.evict_expired()
            except Exception:
                logger.exception("Rate-limit cleanup sweep failed")

    def stop(self, timeout: float | None = 1.0) -> None:
        """Stop the eviction thread. Safe to call more than once."""
        self._stop_event.set()
        t = self._cleanup_thread
        if t is not None and t.is_alive() and t is not threading.current_thread():
            t.join(timeout)


def client_ip(req: Request) -> str:
    """
    Client address for rate-limit keys: first X-Forwarded-For hop, then
    X-Real-IP, else the literal "unknown". Cut to the width of the ip columns.
    """
    forwarded = req.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:IP_MAX_LENGTH]
    real_ip = (req.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip[:IP_MAX_LENGTH]
    return "unknown"


def rate_limit_key(endpoint: str, ip: str) -> str:
    return f"{endpoint}:{ip}"
