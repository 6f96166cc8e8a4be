"""
In-process sliding-window rate limiting.

Counters live in memory: they reset on restart and are not shared between
worker processes. Keys look like ``user:<id>:<CLASS>`` or ``ip:<addr>:<CLASS>``.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import Flask, current_app, g, request

from app.redline.errors import TooManyRequests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: int
    max_requests: int


RATE_LIMIT_CONFIGS: dict[str, RateLimitConfig] = {
    "GENERAL": RateLimitConfig(15 * 60, 1000),
    "AUTH_LOGIN": RateLimitConfig(15 * 60, 5),
    "AUTH_SIGNUP": RateLimitConfig(60 * 60, 3),
    "CONTENT_CREATE": RateLimitConfig(5 * 60, 10),
    "CONTENT_UPLOAD": RateLimitConfig(5 * 60, 20),
    "SOCIAL_LIKE": RateLimitConfig(60, 60),
    "SOCIAL_COMMENT": RateLimitConfig(5 * 60, 30),
    "CLUB_CREATE": RateLimitConfig(24 * 60 * 60, 3),
    "CLUB_JOIN": RateLimitConfig(5 * 60, 20),
    "ADMIN_OPERATIONS": RateLimitConfig(5 * 60, 200),
    "SEARCH": RateLimitConfig(60, 100),
    "READ_OPERATIONS": RateLimitConfig(60, 300),
}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # unix seconds when the oldest counted hit leaves the window
    retry_after: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.time, cleanup_every: int = 500) -> None:
        self._clock = clock
        self._cleanup_every = cleanup_every
        self._hits: dict[str, tuple[int, deque[float]]] = {}
        self._lock = threading.Lock()
        self._checks = 0

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one hit for ``key`` unless the window is already full. Rejected hits are not counted."""
        with self._lock:
            now = self._clock()
            self._checks += 1
            if self._checks % self._cleanup_every == 0:
                self._cleanup_locked(now)

            _, hits = self._hits.setdefault(key, (config.window_seconds, deque()))
            cutoff = now - config.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= config.max_requests:
                reset_at = hits[0] + config.window_seconds
                return RateLimitResult(
                    allowed=False,
                    limit=config.max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(1, int(math.ceil(reset_at - now))),
                )

            hits.append(now)
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=config.max_requests - len(hits),
                reset_at=hits[0] + config.window_seconds,
                retry_after=0,
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)

    def cleanup(self) -> int:
        with self._lock:
            return self._cleanup_locked(self._clock())

    def _cleanup_locked(self, now: float) -> int:
        stale = [k for k, (window, hits) in self._hits.items() if not hits or hits[-1] <= now - window]
        for k in stale:
            del self._hits[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._hits)


def init_rate_limiter(app: Flask) -> None:
    app.extensions["rate_limiter"] = RateLimiter()

    @app.after_request
    def _rate_limit_headers(response):  # type: ignore[no-redef]
        for k, v in (getattr(g, "rate_limit_headers", None) or {}).items():
            response.headers.setdefault(k, v)
        return response


def get_rate_limiter(app: Flask | None = None) -> RateLimiter:
    app = app or current_app
    return app.extensions["rate_limiter"]


def client_key(name: str, subject: str | None = None) -> str:
    if subject:
        return f"{subject}:{name}"
    user = getattr(g, "current_user", None)
    if user is not None:
        return f"user:{user.id}:{name}"
    return f"ip:{request.remote_addr or 'unknown'}:{name}"


def enforce_rate_limit(name: str, *, subject: str | None = None) -> RateLimitResult | None:
    """Count the current request against limit class ``name``; raise TOO_MANY_REQUESTS when exceeded."""
    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return None
    user = getattr(g, "current_user", None)
    if user is not None and user.site_role == "SUPER_ADMIN":
        return None

    config = RATE_LIMIT_CONFIGS[name]
    key = client_key(name, subject)
    result = get_rate_limiter().check(key, config)
    g.rate_limit_headers = result.headers()
    if result.allowed:
        return result

    logger.warning("Rate limit exceeded key=%s request_id=%s", key, getattr(g, "request_id", None))
    from app.redline.audit import log_security_event
    from app.redline.db import db_session

    s = db_session()
    log_security_event(
        s,
        "security.rate_limit_exceeded",
        user,
        resource_type="system",
        severity="MEDIUM",
        metadata={"key": key, "limit_class": name, "path": request.path},
    )
    s.commit()
    raise TooManyRequests(
        f"Rate limit exceeded. Try again in {result.retry_after} seconds.",
        headers={**result.headers(), "Retry-After": str(result.retry_after)},
    )


def rate_limit(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    if name not in RATE_LIMIT_CONFIGS:
        raise ValueError(f"Unknown rate limit class: {name}")

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            enforce_rate_limit(name)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
