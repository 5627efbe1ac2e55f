"""
HTTP Hardening Middleware

Request body size limits and tiered per-client rate limiting. The oracle
endpoints (analyze, aggregate, deep, generate) form the "expensive" tier,
other writes the "mutate" tier and reads the "read" tier. Health checks and
CORS preflights are never limited. There is no authentication layer.
"""

import logging
import os
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, FrozenSet, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger("feedback_backend")

HEALTH_PATHS: FrozenSet[str] = frozenset({
    "/health",
    "/api/sessions/health",
    "/api/signals/health",
    "/api/analytics/health",
    "/api/narrative/health",
})

# (method, path) of every endpoint that calls the oracle
EXPENSIVE_ROUTES: FrozenSet[Tuple[str, str]] = frozenset({
    ("POST", "/api/sessions/analyze"),
    ("POST", "/api/signals/aggregate"),
    ("POST", "/api/analytics/deep"),
    ("POST", "/api/narrative/generate"),
})

MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})


@dataclass(frozen=True)
class HardeningSettings:
    max_json_bytes: int = 1 * 1024 * 1024
    max_body_bytes: int = 5 * 1024 * 1024
    window_seconds: int = 60
    expensive_limit: int = 10
    mutate_limit: int = 60
    read_limit: int = 200

    @classmethod
    def from_env(cls) -> "HardeningSettings":
        return cls(
            max_json_bytes=int(os.getenv("MAX_JSON_BYTES", str(cls.max_json_bytes))),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", str(cls.max_body_bytes))),
            window_seconds=int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(cls.window_seconds))),
            expensive_limit=int(os.getenv("RATE_LIMIT_EXPENSIVE", str(cls.expensive_limit))),
            mutate_limit=int(os.getenv("RATE_LIMIT_MUTATE", str(cls.mutate_limit))),
            read_limit=int(os.getenv("RATE_LIMIT_READ", str(cls.read_limit))),
        )

    def limit_for(self, tier: str) -> int:
        return {"expensive": self.expensive_limit, "mutate": self.mutate_limit, "read": self.read_limit}[tier]


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


def classify_request(method: str, path: str) -> Optional[str]:
    """Rate-limit tier of a request, or None when it is exempt."""
    path = _normalize_path(path)
    if path in HEALTH_PATHS or method == "OPTIONS":
        return None
    if (method, path) in EXPENSIVE_ROUTES:
        return "expensive"
    if method in MUTATING_METHODS:
        return "mutate"
    return "read"


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose declared Content-Length exceeds the limit for their content type."""

    def __init__(self, app: ASGIApp, settings: HardeningSettings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next: Callable):
        content_length = request.headers.get("content-length")
        if content_length is None:
            return await call_next(request)

        try:
            length = int(content_length)
        except ValueError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Invalid Content-Length header."},
            )

        is_json = "application/json" in request.headers.get("content-type", "")
        limit = self.settings.max_json_bytes if is_json else self.settings.max_body_bytes
        if length > limit:
            logger.warning(
                "[SECURITY] Rejected oversized request to %s (%d bytes, limit %d bytes)",
                request.url.path,
                length,
                limit,
            )
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={"error": f"Request body too large. Limit: {limit} bytes."},
            )

        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window limits per (client ip, tier), kept in process memory.

    Each worker process counts on its own.
    """

    def __init__(self, app: ASGIApp, settings: HardeningSettings, clock: Callable[[], float] = time.monotonic):
        super().__init__(app)
        self.settings = settings
        self.clock = clock
        self._hits: Dict[Tuple[str, str], Deque[float]] = {}
        self._last_sweep = clock()

    def _sweep(self, cutoff: float) -> None:
        """Forget clients whose newest hit has left the window."""
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def _admit(self, key: Tuple[str, str], limit: int) -> bool:
        now = self.clock()
        cutoff = now - self.settings.window_seconds
        if now - self._last_sweep >= self.settings.window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now

        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= limit:
            return False
        hits.append(now)
        return True

    async def dispatch(self, request: Request, call_next: Callable):
        tier = classify_request(request.method, request.url.path)
        if tier is None:
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        limit = self.settings.limit_for(tier)
        if not self._admit((ip, tier), limit):
            logger.warning(
                "[RATE LIMIT] %s exceeded %s tier limit (%d/%ds) on %s %s",
                ip, tier, limit, self.settings.window_seconds, request.method, request.url.path,
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": f"Rate limit exceeded ({tier} tier: {limit} requests per {self.settings.window_seconds}s)."
                },
                headers={"Retry-After": str(self.settings.window_seconds)},
            )

        return await call_next(request)


def configure_http_hardening(app, settings: Optional[HardeningSettings] = None) -> HardeningSettings:
    """
    Wire body-size and rate-limit middleware onto the app.

    The last middleware added runs first, so rate limits are checked before body size.
    """
    settings = settings or HardeningSettings.from_env()
    app.add_middleware(BodySizeLimitMiddleware, settings=settings)
    app.add_middleware(RateLimitMiddleware, settings=settings)

    logger.info(
        "[SECURITY] Rate limits: expensive=%d, mutate=%d, read=%d per %ds",
        settings.expensive_limit, settings.mutate_limit, settings.read_limit, settings.window_seconds,
    )
    logger.info("[SECURITY] Body limits: JSON=%d bytes, other=%d bytes", settings.max_json_bytes, settings.max_body_bytes)
    return settings
